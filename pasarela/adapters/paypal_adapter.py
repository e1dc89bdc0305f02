"""
Adapter para PayPal.
Orders v2 para pagos y Billing Subscriptions para cobros recurrentes.
"""

import time
import zlib
from dataclasses import replace
from datetime import datetime
from typing import Any, ClassVar, Mapping
from uuid import uuid4

import structlog

from pasarela.adapters.base import (
    CanonicalWebhookEvent,
    PaymentLink,
    ProviderAdapter,
    SignedMessage,
    SubscriptionLink,
    TransactionStatusReport,
)
from pasarela.schemas.common import Environment, ProviderName, TransactionStatus
from pasarela.schemas.currency import format_major_units, to_minor_units
from pasarela.schemas.payment import PaymentRequest, SubscriptionPeriod, SubscriptionRequest
from pasarela.utils.exceptions import MalformedPayloadError, ProviderRequestError
from pasarela.utils.hmac_utils import payload_checksum


logger = structlog.get_logger(__name__)

# Margen para renovar el token OAuth antes de que expire
TOKEN_REFRESH_MARGIN_SECONDS = 60

# reference_id de la única purchase unit de cada orden
PURCHASE_UNIT_REFERENCE = "default"


def paypal_signing_string(
    transmission_id: str,
    transmission_time: str,
    webhook_id: str,
    raw_payload: bytes,
) -> str:
    """Mensaje canónico de PayPal: transmission_id|time|webhook_id|crc32(body)."""
    return f"{transmission_id}|{transmission_time}|{webhook_id}|{zlib.crc32(raw_payload)}"


class PayPalAdapter(ProviderAdapter):
    """
    Adapter para PayPal REST.
    
    La referencia de transacción es el ID de la orden (o de la suscripción).
    """
    
    provider_name = ProviderName.PAYPAL
    supports_subscriptions = True
    
    BASE_URLS = {
        Environment.SANDBOX: "https://api-m.sandbox.paypal.com",
        Environment.PRODUCTION: "https://api-m.paypal.com",
    }
    SUPPORTED_CURRENCIES = frozenset({
        "AUD", "BRL", "CAD", "CHF", "CNY", "CZK", "DKK", "EUR", "GBP", "HKD",
        "HUF", "ILS", "JPY", "MXN", "MYR", "NOK", "NZD", "PHP", "PLN", "SEK",
        "SGD", "THB", "TWD", "USD",
    })
    
    # Estados de órdenes, capturas, ventas y suscripciones
    STATUS_MAP = {
        "CREATED": TransactionStatus.PENDING,
        "SAVED": TransactionStatus.PENDING,
        "APPROVED": TransactionStatus.PENDING,
        "PAYER_ACTION_REQUIRED": TransactionStatus.PENDING,
        "PENDING": TransactionStatus.PENDING,
        "APPROVAL_PENDING": TransactionStatus.PENDING,
        "ACTIVE": TransactionStatus.PENDING,
        "SUSPENDED": TransactionStatus.PENDING,
        "COMPLETED": TransactionStatus.PAID,
        "PARTIALLY_REFUNDED": TransactionStatus.PAID,
        "DECLINED": TransactionStatus.FAILED,
        "FAILED": TransactionStatus.FAILED,
        "VOIDED": TransactionStatus.CANCELLED,
        "CANCELLED": TransactionStatus.CANCELLED,
        "EXPIRED": TransactionStatus.CANCELLED,
        "REFUNDED": TransactionStatus.REFUNDED,
    }
    
    # Mapeo de tipos de evento de webhook a estados canónicos
    EVENT_TYPE_MAP: ClassVar[dict[str, TransactionStatus]] = {
        "CHECKOUT.ORDER.APPROVED": TransactionStatus.PENDING,
        "CHECKOUT.ORDER.COMPLETED": TransactionStatus.PAID,
        "CHECKOUT.ORDER.VOIDED": TransactionStatus.CANCELLED,
        "PAYMENT.CAPTURE.PENDING": TransactionStatus.PENDING,
        "PAYMENT.CAPTURE.COMPLETED": TransactionStatus.PAID,
        "PAYMENT.CAPTURE.DENIED": TransactionStatus.FAILED,
        "PAYMENT.CAPTURE.DECLINED": TransactionStatus.FAILED,
        "PAYMENT.CAPTURE.REFUNDED": TransactionStatus.REFUNDED,
        "PAYMENT.CAPTURE.REVERSED": TransactionStatus.REFUNDED,
        "PAYMENT.SALE.COMPLETED": TransactionStatus.PAID,
        "PAYMENT.SALE.DENIED": TransactionStatus.FAILED,
        "PAYMENT.SALE.REFUNDED": TransactionStatus.REFUNDED,
        "BILLING.SUBSCRIPTION.ACTIVATED": TransactionStatus.PENDING,
        "BILLING.SUBSCRIPTION.CANCELLED": TransactionStatus.CANCELLED,
        "BILLING.SUBSCRIPTION.EXPIRED": TransactionStatus.CANCELLED,
    }
    
    INTERVAL_UNITS: ClassVar[dict[SubscriptionPeriod, str]] = {
        SubscriptionPeriod.DAILY: "DAY",
        SubscriptionPeriod.WEEKLY: "WEEK",
        SubscriptionPeriod.MONTHLY: "MONTH",
        SubscriptionPeriod.YEARLY: "YEAR",
    }
    
    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0
    
    @property
    def webhook_secret(self) -> str | None:
        return getattr(self._credentials, "webhook_secret", None) or None
    
    async def _get_access_token(self) -> str:
        """Obtiene (o reutiliza) un token OAuth2 client-credentials."""
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token
        
        response = await self._send(
            "POST",
            "v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self._credentials.client_id, self._credentials.client_secret),
        )
        data = self._json(response)
        if not data.get("access_token"):
            raise ProviderRequestError(self.provider_name.value, "OAuth response without access_token")
        
        expires_in = int(data.get("expires_in", 0))
        self._access_token = data["access_token"]
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_REFRESH_MARGIN_SECONDS, 0)
        logger.debug("PayPal access token refreshed", expires_in=expires_in)
        return self._access_token
    
    async def _api(
        self,
        method: str,
        path: str,
        not_found_ref: str | None = None,
        request_id: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        token = await self._get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            # PayPal deduplica requests con el mismo PayPal-Request-Id
            "PayPal-Request-Id": request_id or uuid4().hex,
        }
        response = await self._send(method, path, not_found_ref=not_found_ref, headers=headers, **kwargs)
        if response.status_code == 204 or not response.content:
            return {}
        return self._json(response)
    
    def _approval_url(self, data: dict[str, Any]) -> str:
        for link in data.get("links", []):
            if link.get("rel") in ("payer-action", "approve"):
                return link["href"]
        raise ProviderRequestError(self.provider_name.value, "response without approval link")
    
    async def create_payment(self, request: PaymentRequest) -> PaymentLink:
        """
        Crea una orden (intent CAPTURE) y le asigna custom_id.
        
        El ID de la orden se conoce recién en la respuesta, así que se
        agrega como custom_id e invoice_id con un PATCH. Capturas y
        reembolsos heredan custom_id, que es lo único que los relaciona
        con la orden en los webhooks.
        """
        self._require_credentials("client_id", "client_secret")
        self._require_currency(request.currency)
        
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": PURCHASE_UNIT_REFERENCE,
                    "description": request.description[:127],
                    "amount": {
                        "currency_code": request.currency,
                        "value": format_major_units(request.amount, request.currency),
                    },
                }
            ],
            "application_context": {
                "return_url": request.return_url,
                "cancel_url": request.return_url,
                "user_action": "PAY_NOW",
                "shipping_preference": "NO_SHIPPING",
            },
        }
        
        data = await self._api("POST", "v2/checkout/orders", json=body)
        if not data.get("id"):
            raise ProviderRequestError(self.provider_name.value, "order response without id")
        order_id = data["id"]
        
        unit_path = f"/purchase_units/@reference_id=='{PURCHASE_UNIT_REFERENCE}'"
        await self._api(
            "PATCH",
            f"v2/checkout/orders/{order_id}",
            json=[
                {"op": "add", "path": f"{unit_path}/custom_id", "value": order_id},
                {"op": "add", "path": f"{unit_path}/invoice_id", "value": order_id},
            ],
        )
        
        logger.info("PayPal order created", order_id=order_id, status=data.get("status"))
        
        return PaymentLink(
            transaction_ref=order_id,
            redirect_url=self._approval_url(data),
            provider=self.provider_name,
            expires_at=None,
            raw_response=data,
        )
    
    async def create_subscription(self, request: SubscriptionRequest) -> SubscriptionLink:
        """Crea producto, plan y suscripción."""
        self._require_credentials("client_id", "client_secret")
        self._require_currency(request.currency)
        
        product = await self._api(
            "POST",
            "v1/catalogs/products",
            json={"name": request.description[:127], "type": "SERVICE"},
        )
        plan = await self._api(
            "POST",
            "v1/billing/plans",
            json={
                "product_id": product["id"],
                "name": request.description[:127],
                "billing_cycles": [
                    {
                        "frequency": {
                            "interval_unit": self.INTERVAL_UNITS[request.period],
                            "interval_count": 1,
                        },
                        "tenure_type": "REGULAR",
                        "sequence": 1,
                        # 0 = sin límite de cobros
                        "total_cycles": request.max_charges or 0,
                        "pricing_scheme": {
                            "fixed_price": {
                                "currency_code": request.currency,
                                "value": format_major_units(request.amount, request.currency),
                            }
                        },
                    }
                ],
                "payment_preferences": {"auto_bill_outstanding": True},
            },
        )
        subscription = await self._api(
            "POST",
            "v1/billing/subscriptions",
            json={
                "plan_id": plan["id"],
                "subscriber": {"email_address": request.payer_email},
                "application_context": {
                    "return_url": request.return_url,
                    "cancel_url": request.return_url,
                    "user_action": "SUBSCRIBE_NOW",
                },
            },
        )
        if not subscription.get("id"):
            raise ProviderRequestError(self.provider_name.value, "subscription response without id")
        
        logger.info(
            "PayPal subscription created",
            plan_id=plan["id"],
            subscription_id=subscription["id"],
        )
        
        return SubscriptionLink(
            transaction_ref=subscription["id"],
            redirect_url=self._approval_url(subscription),
            provider=self.provider_name,
            raw_response=subscription,
            subscription_ref=subscription["id"],
        )
    
    async def _capture(self, order_id: str) -> dict[str, Any]:
        """Captura una orden aprobada por el pagador."""
        data = await self._api(
            "POST",
            f"v2/checkout/orders/{order_id}/capture",
            not_found_ref=order_id,
            # Request-Id fijo: dos verificaciones concurrentes no capturan dos veces
            request_id=f"capture-{order_id}",
            json={},
        )
        logger.info("PayPal order captured", order_id=order_id, status=data.get("status"))
        return data
    
    async def verify_transaction(self, transaction_ref: str) -> TransactionStatusReport:
        """
        Consulta la orden; las capturas tienen prioridad sobre el estado de la orden.
        
        Una orden APPROVED se captura en el momento: sin captura el pago
        nunca se completa.
        """
        self._require_credentials("client_id", "client_secret")
        
        data = await self._api("GET", f"v2/checkout/orders/{transaction_ref}", not_found_ref=transaction_ref)
        
        if data.get("status") == "APPROVED":
            captured = await self._capture(transaction_ref)
            # La respuesta de captura no siempre repite el monto de la orden
            order_units = data.get("purchase_units")
            data = {**data, **captured}
            if not captured.get("purchase_units") and order_units:
                data["purchase_units"] = order_units
        
        provider_status = data.get("status")
        units = data.get("purchase_units") or [{}]
        unit = units[0] if isinstance(units, list) and isinstance(units[0], dict) else {}
        captures = (unit.get("payments") or {}).get("captures") or []
        capture_statuses = {c.get("status") for c in captures}
        if "REFUNDED" in capture_statuses:
            provider_status = "REFUNDED"
        elif "COMPLETED" in capture_statuses:
            provider_status = "COMPLETED"
        
        amount_obj = unit.get("amount")
        if amount_obj is None and captures:
            amount_obj = captures[0].get("amount")
        amount, currency = self._extract_amount(amount_obj)
        
        return TransactionStatusReport(
            provider=self.provider_name,
            transaction_ref=transaction_ref,
            status=self.map_status(provider_status),
            amount=amount,
            currency=currency,
            provider_status=provider_status,
            raw_response=data,
        )
    
    def _extract_amount(self, amount: Any) -> tuple[int | None, str | None]:
        """Lee {"value", "currency_code"} (v2) o {"total", "currency"} (ventas v1)."""
        if not isinstance(amount, dict):
            return None, None
        value = amount.get("value", amount.get("total"))
        currency = amount.get("currency_code") or amount.get("currency")
        if value is None or not isinstance(currency, str) or not currency:
            return None, None
        try:
            return to_minor_units(value, currency), currency.upper()
        except (ArithmeticError, ValueError) as e:
            raise MalformedPayloadError(self.provider_name.value, f"invalid amount: {e}")
    
    def _resolve_reference(self, event_type: str, resource: dict[str, Any]) -> str | None:
        supplementary = resource.get("supplementary_data")
        related = supplementary.get("related_ids") if isinstance(supplementary, dict) else None
        if isinstance(related, dict) and isinstance(related.get("order_id"), str) and related["order_id"]:
            return related["order_id"]
        
        candidates: list[Any] = [resource.get("billing_agreement_id")]
        if event_type.startswith(("CHECKOUT.ORDER.", "BILLING.SUBSCRIPTION.")):
            candidates.append(resource.get("id"))
        # Capturas y reembolsos: la orden viaja en custom_id / invoice_id
        candidates.extend([resource.get("custom_id"), resource.get("invoice_id")])
        
        for candidate in candidates:
            if isinstance(candidate, (str, int)) and not isinstance(candidate, bool) and str(candidate):
                return str(candidate)
        return None
    
    def _parse_create_time(self, value: Any) -> datetime | None:
        if not isinstance(value, str):
            return None
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Invalid PayPal create_time", create_time=value)
            return None
    
    def normalize_webhook(self, raw_payload: bytes) -> CanonicalWebhookEvent:
        payload = self._parse_json_payload(raw_payload)
        event_id = payload.get("id")
        event_type = payload.get("event_type")
        resource = payload.get("resource")
        if (
            not isinstance(event_id, (str, int))
            or isinstance(event_id, bool)
            or not str(event_id)
            or not isinstance(event_type, str)
            or not event_type
            or not isinstance(resource, dict)
        ):
            raise MalformedPayloadError(
                self.provider_name.value, "id, event_type and resource are required"
            )
        
        transaction_ref = self._resolve_reference(event_type, resource)
        if not transaction_ref:
            raise MalformedPayloadError(
                self.provider_name.value, f"cannot resolve transaction for {event_type}"
            )
        
        status = self.EVENT_TYPE_MAP.get(event_type)
        if status is None:
            logger.warning("Unrecognized PayPal event type", event_type=event_type)
            status = TransactionStatus.UNKNOWN
        
        amount_obj = resource.get("amount")
        units = resource.get("purchase_units")
        if amount_obj is None and isinstance(units, list) and units:
            if not isinstance(units[0], dict):
                raise MalformedPayloadError(self.provider_name.value, "invalid purchase_units")
            amount_obj = units[0].get("amount")
        amount, currency = self._extract_amount(amount_obj)
        
        event = CanonicalWebhookEvent(
            provider=self.provider_name,
            event_id=str(event_id),
            transaction_ref=transaction_ref,
            status=status,
            amount=amount,
            currency=currency,
            checksum=payload_checksum(raw_payload),
            provider_status=event_type,
        )
        occurred_at = self._parse_create_time(payload.get("create_time"))
        if occurred_at is not None:
            event = replace(event, occurred_at=occurred_at)
        return event
    
    def extract_signature(
        self,
        raw_payload: bytes,
        headers: Mapping[str, str],
    ) -> SignedMessage:
        transmission_id = headers.get("paypal-transmission-id")
        transmission_time = headers.get("paypal-transmission-time")
        signature = headers.get("paypal-transmission-sig")
        if not transmission_id or not transmission_time:
            return SignedMessage(signature=None)
        
        timestamp = None
        try:
            timestamp = datetime.fromisoformat(transmission_time.replace("Z", "+00:00")).timestamp()
        except ValueError:
            logger.warning("Invalid PayPal transmission time", transmission_time=transmission_time)
        
        webhook_id = getattr(self._credentials, "webhook_id", "") or ""
        message = paypal_signing_string(transmission_id, transmission_time, webhook_id, raw_payload)
        
        return SignedMessage(
            signature=signature or None,
            message=message.encode("utf-8"),
            timestamp=timestamp,
        )
