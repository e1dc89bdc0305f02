"""
Adapter para Flow (flow.cl).
API REST con parámetros form-encoded firmados con HMAC-SHA256.
"""

import json
from typing import Any, ClassVar, Mapping
from urllib.parse import parse_qsl
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
from pasarela.utils.hmac_utils import generate_signature, payload_checksum


logger = structlog.get_logger(__name__)


def flow_signing_string(params: Mapping[str, Any]) -> str:
    """Concatena "clave+valor" de los parámetros ordenados alfabéticamente."""
    return "".join(f"{key}{params[key]}" for key in sorted(params))


def sign_flow_params(params: Mapping[str, Any], secret_key: str) -> str:
    """Firma los parámetros de Flow (parámetro "s")."""
    return generate_signature(flow_signing_string(params).encode("utf-8"), secret_key)


class FlowAdapter(ProviderAdapter):
    """
    Adapter para Flow.
    
    La referencia de transacción es el commerceOrder que generamos nosotros.
    Flow notifica a urlConfirmation; la aplicación anfitriona reenvía el
    cuerpo de estado firmado (mismo esquema de firma que la API).
    """
    
    provider_name = ProviderName.FLOW
    supports_subscriptions = True
    
    BASE_URLS = {
        Environment.SANDBOX: "https://sandbox.flow.cl/api",
        Environment.PRODUCTION: "https://www.flow.cl/api",
    }
    SUPPORTED_CURRENCIES = frozenset({"CLP"})
    
    # Flow reporta estados numéricos
    STATUS_MAP = {
        "1": TransactionStatus.PENDING,
        "2": TransactionStatus.PAID,
        "3": TransactionStatus.FAILED,
        "4": TransactionStatus.CANCELLED,
    }
    
    # Intervalos de planes: 1 diario, 2 semanal, 3 mensual, 4 anual
    INTERVALS: ClassVar[dict[SubscriptionPeriod, int]] = {
        SubscriptionPeriod.DAILY: 1,
        SubscriptionPeriod.WEEKLY: 2,
        SubscriptionPeriod.MONTHLY: 3,
        SubscriptionPeriod.YEARLY: 4,
    }
    
    @property
    def webhook_secret(self) -> str | None:
        return getattr(self._credentials, "secret_key", None) or None
    
    def _signed(self, params: dict[str, Any]) -> dict[str, str]:
        """Agrega apiKey y la firma "s" a los parámetros."""
        payload = {k: str(v) for k, v in params.items() if v is not None}
        payload["apiKey"] = self._credentials.api_key
        payload["s"] = sign_flow_params(payload, self._credentials.secret_key)
        return payload
    
    async def _post(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        response = await self._send("POST", path, data=self._signed(params))
        return self._json(response)
    
    async def create_payment(self, request: PaymentRequest) -> PaymentLink:
        """Crea una orden de pago (payment/create)."""
        self._require_credentials("api_key", "secret_key")
        self._require_currency(request.currency)
        notification_url = self._require_notification_url(request)
        
        commerce_order = uuid4().hex
        params: dict[str, Any] = {
            "commerceOrder": commerce_order,
            "subject": request.description,
            "currency": request.currency,
            "amount": format_major_units(request.amount, request.currency),
            "email": request.payer_email,
            "urlConfirmation": notification_url,
            "urlReturn": request.return_url,
            "timeout": self._link_ttl_seconds,
        }
        if request.metadata:
            params["optional"] = json.dumps(request.metadata, default=str)
        
        data = await self._post("payment/create", params)
        
        if not data.get("url") or not data.get("token"):
            raise ProviderRequestError(self.provider_name.value, "payment/create response without url/token")
        
        logger.info(
            "Flow payment order created",
            commerce_order=commerce_order,
            flow_order=data.get("flowOrder"),
        )
        
        return PaymentLink(
            transaction_ref=commerce_order,
            redirect_url=f"{data['url']}?token={data['token']}",
            provider=self.provider_name,
            expires_at=self._link_expiry(),
            raw_response=data,
        )
    
    async def create_subscription(self, request: SubscriptionRequest) -> SubscriptionLink:
        """
        Crea plan, cliente y suscripción.
        
        El link retornado es el registro de tarjeta del cliente
        (customer/register), requisito para los cobros automáticos.
        
        La referencia es el subscriptionId. Cada cobro del plan llega con
        el commerceOrder de su propia factura, que Flow asigna al cobrar;
        esos cobros se registran como transacciones propias y no actualizan
        el registro de la suscripción.
        """
        self._require_credentials("api_key", "secret_key")
        self._require_currency(request.currency)
        notification_url = self._require_notification_url(request)
        
        plan_id = f"plan-{uuid4().hex[:20]}"
        plan_params: dict[str, Any] = {
            "planId": plan_id,
            "name": request.description,
            "currency": request.currency,
            "amount": format_major_units(request.amount, request.currency),
            "interval": self.INTERVALS[request.period],
            "interval_count": 1,
            "periods_number": request.max_charges,
            "urlCallback": notification_url,
        }
        await self._post("plans/create", plan_params)
        
        customer = await self._post(
            "customer/create",
            {
                "name": request.metadata.get("payer_name", request.payer_email),
                "email": request.payer_email,
                "externalId": uuid4().hex,
            },
        )
        customer_id = customer.get("customerId")
        if not customer_id:
            raise ProviderRequestError(self.provider_name.value, "customer/create response without customerId")
        
        subscription = await self._post(
            "subscription/create",
            {"planId": plan_id, "customerId": customer_id},
        )
        subscription_id = subscription.get("subscriptionId")
        if not subscription_id:
            raise ProviderRequestError(
                self.provider_name.value, "subscription/create response without subscriptionId"
            )
        
        register = await self._post(
            "customer/register",
            {"customerId": customer_id, "url_return": request.return_url},
        )
        
        logger.info(
            "Flow subscription created",
            plan_id=plan_id,
            customer_id=customer_id,
            subscription_id=subscription_id,
        )
        
        return SubscriptionLink(
            transaction_ref=subscription_id,
            redirect_url=f"{register.get('url')}?token={register.get('token')}",
            provider=self.provider_name,
            expires_at=None,
            raw_response=subscription,
            subscription_ref=subscription_id,
        )
    
    async def verify_transaction(self, transaction_ref: str) -> TransactionStatusReport:
        """Consulta payment/getStatusByCommerceId."""
        self._require_credentials("api_key", "secret_key")
        
        response = await self._send(
            "GET",
            "payment/getStatusByCommerceId",
            not_found_ref=transaction_ref,
            params=self._signed({"commerceId": transaction_ref}),
        )
        data = self._json(response)
        currency = str(data.get("currency") or "CLP").upper()
        
        return TransactionStatusReport(
            provider=self.provider_name,
            transaction_ref=str(data.get("commerceOrder") or transaction_ref),
            status=self.map_status(data.get("status")),
            amount=to_minor_units(data["amount"], currency) if data.get("amount") is not None else None,
            currency=currency,
            provider_status=str(data.get("status")),
            raw_response=data,
        )
    
    def _parse_form(self, raw_payload: bytes) -> dict[str, str]:
        try:
            return dict(parse_qsl(raw_payload.decode("utf-8"), keep_blank_values=True))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedPayloadError(self.provider_name.value, f"invalid form body: {e}")
    
    def normalize_webhook(self, raw_payload: bytes) -> CanonicalWebhookEvent:
        params = self._parse_form(raw_payload)
        
        commerce_order = params.get("commerceOrder")
        raw_status = params.get("status")
        if not commerce_order or not raw_status:
            raise MalformedPayloadError(
                self.provider_name.value, "commerceOrder and status are required"
            )
        
        currency = (params.get("currency") or "CLP").upper()
        amount = None
        if params.get("amount"):
            try:
                amount = to_minor_units(params["amount"], currency)
            except (ArithmeticError, ValueError) as e:
                raise MalformedPayloadError(self.provider_name.value, f"invalid amount: {e}")
        
        # Flow no envía ID de evento: orden + estado identifica la notificación
        order_key = params.get("flowOrder") or commerce_order
        
        return CanonicalWebhookEvent(
            provider=self.provider_name,
            event_id=f"flow:{order_key}:{raw_status}",
            transaction_ref=commerce_order,
            status=self.map_status(raw_status),
            amount=amount,
            currency=currency,
            checksum=payload_checksum(raw_payload),
            provider_status=raw_status,
        )
    
    def extract_signature(
        self,
        raw_payload: bytes,
        headers: Mapping[str, str],
    ) -> SignedMessage:
        try:
            params = self._parse_form(raw_payload)
        except MalformedPayloadError:
            return SignedMessage(signature=None)
        
        signature = params.pop("s", None)
        return SignedMessage(
            signature=signature or None,
            message=flow_signing_string(params).encode("utf-8"),
        )
