"""
Adapter para Mercado Pago.
Checkout Pro (preferences) para pagos y preapprovals para suscripciones.
"""

import json
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
from pasarela.schemas.currency import json_major_units, to_minor_units
from pasarela.schemas.payment import PaymentRequest, SubscriptionPeriod, SubscriptionRequest
from pasarela.utils.exceptions import MalformedPayloadError, NotFoundError, ProviderRequestError
from pasarela.utils.hmac_utils import parse_signature_header, payload_checksum


logger = structlog.get_logger(__name__)


def mercadopago_manifest(data_id: str | None, request_id: str | None, ts: str) -> str:
    """Manifest firmado por Mercado Pago: "id:<data.id>;request-id:<x-request-id>;ts:<ts>;"."""
    manifest = ""
    if data_id:
        # Los IDs alfanuméricos se firman en minúsculas
        manifest += f"id:{data_id.lower() if data_id.isalnum() else data_id};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    return manifest


class MercadoPagoAdapter(ProviderAdapter):
    """
    Adapter para Mercado Pago.
    
    La referencia de transacción es el external_reference que generamos;
    los pagos la heredan de la preference, lo que permite reconciliar.
    """
    
    provider_name = ProviderName.MERCADOPAGO
    supports_subscriptions = True
    
    BASE_URLS = {
        Environment.SANDBOX: "https://api.mercadopago.com",
        Environment.PRODUCTION: "https://api.mercadopago.com",
    }
    SUPPORTED_CURRENCIES = frozenset({"ARS", "BRL", "CLP", "COP", "MXN", "PEN", "UYU"})
    
    STATUS_MAP = {
        "approved": TransactionStatus.PAID,
        "authorized": TransactionStatus.PENDING,
        "pending": TransactionStatus.PENDING,
        "in_process": TransactionStatus.PENDING,
        "in_mediation": TransactionStatus.PENDING,
        "paused": TransactionStatus.PENDING,
        "rejected": TransactionStatus.FAILED,
        "cancelled": TransactionStatus.CANCELLED,
        "refunded": TransactionStatus.REFUNDED,
        "charged_back": TransactionStatus.REFUNDED,
    }
    
    # (frequency, frequency_type) de auto_recurring
    FREQUENCIES: ClassVar[dict[SubscriptionPeriod, tuple[int, str]]] = {
        SubscriptionPeriod.DAILY: (1, "days"),
        SubscriptionPeriod.WEEKLY: (7, "days"),
        SubscriptionPeriod.MONTHLY: (1, "months"),
        SubscriptionPeriod.YEARLY: (12, "months"),
    }
    
    @property
    def webhook_secret(self) -> str | None:
        return getattr(self._credentials, "webhook_secret", None) or None
    
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._credentials.access_token}",
            "X-Idempotency-Key": uuid4().hex,
        }
    
    def _checkout_url(self, data: dict[str, Any]) -> str:
        # En sandbox preferimos sandbox_init_point
        if self._environment == Environment.SANDBOX:
            url = data.get("sandbox_init_point") or data.get("init_point")
        else:
            url = data.get("init_point")
        if not url:
            raise ProviderRequestError(self.provider_name.value, "response without checkout URL")
        return url
    
    async def create_payment(self, request: PaymentRequest) -> PaymentLink:
        """Crea una Preference (Checkout Pro)."""
        self._require_credentials("access_token")
        self._require_currency(request.currency)
        notification_url = self._require_notification_url(request)
        
        external_reference = uuid4().hex
        expires_at = self._link_expiry()
        body: dict[str, Any] = {
            "items": [
                {
                    "title": request.description[:120],
                    "quantity": 1,
                    "unit_price": json_major_units(request.amount, request.currency),
                    "currency_id": request.currency,
                }
            ],
            "payer": {"email": request.payer_email},
            "back_urls": {
                "success": request.return_url,
                "failure": request.return_url,
                "pending": request.return_url,
            },
            "auto_return": "approved",
            "external_reference": external_reference,
            "notification_url": notification_url,
            "metadata": request.metadata,
        }
        if expires_at:
            body["expires"] = True
            body["expiration_date_to"] = expires_at.isoformat(timespec="milliseconds")
        
        response = await self._send("POST", "checkout/preferences", json=body, headers=self._headers())
        data = self._json(response)
        
        logger.info(
            "Mercado Pago preference created",
            preference_id=data.get("id"),
            external_reference=external_reference,
        )
        
        return PaymentLink(
            transaction_ref=external_reference,
            redirect_url=self._checkout_url(data),
            provider=self.provider_name,
            expires_at=expires_at,
            raw_response=data,
        )
    
    async def create_subscription(self, request: SubscriptionRequest) -> SubscriptionLink:
        """Crea un preapproval con auto_recurring."""
        self._require_credentials("access_token")
        self._require_currency(request.currency)
        
        frequency, frequency_type = self.FREQUENCIES[request.period]
        external_reference = uuid4().hex
        auto_recurring: dict[str, Any] = {
            "frequency": frequency,
            "frequency_type": frequency_type,
            "transaction_amount": json_major_units(request.amount, request.currency),
            "currency_id": request.currency,
        }
        if request.max_charges:
            auto_recurring["repetitions"] = request.max_charges
        
        response = await self._send(
            "POST",
            "preapproval",
            json={
                "reason": request.description[:120],
                "external_reference": external_reference,
                "payer_email": request.payer_email,
                "back_url": request.return_url,
                "auto_recurring": auto_recurring,
                "status": "pending",
            },
            headers=self._headers(),
        )
        data = self._json(response)
        if not data.get("id"):
            raise ProviderRequestError(self.provider_name.value, "preapproval response without id")
        
        logger.info(
            "Mercado Pago preapproval created",
            preapproval_id=data["id"],
            external_reference=external_reference,
        )
        
        return SubscriptionLink(
            transaction_ref=external_reference,
            redirect_url=self._checkout_url(data),
            provider=self.provider_name,
            raw_response=data,
            subscription_ref=str(data["id"]),
        )
    
    async def verify_transaction(self, transaction_ref: str) -> TransactionStatusReport:
        """Busca el pago más reciente asociado al external_reference."""
        self._require_credentials("access_token")
        
        response = await self._send(
            "GET",
            "v1/payments/search",
            params={
                "external_reference": transaction_ref,
                "sort": "date_created",
                "criteria": "desc",
            },
            headers=self._headers(),
        )
        results = self._json(response).get("results") or []
        if not results:
            raise NotFoundError(self.provider_name.value, transaction_ref)
        
        payment = results[0]
        amount, currency = self._extract_amount(payment)
        
        return TransactionStatusReport(
            provider=self.provider_name,
            transaction_ref=transaction_ref,
            status=self.map_status(payment.get("status")),
            amount=amount,
            currency=currency,
            provider_status=payment.get("status"),
            raw_response=payment,
        )
    
    def _extract_amount(self, data: dict[str, Any]) -> tuple[int | None, str | None]:
        source = data
        if data.get("transaction_amount") is None and isinstance(data.get("auto_recurring"), dict):
            source = data["auto_recurring"]
        value = source.get("transaction_amount")
        currency = source.get("currency_id")
        if value is None or not currency:
            return None, None
        try:
            return to_minor_units(value, currency), str(currency).upper()
        except (ArithmeticError, ValueError) as e:
            raise MalformedPayloadError(self.provider_name.value, f"invalid amount: {e}")
    
    def normalize_webhook(self, raw_payload: bytes) -> CanonicalWebhookEvent:
        payload = self._parse_json_payload(raw_payload)
        data = payload.get("data")
        if not isinstance(data, dict):
            raise MalformedPayloadError(self.provider_name.value, "missing data object")
        
        external_reference = data.get("external_reference")
        raw_status = data.get("status")
        if not external_reference or not raw_status:
            raise MalformedPayloadError(
                self.provider_name.value, "data.external_reference and data.status are required"
            )
        
        # El ID de notificación se mantiene entre reintentos
        event_id = payload.get("id")
        if event_id is None:
            event_id = f"{data.get('id')}:{payload.get('action')}:{raw_status}"
        
        amount, currency = self._extract_amount(data)
        
        return CanonicalWebhookEvent(
            provider=self.provider_name,
            event_id=str(event_id),
            transaction_ref=str(external_reference),
            status=self.map_status(raw_status),
            amount=amount,
            currency=currency,
            checksum=payload_checksum(raw_payload),
            provider_status=str(raw_status),
        )
    
    def extract_signature(
        self,
        raw_payload: bytes,
        headers: Mapping[str, str],
    ) -> SignedMessage:
        parts = parse_signature_header(headers.get("x-signature", ""))
        ts = parts.get("ts")
        signature = parts.get("v1")
        if not ts or not signature:
            return SignedMessage(signature=None)
        
        data_id = None
        try:
            data = json.loads(raw_payload).get("data") or {}
            if data.get("id") is not None:
                data_id = str(data["id"])
        except (ValueError, AttributeError):
            data_id = None
        
        timestamp = None
        try:
            timestamp = float(ts)
            # ts puede venir en milisegundos
            if timestamp > 1e11:
                timestamp /= 1000
        except ValueError:
            logger.warning("Invalid Mercado Pago signature timestamp", ts=ts)
        
        return SignedMessage(
            signature=signature,
            message=mercadopago_manifest(data_id, headers.get("x-request-id"), ts).encode("utf-8"),
            timestamp=timestamp,
        )
