"""
Adapter para Global66.
Links de pago vía API JSON con autenticación Bearer.
"""

from typing import Any, Mapping

import structlog

from pasarela.adapters.base import (
    CanonicalWebhookEvent,
    PaymentLink,
    ProviderAdapter,
    SignatureAlgorithm,
    SignedMessage,
    TransactionStatusReport,
)
from pasarela.schemas.common import Environment, ProviderName, TransactionStatus
from pasarela.schemas.currency import json_major_units, to_minor_units
from pasarela.schemas.payment import PaymentRequest
from pasarela.utils.exceptions import MalformedPayloadError, ProviderRequestError
from pasarela.utils.hmac_utils import payload_checksum


logger = structlog.get_logger(__name__)


class Global66Adapter(ProviderAdapter):
    """
    Adapter para Global66 Payment Links.
    
    Los webhooks se autentican con una clave estática compartida
    (header X-Global66-Webhook-Key). Global66 no ofrece suscripciones.
    """
    
    provider_name = ProviderName.GLOBAL66
    supports_subscriptions = False
    signature_algorithm = SignatureAlgorithm.STATIC_KEY
    
    SIGNATURE_HEADER = "x-global66-webhook-key"
    
    BASE_URLS = {
        Environment.SANDBOX: "https://api.sandbox.global66.com",
        Environment.PRODUCTION: "https://api.global66.com",
    }
    SUPPORTED_CURRENCIES = frozenset({"CLP", "USD", "PEN", "COP", "ARS", "MXN", "BRL", "EUR"})
    
    STATUS_MAP = {
        "CREATED": TransactionStatus.PENDING,
        "PENDING": TransactionStatus.PENDING,
        "PROCESSING": TransactionStatus.PENDING,
        "PAID": TransactionStatus.PAID,
        "COMPLETED": TransactionStatus.PAID,
        "REJECTED": TransactionStatus.FAILED,
        "FAILED": TransactionStatus.FAILED,
        "EXPIRED": TransactionStatus.CANCELLED,
        "CANCELED": TransactionStatus.CANCELLED,
        "CANCELLED": TransactionStatus.CANCELLED,
        "REFUNDED": TransactionStatus.REFUNDED,
    }
    
    @property
    def webhook_secret(self) -> str | None:
        return getattr(self._credentials, "webhook_key", None) or None
    
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._credentials.api_key}"}
    
    def map_status(self, provider_status: Any) -> TransactionStatus:
        return super().map_status(str(provider_status).upper() if provider_status else None)
    
    async def create_payment(self, request: PaymentRequest) -> PaymentLink:
        """Crea un Payment Link."""
        self._require_credentials("api_key")
        self._require_currency(request.currency)
        notification_url = self._require_notification_url(request)
        
        expires_at = self._link_expiry()
        body: dict[str, Any] = {
            "amount": json_major_units(request.amount, request.currency),
            "currency": request.currency,
            "description": request.description,
            "email": request.payer_email,
            "returnUrl": request.return_url,
            "notificationUrl": notification_url,
            "metadata": {k: str(v) for k, v in request.metadata.items()},
        }
        if expires_at:
            body["expirationDate"] = expires_at.isoformat()
        
        response = await self._send("POST", "v1/payment-links", json=body, headers=self._headers())
        data = self._json(response)
        
        if not data.get("id") or not data.get("url"):
            raise ProviderRequestError(self.provider_name.value, "payment link response without id/url")
        
        logger.info("Global66 payment link created", payment_link_id=data["id"])
        
        return PaymentLink(
            transaction_ref=str(data["id"]),
            redirect_url=data["url"],
            provider=self.provider_name,
            expires_at=expires_at,
            raw_response=data,
        )
    
    async def verify_transaction(self, transaction_ref: str) -> TransactionStatusReport:
        self._require_credentials("api_key")
        
        response = await self._send(
            "GET",
            f"v1/payment-links/{transaction_ref}",
            not_found_ref=transaction_ref,
            headers=self._headers(),
        )
        data = self._json(response)
        currency = str(data.get("currency") or "").upper() or None
        
        return TransactionStatusReport(
            provider=self.provider_name,
            transaction_ref=transaction_ref,
            status=self.map_status(data.get("status")),
            amount=(
                to_minor_units(data["amount"], currency)
                if currency and data.get("amount") is not None
                else None
            ),
            currency=currency,
            provider_status=data.get("status"),
            raw_response=data,
        )
    
    def normalize_webhook(self, raw_payload: bytes) -> CanonicalWebhookEvent:
        payload = self._parse_json_payload(raw_payload)
        data = payload.get("data")
        if not isinstance(data, dict):
            raise MalformedPayloadError(self.provider_name.value, "missing data object")
        
        event_id = payload.get("id")
        link_id = data.get("paymentLinkId") or data.get("id")
        raw_status = data.get("status")
        if not event_id or not link_id or not raw_status:
            raise MalformedPayloadError(
                self.provider_name.value, "id, data.paymentLinkId and data.status are required"
            )
        
        currency = str(data.get("currency") or "").upper() or None
        amount = None
        if currency and data.get("amount") is not None:
            try:
                amount = to_minor_units(data["amount"], currency)
            except (ArithmeticError, ValueError) as e:
                raise MalformedPayloadError(self.provider_name.value, f"invalid amount: {e}")
        
        return CanonicalWebhookEvent(
            provider=self.provider_name,
            event_id=str(event_id),
            transaction_ref=str(link_id),
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
        return SignedMessage(signature=headers.get(self.SIGNATURE_HEADER) or None)
