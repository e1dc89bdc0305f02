"""
Schemas Pydantic de la pasarela.
"""

from pasarela.schemas.common import (
    APIResponse,
    BaseSchema,
    Environment,
    ErrorResponse,
    ProviderName,
    TransactionStatus,
)
from pasarela.schemas.gateway import (
    FlowCredentials,
    GatewayConfig,
    Global66Credentials,
    MercadoPagoCredentials,
    PayPalCredentials,
)
from pasarela.schemas.payment import (
    PaymentLinkResponse,
    PaymentRequest,
    StatusChangeResponse,
    SubscriptionPeriod,
    SubscriptionRequest,
    TransactionResponse,
)
from pasarela.schemas.webhook import AmountMismatchWarning, WebhookError, WebhookResult

__all__ = [
    # Common
    "APIResponse",
    "BaseSchema",
    "Environment",
    "ErrorResponse",
    "ProviderName",
    "TransactionStatus",
    # Gateway config
    "FlowCredentials",
    "GatewayConfig",
    "Global66Credentials",
    "MercadoPagoCredentials",
    "PayPalCredentials",
    # Payment
    "PaymentLinkResponse",
    "PaymentRequest",
    "StatusChangeResponse",
    "SubscriptionPeriod",
    "SubscriptionRequest",
    "TransactionResponse",
    # Webhook
    "AmountMismatchWarning",
    "WebhookError",
    "WebhookResult",
]
