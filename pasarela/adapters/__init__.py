"""
Adapters para proveedores de pago.
Implementación del patrón Adapter para abstraer las pasarelas.
"""

from pasarela.adapters.base import (
    CanonicalWebhookEvent,
    PaymentLink,
    ProviderAdapter,
    SignatureAlgorithm,
    SignedMessage,
    SubscriptionLink,
    TransactionStatusReport,
)
from pasarela.adapters.flow_adapter import FlowAdapter
from pasarela.adapters.global66_adapter import Global66Adapter
from pasarela.adapters.mercadopago_adapter import MercadoPagoAdapter
from pasarela.adapters.paypal_adapter import PayPalAdapter
from pasarela.adapters.factory import PROVIDERS, build_adapter, build_adapters, parse_provider_name

__all__ = [
    "CanonicalWebhookEvent",
    "PaymentLink",
    "ProviderAdapter",
    "SignatureAlgorithm",
    "SignedMessage",
    "SubscriptionLink",
    "TransactionStatusReport",
    "FlowAdapter",
    "Global66Adapter",
    "MercadoPagoAdapter",
    "PayPalAdapter",
    "PROVIDERS",
    "build_adapter",
    "build_adapters",
    "parse_provider_name",
]
