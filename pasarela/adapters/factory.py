"""
Factory para instanciar adapters de proveedores.
La selección ocurre una única vez, al construir la pasarela.
"""

import httpx
import structlog

from pasarela.adapters.base import ProviderAdapter
from pasarela.adapters.flow_adapter import FlowAdapter
from pasarela.adapters.global66_adapter import Global66Adapter
from pasarela.adapters.mercadopago_adapter import MercadoPagoAdapter
from pasarela.adapters.paypal_adapter import PayPalAdapter
from pasarela.schemas.common import ProviderName
from pasarela.schemas.gateway import GatewayConfig
from pasarela.utils.exceptions import InvalidRequestError


logger = structlog.get_logger(__name__)


# Registro cerrado de proveedores disponibles
PROVIDERS: dict[ProviderName, type[ProviderAdapter]] = {
    ProviderName.FLOW: FlowAdapter,
    ProviderName.GLOBAL66: Global66Adapter,
    ProviderName.PAYPAL: PayPalAdapter,
    ProviderName.MERCADOPAGO: MercadoPagoAdapter,
}


def parse_provider_name(name: str | ProviderName) -> ProviderName:
    """
    Valida un identificador de proveedor.
    
    Raises:
        InvalidRequestError: Si el proveedor no está soportado
    """
    try:
        return ProviderName(str(getattr(name, "value", name)).lower())
    except ValueError:
        raise InvalidRequestError(
            f"Payment provider '{name}' not supported. "
            f"Available: {[p.value for p in PROVIDERS]}",
            field="provider",
        )


def build_adapter(
    name: str | ProviderName,
    config: GatewayConfig,
    http_client: httpx.AsyncClient | None = None,
) -> ProviderAdapter:
    """
    Construye el adapter de un proveedor con sus credenciales.
    
    Args:
        name: Identificador del proveedor
        config: Configuración validada de la pasarela
        http_client: Cliente httpx compartido
        
    Returns:
        Instancia del ProviderAdapter
    """
    provider = parse_provider_name(name)
    adapter = PROVIDERS[provider](
        credentials=config.credentials_for(provider),
        http_client=http_client,
        environment=config.environment,
        timeout_seconds=config.request_timeout_seconds,
        link_ttl_seconds=config.payment_link_ttl_seconds,
    )
    
    logger.info(
        "Payment provider initialized",
        provider=provider.value,
        environment=config.environment.value,
    )
    return adapter


def build_adapters(
    config: GatewayConfig,
    http_client: httpx.AsyncClient | None = None,
) -> dict[ProviderName, ProviderAdapter]:
    """Construye un adapter por cada proveedor con credenciales configuradas."""
    return {
        provider: build_adapter(provider, config, http_client)
        for provider in config.configured_providers()
    }
