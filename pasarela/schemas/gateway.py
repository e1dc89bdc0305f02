"""
Configuración validada de la pasarela.

La aplicación anfitriona construye un GatewayConfig (por ejemplo desde
variables de entorno, ver pasarela.config); el núcleo nunca lee el entorno.
"""

from pydantic import Field, model_validator

from pasarela.schemas.common import BaseSchema, Environment, ProviderName


class FlowCredentials(BaseSchema):
    """Credenciales de Flow (flow.cl)."""
    
    api_key: str = ""
    secret_key: str = ""
    api_base_url: str | None = None


class Global66Credentials(BaseSchema):
    """Credenciales de Global66."""
    
    api_key: str = ""
    webhook_key: str = ""
    api_base_url: str | None = None


class PayPalCredentials(BaseSchema):
    """Credenciales de PayPal (REST API v2)."""
    
    client_id: str = ""
    client_secret: str = ""
    webhook_id: str = ""
    webhook_secret: str = ""
    api_base_url: str | None = None


class MercadoPagoCredentials(BaseSchema):
    """Credenciales de Mercado Pago."""
    
    access_token: str = ""
    webhook_secret: str = ""
    api_base_url: str | None = None


class GatewayConfig(BaseSchema):
    """Configuración principal de la pasarela."""
    
    # Proveedor activo para crear pagos y suscripciones
    provider: ProviderName
    environment: Environment = Environment.SANDBOX
    
    # Credenciales por proveedor
    flow: FlowCredentials | None = None
    global66: Global66Credentials | None = None
    paypal: PayPalCredentials | None = None
    mercadopago: MercadoPagoCredentials | None = None
    
    # URLs públicas de la aplicación anfitriona
    public_base_url: str | None = None
    webhook_path: str = "/api/webhooks/{provider}"
    
    # Límites
    request_timeout_seconds: float = Field(10.0, gt=0)
    signature_tolerance_seconds: int = Field(300, gt=0)
    payment_link_ttl_seconds: int | None = Field(3600, gt=0)
    idempotency_ttl_hours: int = Field(72, gt=0)
    max_conflict_retries: int = Field(3, ge=1)
    
    @model_validator(mode="after")
    def active_provider_has_credentials(self) -> "GatewayConfig":
        if self.credentials_for(self.provider) is None:
            raise ValueError(
                f"Missing credentials for active provider '{self.provider.value}'"
            )
        return self
    
    def credentials_for(self, provider: ProviderName):
        """Retorna el bundle de credenciales del proveedor o None."""
        return getattr(self, ProviderName(provider).value)
    
    def configured_providers(self) -> list[ProviderName]:
        return [p for p in ProviderName if self.credentials_for(p) is not None]
    
    def notification_url(self, provider: ProviderName) -> str | None:
        """URL de webhook por defecto para un proveedor."""
        if not self.public_base_url:
            return None
        path = self.webhook_path.format(provider=ProviderName(provider).value)
        return f"{self.public_base_url.rstrip('/')}/{path.lstrip('/')}"
