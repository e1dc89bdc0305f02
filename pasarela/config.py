"""
Configuración del servicio anfitrión.
Carga variables de entorno y construye la configuración de la pasarela.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings

from pasarela.schemas.common import Environment, ProviderName
from pasarela.schemas.gateway import (
    FlowCredentials,
    GatewayConfig,
    Global66Credentials,
    MercadoPagoCredentials,
    PayPalCredentials,
)


class Settings(BaseSettings):
    """Configuración principal del servicio."""
    
    # Aplicación
    APP_NAME: str = "Pasarela de Pagos"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    
    # Base de datos (PostgreSQL en producción, SQLite en desarrollo)
    DATABASE_URL: str = "sqlite+aiosqlite:///./pasarela.db"
    
    # Redis para idempotencia de eventos
    REDIS_URL: str = "redis://localhost:6379/0"
    IDEMPOTENCY_BACKEND: Literal["redis", "database", "memory"] = "redis"
    
    # Proveedor de pago activo
    PAYMENT_PROVIDER: ProviderName = ProviderName.FLOW
    PAYMENT_ENVIRONMENT: Environment = Environment.SANDBOX
    
    # URL pública de este servicio (para construir URLs de webhook)
    PUBLIC_BASE_URL: str = ""
    
    # Flow
    FLOW_API_KEY: str = ""
    FLOW_SECRET_KEY: str = ""
    FLOW_API_URL: str = ""
    
    # Global66
    GLOBAL66_API_KEY: str = ""
    GLOBAL66_WEBHOOK_KEY: str = ""
    GLOBAL66_API_URL: str = ""
    
    # PayPal
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_WEBHOOK_ID: str = ""
    PAYPAL_WEBHOOK_SECRET: str = ""
    PAYPAL_API_URL: str = ""
    
    # Mercado Pago
    MP_ACCESS_TOKEN: str = ""
    MP_WEBHOOK_SECRET: str = ""
    MP_API_URL: str = ""
    
    # Límites
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    SIGNATURE_TOLERANCE_SECONDS: int = 300
    PAYMENT_LINK_TTL_SECONDS: int = 3600
    IDEMPOTENCY_TTL_HOURS: int = 72
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
    
    def to_gateway_config(self) -> GatewayConfig:
        """
        Construye la configuración validada de la pasarela.
        
        Solo se incluyen los proveedores con credenciales cargadas.
        """
        flow = None
        if self.FLOW_API_KEY:
            flow = FlowCredentials(
                api_key=self.FLOW_API_KEY,
                secret_key=self.FLOW_SECRET_KEY,
                api_base_url=self.FLOW_API_URL or None,
            )
        
        global66 = None
        if self.GLOBAL66_API_KEY:
            global66 = Global66Credentials(
                api_key=self.GLOBAL66_API_KEY,
                webhook_key=self.GLOBAL66_WEBHOOK_KEY,
                api_base_url=self.GLOBAL66_API_URL or None,
            )
        
        paypal = None
        if self.PAYPAL_CLIENT_ID:
            paypal = PayPalCredentials(
                client_id=self.PAYPAL_CLIENT_ID,
                client_secret=self.PAYPAL_CLIENT_SECRET,
                webhook_id=self.PAYPAL_WEBHOOK_ID,
                webhook_secret=self.PAYPAL_WEBHOOK_SECRET,
                api_base_url=self.PAYPAL_API_URL or None,
            )
        
        mercadopago = None
        if self.MP_ACCESS_TOKEN:
            mercadopago = MercadoPagoCredentials(
                access_token=self.MP_ACCESS_TOKEN,
                webhook_secret=self.MP_WEBHOOK_SECRET,
                api_base_url=self.MP_API_URL or None,
            )
        
        return GatewayConfig(
            provider=self.PAYMENT_PROVIDER,
            environment=self.PAYMENT_ENVIRONMENT,
            flow=flow,
            global66=global66,
            paypal=paypal,
            mercadopago=mercadopago,
            public_base_url=self.PUBLIC_BASE_URL or None,
            request_timeout_seconds=self.PROVIDER_TIMEOUT_SECONDS,
            signature_tolerance_seconds=self.SIGNATURE_TOLERANCE_SECONDS,
            payment_link_ttl_seconds=self.PAYMENT_LINK_TTL_SECONDS,
            idempotency_ttl_hours=self.IDEMPOTENCY_TTL_HOURS,
        )


@lru_cache()
def get_settings() -> Settings:
    """Retorna instancia cacheada de settings."""
    return Settings()


settings = get_settings()
