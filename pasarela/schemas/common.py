"""
Schemas comunes, enums compartidos y base para reutilización.
"""

from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict


# TypeVar para respuestas genéricas
T = TypeVar("T")


class ProviderName(str, Enum):
    """Proveedores de pago soportados (conjunto cerrado)."""
    
    FLOW = "flow"
    GLOBAL66 = "global66"
    PAYPAL = "paypal"
    MERCADOPAGO = "mercadopago"


class Environment(str, Enum):
    """Ambiente de los proveedores."""
    
    SANDBOX = "sandbox"
    PRODUCTION = "production"


class TransactionStatus(str, Enum):
    """Estados canónicos de una transacción."""
    
    CREATED = "created"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"  # Estado del proveedor no reconocido


class BaseSchema(BaseModel):
    """Schema base con configuración común."""
    
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class APIResponse(BaseModel, Generic[T]):
    """Respuesta estándar de la API."""
    
    success: bool = True
    message: str | None = None
    data: T | None = None
    errors: list[str] | None = None


class ErrorResponse(BaseModel):
    """Respuesta de error estándar."""
    
    success: bool = False
    message: str
    code: str | None = None
    request_id: str | None = None
