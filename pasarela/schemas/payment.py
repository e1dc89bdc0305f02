"""
Schemas para solicitudes de pago y suscripción.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from pasarela.schemas.common import BaseSchema, ProviderName, TransactionStatus
from pasarela.schemas.currency import normalize_currency


class SubscriptionPeriod(str, Enum):
    """Periodicidad de cobro de una suscripción."""
    
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# ============================================
# Request Schemas (entrada)
# ============================================

class PaymentRequest(BaseSchema):
    """Solicitud canónica de link de pago."""
    
    amount: int = Field(
        ...,
        gt=0,
        description="Monto en unidad menor (CLP y monedas sin decimales: unidades enteras)",
    )
    currency: str = Field(..., description="Código ISO 4217")
    description: str = Field(..., min_length=1, max_length=255)
    payer_email: str = Field(..., min_length=3, max_length=255)
    return_url: str = Field(..., description="URL de retorno del pagador")
    notification_url: str | None = Field(
        None,
        description="URL de webhook; si falta se usa la configurada en la pasarela",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    
    @field_validator("amount", mode="before")
    @classmethod
    def reject_fractional_amount(cls, v):
        """El monto debe ser entero; no se aceptan floats con decimales."""
        if isinstance(v, bool):
            raise ValueError("amount must be an integer")
        if isinstance(v, float):
            if not v.is_integer():
                raise ValueError("amount must be an integer in minor units")
            return int(v)
        return v
    
    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return normalize_currency(v)
    
    @field_validator("payer_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("payer_email must be an email address")
        return v


class SubscriptionRequest(PaymentRequest):
    """Solicitud de suscripción: pago recurrente con periodicidad."""
    
    period: SubscriptionPeriod
    max_charges: int | None = Field(None, gt=0, description="None = sin límite")


# ============================================
# Response Schemas (salida)
# ============================================

class PaymentLinkResponse(BaseSchema):
    """Respuesta al crear un link de pago o suscripción."""
    
    transaction_ref: str
    redirect_url: str
    provider: ProviderName
    expires_at: datetime | None = None
    subscription_ref: str | None = None


class StatusChangeResponse(BaseSchema):
    """Entrada del historial de estados."""
    
    status: TransactionStatus
    occurred_at: datetime
    event_id: str
    applied: bool


class TransactionResponse(BaseSchema):
    """Estado actual de una transacción y su historial."""
    
    transaction_ref: str
    provider: ProviderName
    status: TransactionStatus
    amount: int | None = None
    currency: str | None = None
    version: int
    history: list[StatusChangeResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime | None = None
