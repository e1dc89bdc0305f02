"""
Schemas para el resultado del procesamiento de webhooks.
"""

from pydantic import ConfigDict, Field

from pasarela.schemas.common import BaseSchema, ProviderName, TransactionStatus


class WebhookError(BaseSchema):
    """Detalle de un webhook rechazado."""
    
    code: str
    detail: str


class AmountMismatchWarning(BaseSchema):
    """Monto o moneda del evento difiere del registro (reconciliación manual)."""
    
    model_config = ConfigDict(frozen=True)
    
    code: str = "AMOUNT_MISMATCH"
    expected_amount: int | None = None
    expected_currency: str | None = None
    reported_amount: int | None = None
    reported_currency: str | None = None


class WebhookResult(BaseSchema):
    """
    Resultado canónico de un webhook (o de un sondeo de verificación).
    
    credited_delta es 0 cuando el evento no cambió el estado; es negativo
    cuando el evento aplicó un reembolso.
    """
    
    model_config = ConfigDict(frozen=True)
    
    is_valid: bool
    provider: ProviderName | None = None
    event_id: str | None = None
    transaction_ref: str | None = None
    status: TransactionStatus | None = None
    credited_delta: int = 0
    applied: bool = False
    duplicate: bool = False
    error: WebhookError | None = None
    warnings: list[AmountMismatchWarning] = Field(default_factory=list)
    
    @property
    def http_status(self) -> int:
        """Código HTTP que la aplicación anfitriona debe responder al proveedor."""
        return 200 if self.is_valid else 400
    
    @classmethod
    def rejected(
        cls,
        code: str,
        detail: str,
        provider: ProviderName | None = None,
    ) -> "WebhookResult":
        return cls(
            is_valid=False,
            provider=provider,
            error=WebhookError(code=code, detail=detail),
        )
