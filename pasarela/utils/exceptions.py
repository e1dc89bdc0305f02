"""
Excepciones personalizadas de la pasarela de pagos.
"""


class PasarelaError(Exception):
    """Error base de la pasarela."""
    
    retryable: bool = False
    
    def __init__(self, message: str, code: str = "PAYMENT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidRequestError(PasarelaError):
    """Datos de entrada inválidos o credenciales ausentes (no reintentable)."""
    
    def __init__(self, message: str, field: str | None = None):
        super().__init__(message=message, code="INVALID_REQUEST")
        self.field = field


class ProviderRequestError(PasarelaError):
    """Error del proveedor de pago o de red (reintentable por el llamador)."""
    
    retryable = True
    
    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        code: str = "PROVIDER_ERROR",
    ):
        super().__init__(
            message=f"Payment provider error ({provider}): {message}",
            code=code,
        )
        self.provider = provider
        self.status_code = status_code


class ProviderTimeoutError(ProviderRequestError):
    """El proveedor no respondió dentro del timeout configurado."""
    
    def __init__(self, provider: str, timeout_seconds: float):
        super().__init__(
            provider=provider,
            message=f"request timed out after {timeout_seconds}s",
            code="PROVIDER_TIMEOUT",
        )
        self.timeout_seconds = timeout_seconds


class UnsupportedOperationError(PasarelaError):
    """El proveedor no soporta la operación solicitada."""
    
    def __init__(self, provider: str, operation: str):
        super().__init__(
            message=f"Provider {provider} does not support {operation}",
            code="UNSUPPORTED_OPERATION",
        )
        self.provider = provider
        self.operation = operation


class MalformedPayloadError(PasarelaError):
    """El cuerpo del webhook no se pudo interpretar."""
    
    def __init__(self, provider: str, message: str):
        super().__init__(
            message=f"Malformed {provider} webhook payload: {message}",
            code="MALFORMED_PAYLOAD",
        )
        self.provider = provider


class NotFoundError(PasarelaError):
    """La transacción no existe en el proveedor."""
    
    def __init__(self, provider: str, transaction_ref: str):
        super().__init__(
            message=f"Transaction not found in {provider}: {transaction_ref}",
            code="TRANSACTION_NOT_FOUND",
        )
        self.provider = provider
        self.transaction_ref = transaction_ref


class InfrastructureError(PasarelaError):
    """Fallo interno (almacenamiento, configuración); fatal solo para el request."""
    
    retryable = True
    
    def __init__(self, message: str, code: str = "INFRASTRUCTURE_ERROR"):
        super().__init__(message=message, code=code)


class ConcurrencyConflictError(InfrastructureError):
    """La versión del registro cambió entre la lectura y la escritura."""
    
    def __init__(self, transaction_ref: str, expected_version: int | None = None):
        super().__init__(
            message=(
                f"Concurrent modification of transaction {transaction_ref}"
                f" (expected version {expected_version})"
            ),
            code="CONCURRENCY_CONFLICT",
        )
        self.transaction_ref = transaction_ref
        self.expected_version = expected_version
