"""
Traducción de errores de la pasarela a respuestas HTTP.
"""

import structlog
from fastapi import HTTPException, status

from pasarela.utils.exceptions import (
    InfrastructureError,
    InvalidRequestError,
    NotFoundError,
    PasarelaError,
    ProviderRequestError,
    ProviderTimeoutError,
    UnsupportedOperationError,
)


logger = structlog.get_logger(__name__)

# El orden importa: las subclases van antes que sus bases
STATUS_BY_ERROR: list[tuple[type[PasarelaError], int]] = [
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UnsupportedOperationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ProviderTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProviderRequestError, status.HTTP_502_BAD_GATEWAY),
    (InfrastructureError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def to_http_exception(error: PasarelaError) -> HTTPException:
    """Mapea un error tipado al código HTTP correspondiente."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            status_code = code
            break
    
    log = logger.error if status_code >= 500 else logger.warning
    log("Request failed", code=error.code, error=error.message, status_code=status_code)
    
    return HTTPException(
        status_code=status_code,
        detail={"message": error.message, "code": error.code, "retryable": error.retryable},
    )
