"""
Verificación de firmas de webhooks entrantes.

Cada adapter define su esquema (qué headers, qué mensaje canónico); este
módulo aplica la criptografía y la tolerancia de tiempo. Es puro: no
modifica estado y puede llamarse cuantas veces se quiera.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping

import structlog

from pasarela.adapters.base import ProviderAdapter, SignatureAlgorithm
from pasarela.schemas.common import ProviderName
from pasarela.utils.hmac_utils import (
    TIMESTAMP_TOLERANCE_SECONDS,
    constant_time_equals,
    is_within_tolerance,
    verify_signature,
)


logger = structlog.get_logger(__name__)


class RejectionReason(str, Enum):
    """Categorías de rechazo de un webhook."""
    
    MISSING_SIGNATURE = "missing_signature"
    SIGNATURE_MISMATCH = "signature_mismatch"
    EXPIRED_TIMESTAMP = "expired_timestamp"


@dataclass(frozen=True)
class VerificationResult:
    """Veredicto de la verificación de firma."""
    
    verified: bool
    provider: ProviderName
    reason: RejectionReason | None = None
    detail: str | None = None


class SignatureVerifier:
    """
    Verificador de firmas por proveedor.
    
    Rechazos se tratan como eventos de seguridad: se registran en el log
    y se retornan como resultado, nunca como excepción.
    """
    
    def __init__(
        self,
        adapters: Mapping[ProviderName, ProviderAdapter],
        tolerance_seconds: int = TIMESTAMP_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            adapters: Adapters configurados (definen el esquema de cada proveedor)
            tolerance_seconds: Desfase máximo aceptado para timestamps firmados
            clock: Reloj en segundos epoch (inyectable para tests)
        """
        self._adapters = adapters
        self._tolerance_seconds = tolerance_seconds
        self._clock = clock
    
    def _reject(
        self,
        provider: ProviderName,
        reason: RejectionReason,
        detail: str,
    ) -> VerificationResult:
        logger.warning(
            "Webhook signature rejected",
            provider=provider.value,
            reason=reason.value,
            detail=detail,
        )
        return VerificationResult(
            verified=False,
            provider=provider,
            reason=reason,
            detail=detail,
        )
    
    def verify(
        self,
        provider: ProviderName,
        raw_payload: bytes,
        headers: Mapping[str, str],
        secret: str,
    ) -> VerificationResult:
        """
        Verifica la autenticidad de un webhook.
        
        Args:
            provider: Proveedor que envía el webhook
            raw_payload: Cuerpo crudo tal como llegó
            headers: Headers del request (cualquier capitalización)
            secret: Secreto compartido con el proveedor
            
        Returns:
            VerificationResult con el veredicto y, si aplica, la razón del rechazo
        """
        provider = ProviderName(provider)
        adapter = self._adapters.get(provider)
        if adapter is None:
            return self._reject(
                provider,
                RejectionReason.SIGNATURE_MISMATCH,
                "no signature scheme configured for provider",
            )
        
        normalized_headers = {str(k).lower(): str(v) for k, v in headers.items()}
        
        try:
            signed = adapter.extract_signature(raw_payload, normalized_headers)
        except Exception as e:
            logger.error(
                "Unexpected error extracting signature",
                provider=provider.value,
                error=str(e),
            )
            return self._reject(
                provider,
                RejectionReason.SIGNATURE_MISMATCH,
                "unreadable signature material",
            )
        
        if not signed.signature:
            return self._reject(
                provider,
                RejectionReason.MISSING_SIGNATURE,
                "signature header or parameter is missing",
            )
        
        if signed.timestamp is not None and not is_within_tolerance(
            signed.timestamp,
            self._tolerance_seconds,
            now=self._clock(),
        ):
            return self._reject(
                provider,
                RejectionReason.EXPIRED_TIMESTAMP,
                f"timestamp outside tolerance of {self._tolerance_seconds}s",
            )
        
        if adapter.signature_algorithm == SignatureAlgorithm.STATIC_KEY:
            valid = constant_time_equals(signed.signature, secret)
        else:
            valid = verify_signature(signed.message, signed.signature, secret)
        
        if not valid:
            return self._reject(
                provider,
                RejectionReason.SIGNATURE_MISMATCH,
                "signature does not match payload",
            )
        
        logger.debug("Webhook signature verified", provider=provider.value)
        return VerificationResult(verified=True, provider=provider)
