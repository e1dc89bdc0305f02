"""
Primitivas HMAC-SHA256 y de comparación en tiempo constante.
Usadas por el verificador de firmas de webhooks y por el firmado de Flow.
"""

import hashlib
import hmac
import time

import structlog


logger = structlog.get_logger(__name__)

# Tolerancia de tiempo para verificar webhooks (5 minutos)
TIMESTAMP_TOLERANCE_SECONDS = 300


def generate_signature(payload: bytes, secret: str) -> str:
    """
    Genera una firma HMAC-SHA256 para un payload.
    
    Args:
        payload: Datos a firmar (bytes)
        secret: Clave secreta
        
    Returns:
        Firma hexadecimal
    """
    return hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()


def constant_time_equals(received: str, expected: str) -> bool:
    """Compara dos strings sin filtrar información por tiempo de ejecución."""
    return hmac.compare_digest(
        received.encode("utf-8"),
        expected.encode("utf-8"),
    )


def verify_signature(
    payload: bytes,
    signature: str,
    secret: str,
) -> bool:
    """
    Verifica una firma HMAC-SHA256 hexadecimal.
    
    La comparación ignora mayúsculas del hex recibido y es en tiempo constante.
    """
    expected = generate_signature(payload, secret)
    
    logger.debug(
        "Signature verification",
        payload_length=len(payload),
        received_signature_preview=signature[:12] if signature else None,
    )
    
    return constant_time_equals(signature.strip().lower(), expected)


def parse_signature_header(signature_header: str) -> dict[str, str]:
    """
    Parsea headers con formato "k1=v1,k2=v2" (ej: "ts=1704908010,v1=abc...").
    
    Las partes sin "=" se ignoran.
    """
    parts: dict[str, str] = {}
    for item in signature_header.split(","):
        if "=" in item:
            key, value = item.split("=", 1)
            parts[key.strip()] = value.strip()
    return parts


def payload_checksum(payload: bytes) -> str:
    """SHA-256 del payload crudo, usado para auditoría."""
    return hashlib.sha256(payload).hexdigest()


def timestamp_skew(timestamp: float, now: float | None = None) -> float:
    """Diferencia absoluta en segundos entre un timestamp y el reloj actual."""
    if now is None:
        now = time.time()
    return abs(now - timestamp)


def is_within_tolerance(
    timestamp: float,
    tolerance_seconds: int = TIMESTAMP_TOLERANCE_SECONDS,
    now: float | None = None,
) -> bool:
    """Verifica que el timestamp no sea muy viejo ni del futuro (replay attack)."""
    skew = timestamp_skew(timestamp, now)
    
    logger.debug(
        "Verifying webhook timestamp",
        timestamp=timestamp,
        difference_seconds=round(skew, 3),
        tolerance_seconds=tolerance_seconds,
    )
    
    return skew <= tolerance_seconds
