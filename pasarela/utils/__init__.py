"""
Utilidades de la pasarela.
"""

from pasarela.utils.hmac_utils import (
    constant_time_equals,
    generate_signature,
    verify_signature,
)
from pasarela.utils.idempotency import (
    IdempotencyCheck,
    IdempotencyStore,
    InMemoryIdempotencyStore,
    RedisIdempotencyStore,
)

__all__ = [
    # HMAC
    "constant_time_equals",
    "generate_signature",
    "verify_signature",
    # Idempotency
    "IdempotencyCheck",
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
    "RedisIdempotencyStore",
]
