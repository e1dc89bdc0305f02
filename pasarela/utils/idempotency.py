"""
Control de idempotencia para eventos de proveedores.

Cada evento verificado se marca con su identificador estable. La operación
check_and_mark es atómica: si dos entregas del mismo evento llegan en
paralelo, exactamente una observa "no procesado".
"""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
import redis.asyncio as redis
from redis.exceptions import RedisError

from pasarela.utils.exceptions import InfrastructureError


logger = structlog.get_logger(__name__)

# PayPal reintenta durante 3 días; la ventana cubre todo el ciclo de reintentos
IDEMPOTENCY_TTL_HOURS = 72


@dataclass(frozen=True)
class IdempotencyCheck:
    """Resultado de check_and_mark."""
    
    already_processed: bool


class IdempotencyStore(ABC):
    """Contrato de almacenamiento de eventos procesados."""
    
    @abstractmethod
    async def check_and_mark(self, event_id: str) -> IdempotencyCheck:
        """
        Marca el evento como procesado si no lo estaba.
        
        Args:
            event_id: Identificador estable del evento
            
        Returns:
            IdempotencyCheck indicando si ya estaba marcado
            
        Raises:
            InfrastructureError: Si el almacenamiento no está disponible
        """
        ...
    
    @abstractmethod
    async def release(self, event_id: str) -> None:
        """
        Desmarca un evento.
        
        Se usa cuando el procesamiento falló después de marcar, para que
        el reintento del proveedor no se descarte como duplicado.
        """
        ...


class InMemoryIdempotencyStore(IdempotencyStore):
    """
    Implementación en memoria para desarrollo y tests.
    
    NO USAR EN PRODUCCIÓN - no es persistente ni distribuido.
    """
    
    def __init__(self, ttl_hours: int = IDEMPOTENCY_TTL_HOURS):
        self._seen: dict[str, datetime] = {}
        self._ttl = timedelta(hours=ttl_hours)
        self._lock = asyncio.Lock()
    
    def __contains__(self, event_id: str) -> bool:
        return event_id in self._seen
    
    def __len__(self) -> int:
        return len(self._seen)
    
    def _prune(self, now: datetime) -> None:
        """Descarta las marcas vencidas."""
        expired = [key for key, marked_at in self._seen.items() if now - marked_at >= self._ttl]
        for key in expired:
            del self._seen[key]
    
    async def check_and_mark(self, event_id: str) -> IdempotencyCheck:
        async with self._lock:
            now = datetime.now(timezone.utc)
            self._prune(now)
            marked_at = self._seen.get(event_id)
            
            if marked_at is not None:
                logger.info("Duplicate event detected", event_id=event_id)
                return IdempotencyCheck(already_processed=True)
            
            self._seen[event_id] = now
            return IdempotencyCheck(already_processed=False)
    
    async def release(self, event_id: str) -> None:
        async with self._lock:
            self._seen.pop(event_id, None)


class RedisIdempotencyStore(IdempotencyStore):
    """
    Almacenamiento de eventos procesados en Redis.
    
    Usa SET NX EX: la marca y la comprobación son una sola operación
    atómica del servidor, válida entre varias instancias del servicio.
    """
    
    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_hours: int = IDEMPOTENCY_TTL_HOURS,
        prefix: str = "pasarela:event:",
    ):
        self._redis = redis_client
        self._ttl_seconds = int(timedelta(hours=ttl_hours).total_seconds())
        self._prefix = prefix
    
    def _make_key(self, event_id: str) -> str:
        """Genera la clave Redis."""
        return f"{self._prefix}{event_id}"
    
    async def check_and_mark(self, event_id: str) -> IdempotencyCheck:
        try:
            acquired = await self._redis.set(
                self._make_key(event_id),
                datetime.now(timezone.utc).isoformat(),
                nx=True,                  # Solo si no existe
                ex=self._ttl_seconds,
            )
        except RedisError as e:
            logger.error(
                "Redis error marking event",
                error=str(e),
                event_id=event_id,
            )
            raise InfrastructureError(
                "Idempotency store unavailable",
                code="IDEMPOTENCY_UNAVAILABLE",
            ) from e
        
        if not acquired:
            logger.info("Duplicate event detected", event_id=event_id)
        return IdempotencyCheck(already_processed=not acquired)
    
    async def release(self, event_id: str) -> None:
        try:
            await self._redis.delete(self._make_key(event_id))
        except RedisError as e:
            logger.error(
                "Redis error releasing event",
                error=str(e),
                event_id=event_id,
            )
            raise InfrastructureError(
                "Idempotency store unavailable",
                code="IDEMPOTENCY_UNAVAILABLE",
            ) from e


# Singleton del cliente Redis
_redis_client: redis.Redis | None = None


def get_redis_client(redis_url: str) -> redis.Redis:
    """Obtiene o crea el cliente Redis."""
    global _redis_client
    
    if _redis_client is None:
        _redis_client = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Redis client initialized", url=redis_url.split("@")[-1])
    
    return _redis_client


async def close_redis() -> None:
    """Cierra la conexión de Redis."""
    global _redis_client
    
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
