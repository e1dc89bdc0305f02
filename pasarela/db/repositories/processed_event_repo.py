"""
Repositorio de eventos procesados (idempotencia en base de datos).
"""

from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pasarela.db.database import session_scope
from pasarela.db.models import ProcessedEventModel
from pasarela.utils.exceptions import InfrastructureError
from pasarela.utils.idempotency import (
    IDEMPOTENCY_TTL_HOURS,
    IdempotencyCheck,
    IdempotencyStore,
)


logger = structlog.get_logger(__name__)


class SqlIdempotencyStore(IdempotencyStore):
    """
    Marca de eventos procesados usando la clave primaria como candado.
    
    Dos inserciones concurrentes del mismo event_id no pueden tener éxito
    ambas: la segunda falla por integridad y se reporta como duplicado.
    """
    
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_hours: int = IDEMPOTENCY_TTL_HOURS,
    ):
        self._session_factory = session_factory
        self._ttl = timedelta(hours=ttl_hours)
    
    async def check_and_mark(self, event_id: str) -> IdempotencyCheck:
        now = datetime.now(timezone.utc)
        try:
            async with session_scope(self._session_factory) as db:
                # Una marca vencida no bloquea el evento
                await db.execute(
                    delete(ProcessedEventModel).where(
                        ProcessedEventModel.event_id == event_id,
                        ProcessedEventModel.expires_at < now,
                    )
                )
                db.add(ProcessedEventModel(
                    event_id=event_id,
                    processed_at=now,
                    expires_at=now + self._ttl,
                ))
        except IntegrityError:
            logger.info("Duplicate event detected", event_id=event_id)
            return IdempotencyCheck(already_processed=True)
        except SQLAlchemyError as e:
            logger.error("Database error marking event", error=str(e), event_id=event_id)
            raise InfrastructureError(
                "Idempotency store unavailable",
                code="IDEMPOTENCY_UNAVAILABLE",
            ) from e
        
        return IdempotencyCheck(already_processed=False)
    
    async def release(self, event_id: str) -> None:
        try:
            async with session_scope(self._session_factory) as db:
                await db.execute(
                    delete(ProcessedEventModel).where(ProcessedEventModel.event_id == event_id)
                )
        except SQLAlchemyError as e:
            logger.error("Database error releasing event", error=str(e), event_id=event_id)
            raise InfrastructureError(
                "Idempotency store unavailable",
                code="IDEMPOTENCY_UNAVAILABLE",
            ) from e
