"""
Repositorio de transacciones sobre SQLAlchemy.
"""

from dataclasses import replace
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pasarela.db.database import session_scope
from pasarela.db.models import TransactionHistoryModel, TransactionModel
from pasarela.db.store import TransactionStore
from pasarela.schemas.common import ProviderName, TransactionStatus
from pasarela.services.reconciler import StatusChange, TransactionRecord
from pasarela.utils.exceptions import ConcurrencyConflictError, InfrastructureError


logger = structlog.get_logger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite devuelve datetimes sin zona horaria
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _history_row(reference: str, position: int, change: StatusChange) -> TransactionHistoryModel:
    return TransactionHistoryModel(
        transaction_reference=reference,
        position=position,
        status=change.status.value,
        event_id=change.event_id,
        applied=change.applied,
        occurred_at=change.occurred_at,
    )


def to_record(model: TransactionModel) -> TransactionRecord:
    """Convierte el modelo ORM al registro de dominio."""
    return TransactionRecord(
        reference=model.reference,
        provider=ProviderName(model.provider),
        status=TransactionStatus(model.status),
        amount=model.amount,
        currency=model.currency,
        history=tuple(
            StatusChange(
                status=TransactionStatus(row.status),
                occurred_at=_as_utc(row.occurred_at),
                event_id=row.event_id,
                applied=row.applied,
            )
            for row in model.history
        ),
        version=model.version,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
    )


class SqlTransactionStore(TransactionStore):
    """
    Almacenamiento de transacciones en base de datos.
    
    La actualización es un UPDATE condicionado a la versión leída; si no
    afecta filas, otro escritor se adelantó.
    """
    
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
    
    async def get(self, reference: str) -> TransactionRecord | None:
        try:
            async with session_scope(self._session_factory) as db:
                result = await db.execute(
                    select(TransactionModel).where(TransactionModel.reference == reference)
                )
                model = result.scalar_one_or_none()
                return to_record(model) if model else None
        except SQLAlchemyError as e:
            logger.error("Database error reading transaction", error=str(e), transaction_ref=reference)
            raise InfrastructureError("Transaction store unavailable", code="STORE_UNAVAILABLE") from e
    
    async def create(self, record: TransactionRecord) -> TransactionRecord:
        try:
            async with session_scope(self._session_factory) as db:
                db.add(TransactionModel(
                    reference=record.reference,
                    provider=record.provider.value,
                    status=record.status.value,
                    amount=record.amount,
                    currency=record.currency,
                    version=1,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                ))
                await db.flush()
                db.add_all([
                    _history_row(record.reference, position, change)
                    for position, change in enumerate(record.history)
                ])
        except IntegrityError as e:
            logger.warning("Transaction already exists", transaction_ref=record.reference)
            raise ConcurrencyConflictError(record.reference) from e
        except SQLAlchemyError as e:
            logger.error("Database error creating transaction", error=str(e), transaction_ref=record.reference)
            raise InfrastructureError("Transaction store unavailable", code="STORE_UNAVAILABLE") from e
        
        logger.info("Transaction created", transaction_ref=record.reference, provider=record.provider.value)
        return replace(record, version=1)
    
    async def update(
        self,
        record: TransactionRecord,
        expected_version: int,
    ) -> TransactionRecord:
        new_version = expected_version + 1
        try:
            async with session_scope(self._session_factory) as db:
                result = await db.execute(
                    update(TransactionModel)
                    .where(
                        TransactionModel.reference == record.reference,
                        TransactionModel.version == expected_version,
                    )
                    .values(
                        status=record.status.value,
                        amount=record.amount,
                        currency=record.currency,
                        version=new_version,
                        updated_at=record.updated_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise ConcurrencyConflictError(record.reference, expected_version)
                
                # El historial es append-only: solo se insertan las entradas nuevas
                stored_count = await db.scalar(
                    select(func.count())
                    .select_from(TransactionHistoryModel)
                    .where(TransactionHistoryModel.transaction_reference == record.reference)
                )
                db.add_all([
                    _history_row(record.reference, position, record.history[position])
                    for position in range(stored_count or 0, len(record.history))
                ])
        except ConcurrencyConflictError:
            logger.warning(
                "Version conflict updating transaction",
                transaction_ref=record.reference,
                expected_version=expected_version,
            )
            raise
        except IntegrityError as e:
            raise ConcurrencyConflictError(record.reference, expected_version) from e
        except SQLAlchemyError as e:
            logger.error("Database error updating transaction", error=str(e), transaction_ref=record.reference)
            raise InfrastructureError("Transaction store unavailable", code="STORE_UNAVAILABLE") from e
        
        return replace(record, version=new_version)
