"""
Modelos SQLAlchemy de la pasarela.

Se usan tipos genéricos para que el mismo esquema funcione en PostgreSQL
(producción) y SQLite (desarrollo y tests).
"""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from pasarela.schemas.common import TransactionStatus


class Base(DeclarativeBase):
    """Base para todos los modelos."""


class TimestampMixin:
    """Mixin para campos de timestamp."""
    
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )


class TransactionModel(Base, TimestampMixin):
    """Registro de una transacción con su estado actual."""
    
    __tablename__ = "transactions"
    
    reference: Mapped[str] = mapped_column(String(255), primary_key=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=TransactionStatus.CREATED.value,
        nullable=False,
        index=True,
    )
    
    # Monto en unidades mínimas de la moneda
    amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    
    # Concurrencia optimista
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    
    history: Mapped[list["TransactionHistoryModel"]] = relationship(
        back_populates="transaction",
        order_by="TransactionHistoryModel.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    
    def __repr__(self) -> str:
        return f"<Transaction {self.reference} ({self.status}) v{self.version}>"


class TransactionHistoryModel(Base):
    """Entrada append-only del historial de estados."""
    
    __tablename__ = "transaction_history"
    __table_args__ = (
        UniqueConstraint("transaction_reference", "position", name="uq_history_position"),
    )
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_reference: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("transactions.reference", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    applied: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    
    transaction: Mapped[TransactionModel] = relationship(back_populates="history")
    
    def __repr__(self) -> str:
        return f"<TransactionHistory {self.transaction_reference}#{self.position} {self.status}>"


class ProcessedEventModel(Base):
    """Evento de proveedor ya procesado (marca de idempotencia)."""
    
    __tablename__ = "processed_events"
    
    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    
    def __repr__(self) -> str:
        return f"<ProcessedEvent {self.event_id}>"
