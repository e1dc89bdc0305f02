"""
Capa de persistencia de la pasarela.
"""

from pasarela.db.database import (
    build_engine,
    build_session_factory,
    close_db,
    init_db,
    session_scope,
)
from pasarela.db.models import (
    Base,
    ProcessedEventModel,
    TransactionHistoryModel,
    TransactionModel,
)
from pasarela.db.store import InMemoryTransactionStore, TransactionStore

__all__ = [
    # Database
    "build_engine",
    "build_session_factory",
    "close_db",
    "init_db",
    "session_scope",
    # Models
    "Base",
    "ProcessedEventModel",
    "TransactionHistoryModel",
    "TransactionModel",
    # Stores
    "InMemoryTransactionStore",
    "TransactionStore",
]
