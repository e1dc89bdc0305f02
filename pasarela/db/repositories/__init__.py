"""
Repositorios para operaciones de base de datos.
"""

from pasarela.db.repositories.processed_event_repo import SqlIdempotencyStore
from pasarela.db.repositories.transaction_repo import SqlTransactionStore

__all__ = [
    "SqlIdempotencyStore",
    "SqlTransactionStore",
]
