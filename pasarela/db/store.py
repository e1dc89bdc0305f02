"""
Contrato de almacenamiento de transacciones.

Las actualizaciones usan concurrencia optimista: cada escritura indica la
versión que leyó y falla si otro escritor se adelantó.
"""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import replace

import structlog

from pasarela.services.reconciler import TransactionRecord
from pasarela.utils.exceptions import ConcurrencyConflictError


logger = structlog.get_logger(__name__)


class TransactionStore(ABC):
    """Almacenamiento de registros de transacción."""
    
    @abstractmethod
    async def get(self, reference: str) -> TransactionRecord | None:
        """Obtiene un registro por referencia, o None si no existe."""
        ...
    
    @abstractmethod
    async def create(self, record: TransactionRecord) -> TransactionRecord:
        """
        Inserta un registro nuevo.
        
        Raises:
            ConcurrencyConflictError: Si la referencia ya existe
        """
        ...
    
    @abstractmethod
    async def update(
        self,
        record: TransactionRecord,
        expected_version: int,
    ) -> TransactionRecord:
        """
        Reemplaza un registro si su versión almacenada es expected_version.
        
        Returns:
            El registro guardado, con la versión incrementada
            
        Raises:
            ConcurrencyConflictError: Si la versión no coincide
        """
        ...


class InMemoryTransactionStore(TransactionStore):
    """Implementación en memoria para desarrollo y tests."""
    
    def __init__(self):
        self._records: dict[str, TransactionRecord] = {}
        self._lock = asyncio.Lock()
    
    def __len__(self) -> int:
        return len(self._records)
    
    async def get(self, reference: str) -> TransactionRecord | None:
        return self._records.get(reference)
    
    async def create(self, record: TransactionRecord) -> TransactionRecord:
        async with self._lock:
            if record.reference in self._records:
                raise ConcurrencyConflictError(record.reference)
            
            stored = replace(record, version=1)
            self._records[record.reference] = stored
            return stored
    
    async def update(
        self,
        record: TransactionRecord,
        expected_version: int,
    ) -> TransactionRecord:
        async with self._lock:
            current = self._records.get(record.reference)
            if current is None or current.version != expected_version:
                logger.warning(
                    "Version conflict updating transaction",
                    transaction_ref=record.reference,
                    expected_version=expected_version,
                    current_version=current.version if current else None,
                )
                raise ConcurrencyConflictError(record.reference, expected_version)
            
            stored = replace(record, version=expected_version + 1)
            self._records[record.reference] = stored
            return stored
