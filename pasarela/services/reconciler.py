"""
Máquina de estados de transacciones.

Toma un evento canónico verificado y decide el siguiente estado del
registro. Tolera entregas duplicadas, desordenadas y parcialmente fallidas:

    CREATED -> PENDING -> {PAID, FAILED, CANCELLED}
    PAID -> REFUNDED

FAILED, CANCELLED y REFUNDED son terminales. Un evento con un estado no
alcanzable se registra en el historial pero no cambia el estado actual;
si una transición posterior lo vuelve alcanzable (un reembolso que llegó
antes que el pago), se aplica en ese momento.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import ClassVar

import structlog

from pasarela.adapters.base import CanonicalWebhookEvent, utcnow
from pasarela.schemas.common import ProviderName, TransactionStatus
from pasarela.schemas.webhook import AmountMismatchWarning


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StatusChange:
    """Entrada del historial (append-only)."""
    
    status: TransactionStatus
    occurred_at: datetime
    event_id: str
    applied: bool = True


@dataclass(frozen=True)
class TransactionRecord:
    """
    Registro de una transacción.
    
    Inmutable: cada cambio produce un registro nuevo con el historial
    copiado y extendido, de modo que un lector concurrente nunca observa
    un registro a medio actualizar.
    """
    
    reference: str
    provider: ProviderName
    status: TransactionStatus = TransactionStatus.CREATED
    amount: int | None = None
    currency: str | None = None
    history: tuple[StatusChange, ...] = ()
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None
    
    @classmethod
    def seed(
        cls,
        reference: str,
        provider: ProviderName,
        amount: int | None,
        currency: str | None,
        source_event_id: str,
        now: datetime | None = None,
    ) -> "TransactionRecord":
        """Registro inicial en CREATED."""
        now = now or utcnow()
        return cls(
            reference=reference,
            provider=ProviderName(provider),
            status=TransactionStatus.CREATED,
            amount=amount,
            currency=currency.upper() if currency else None,
            history=(StatusChange(TransactionStatus.CREATED, now, source_event_id, True),),
            created_at=now,
        )


class ReconcileOutcome(str, Enum):
    """Resultado de aplicar un evento."""
    
    APPLIED = "applied"      # El estado cambió
    DUPLICATE = "duplicate"  # Mismo estado que el actual; solo auditoría
    IGNORED = "ignored"      # Transición no permitida (desorden o terminal)


@dataclass(frozen=True)
class Reconciliation:
    """Decisión del reconciliador para un evento."""
    
    outcome: ReconcileOutcome
    previous_status: TransactionStatus
    status: TransactionStatus
    credited_delta: int = 0
    warning: AmountMismatchWarning | None = None
    replayed: tuple[str, ...] = ()  # Eventos diferidos aplicados en cascada
    
    @property
    def applied(self) -> bool:
        return self.outcome == ReconcileOutcome.APPLIED


class TransactionReconciler:
    """Aplica eventos canónicos sobre registros de transacción."""
    
    # Transiciones permitidas
    TRANSITIONS: ClassVar[dict[TransactionStatus, frozenset[TransactionStatus]]] = {
        TransactionStatus.CREATED: frozenset({
            TransactionStatus.PENDING,
            TransactionStatus.PAID,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
        }),
        TransactionStatus.PENDING: frozenset({
            TransactionStatus.PAID,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
        }),
        TransactionStatus.PAID: frozenset({TransactionStatus.REFUNDED}),
        TransactionStatus.FAILED: frozenset(),
        TransactionStatus.CANCELLED: frozenset(),
        TransactionStatus.REFUNDED: frozenset(),
        TransactionStatus.UNKNOWN: frozenset(),
    }
    
    TERMINAL_STATUSES: ClassVar[frozenset[TransactionStatus]] = frozenset({
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
        TransactionStatus.REFUNDED,
    })
    
    def can_transition(self, current: TransactionStatus, target: TransactionStatus) -> bool:
        return target in self.TRANSITIONS.get(current, frozenset())
    
    def _check_amount(
        self,
        record: TransactionRecord,
        event: CanonicalWebhookEvent,
    ) -> AmountMismatchWarning | None:
        """Compara monto y moneda del evento con los del registro."""
        if event.amount is None or record.amount is None:
            return None
        
        same_amount = event.amount == record.amount
        same_currency = (
            event.currency is None
            or record.currency is None
            or event.currency.upper() == record.currency.upper()
        )
        if same_amount and same_currency:
            return None
        
        return AmountMismatchWarning(
            expected_amount=record.amount,
            expected_currency=record.currency,
            reported_amount=event.amount,
            reported_currency=event.currency,
        )
    
    @staticmethod
    def _signed_amount(status: TransactionStatus, amount: int) -> int:
        if status == TransactionStatus.PAID:
            return amount
        if status == TransactionStatus.REFUNDED:
            return -amount
        return 0
    
    def _delta(self, record: TransactionRecord, event: CanonicalWebhookEvent) -> int:
        # El proveedor es la autoridad sobre el dinero movido
        amount = event.amount if event.amount is not None else (record.amount or 0)
        return self._signed_amount(event.status, amount)
    
    def _replay_deferred(
        self,
        record: TransactionRecord,
        now: datetime,
    ) -> tuple[TransactionRecord, int, tuple[str, ...]]:
        """
        Aplica eventos del historial que quedaron diferidos y ya son alcanzables.
        
        Un evento diferido es una entrada no aplicada cuyo event_id nunca
        se aplicó después. Cada uno se aplica a lo sumo una vez, en orden
        de llegada, y se agrega al historial como una entrada nueva.
        
        Returns:
            Tupla (registro, delta acumulado, event_ids aplicados)
        """
        delta = 0
        replayed: list[str] = []
        
        while record.status not in self.TERMINAL_STATUSES:
            applied_ids = {c.event_id for c in record.history if c.applied}
            deferred = next(
                (
                    c for c in record.history
                    if not c.applied
                    and c.event_id not in applied_ids
                    and self.can_transition(record.status, c.status)
                ),
                None,
            )
            if deferred is None:
                break
        
            previous = record.status
            step = self._signed_amount(deferred.status, record.amount or 0)
        
            record = replace(
                record,
                status=deferred.status,
                history=record.history + (
                    StatusChange(deferred.status, now, deferred.event_id, True),
                ),
            )
            delta += step
            replayed.append(deferred.event_id)
        
            logger.info(
                "Deferred event applied",
                transaction_ref=record.reference,
                event_id=deferred.event_id,
                old_status=previous.value,
                new_status=deferred.status.value,
                credited_delta=step,
            )
        
        return record, delta, tuple(replayed)
    
    def apply(
        self,
        record: TransactionRecord,
        event: CanonicalWebhookEvent,
        now: datetime | None = None,
    ) -> tuple[TransactionRecord, Reconciliation]:
        """
        Aplica un evento al registro.
        
        Args:
            record: Registro actual
            event: Evento canónico verificado
            now: Momento de la aplicación (por defecto, ahora)
            
        Returns:
            Tupla (registro nuevo, decisión). El registro nuevo siempre
            incluye el evento en el historial, aunque no se haya aplicado.
        """
        now = now or utcnow()
        current = record.status
        warning = self._check_amount(record, event)
        
        if event.status == current:
            outcome = ReconcileOutcome.DUPLICATE
        elif self.can_transition(current, event.status):
            outcome = ReconcileOutcome.APPLIED
        else:
            outcome = ReconcileOutcome.IGNORED
        
        applied = outcome == ReconcileOutcome.APPLIED
        new_status = event.status if applied else current
        delta = self._delta(record, event) if applied else 0
        
        change = StatusChange(
            status=event.status,
            occurred_at=now,
            event_id=event.event_id,
            applied=applied,
        )
        new_record = replace(
            record,
            status=new_status,
            history=record.history + (change,),
            updated_at=now,
        )
        
        replayed: tuple[str, ...] = ()
        if applied:
            new_record, replay_delta, replayed = self._replay_deferred(new_record, now)
            new_status = new_record.status
            delta += replay_delta
        
        if warning is not None:
            logger.warning(
                "Amount mismatch between event and transaction",
                transaction_ref=record.reference,
                event_id=event.event_id,
                expected_amount=warning.expected_amount,
                expected_currency=warning.expected_currency,
                reported_amount=warning.reported_amount,
                reported_currency=warning.reported_currency,
            )
        
        if outcome == ReconcileOutcome.IGNORED:
            logger.info(
                "Transition not allowed, event recorded for audit",
                transaction_ref=record.reference,
                event_id=event.event_id,
                current_status=current.value,
                reported_status=event.status.value,
                terminal=current in self.TERMINAL_STATUSES,
            )
        else:
            logger.info(
                "Transaction event reconciled",
                transaction_ref=record.reference,
                event_id=event.event_id,
                outcome=outcome.value,
                old_status=current.value,
                new_status=new_status.value,
                credited_delta=delta,
            )
        
        return new_record, Reconciliation(
            outcome=outcome,
            previous_status=current,
            status=new_status,
            credited_delta=delta,
            warning=warning,
            replayed=replayed,
        )
