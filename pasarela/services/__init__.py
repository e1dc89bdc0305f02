"""
Servicios de la pasarela: verificación, reconciliación y orquestación.
"""

from pasarela.services.reconciler import (
    ReconcileOutcome,
    Reconciliation,
    StatusChange,
    TransactionReconciler,
    TransactionRecord,
)
from pasarela.services.signature_verifier import (
    RejectionReason,
    SignatureVerifier,
    VerificationResult,
)

__all__ = [
    "ReconcileOutcome",
    "Reconciliation",
    "StatusChange",
    "TransactionReconciler",
    "TransactionRecord",
    "RejectionReason",
    "SignatureVerifier",
    "VerificationResult",
]
