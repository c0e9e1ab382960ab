"""Core business logic.

``billpay.core.lifecycle`` is imported directly; it depends on the
repositories package, which itself depends on ``transaction_state`` here.
"""
from billpay.core.catalog import GatewayCatalog, StaticCatalog
from billpay.core.locks import TransactionLocks
from billpay.core.proof import PaymentProofService, ProofUpload

__all__ = [
    "GatewayCatalog",
    "PaymentProofService",
    "ProofUpload",
    "StaticCatalog",
    "TransactionLocks",
]
