"""FastAPI dependency providers for repositories and services.

Separated from ``dependencies.py`` so route modules can import type aliases
from here without pulling the engine/redis factories into every import.
"""

from functools import partial
from typing import Annotated

from fastapi import Depends, Request

from billpay.core.lifecycle import TransactionLifecycle
from billpay.core.proof import PaymentProofService
from billpay.dependencies import AppSettings, DBSession, Locks, ProofStorage
from billpay.repositories.transaction_repository import TransactionRepository, transaction_scope

# ---------------------------------------------------------------------------
# Repository providers
# ---------------------------------------------------------------------------


def get_transaction_repository(db: DBSession) -> TransactionRepository:
    return TransactionRepository(db)


TransactionRepo = Annotated[TransactionRepository, Depends(get_transaction_repository)]

# ---------------------------------------------------------------------------
# Service providers
# ---------------------------------------------------------------------------


def get_lifecycle(request: Request, locks: Locks) -> TransactionLifecycle:
    # The gateway may be None; only approve/retry/reconcile need it
    state = request.app.state
    return TransactionLifecycle(state.session_factory, state.gateway, locks)


def get_proof_service(
    request: Request, locks: Locks, storage: ProofStorage, settings: AppSettings
) -> PaymentProofService:
    return PaymentProofService(
        partial(transaction_scope, request.app.state.session_factory),
        storage,
        locks,
        max_size=settings.max_proof_size_bytes,
    )


Lifecycle = Annotated[TransactionLifecycle, Depends(get_lifecycle)]
ProofSvc = Annotated[PaymentProofService, Depends(get_proof_service)]
