"""Repository for transaction data access."""

import logging
import secrets
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billpay.constants import TRANSACTION_CODE_PREFIX
from billpay.core.transaction_state import TransactionStateMachine
from billpay.exceptions import NotFound, ValidationError
from billpay.filters.transaction import TransactionFilter
from billpay.models.base import utcnow
from billpay.models.transaction import (
    Transaction,
    TransactionEvent,
    TransactionEventType,
    TransactionStatus,
)
from billpay.schemas.transaction import PurchaseCreate

logger = logging.getLogger(__name__)


def generate_transaction_code(now: datetime | None = None) -> str:
    """Return a new human-legible transaction code, e.g. ``TRX250301142233A1B2C3``."""
    now = now or datetime.now(UTC)
    return f"{TRANSACTION_CODE_PREFIX}{now:%y%m%d%H%M%S}{secrets.token_hex(3).upper()}"


def validate_purchase(data: PurchaseCreate | Mapping[str, Any]) -> PurchaseCreate:
    """Coerce raw purchase fields into a ``PurchaseCreate``.

    Raises:
        ValidationError: If required fields are missing or malformed.
    """
    if isinstance(data, PurchaseCreate):
        return data
    try:
        return PurchaseCreate.model_validate(dict(data))
    except SchemaValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ValidationError(
            f"Invalid purchase: {fields}",
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc


class TransactionRepository:
    """Data access layer for transactions and their audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_code(self, code: str) -> Transaction | None:
        """Get a transaction by code, or ``None``."""
        query = select(Transaction).where(Transaction.transaction_code == code)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get(self, transaction_id: str) -> Transaction:
        """Get a transaction by internal id.

        Raises:
            NotFound: If no such transaction exists.
        """
        txn = await self.session.get(Transaction, transaction_id)
        if txn is None:
            raise NotFound(transaction_id)
        return txn

    async def get_by_code(self, code: str) -> Transaction:
        """Get a transaction by code.

        Raises:
            NotFound: If no such transaction exists.
        """
        txn = await self.find_by_code(code)
        if txn is None:
            raise NotFound(code)
        return txn

    async def list_all(self) -> list[Transaction]:
        """All transactions in insertion order."""
        query = select(Transaction).order_by(Transaction.created_at, Transaction.id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_by_status(self, status: TransactionStatus | str) -> list[Transaction]:
        """Transactions currently in *status*, oldest first."""
        query = (
            select(Transaction)
            .where(Transaction.status == TransactionStatus(status).value)
            .order_by(Transaction.created_at, Transaction.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_filtered(
        self,
        filters: TransactionFilter,
        page: int = 1,
        size: int = 50,
    ) -> tuple[list[Transaction], int]:
        """Get transactions with declarative filtering, sorting, and pagination."""
        query = filters.filter(select(Transaction))
        count_query = filters.filter(select(func.count()).select_from(Transaction))

        total = await self.session.scalar(count_query) or 0

        query = filters.sort(query)
        if not filters.order_by:
            query = query.order_by(Transaction.created_at.desc())
        query = query.offset((page - 1) * size).limit(size)

        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def list_stale_processing(self, older_than: datetime) -> list[Transaction]:
        """``processing`` transactions with a gateway ref, untouched since *older_than*."""
        query = (
            select(Transaction)
            .where(
                Transaction.status == TransactionStatus.PROCESSING.value,
                Transaction.indotel_ref_id.isnot(None),
                Transaction.updated_at < older_than,
            )
            .order_by(Transaction.updated_at)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_events(self, code: str) -> list[TransactionEvent]:
        """Audit trail for a transaction, oldest first.

        Raises:
            NotFound: If no such transaction exists.
        """
        txn = await self.get_by_code(code)
        query = (
            select(TransactionEvent)
            .where(TransactionEvent.transaction_id == txn.id)
            .order_by(TransactionEvent.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        data: PurchaseCreate | Mapping[str, Any],
        *,
        actor: str | None = None,
    ) -> Transaction:
        """Create a ``pending`` transaction with a fresh code.

        Raises:
            ValidationError: If required fields are missing or malformed.
        """
        purchase = validate_purchase(data)

        txn = Transaction(
            transaction_code=generate_transaction_code(),
            product_code=purchase.product_code,
            product_name=purchase.product_name,
            category_code=purchase.category_code,
            product_type=purchase.product_type.value,
            customer_id=purchase.customer_id,
            customer_number=purchase.customer_number,
            params=dict(purchase.params),
            price=purchase.price,
            total_price=purchase.total_price or purchase.price,
            status=TransactionStatus.PENDING.value,
        )
        self.session.add(txn)
        await self.session.flush()

        self._add_event(
            txn,
            TransactionEventType.CREATED,
            from_status=None,
            to_status=TransactionStatus.PENDING.value,
            actor=actor,
        )
        await self.session.flush()
        await self.session.refresh(txn)
        return txn

    async def update_status(
        self,
        code: str,
        new_status: TransactionStatus | str,
        gateway_ref: str | None = None,
        *,
        expected: TransactionStatus | str | None = None,
        event: TransactionEventType | None = None,
        message: str | None = None,
        raw_payload: Any = None,
        actor: str | None = None,
    ) -> Transaction:
        """Move a transaction to *new_status*.

        When *expected* is given and the stored status differs, nothing is
        written and the stored transaction is returned unchanged; this keeps a
        late gateway reply from overwriting a newer operator decision.

        Raises:
            NotFound: If no such transaction exists.
            InvalidTransition: If the state machine forbids the change.
        """
        txn = await self.get_by_code(code)
        target = TransactionStatus(new_status)

        if expected is not None and txn.status != TransactionStatus(expected).value:
            logger.warning(
                "Discarding stale update for %s: expected '%s', found '%s'",
                code,
                TransactionStatus(expected).value,
                txn.status,
            )
            return txn

        current_state = TransactionStateMachine.get_state(txn.status)
        current_state.validate_transition(code, target)

        from_status = txn.status
        txn.status = target.value
        self._apply_gateway_ref(txn, gateway_ref, actor=actor)
        if message is not None:
            txn.gateway_message = message
        txn.updated_at = utcnow()

        self._add_event(
            txn,
            event or _default_event(target),
            from_status=from_status,
            to_status=target.value,
            gateway_ref=gateway_ref,
            message=message,
            raw_payload=raw_payload,
            actor=actor,
        )
        await self.session.flush()
        await self.session.refresh(txn)

        TransactionStateMachine.get_state(target).on_enter(txn)
        return txn

    async def annotate(
        self,
        code: str,
        event: TransactionEventType,
        *,
        gateway_ref: str | None = None,
        expected: TransactionStatus | str | None = None,
        message: str | None = None,
        raw_payload: Any = None,
        actor: str | None = None,
    ) -> Transaction:
        """Record gateway evidence without changing status.

        Raises:
            NotFound: If no such transaction exists.
        """
        txn = await self.get_by_code(code)
        if expected is not None and txn.status != TransactionStatus(expected).value:
            logger.warning("Discarding stale %s note for %s (status '%s')", event, code, txn.status)
            return txn

        self._apply_gateway_ref(txn, gateway_ref, actor=actor)
        if message is not None:
            txn.gateway_message = message
        txn.updated_at = utcnow()

        self._add_event(
            txn,
            event,
            from_status=txn.status,
            to_status=txn.status,
            gateway_ref=gateway_ref,
            message=message,
            raw_payload=raw_payload,
            actor=actor,
        )
        await self.session.flush()
        await self.session.refresh(txn)
        return txn

    async def attach_proof(
        self, code: str, proof_ref: str, *, actor: str | None = None
    ) -> Transaction:
        """Store a payment-proof reference; status is left as is.

        Raises:
            NotFound: If no such transaction exists.
        """
        txn = await self.get_by_code(code)
        txn.payment_proof_url = proof_ref
        txn.updated_at = utcnow()
        self._add_event(
            txn,
            TransactionEventType.PROOF_ATTACHED,
            from_status=txn.status,
            to_status=txn.status,
            message=proof_ref,
            actor=actor,
        )
        await self.session.flush()
        await self.session.refresh(txn)
        return txn

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply_gateway_ref(
        self, txn: Transaction, gateway_ref: str | None, *, actor: str | None
    ) -> None:
        """Last non-empty ref wins; a replaced ref is kept in the audit trail."""
        if not gateway_ref or gateway_ref == txn.indotel_ref_id:
            return
        if txn.indotel_ref_id:
            self._add_event(
                txn,
                TransactionEventType.REF_SUPERSEDED,
                from_status=txn.status,
                to_status=txn.status,
                gateway_ref=txn.indotel_ref_id,
                message=f"Gateway ref {txn.indotel_ref_id} superseded by {gateway_ref}",
                actor=actor,
            )
        txn.indotel_ref_id = gateway_ref

    def _add_event(
        self,
        txn: Transaction,
        event: TransactionEventType,
        *,
        from_status: str | None,
        to_status: str | None,
        gateway_ref: str | None = None,
        message: str | None = None,
        raw_payload: Any = None,
        actor: str | None = None,
    ) -> None:
        self.session.add(
            TransactionEvent(
                transaction_id=txn.id,
                event=event.value,
                from_status=from_status,
                to_status=to_status,
                gateway_ref=gateway_ref,
                message=message,
                raw_payload=raw_payload,
                actor=actor,
            )
        )


def _default_event(target: TransactionStatus) -> TransactionEventType:
    return {
        TransactionStatus.PROCESSING: TransactionEventType.APPROVED,
        TransactionStatus.SUCCESS: TransactionEventType.SETTLED,
        TransactionStatus.FAILED: TransactionEventType.GATEWAY_REJECTED,
        TransactionStatus.REJECTED: TransactionEventType.REJECTED,
    }.get(target, TransactionEventType.APPROVED)


@asynccontextmanager
async def transaction_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[TransactionRepository]:
    """Repository bound to a fresh session; commits on success, rolls back otherwise."""
    async with session_factory() as session:
        try:
            yield TransactionRepository(session)
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
