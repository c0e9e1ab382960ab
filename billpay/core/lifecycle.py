"""Purchase lifecycle: creation, approval, rejection, retry and reconciliation.

Every mutating operation runs under the per-code Redis lock and in its own
unit of work. Approval commits ``processing`` *before* the gateway is
called, so a crash mid-settlement leaves the transaction in a well-defined
state for an operator to follow up.

Gateway errors never escape ``approve``/``retry``/``reconcile``; they are
recorded on the transaction:

=====================  ==================================================
Gateway answer          Stored effect
=====================  ==================================================
success                 ``success``, provider ref recorded
``GatewayRejected``     ``failed``, message and raw payload verbatim
failure outcome         stays ``processing`` (manual follow-up)
``GatewayUnreachable``  stays ``processing`` (manual follow-up)
=====================  ==================================================
"""

import asyncio
import logging
from collections.abc import Mapping
from contextlib import AbstractAsyncContextManager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billpay.core.locks import TransactionLocks
from billpay.exceptions import (
    GatewayError,
    GatewayNotConfigured,
    GatewayRejected,
    InvalidTransition,
    NoGatewayReference,
)
from billpay.models.transaction import (
    ProductType,
    Transaction,
    TransactionEvent,
    TransactionEventType,
    TransactionStatus,
)
from billpay.repositories.protocols import GatewayClientProtocol
from billpay.repositories.transaction_repository import (
    TransactionRepository,
    transaction_scope,
    validate_purchase,
)
from billpay.schemas.gateway import GatewayRequest, GatewayResult
from billpay.utils.logging import bind_transaction

logger = logging.getLogger(__name__)


class TransactionLifecycle:
    """Orchestrates status transitions around gateway calls."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: GatewayClientProtocol | None,
        locks: TransactionLocks,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._locks = locks
        # Settlements that outlived a cancelled caller; kept referenced until done
        self._inflight: set[asyncio.Task] = set()

    def _unit_of_work(self) -> AbstractAsyncContextManager[TransactionRepository]:
        return transaction_scope(self._session_factory)

    def _require_gateway(self) -> GatewayClientProtocol:
        if self._gateway is None:
            raise GatewayNotConfigured()
        return self._gateway

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, code: str) -> Transaction:
        async with self._unit_of_work() as repo:
            return await repo.get_by_code(code)

    async def list_all(self) -> list[Transaction]:
        async with self._unit_of_work() as repo:
            return await repo.list_all()

    async def list_by_status(self, status: TransactionStatus | str) -> list[Transaction]:
        async with self._unit_of_work() as repo:
            return await repo.list_by_status(status)

    async def events(self, code: str) -> list[TransactionEvent]:
        async with self._unit_of_work() as repo:
            return await repo.list_events(code)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_purchase(
        self,
        product_code: str,
        customer_number: str,
        price: int,
        category_params: Mapping[str, Any] | None = None,
        *,
        product_name: str | None = None,
        category_code: str | None = None,
        product_type: ProductType | str = ProductType.PRABAYAR,
        customer_id: str | None = None,
        total_price: int | None = None,
        actor: str | None = None,
    ) -> Transaction:
        """Record a new ``pending`` purchase. No gateway call is made.

        Raises:
            ValidationError: If any field is missing or malformed.
        """
        purchase = validate_purchase(
            {
                "product_code": product_code,
                "product_name": product_name or product_code,
                "category_code": category_code,
                "product_type": product_type,
                "customer_number": customer_number,
                "customer_id": customer_id,
                "price": price,
                "total_price": total_price,
                "params": dict(category_params or {}),
            }
        )
        async with self._unit_of_work() as repo:
            txn = await repo.create(purchase, actor=actor)
        logger.info(
            "Created transaction %s for %s (%s)", txn.transaction_code, txn.product_code, txn.price
        )
        return txn

    # ------------------------------------------------------------------
    # Operator decisions
    # ------------------------------------------------------------------

    async def approve(self, code: str, actor: str | None = None) -> Transaction:
        """Approve a ``pending`` purchase and settle it with the gateway.

        Raises:
            NotFound: If no such transaction exists.
            InvalidTransition: If the transaction is not ``pending``.
            TransactionBusy: If another change on *code* holds the lock.
            GatewayNotConfigured: If no gateway is available; nothing is written.
        """
        gateway = self._require_gateway()
        async with self._locks.hold(code):
            async with self._unit_of_work() as repo:
                txn = await repo.get_by_code(code)
                if txn.status != TransactionStatus.PENDING.value:
                    raise _not_from(txn, TransactionStatus.PROCESSING)
                txn = await repo.update_status(
                    code,
                    TransactionStatus.PROCESSING,
                    event=TransactionEventType.APPROVED,
                    actor=actor,
                )
                request = _settlement_request(txn)
            return await self._dispatch_settlement(gateway, request, actor)

    async def reject(self, code: str, actor: str | None = None) -> Transaction:
        """Reject a purchase; a no-op if it is already ``rejected``.

        Raises:
            NotFound: If no such transaction exists.
            InvalidTransition: From ``success`` or ``failed``.
        """
        async with self._locks.hold(code):
            async with self._unit_of_work() as repo:
                txn = await repo.get_by_code(code)
                if txn.status == TransactionStatus.REJECTED.value:
                    return txn
                return await repo.update_status(
                    code,
                    TransactionStatus.REJECTED,
                    event=TransactionEventType.REJECTED,
                    actor=actor,
                )

    async def retry(self, code: str, actor: str | None = None) -> Transaction:
        """Re-settle a ``failed`` purchase, or a ``processing`` one the gateway never acknowledged.

        The transaction code is reused as the idempotency key.

        Raises:
            NotFound: If no such transaction exists.
            InvalidTransition: From any other state, or ``processing`` with a ref.
            GatewayNotConfigured: If no gateway is available; nothing is written.
        """
        gateway = self._require_gateway()
        async with self._locks.hold(code):
            async with self._unit_of_work() as repo:
                txn = await repo.get_by_code(code)
                if txn.status == TransactionStatus.FAILED.value:
                    txn = await repo.update_status(
                        code,
                        TransactionStatus.PROCESSING,
                        event=TransactionEventType.RETRIED,
                        actor=actor,
                    )
                elif txn.status == TransactionStatus.PROCESSING.value and not txn.indotel_ref_id:
                    txn = await repo.annotate(
                        code,
                        TransactionEventType.RETRIED,
                        expected=TransactionStatus.PROCESSING,
                        actor=actor,
                    )
                else:
                    raise _not_from(txn, TransactionStatus.PROCESSING)
                request = _settlement_request(txn)
            return await self._dispatch_settlement(gateway, request, actor)

    async def reconcile(self, code: str, actor: str | None = None) -> Transaction:
        """Poll the gateway for a ``processing`` transaction's real outcome.

        A transaction that has already left ``processing`` is returned as is.

        Raises:
            NotFound: If no such transaction exists.
            NoGatewayReference: If no gateway ref was ever recorded.
            GatewayNotConfigured: If no gateway is available.
        """
        async with self._locks.hold(code):
            async with self._unit_of_work() as repo:
                txn = await repo.get_by_code(code)
            if not txn.indotel_ref_id:
                raise NoGatewayReference(code)
            if txn.status != TransactionStatus.PROCESSING.value:
                logger.info("Skipping reconcile of %s in status '%s'", code, txn.status)
                return txn

            gateway = self._require_gateway()
            with bind_transaction(code):
                try:
                    result = await gateway.check_status(txn.indotel_ref_id)
                except GatewayError as exc:
                    return await self._record_gateway_error(
                        code, exc, actor, reconciling=True
                    )
                return await self._record_result(code, result, actor, reconciling=True)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def _dispatch_settlement(
        self, gateway: GatewayClientProtocol, request: GatewayRequest, actor: str | None
    ) -> Transaction:
        """Run settlement in a task the caller cannot cancel."""
        task = asyncio.ensure_future(self._settle(gateway, request, actor))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _settle(
        self, gateway: GatewayClientProtocol, request: GatewayRequest, actor: str | None
    ) -> Transaction:
        code = request.reference_id
        with bind_transaction(code):
            try:
                result = await gateway.settle(request)
            except GatewayError as exc:
                return await self._record_gateway_error(code, exc, actor)
            return await self._record_result(code, result, actor)

    async def _record_result(
        self, code: str, result: GatewayResult, actor: str | None, *, reconciling: bool = False
    ) -> Transaction:
        async with self._unit_of_work() as repo:
            if result.succeeded:
                txn = await repo.update_status(
                    code,
                    TransactionStatus.SUCCESS,
                    result.provider_ref,
                    expected=TransactionStatus.PROCESSING,
                    event=TransactionEventType.RECONCILED
                    if reconciling
                    else TransactionEventType.SETTLED,
                    message=result.message or None,
                    raw_payload=result.raw_payload,
                    actor=actor,
                )
            else:
                txn = await repo.annotate(
                    code,
                    TransactionEventType.GATEWAY_PENDING,
                    gateway_ref=result.provider_ref,
                    expected=TransactionStatus.PROCESSING,
                    message=result.message or None,
                    raw_payload=result.raw_payload,
                    actor=actor,
                )
        logger.info("Gateway answered %s for %s; status '%s'", result.outcome, code, txn.status)
        return txn

    async def _record_gateway_error(
        self, code: str, exc: GatewayError, actor: str | None, *, reconciling: bool = False
    ) -> Transaction:
        async with self._unit_of_work() as repo:
            if isinstance(exc, GatewayRejected):
                txn = await repo.update_status(
                    code,
                    TransactionStatus.FAILED,
                    expected=TransactionStatus.PROCESSING,
                    event=TransactionEventType.GATEWAY_REJECTED,
                    message=exc.message,
                    raw_payload=exc.raw_payload,
                    actor=actor,
                )
            else:
                txn = await repo.annotate(
                    code,
                    TransactionEventType.GATEWAY_UNREACHABLE,
                    expected=TransactionStatus.PROCESSING,
                    message=exc.message,
                    raw_payload=exc.raw_payload,
                    actor=actor,
                )
        logger.warning(
            "Gateway %s for %s%s: %s",
            type(exc).__name__,
            code,
            " (reconcile)" if reconciling else "",
            exc.message,
        )
        return txn


def _settlement_request(txn: Transaction) -> GatewayRequest:
    return GatewayRequest(
        product_code=txn.product_code,
        customer_number=txn.customer_number,
        product_type=ProductType(txn.product_type),
        reference_id=txn.transaction_code,
        params=dict(txn.params or {}),
    )


def _not_from(txn: Transaction, target: TransactionStatus) -> InvalidTransition:
    return InvalidTransition(txn.transaction_code, txn.status, target.value)
