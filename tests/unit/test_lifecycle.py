"""Unit tests for TransactionLifecycle against SQLite and a stubbed gateway."""

import asyncio

import pytest

from billpay.core.lifecycle import TransactionLifecycle
from billpay.exceptions import (
    GatewayNotConfigured,
    GatewayRejected,
    GatewayUnreachable,
    InvalidTransition,
    NoGatewayReference,
    NotFound,
    TransactionBusy,
    ValidationError,
)
from billpay.models.transaction import ProductType, TransactionEventType, TransactionStatus
from billpay.repositories.transaction_repository import transaction_scope
from billpay.schemas.gateway import GatewayOutcome
from tests.conftest import gateway_result


async def event_types(lifecycle, code) -> list[str]:
    return [e.event for e in await lifecycle.events(code)]


class TestCreatePurchase:
    async def test_pln50_scenario(self, make_purchase, gateway):
        txn = await make_purchase()

        assert txn.status == TransactionStatus.PENDING
        assert txn.price == 50500
        assert txn.total_price == 50500
        assert txn.indotel_ref_id is None
        assert txn.transaction_code.startswith("TRX")
        gateway.settle.assert_not_called()

    async def test_category_params_are_kept(self, make_purchase):
        txn = await make_purchase(
            product_code="BPJS1",
            customer_number="8888801234567890",
            price=150000,
            category_params={"periode": "202603"},
            product_type=ProductType.PASCABAYAR,
        )
        assert txn.params == {"periode": "202603"}
        assert txn.product_type == ProductType.PASCABAYAR

    async def test_product_name_defaults_to_code(self, lifecycle):
        txn = await lifecycle.create_purchase("T1", "081234567890", 2000)
        assert txn.product_name == "T1"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"price": 0},
            {"customer_number": "12"},
            {"product_code": ""},
            {"product_code": "PLN 50"},
        ],
    )
    async def test_invalid_input(self, make_purchase, lifecycle, overrides):
        with pytest.raises(ValidationError):
            await make_purchase(**overrides)
        assert await lifecycle.list_all() == []

    async def test_codes_are_unique(self, make_purchase):
        codes = {(await make_purchase()).transaction_code for _ in range(5)}
        assert len(codes) == 5


class TestApprove:
    async def test_gateway_success(self, lifecycle, make_purchase, gateway):
        txn = await make_purchase()

        result = await lifecycle.approve(txn.transaction_code, actor="ops")

        assert result.status == TransactionStatus.SUCCESS
        assert result.indotel_ref_id == "REF123"
        request = gateway.settle.call_args.args[0]
        assert request.reference_id == txn.transaction_code
        assert request.product_code == "PLN50"
        assert await event_types(lifecycle, txn.transaction_code) == [
            TransactionEventType.CREATED,
            TransactionEventType.APPROVED,
            TransactionEventType.SETTLED,
        ]

    async def test_gateway_failure_outcome_stays_processing(
        self, lifecycle, make_purchase, gateway
    ):
        gateway.settle.return_value = gateway_result(
            GatewayOutcome.FAILURE, provider_ref=None, message="Gateway reply pending"
        )
        txn = await make_purchase()

        result = await lifecycle.approve(txn.transaction_code)

        assert result.status == TransactionStatus.PROCESSING
        assert result.indotel_ref_id is None
        assert result.gateway_message == "Gateway reply pending"

    async def test_gateway_unreachable_stays_processing(self, lifecycle, make_purchase, gateway):
        gateway.settle.side_effect = GatewayUnreachable("Indotel topup request timed out")
        txn = await make_purchase()

        result = await lifecycle.approve(txn.transaction_code)

        assert result.status == TransactionStatus.PROCESSING
        assert result.indotel_ref_id is None
        assert TransactionEventType.GATEWAY_UNREACHABLE in await event_types(
            lifecycle, txn.transaction_code
        )

    async def test_gateway_rejection_fails_with_verbatim_message(
        self, lifecycle, make_purchase, gateway
    ):
        gateway.settle.side_effect = GatewayRejected(
            "Nomor meter tidak valid", raw_payload={"status": "GAGAL", "rc": "14"}
        )
        txn = await make_purchase()

        result = await lifecycle.approve(txn.transaction_code)

        assert result.status == TransactionStatus.FAILED
        assert result.gateway_message == "Nomor meter tidak valid"
        events = await lifecycle.events(txn.transaction_code)
        assert events[-1].event == TransactionEventType.GATEWAY_REJECTED
        assert events[-1].raw_payload == {"status": "GAGAL", "rc": "14"}

    async def test_pending_ref_is_recorded(self, lifecycle, make_purchase, gateway):
        gateway.settle.return_value = gateway_result(GatewayOutcome.FAILURE, provider_ref="Q42")
        txn = await make_purchase()

        result = await lifecycle.approve(txn.transaction_code)

        assert result.status == TransactionStatus.PROCESSING
        assert result.indotel_ref_id == "Q42"

    async def test_only_from_pending(self, lifecycle, make_purchase, gateway):
        txn = await make_purchase()
        await lifecycle.approve(txn.transaction_code)
        gateway.settle.reset_mock()

        with pytest.raises(InvalidTransition):
            await lifecycle.approve(txn.transaction_code)
        gateway.settle.assert_not_called()

    async def test_unknown_code(self, lifecycle):
        with pytest.raises(NotFound):
            await lifecycle.approve("TRX000000000000000000")

    async def test_without_gateway_nothing_is_written(self, session_factory, locks, make_purchase):
        txn = await make_purchase()
        no_gateway = TransactionLifecycle(session_factory, None, locks)

        with pytest.raises(GatewayNotConfigured):
            await no_gateway.approve(txn.transaction_code)
        assert (await no_gateway.get(txn.transaction_code)).status == TransactionStatus.PENDING

    async def test_busy_while_locked(self, lifecycle, make_purchase, locks):
        txn = await make_purchase()
        async with locks.hold(txn.transaction_code):
            with pytest.raises(TransactionBusy):
                await lifecycle.approve(txn.transaction_code)


class TestReject:
    async def test_from_pending(self, lifecycle, make_purchase):
        txn = await make_purchase()
        result = await lifecycle.reject(txn.transaction_code, actor="ops")
        assert result.status == TransactionStatus.REJECTED

    async def test_from_processing(self, lifecycle, make_purchase, gateway):
        gateway.settle.side_effect = GatewayUnreachable("down")
        txn = await make_purchase()
        await lifecycle.approve(txn.transaction_code)

        result = await lifecycle.reject(txn.transaction_code)
        assert result.status == TransactionStatus.REJECTED

    async def test_idempotent(self, lifecycle, make_purchase):
        txn = await make_purchase()
        await lifecycle.reject(txn.transaction_code)
        again = await lifecycle.reject(txn.transaction_code)

        assert again.status == TransactionStatus.REJECTED
        assert (await event_types(lifecycle, txn.transaction_code)).count(
            TransactionEventType.REJECTED
        ) == 1

    async def test_success_cannot_be_rejected(self, lifecycle, make_purchase):
        txn = await make_purchase()
        await lifecycle.approve(txn.transaction_code)

        with pytest.raises(InvalidTransition):
            await lifecycle.reject(txn.transaction_code)
        assert (await lifecycle.get(txn.transaction_code)).status == TransactionStatus.SUCCESS

    async def test_failed_cannot_be_rejected(self, lifecycle, make_purchase, gateway):
        gateway.settle.side_effect = GatewayRejected("gagal")
        txn = await make_purchase()
        await lifecycle.approve(txn.transaction_code)

        with pytest.raises(InvalidTransition):
            await lifecycle.reject(txn.transaction_code)


class TestRetry:
    async def test_retry_from_failed(self, lifecycle, make_purchase, gateway):
        gateway.settle.side_effect = GatewayRejected("Produk gangguan")
        txn = await make_purchase()
        assert (await lifecycle.approve(txn.transaction_code)).status == TransactionStatus.FAILED

        gateway.settle.side_effect = None
        gateway.settle.return_value = gateway_result(provider_ref="REF-RETRY")
        result = await lifecycle.retry(txn.transaction_code, actor="ops")

        assert result.status == TransactionStatus.SUCCESS
        assert result.indotel_ref_id == "REF-RETRY"
        assert gateway.settle.call_count == 2
        # Same idempotency key on both attempts
        refs = {call.args[0].reference_id for call in gateway.settle.call_args_list}
        assert refs == {txn.transaction_code}
        assert TransactionEventType.RETRIED in await event_types(lifecycle, txn.transaction_code)

    async def test_retry_processing_without_ref(self, lifecycle, make_purchase, gateway):
        gateway.settle.side_effect = GatewayUnreachable("down")
        txn = await make_purchase()
        await lifecycle.approve(txn.transaction_code)

        gateway.settle.side_effect = None
        result = await lifecycle.retry(txn.transaction_code)

        assert result.status == TransactionStatus.SUCCESS

    async def test_retry_processing_with_ref_refused(self, lifecycle, make_purchase, gateway):
        gateway.settle.return_value = gateway_result(GatewayOutcome.FAILURE, provider_ref="Q1")
        txn = await make_purchase()
        await lifecycle.approve(txn.transaction_code)

        with pytest.raises(InvalidTransition):
            await lifecycle.retry(txn.transaction_code)

    @pytest.mark.parametrize("final", ["pending", "rejected"])
    async def test_retry_from_other_states(self, lifecycle, make_purchase, final):
        txn = await make_purchase()
        if final == "rejected":
            await lifecycle.reject(txn.transaction_code)
        with pytest.raises(InvalidTransition):
            await lifecycle.retry(txn.transaction_code)


class TestReconcile:
    async def _processing_with_ref(self, lifecycle, make_purchase, gateway, ref="Q7"):
        gateway.settle.return_value = gateway_result(GatewayOutcome.FAILURE, provider_ref=ref)
        txn = await make_purchase()
        await lifecycle.approve(txn.transaction_code)
        return txn

    async def test_requires_reference(self, lifecycle, make_purchase, gateway):
        txn = await make_purchase()
        with pytest.raises(NoGatewayReference):
            await lifecycle.reconcile(txn.transaction_code)
        gateway.check_status.assert_not_called()

    async def test_settles_on_success(self, lifecycle, make_purchase, gateway):
        txn = await self._processing_with_ref(lifecycle, make_purchase, gateway)
        gateway.check_status.return_value = gateway_result(provider_ref="Q7")

        result = await lifecycle.reconcile(txn.transaction_code)

        gateway.check_status.assert_awaited_once_with("Q7")
        assert result.status == TransactionStatus.SUCCESS
        events = await event_types(lifecycle, txn.transaction_code)
        assert events[-1] == TransactionEventType.RECONCILED

    async def test_failure_outcome_leaves_processing(self, lifecycle, make_purchase, gateway):
        txn = await self._processing_with_ref(lifecycle, make_purchase, gateway)
        gateway.check_status.return_value = gateway_result(
            GatewayOutcome.FAILURE, provider_ref=None
        )

        result = await lifecycle.reconcile(txn.transaction_code)

        assert result.status == TransactionStatus.PROCESSING
        assert result.indotel_ref_id == "Q7"

    async def test_rejected_marks_failed(self, lifecycle, make_purchase, gateway):
        txn = await self._processing_with_ref(lifecycle, make_purchase, gateway)
        gateway.check_status.side_effect = GatewayRejected("Transaksi gagal")

        result = await lifecycle.reconcile(txn.transaction_code)

        assert result.status == TransactionStatus.FAILED
        assert result.gateway_message == "Transaksi gagal"

    async def test_unreachable_leaves_processing(self, lifecycle, make_purchase, gateway):
        txn = await self._processing_with_ref(lifecycle, make_purchase, gateway)
        gateway.check_status.side_effect = GatewayUnreachable("down")

        result = await lifecycle.reconcile(txn.transaction_code)

        assert result.status == TransactionStatus.PROCESSING

    async def test_new_ref_supersedes_old(self, lifecycle, make_purchase, gateway):
        txn = await self._processing_with_ref(lifecycle, make_purchase, gateway)
        gateway.check_status.return_value = gateway_result(provider_ref="FINAL-9")

        result = await lifecycle.reconcile(txn.transaction_code)

        assert result.indotel_ref_id == "FINAL-9"
        events = await lifecycle.events(txn.transaction_code)
        superseded = [e for e in events if e.event == TransactionEventType.REF_SUPERSEDED]
        assert len(superseded) == 1
        assert superseded[0].gateway_ref == "Q7"

    async def test_no_op_outside_processing(self, lifecycle, make_purchase, gateway):
        txn = await self._processing_with_ref(lifecycle, make_purchase, gateway)
        await lifecycle.reject(txn.transaction_code)

        result = await lifecycle.reconcile(txn.transaction_code)

        assert result.status == TransactionStatus.REJECTED
        gateway.check_status.assert_not_called()


class TestLateReplies:
    async def test_late_success_does_not_overwrite_rejection(
        self, lifecycle, make_purchase, gateway, session_factory
    ):
        txn = await make_purchase()
        code = txn.transaction_code

        async def settle_after_operator_rejects(request):
            # An operator decision lands while the gateway call is in flight
            async with transaction_scope(session_factory) as repo:
                await repo.update_status(code, TransactionStatus.REJECTED, actor="ops")
            return gateway_result(provider_ref="LATE")

        gateway.settle.side_effect = settle_after_operator_rejects

        result = await lifecycle.approve(code)

        assert result.status == TransactionStatus.REJECTED
        assert result.indotel_ref_id is None

    async def test_cancelled_caller_still_records_outcome(
        self, lifecycle, make_purchase, gateway
    ):
        txn = await make_purchase()
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_settle(request):
            started.set()
            await release.wait()
            return gateway_result(provider_ref="AFTER-CANCEL")

        gateway.settle.side_effect = slow_settle

        caller = asyncio.create_task(lifecycle.approve(txn.transaction_code))
        await started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        await asyncio.gather(*lifecycle._inflight)

        stored = await lifecycle.get(txn.transaction_code)
        assert stored.status == TransactionStatus.SUCCESS
        assert stored.indotel_ref_id == "AFTER-CANCEL"

    async def test_reject_waits_for_inflight_approve(self, lifecycle, make_purchase, gateway):
        txn = await make_purchase()
        code = txn.transaction_code
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_settle(request):
            started.set()
            await release.wait()
            return gateway_result(provider_ref="REF-FIRST")

        gateway.settle.side_effect = slow_settle

        approving = asyncio.create_task(lifecycle.approve(code, actor="ops-1"))
        await started.wait()
        rejecting = asyncio.create_task(lifecycle.reject(code, actor="ops-2"))
        await asyncio.sleep(0.05)
        assert not rejecting.done()
        assert (await lifecycle.get(code)).status == TransactionStatus.PROCESSING

        release.set()
        approved = await approving
        with pytest.raises(InvalidTransition):
            await rejecting

        assert approved.status == TransactionStatus.SUCCESS
        stored = await lifecycle.get(code)
        assert stored.status == TransactionStatus.SUCCESS
        assert stored.indotel_ref_id == "REF-FIRST"
        assert await event_types(lifecycle, code) == [
            TransactionEventType.CREATED,
            TransactionEventType.APPROVED,
            TransactionEventType.SETTLED,
        ]

    async def test_concurrent_approve_and_reject_never_interleave(
        self, lifecycle, make_purchase, gateway
    ):
        txn = await make_purchase()
        code = txn.transaction_code

        async def slow_settle(request):
            await asyncio.sleep(0.05)
            return gateway_result()

        gateway.settle.side_effect = slow_settle

        approved, rejected = await asyncio.gather(
            lifecycle.approve(code), lifecycle.reject(code), return_exceptions=True
        )

        outcomes = [approved, rejected]
        losers = [o for o in outcomes if isinstance(o, BaseException)]
        assert len(losers) == 1
        assert isinstance(losers[0], InvalidTransition)

        stored = await lifecycle.get(code)
        events = await event_types(lifecycle, code)
        if isinstance(rejected, BaseException):
            assert stored.status == TransactionStatus.SUCCESS
            assert events[-1] == TransactionEventType.SETTLED
            gateway.settle.assert_awaited_once()
        else:
            assert stored.status == TransactionStatus.REJECTED
            assert events == [TransactionEventType.CREATED, TransactionEventType.REJECTED]
            gateway.settle.assert_not_called()


class TestReads:
    async def test_list_all_in_insertion_order(self, lifecycle, make_purchase):
        first = await make_purchase()
        second = await make_purchase(product_code="T1", price=2000)
        codes = [t.transaction_code for t in await lifecycle.list_all()]
        assert codes == [first.transaction_code, second.transaction_code]

    async def test_list_by_status(self, lifecycle, make_purchase):
        keep = await make_purchase()
        gone = await make_purchase()
        await lifecycle.reject(gone.transaction_code)

        pending = await lifecycle.list_by_status(TransactionStatus.PENDING)
        assert [t.transaction_code for t in pending] == [keep.transaction_code]

    async def test_get_unknown(self, lifecycle):
        with pytest.raises(NotFound):
            await lifecycle.get("TRX-NOPE")
