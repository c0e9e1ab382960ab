"""Celery tasks for gateway reconciliation.

The sweep only *polls* the gateway for transactions that already carry a
gateway reference. It never settles again: a transaction stuck in
``processing`` without a reference needs an operator ``retry``.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from billpay.config import get_settings
from billpay.core.lifecycle import TransactionLifecycle
from billpay.dependencies import InfrastructureContainer
from billpay.exceptions import BillpayError
from billpay.models.transaction import TransactionStatus
from billpay.repositories.transaction_repository import transaction_scope
from billpay.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

SWEEP_ACTOR = "reconciliation-sweep"


async def sweep_processing(
    lifecycle: TransactionLifecycle,
    container: InfrastructureContainer,
    min_age: timedelta,
) -> dict[str, int]:
    """Reconcile every stale, referenced ``processing`` transaction once."""
    cutoff = datetime.now(UTC) - min_age
    async with transaction_scope(container.session_factory) as repo:
        candidates = [t.transaction_code for t in await repo.list_stale_processing(cutoff)]

    counts = {"checked": 0, "settled": 0, "failed": 0, "unchanged": 0, "errors": 0}
    for code in candidates:
        counts["checked"] += 1
        try:
            txn = await lifecycle.reconcile(code, actor=SWEEP_ACTOR)
        except BillpayError as e:
            # Busy or changed underneath us; the next sweep picks it up again
            logger.warning("Reconcile of %s skipped: %s", code, e)
            counts["errors"] += 1
            continue
        if txn.status == TransactionStatus.SUCCESS.value:
            counts["settled"] += 1
        elif txn.status == TransactionStatus.FAILED.value:
            counts["failed"] += 1
        else:
            counts["unchanged"] += 1
    return counts


async def _run_sweep() -> dict[str, int]:
    settings = get_settings()
    container = InfrastructureContainer.from_settings(settings)
    try:
        if container.gateway is None:
            logger.warning("Gateway not configured; skipping reconciliation sweep")
            return {"checked": 0}
        return await sweep_processing(
            container.lifecycle(),
            container,
            timedelta(minutes=settings.reconcile_min_age_minutes),
        )
    finally:
        await container.close()


@celery_app.task
def reconcile_processing_transactions() -> dict[str, int]:
    """
    Poll the gateway for ``processing`` transactions that have a reference.

    Scheduled every ``reconcile_interval_seconds``.
    """
    logger.info("Starting reconciliation sweep...")
    result = asyncio.run(_run_sweep())
    logger.info("Reconciliation sweep finished: %s", result)
    return result
