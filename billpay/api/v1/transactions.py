"""Transactions API endpoints.

Customer-facing: create a purchase, look it up, upload payment proof.
Back-office: list, approve, reject, retry and reconcile. Operator actions
carry an ``X-Operator`` label that is written to the audit trail; there is
no authentication in front of these routes.
"""

from math import ceil
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status
from fastapi_filter import FilterDepends

from billpay.core.proof import ProofUpload
from billpay.dependencies import Catalog
from billpay.filters.transaction import TransactionFilter
from billpay.models.transaction import TransactionStatus
from billpay.providers import Lifecycle, ProofSvc, TransactionRepo
from billpay.rate_limit import limiter, purchase_limit
from billpay.schemas.transaction import (
    PaymentProofResponse,
    PurchaseRequest,
    TransactionEventResponse,
    TransactionListResponse,
    TransactionResponse,
)
from billpay.utils.audit import audit_logged, get_operator

router = APIRouter()

Operator = Annotated[str, Depends(get_operator)]


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(purchase_limit)
async def create_transaction(
    request: Request,
    body: PurchaseRequest,
    lifecycle: Lifecycle,
    catalog: Catalog,
) -> TransactionResponse:
    """Create a ``pending`` purchase for a catalog product.

    The product must exist; its name, category and type are copied onto the
    transaction. The price is taken from the request as shown to the customer.
    """
    product = await catalog.get_product(body.product_code)
    if product is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Product '{body.product_code}' not found",
        )

    txn = await lifecycle.create_purchase(
        product.code,
        body.customer_number,
        body.price,
        body.category_params(),
        product_name=product.name,
        category_code=product.category_code,
        product_type=product.type,
        customer_id=body.customer_id,
    )
    return TransactionResponse.model_validate(txn)


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    repo: TransactionRepo,
    filters: TransactionFilter = FilterDepends(TransactionFilter),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=100),
) -> TransactionListResponse:
    """
    List transactions with optional filtering and sorting.

    - **status**: pending, processing, success, failed, rejected
    - **product_code / category_code / customer_number**: exact match
    - **created_at__gte / created_at__lte**: creation date range
    - **order_by**: sort fields (e.g. ``-created_at``)
    """
    txns, total = await repo.list_filtered(filters, page=page, size=size)
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in txns],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if size > 0 else 0,
    )


@router.get("/pending", response_model=list[TransactionResponse])
async def list_pending(lifecycle: Lifecycle) -> list[TransactionResponse]:
    """Purchases waiting for an operator decision, oldest first."""
    txns = await lifecycle.list_by_status(TransactionStatus.PENDING)
    return [TransactionResponse.model_validate(t) for t in txns]


@router.get("/{code}", response_model=TransactionResponse)
async def get_transaction(code: str, lifecycle: Lifecycle) -> TransactionResponse:
    return TransactionResponse.model_validate(await lifecycle.get(code))


@router.get("/{code}/events", response_model=list[TransactionEventResponse])
async def list_transaction_events(
    code: str, lifecycle: Lifecycle
) -> list[TransactionEventResponse]:
    """Audit trail of a transaction, oldest first."""
    events = await lifecycle.events(code)
    return [TransactionEventResponse.model_validate(e) for e in events]


@router.post("/{code}/payment-proof", response_model=PaymentProofResponse)
async def upload_payment_proof(
    code: str,
    proofs: ProofSvc,
    payment_proof: UploadFile = File(...),
) -> PaymentProofResponse:
    """Attach a payment-proof image (max 5 MB) to a ``pending`` purchase."""
    upload = ProofUpload(
        filename=payment_proof.filename,
        content_type=payment_proof.content_type,
        data=await payment_proof.read(proofs.max_size + 1),
    )
    txn = await proofs.attach(code, upload)
    return PaymentProofResponse(
        message="Payment proof uploaded successfully",
        payment_proof_url=txn.payment_proof_url or "",
        transaction=TransactionResponse.model_validate(txn),
    )


@router.post(
    "/{code}/approve",
    response_model=TransactionResponse,
    dependencies=[Depends(audit_logged("approve_transaction"))],
)
async def approve_transaction(
    code: str, lifecycle: Lifecycle, operator: Operator
) -> TransactionResponse:
    """
    Approve a ``pending`` purchase and settle it with the gateway.

    The response reflects the gateway outcome:
    - **success**: settled, ``indotel_ref_id`` recorded
    - **failed**: rejected by the provider, ``gateway_message`` holds its reason
    - **processing**: no definite answer; needs follow-up via reconcile or retry
    """
    return TransactionResponse.model_validate(await lifecycle.approve(code, actor=operator))


@router.post(
    "/{code}/reject",
    response_model=TransactionResponse,
    dependencies=[Depends(audit_logged("reject_transaction"))],
)
async def reject_transaction(
    code: str, lifecycle: Lifecycle, operator: Operator
) -> TransactionResponse:
    return TransactionResponse.model_validate(await lifecycle.reject(code, actor=operator))


@router.post(
    "/{code}/retry",
    response_model=TransactionResponse,
    dependencies=[Depends(audit_logged("retry_transaction"))],
)
async def retry_transaction(
    code: str, lifecycle: Lifecycle, operator: Operator
) -> TransactionResponse:
    """Re-settle a ``failed`` purchase, or a ``processing`` one without gateway ref."""
    return TransactionResponse.model_validate(await lifecycle.retry(code, actor=operator))


@router.post(
    "/{code}/reconcile",
    response_model=TransactionResponse,
    dependencies=[Depends(audit_logged("reconcile_transaction"))],
)
async def reconcile_transaction(
    code: str, lifecycle: Lifecycle, operator: Operator
) -> TransactionResponse:
    """Ask the gateway for the final outcome of a ``processing`` purchase."""
    return TransactionResponse.model_validate(await lifecycle.reconcile(code, actor=operator))
