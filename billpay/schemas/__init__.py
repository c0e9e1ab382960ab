"""Pydantic schemas package."""
from billpay.schemas.catalog import Category, Product
from billpay.schemas.gateway import (
    BillInquiryRequest,
    GatewayBalance,
    GatewayOutcome,
    GatewayRequest,
    GatewayResult,
)
from billpay.schemas.transaction import (
    PaymentProofResponse,
    PurchaseCreate,
    PurchaseRequest,
    TransactionEventResponse,
    TransactionListResponse,
    TransactionResponse,
)

__all__ = [
    # Catalog schemas
    "Category",
    "Product",
    # Gateway schemas
    "BillInquiryRequest",
    "GatewayBalance",
    "GatewayOutcome",
    "GatewayRequest",
    "GatewayResult",
    # Transaction schemas
    "PurchaseCreate",
    "PurchaseRequest",
    "TransactionResponse",
    "TransactionListResponse",
    "TransactionEventResponse",
    "PaymentProofResponse",
]
