"""Database models package."""

from billpay.models.base import Base
from billpay.models.transaction import (
    ProductType,
    Transaction,
    TransactionEvent,
    TransactionEventType,
    TransactionStatus,
)

__all__ = [
    # Base
    "Base",
    # Models
    "Transaction",
    "TransactionEvent",
    # Enums
    "ProductType",
    "TransactionEventType",
    "TransactionStatus",
]
