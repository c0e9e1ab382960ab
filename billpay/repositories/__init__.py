"""Database repositories for data access."""
from billpay.repositories.transaction_repository import TransactionRepository, transaction_scope

__all__ = [
    "TransactionRepository",
    "transaction_scope",
]
