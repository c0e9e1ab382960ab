"""Declarative query filters (fastapi-filter)."""

from .transaction import TransactionFilter

__all__ = ["TransactionFilter"]
