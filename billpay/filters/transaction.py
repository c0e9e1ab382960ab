"""Declarative filter for transactions."""

from datetime import datetime
from typing import Optional

from fastapi_filter.contrib.sqlalchemy import Filter

from billpay.models.transaction import Transaction


class TransactionFilter(Filter):
    """Query-param filter for the ``GET /transactions`` endpoint."""

    status: Optional[str] = None
    product_code: Optional[str] = None
    category_code: Optional[str] = None
    customer_number: Optional[str] = None
    created_at__gte: Optional[datetime] = None
    created_at__lte: Optional[datetime] = None
    order_by: Optional[list[str]] = None

    class Constants(Filter.Constants):
        model = Transaction
