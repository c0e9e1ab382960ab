"""Protocol definitions for the collaborators of the lifecycle core.

These protocols enable type-safe mocking in tests and decouple service
layer code from concrete SQLAlchemy / HTTP implementations.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Protocol

from billpay.models.transaction import (
    Transaction,
    TransactionEvent,
    TransactionEventType,
    TransactionStatus,
)
from billpay.schemas.catalog import Category, Product
from billpay.schemas.gateway import GatewayBalance, GatewayRequest, GatewayResult
from billpay.schemas.transaction import PurchaseCreate


class TransactionStoreProtocol(Protocol):
    """Interface for durable transaction storage."""

    async def create(
        self, data: PurchaseCreate | Mapping[str, Any], *, actor: str | None = None
    ) -> Transaction: ...

    async def get(self, transaction_id: str) -> Transaction: ...

    async def get_by_code(self, code: str) -> Transaction: ...

    async def list_all(self) -> list[Transaction]: ...

    async def list_by_status(self, status: TransactionStatus | str) -> list[Transaction]: ...

    async def list_stale_processing(self, older_than: datetime) -> list[Transaction]: ...

    async def list_events(self, code: str) -> list[TransactionEvent]: ...

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
    ) -> Transaction: ...

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
    ) -> Transaction: ...

    async def attach_proof(
        self, code: str, proof_ref: str, *, actor: str | None = None
    ) -> Transaction: ...


class GatewayClientProtocol(Protocol):
    """Interface for the external billing provider.

    Implementations must normalise every reply into ``GatewayResult`` and
    raise only ``GatewayUnreachable`` / ``GatewayRejected``.
    """

    async def inquire(self, request: GatewayRequest) -> GatewayResult: ...

    async def settle(self, request: GatewayRequest) -> GatewayResult: ...

    async def check_status(self, provider_ref: str) -> GatewayResult: ...

    async def check_balance(self) -> GatewayBalance: ...


class CatalogProviderProtocol(Protocol):
    """Read-only product catalog."""

    async def list_categories(self) -> list[Category]: ...

    async def list_products(
        self, category_code: str, product_type: str | None = None
    ) -> list[Product]: ...

    async def get_product(self, code: str) -> Product | None: ...


class ProofStorageProtocol(Protocol):
    """Blob storage for payment-proof bytes."""

    async def save(self, code: str, filename: str | None, data: bytes) -> str: ...
