"""Payment-proof attachment.

Uploads are checked for size and media type before anything is read from
the database or written to storage, so a rejected upload has no side
effects at all.
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from billpay.core.locks import TransactionLocks
from billpay.exceptions import InvalidTransition, TooLarge, UnsupportedMediaType
from billpay.models.transaction import Transaction, TransactionStatus
from billpay.repositories.protocols import ProofStorageProtocol, TransactionStoreProtocol

logger = logging.getLogger(__name__)

MAX_PROOF_SIZE_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class ProofUpload:
    """An uploaded file as received from the client."""

    filename: str | None
    content_type: str | None
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


StoreScope = Callable[[], AbstractAsyncContextManager[TransactionStoreProtocol]]


class PaymentProofService:
    """Validates proof uploads and attaches the stored reference."""

    def __init__(
        self,
        store_scope: StoreScope,
        storage: ProofStorageProtocol,
        locks: TransactionLocks,
        max_size: int = MAX_PROOF_SIZE_BYTES,
    ):
        self._store_scope = store_scope
        self._storage = storage
        self._locks = locks
        self.max_size = max_size

    def validate(self, size: int, content_type: str | None) -> None:
        """Raise ``TooLarge`` or ``UnsupportedMediaType``; pure."""
        if size > self.max_size:
            raise TooLarge(size, self.max_size)
        if not content_type or not content_type.lower().startswith("image/"):
            raise UnsupportedMediaType(content_type)

    async def attach(self, code: str, upload: ProofUpload, actor: str | None = None) -> Transaction:
        """Store *upload* and attach its reference to a ``pending`` transaction.

        Raises:
            TooLarge: If the file exceeds ``max_size``.
            UnsupportedMediaType: If the file is not an image.
            NotFound: If no such transaction exists.
            InvalidTransition: If the transaction is no longer ``pending``.
        """
        self.validate(upload.size, upload.content_type)
        async with self._locks.hold(code):
            async with self._store_scope() as store:
                await self._ensure_pending(store, code)
                proof_ref = await self._storage.save(code, upload.filename, upload.data)
                txn = await store.attach_proof(code, proof_ref, actor=actor)
        logger.info("Attached payment proof %s to %s", proof_ref, code)
        return txn

    async def attach_reference(
        self,
        code: str,
        proof_ref: str,
        *,
        size: int,
        content_type: str | None,
        actor: str | None = None,
    ) -> Transaction:
        """Attach a reference to a blob that is already stored elsewhere.

        Raises:
            TooLarge: If *size* exceeds ``max_size``.
            UnsupportedMediaType: If *content_type* is not an image type.
            NotFound: If no such transaction exists.
            InvalidTransition: If the transaction is no longer ``pending``.
        """
        self.validate(size, content_type)
        async with self._locks.hold(code):
            async with self._store_scope() as store:
                await self._ensure_pending(store, code)
                return await store.attach_proof(code, proof_ref, actor=actor)

    @staticmethod
    async def _ensure_pending(store: TransactionStoreProtocol, code: str) -> None:
        txn = await store.get_by_code(code)
        if txn.status != TransactionStatus.PENDING.value:
            raise InvalidTransition(code, txn.status, TransactionStatus.PENDING.value)
