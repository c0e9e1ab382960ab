"""Blob storage backends."""
from billpay.storage.proof_storage import LocalProofStorage

__all__ = [
    "LocalProofStorage",
]
