"""Blob storage for payment-proof files."""

import asyncio
import logging
import os
import time
from pathlib import Path

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads"
DEFAULT_EXTENSION = ".bin"


def proof_filename(code: str, original: str | None, millis: int | None = None) -> str:
    """``payment-{code}-{millis}{ext}``; the extension comes from the upload."""
    millis = millis if millis is not None else int(time.time() * 1000)
    ext = os.path.splitext(original or "")[1].lower() or DEFAULT_EXTENSION
    return f"payment-{code}-{millis}{ext}"


class LocalProofStorage:
    """Writes proofs into ``upload_dir``, which is served at ``/uploads``."""

    def __init__(self, upload_dir: str | Path):
        self.upload_dir = Path(upload_dir)

    def ensure_dir(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def _write(self, filename: str, data: bytes) -> None:
        self.ensure_dir()
        (self.upload_dir / filename).write_bytes(data)

    async def save(self, code: str, filename: str | None, data: bytes) -> str:
        """Persist *data* and return its public reference."""
        name = proof_filename(code, filename)
        await asyncio.to_thread(self._write, name, data)
        logger.debug("Stored %d bytes as %s", len(data), name)
        return f"{URL_PREFIX}/{name}"
