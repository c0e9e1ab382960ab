"""Domain exceptions.

The HTTP layer translates these into status codes in ``main.py``; nothing
below the API knows about HTTP.
"""

from typing import Any


class BillpayError(Exception):
    """Base class for all domain errors."""


class ValidationError(BillpayError):
    """Purchase input is missing required fields or is malformed."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        self.errors = errors or []
        super().__init__(message)


class NotFound(BillpayError):
    """No transaction with the given id or code."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Transaction '{key}' not found")


class InvalidTransition(BillpayError):
    """The requested status change is not allowed from the current status."""

    def __init__(self, code: str, current: str, target: str, allowed: set[str] | None = None):
        self.code = code
        self.current = current
        self.target = target
        message = f"Cannot transition transaction {code} from '{current}' to '{target}'"
        if allowed is not None:
            allowed_str = ", ".join(sorted(allowed)) if allowed else "none (terminal state)"
            message += f". Allowed transitions: {{{allowed_str}}}"
        super().__init__(message)


class NoGatewayReference(BillpayError):
    """Reconciliation requested before any gateway reference was recorded."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Transaction {code} has no gateway reference to reconcile")


class TransactionBusy(BillpayError):
    """Another status change for the same transaction is still in flight."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Transaction {code} is being updated, try again shortly")


class TooLarge(BillpayError):
    """Uploaded payment proof exceeds the size limit."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Payment proof is {size} bytes, limit is {limit} bytes")


class UnsupportedMediaType(BillpayError):
    """Uploaded payment proof is not an image."""

    def __init__(self, content_type: str | None):
        self.content_type = content_type
        super().__init__(f"Only image files are allowed, got '{content_type or 'unknown'}'")


class GatewayError(BillpayError):
    """Base class for billing gateway failures."""

    def __init__(self, message: str, raw_payload: Any = None):
        self.message = message
        self.raw_payload = raw_payload
        super().__init__(message)


class GatewayUnreachable(GatewayError):
    """Transport-level failure talking to the provider (retryable by the caller)."""


class GatewayRejected(GatewayError):
    """The provider reported a business failure; ``message`` is verbatim."""


class GatewayNotConfigured(BillpayError):
    """Gateway credentials are missing from the configuration."""

    def __init__(self) -> None:
        super().__init__("Billing gateway is not configured")
