"""Normalised request/result types for the billing gateway."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from billpay.models.transaction import ProductType


class GatewayOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class GatewayRequest(BaseModel):
    """A purchase intent in provider-neutral form.

    ``reference_id`` is the idempotency key sent to the provider; for
    settlement it is always the transaction code.
    """

    product_code: str
    customer_number: str
    product_type: ProductType = ProductType.PRABAYAR
    reference_id: str
    params: dict[str, Any] = Field(default_factory=dict)


class GatewayResult(BaseModel):
    """The only shape in which provider replies leave the gateway package."""

    outcome: GatewayOutcome
    provider_ref: str | None = None
    amount: int | None = None
    message: str = ""
    raw_payload: Any = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == GatewayOutcome.SUCCESS


class GatewayBalance(BaseModel):
    balance: int


class BillInquiryRequest(BaseModel):
    """Body of ``POST /gateway/inquiry``."""

    product_code: str = Field(..., min_length=1, max_length=32)
    customer_number: str = Field(..., min_length=1, max_length=40)
    periode: str | None = None
    tahun: str | None = None
