"""Pydantic schemas for transactions."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from billpay.constants import CUSTOMER_NUMBER_PATTERN, PRODUCT_CODE_PATTERN
from billpay.models.transaction import ProductType


class PurchaseCreate(BaseModel):
    """Validated purchase intent, as handed to the transaction store."""

    product_code: str = Field(..., pattern=PRODUCT_CODE_PATTERN)
    product_name: str = Field(..., min_length=1, max_length=255)
    category_code: str | None = Field(None, max_length=32)
    product_type: ProductType = ProductType.PRABAYAR
    customer_number: str = Field(..., pattern=CUSTOMER_NUMBER_PATTERN)
    customer_id: str | None = Field(None, max_length=100)
    price: int = Field(..., gt=0)
    total_price: int | None = Field(None, gt=0)
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("customer_number", mode="before")
    @classmethod
    def strip_customer_number(cls, v: Any) -> Any:
        """Customers paste numbers with spaces and dashes (0812-3456-7890)."""
        if isinstance(v, str):
            return v.replace(" ", "").replace("-", "")
        return v

    @model_validator(mode="after")
    def default_total_price(self) -> "PurchaseCreate":
        if self.total_price is None:
            self.total_price = self.price
        return self


class PurchaseRequest(BaseModel):
    """Body of ``POST /transactions``. Product details come from the catalog."""

    product_code: str = Field(..., min_length=1, max_length=32)
    customer_number: str = Field(..., min_length=1, max_length=40)
    customer_id: str | None = Field(None, max_length=100)
    price: int = Field(..., gt=0)
    periode: str | None = Field(None, max_length=20)
    tahun: str | None = Field(None, max_length=4)
    nominal: int | None = Field(None, gt=0)

    def category_params(self) -> dict[str, Any]:
        """Category-specific parameters that were actually supplied."""
        return {
            key: value
            for key, value in (
                ("periode", self.periode),
                ("tahun", self.tahun),
                ("nominal", self.nominal),
            )
            if value is not None
        }


class TransactionResponse(BaseModel):
    """Schema for transaction response."""

    id: str
    transaction_code: str
    product_code: str
    product_name: str
    category_code: str | None = None
    product_type: str
    customer_id: str | None = None
    customer_number: str
    params: dict[str, Any]
    price: int
    total_price: int
    status: str
    payment_proof_url: str | None = None
    indotel_ref_id: str | None = None
    gateway_message: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    """Schema for paginated transaction list."""

    items: list[TransactionResponse]
    total: int
    page: int
    size: int
    pages: int


class TransactionEventResponse(BaseModel):
    """One audit trail entry."""

    id: int
    event: str
    from_status: str | None
    to_status: str | None
    gateway_ref: str | None
    message: str | None
    raw_payload: Any = None
    actor: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentProofResponse(BaseModel):
    """Response after a successful proof upload."""

    message: str
    payment_proof_url: str
    transaction: TransactionResponse
