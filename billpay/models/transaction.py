"""Transaction and transaction event database models."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from billpay.models.base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow


class TransactionStatus(StrEnum):
    """Purchase status."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    REJECTED = "rejected"


class ProductType(StrEnum):
    """Provider product type."""

    PRABAYAR = "PRABAYAR"  # prepaid, settled in one step
    PASCABAYAR = "PASCABAYAR"  # postpaid, inquiry before payment


class TransactionEventType(StrEnum):
    """Kinds of entries in the transaction audit trail."""

    CREATED = "created"
    PROOF_ATTACHED = "proof_attached"
    APPROVED = "approved"
    SETTLED = "settled"
    GATEWAY_REJECTED = "gateway_rejected"
    GATEWAY_UNREACHABLE = "gateway_unreachable"
    GATEWAY_PENDING = "gateway_pending"
    REJECTED = "rejected"
    RETRIED = "retried"
    RECONCILED = "reconciled"
    REF_SUPERSEDED = "ref_superseded"


def _enum_column(enum_cls: type[StrEnum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        create_constraint=True,
        native_enum=False,
        values_callable=lambda e: [member.value for member in e],
    )


class Transaction(Base, UUIDMixin, TimestampMixin):
    """One purchase attempt. Rows are never deleted."""

    __tablename__ = "transactions"

    # Human-legible join key with the gateway (e.g. TRX250301142233A1B2C3)
    transaction_code: Mapped[str] = mapped_column(
        String(32), unique=True, nullable=False, index=True
    )

    # Product reference
    product_code: Mapped[str] = mapped_column(String(32), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    product_type: Mapped[str] = mapped_column(
        _enum_column(ProductType, "product_type"),
        default=ProductType.PRABAYAR.value,
        nullable=False,
    )

    # Customer reference
    customer_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    # Category-specific parameters (periode, tahun, nominal, ...), read-only
    params: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)

    # Money, in whole rupiah
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        _enum_column(TransactionStatus, "transaction_status"),
        default=TransactionStatus.PENDING.value,
        nullable=False,
    )

    payment_proof_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Gateway evidence
    indotel_ref_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gateway_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_txn_price_positive"),
        CheckConstraint("total_price > 0", name="ck_txn_total_price_positive"),
        Index("idx_txn_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.transaction_code}: {self.product_code} status={self.status}>"


class TransactionEvent(Base):
    """Append-only audit entry for a transaction mutation."""

    __tablename__ = "transaction_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("transactions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    event: Mapped[str] = mapped_column(
        _enum_column(TransactionEventType, "transaction_event_type"), nullable=False
    )
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    gateway_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_payload: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    actor: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<TransactionEvent {self.event}: {self.from_status}->{self.to_status}>"
