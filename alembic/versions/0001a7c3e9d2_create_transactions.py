"""create_transactions

Revision ID: 0001a7c3e9d2
Revises:
Create Date: 2026-10-18 09:00:00.000000

Creates the transactions table and its append-only audit trail,
transaction_events.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001a7c3e9d2"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRANSACTION_STATUSES = ("pending", "processing", "success", "failed", "rejected")
PRODUCT_TYPES = ("PRABAYAR", "PASCABAYAR")
EVENT_TYPES = (
    "created",
    "proof_attached",
    "approved",
    "settled",
    "gateway_rejected",
    "gateway_unreachable",
    "gateway_pending",
    "rejected",
    "retried",
    "reconciled",
    "ref_superseded",
)


def _enum(values: tuple[str, ...], name: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True)


def upgrade() -> None:
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("transaction_code", sa.String(32), nullable=False),
        sa.Column("product_code", sa.String(32), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("category_code", sa.String(32), nullable=True),
        sa.Column(
            "product_type",
            _enum(PRODUCT_TYPES, "product_type"),
            nullable=False,
            server_default="PRABAYAR",
        ),
        sa.Column("customer_id", sa.String(100), nullable=True),
        sa.Column("customer_number", sa.String(32), nullable=False),
        sa.Column(
            "params",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("total_price", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            _enum(TRANSACTION_STATUSES, "transaction_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("payment_proof_url", sa.String(500), nullable=True),
        sa.Column("indotel_ref_id", sa.String(100), nullable=True),
        sa.Column("gateway_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("price > 0", name="ck_txn_price_positive"),
        sa.CheckConstraint("total_price > 0", name="ck_txn_total_price_positive"),
    )
    op.create_index(
        "ix_transactions_transaction_code", "transactions", ["transaction_code"], unique=True
    )
    op.create_index("ix_transactions_customer_number", "transactions", ["customer_number"])
    op.create_index("idx_txn_status_created", "transactions", ["status", "created_at"])

    op.create_table(
        "transaction_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "transaction_id",
            sa.String(36),
            sa.ForeignKey("transactions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("event", _enum(EVENT_TYPES, "transaction_event_type"), nullable=False),
        sa.Column("from_status", sa.String(20), nullable=True),
        sa.Column("to_status", sa.String(20), nullable=True),
        sa.Column("gateway_ref", sa.String(100), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(), nullable=True),
        sa.Column("actor", sa.String(100), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_transaction_events_transaction_id", "transaction_events", ["transaction_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_transaction_events_transaction_id", table_name="transaction_events")
    op.drop_table("transaction_events")
    op.drop_index("idx_txn_status_created", table_name="transactions")
    op.drop_index("ix_transactions_customer_number", table_name="transactions")
    op.drop_index("ix_transactions_transaction_code", table_name="transactions")
    op.drop_table("transactions")
