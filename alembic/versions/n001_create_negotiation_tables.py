"""negotiation tables

Revision ID: n001
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "n001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- bids (read-only mirror of the bidding service) ---
    op.create_table(
        "bids",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("rfq_id", sa.String(), nullable=False),
        sa.Column("buyer_id", sa.String(), nullable=False),
        sa.Column("supplier_id", sa.String(), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column(
            "currency",
            sa.String(3),
            nullable=False,
            server_default=sa.text("'USD'"),
        ),
        sa.Column("delivery_days", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_bids_rfq_id", "bids", ["rfq_id"])
    op.create_index("ix_bids_buyer_id", "bids", ["buyer_id"])
    op.create_index("ix_bids_supplier_id", "bids", ["supplier_id"])

    # --- negotiations ---
    op.create_table(
        "negotiations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("bid_id", sa.String(), sa.ForeignKey("bids.id"), nullable=False),
        sa.Column("rfq_id", sa.String(), nullable=False),
        sa.Column("buyer_id", sa.String(), nullable=False),
        sa.Column("supplier_id", sa.String(), nullable=False),
        sa.Column("initiator_id", sa.String(), nullable=False),
        sa.Column(
            "status",
            sa.String(),
            nullable=False,
            server_default=sa.text("'open'"),
        ),
        sa.Column("closed_reason", sa.String(), nullable=True),
        sa.Column("purchase_order_id", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_negotiations_bid_id", "negotiations", ["bid_id"], unique=True)
    op.create_index("ix_negotiations_rfq_id", "negotiations", ["rfq_id"])
    op.create_index("ix_negotiations_buyer_id", "negotiations", ["buyer_id"])
    op.create_index("ix_negotiations_supplier_id", "negotiations", ["supplier_id"])

    # --- negotiation_messages ---
    op.create_table(
        "negotiation_messages",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "negotiation_id",
            sa.String(),
            sa.ForeignKey("negotiations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.String(), nullable=False),
        sa.Column("message_type", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("offer_data", sa.JSON(), nullable=True),
        sa.Column("offer_status", sa.String(), nullable=True),
        sa.Column("resolved_by_id", sa.String(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("in_reply_to_id", sa.String(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "negotiation_id", "sequence", name="uq_negotiation_message_sequence"
        ),
    )
    op.create_index(
        "ix_negotiation_messages_negotiation_id",
        "negotiation_messages",
        ["negotiation_id"],
    )

    # --- purchase_orders ---
    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("po_number", sa.String(), nullable=False, unique=True),
        sa.Column(
            "negotiation_id",
            sa.String(),
            sa.ForeignKey("negotiations.id"),
            nullable=False,
        ),
        sa.Column("bid_id", sa.String(), nullable=False),
        sa.Column("rfq_id", sa.String(), nullable=False),
        sa.Column("buyer_id", sa.String(), nullable=False),
        sa.Column("supplier_id", sa.String(), nullable=False),
        sa.Column("created_by_id", sa.String(), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column(
            "currency",
            sa.String(3),
            nullable=False,
            server_default=sa.text("'USD'"),
        ),
        sa.Column("delivery_terms", sa.Text(), nullable=True),
        sa.Column("delivery_days", sa.Integer(), nullable=True),
        sa.Column("delivery_address", sa.Text(), nullable=False),
        sa.Column("payment_terms", sa.String(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.String(),
            nullable=False,
            server_default=sa.text("'draft'"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    # One purchase order per negotiation
    op.create_index(
        "ix_purchase_orders_negotiation_id",
        "purchase_orders",
        ["negotiation_id"],
        unique=True,
    )
    op.create_index("ix_purchase_orders_buyer_id", "purchase_orders", ["buyer_id"])
    op.create_index("ix_purchase_orders_supplier_id", "purchase_orders", ["supplier_id"])


def downgrade() -> None:
    op.drop_table("purchase_orders")
    op.drop_table("negotiation_messages")
    op.drop_table("negotiations")
    op.drop_table("bids")
