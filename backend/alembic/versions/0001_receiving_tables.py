"""Create reference, receiving and draft tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


QUANTITY = sa.Numeric(12, 3)


def upgrade() -> None:
    # ── Reference data ───────────────────────────────────────
    op.create_table(
        "clients",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone_number", sa.String(100)),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_clients_name", "clients", ["name"])

    op.create_table(
        "produce",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(100)),
        sa.Column("unit", sa.String(30), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_produce_name", "produce", ["name"])

    # ── Committed receiving records ──────────────────────────
    op.create_table(
        "receiving_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("idempotency_key", sa.String(100), nullable=False),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("is_dropped", sa.Boolean(), server_default=sa.false()),
        sa.Column("drop_time", sa.DateTime()),
        sa.Column("drop_notes", sa.Text()),
        sa.Column("has_returns", sa.Boolean(), server_default=sa.false()),
        sa.Column("item_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_receiving_records_idempotency_key", "receiving_records",
        ["idempotency_key"], unique=True,
    )
    op.create_index("ix_receiving_records_client_id", "receiving_records", ["client_id"])
    op.create_index("ix_receiving_records_created_at", "receiving_records", ["created_at"])

    op.create_table(
        "receiving_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "receiving_id", sa.String(36),
            sa.ForeignKey("receiving_records.id"), nullable=False,
        ),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("produce_id", sa.String(36), sa.ForeignKey("produce.id")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(30)),
        sa.Column("ordered_quantity", QUANTITY, nullable=False),
        sa.Column("received_quantity", QUANTITY, nullable=False),
        sa.Column("grade_a", QUANTITY, server_default="0"),
        sa.Column("grade_b", QUANTITY, server_default="0"),
        sa.Column("grade_c", QUANTITY, server_default="0"),
        sa.Column("returned_quantity", QUANTITY, server_default="0"),
        sa.Column("return_reason", sa.String(50)),
        sa.Column("return_notes", sa.Text()),
        sa.Column("field_notes", sa.Text()),
        sa.Column("grading_notes", sa.Text()),
        sa.UniqueConstraint("receiving_id", "line_number", name="uq_receiving_items_line"),
    )
    op.create_index("ix_receiving_items_receiving_id", "receiving_items", ["receiving_id"])
    op.create_index("ix_receiving_items_produce_id", "receiving_items", ["produce_id"])

    # ── Drafts ───────────────────────────────────────────────
    op.create_table(
        "receiving_drafts",
        sa.Column("draft_id", sa.String(36), primary_key=True),
        sa.Column("current_step", sa.Integer(), server_default="1"),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_receiving_drafts_updated_at", "receiving_drafts", ["updated_at"])


def downgrade() -> None:
    op.drop_table("receiving_drafts")
    op.drop_table("receiving_items")
    op.drop_table("receiving_records")
    op.drop_table("produce")
    op.drop_table("clients")
