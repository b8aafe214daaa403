"""initial inventory ledger and requisitions

Revision ID: 3f1a9c2d7b10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer, "sqlite")

item_status = sa.Enum("active", "discontinued", name="item_status")
transaction_type = sa.Enum("in", "out", name="transaction_type")
reference_type = sa.Enum("manual", "requisition", name="reference_type")
requisition_priority = sa.Enum("low", "medium", "high", "urgent", name="requisition_priority")
requisition_status = sa.Enum(
    "pending", "approved", "rejected", "ordered", "received", "cancelled",
    name="requisition_status",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "identifier_counters",
        sa.Column("scope", sa.String(32), primary_key=True),
        sa.Column("value", sa.BigInteger, nullable=False),
        sa.CheckConstraint("value >= 0", name="ck_identifier_counter_nonneg"),
    )

    op.create_table(
        "inventory",
        sa.Column("id", ID_TYPE, primary_key=True),
        sa.Column("item_code", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("category", sa.String(100)),
        sa.Column("subcategory", sa.String(100)),
        sa.Column("unit", sa.String(32), nullable=False),
        sa.Column("location", sa.String(128)),
        sa.Column("current_quantity", sa.Integer, nullable=False),
        sa.Column("minimum_quantity", sa.Integer, nullable=False),
        sa.Column("maximum_quantity", sa.Integer),
        sa.Column("reorder_quantity", sa.Integer, nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_value", sa.Numeric(16, 2), nullable=False),
        sa.Column("status", item_status, nullable=False),
        sa.Column("vertical_id", sa.BigInteger),
        sa.Column("vendor_id", sa.BigInteger),
        sa.Column("created_by", sa.BigInteger),
        sa.Column("last_restocked_date", sa.DateTime(timezone=True)),
        sa.Column("last_used_date", sa.DateTime(timezone=True)),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("minimum_quantity >= 0", name="ck_inventory_min_nonneg"),
        sa.CheckConstraint("reorder_quantity >= 0", name="ck_inventory_reorder_nonneg"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_inventory_unit_cost_nonneg"),
    )
    op.create_index("ix_inventory_category", "inventory", ["category"])
    op.create_index("ix_inventory_vertical_id", "inventory", ["vertical_id"])

    op.create_table(
        "stock_transactions",
        sa.Column("id", ID_TYPE, primary_key=True),
        sa.Column("transaction_number", sa.String(32), nullable=False, unique=True),
        sa.Column(
            "inventory_id",
            ID_TYPE,
            sa.ForeignKey("inventory.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("transaction_type", transaction_type, nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("previous_quantity", sa.Integer, nullable=False),
        sa.Column("new_quantity", sa.Integer, nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("reference_type", reference_type, nullable=False),
        sa.Column("reference_id", sa.BigInteger),
        sa.Column("reason", sa.String(255)),
        sa.Column("performed_by", sa.BigInteger),
        sa.Column("vertical_id", sa.BigInteger),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_stock_transaction_qty_pos"),
    )
    op.create_index("ix_stock_transactions_inventory_id", "stock_transactions", ["inventory_id"])
    op.create_index("ix_stock_transactions_reference", "stock_transactions", ["reference_type", "reference_id"])

    op.create_table(
        "requisitions",
        sa.Column("id", ID_TYPE, primary_key=True),
        sa.Column("requisition_number", sa.String(32), nullable=False, unique=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("purpose", sa.Text),
        sa.Column("department", sa.String(128)),
        sa.Column("notes", sa.Text),
        sa.Column("vertical_id", sa.BigInteger),
        sa.Column("program_id", sa.BigInteger),
        sa.Column("requested_by", sa.BigInteger),
        sa.Column("priority", requisition_priority, nullable=False),
        sa.Column("status", requisition_status, nullable=False),
        sa.Column("estimated_total", sa.Numeric(16, 2), nullable=False),
        sa.Column("approved_by", sa.BigInteger),
        sa.Column("approved_date", sa.DateTime(timezone=True)),
        sa.Column("rejected_by", sa.BigInteger),
        sa.Column("rejected_date", sa.DateTime(timezone=True)),
        sa.Column("rejection_reason", sa.Text),
        sa.Column("ordered_by", sa.BigInteger),
        sa.Column("ordered_date", sa.DateTime(timezone=True)),
        sa.Column("vendor_id", sa.BigInteger),
        sa.Column("po_number", sa.String(64)),
        sa.Column("received_by", sa.BigInteger),
        sa.Column("received_date", sa.DateTime(timezone=True)),
        sa.Column("cancelled_by", sa.BigInteger),
        sa.Column("cancelled_date", sa.DateTime(timezone=True)),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_requisitions_vertical_id", "requisitions", ["vertical_id"])
    op.create_index("ix_requisitions_status", "requisitions", ["status"])

    op.create_table(
        "requisition_items",
        sa.Column("id", ID_TYPE, primary_key=True),
        sa.Column(
            "requisition_id",
            ID_TYPE,
            sa.ForeignKey("requisitions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("item_code", sa.String(64)),
        sa.Column("description", sa.Text),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit", sa.String(32)),
        sa.Column("estimated_unit_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("actual_unit_cost", sa.Numeric(14, 2)),
        sa.Column("received_quantity", sa.Integer),
        sa.Column("total_cost", sa.Numeric(16, 2), nullable=False),
        sa.Column("inventory_id", ID_TYPE, sa.ForeignKey("inventory.id", ondelete="SET NULL")),
        sa.Column("category", sa.String(100)),
        sa.Column("specifications", sa.Text),
        sa.Column("notes", sa.Text),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="ck_requisition_item_qty_pos"),
        sa.CheckConstraint("estimated_unit_cost >= 0", name="ck_requisition_item_cost_nonneg"),
        sa.CheckConstraint(
            "received_quantity IS NULL OR received_quantity >= 0",
            name="ck_requisition_item_received_nonneg",
        ),
    )
    op.create_index("ix_requisition_items_requisition_id", "requisition_items", ["requisition_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", ID_TYPE, primary_key=True),
        sa.Column("actor_id", sa.BigInteger),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("meta", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_entity", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_requisition_items_requisition_id", table_name="requisition_items")
    op.drop_table("requisition_items")

    op.drop_index("ix_requisitions_status", table_name="requisitions")
    op.drop_index("ix_requisitions_vertical_id", table_name="requisitions")
    op.drop_table("requisitions")

    op.drop_index("ix_stock_transactions_reference", table_name="stock_transactions")
    op.drop_index("ix_stock_transactions_inventory_id", table_name="stock_transactions")
    op.drop_table("stock_transactions")

    op.drop_index("ix_inventory_vertical_id", table_name="inventory")
    op.drop_index("ix_inventory_category", table_name="inventory")
    op.drop_table("inventory")

    op.drop_table("identifier_counters")

    bind = op.get_bind()
    for enum_type in (requisition_status, requisition_priority, reference_type, transaction_type, item_status):
        enum_type.drop(bind, checkfirst=True)
