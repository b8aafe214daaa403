from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockroom.app.db.base import Base
from stockroom.app.db.models.core_types import (
    ItemStatus,
    TransactionType,
    ReferenceType,
    RequisitionStatus,
    Priority,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    # Persiste les valeurs ("in", "pending"...) et non les noms des membres
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ---------- SEQUENCES ----------
class IdentifierCounter(Base):
    """Compteur monotone par scope ("item:ELE", "STX-2026", "REQ-2026"...)."""

    __tablename__ = "identifier_counters"
    scope: Mapped[str] = mapped_column(String(32), primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    __table_args__ = (CheckConstraint("value >= 0", name="ck_identifier_counter_nonneg"),)


# ---------- INVENTORY ----------
class InventoryItem(Base):
    __tablename__ = "inventory"
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    item_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(String(100), index=True)
    subcategory: Mapped[str | None] = mapped_column(String(100))
    unit: Mapped[str] = mapped_column(String(32), default="unit", nullable=False)
    location: Mapped[str | None] = mapped_column(String(128))

    current_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    minimum_quantity: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    maximum_quantity: Mapped[int | None] = mapped_column(Integer)
    reorder_quantity: Mapped[int] = mapped_column(Integer, default=50, nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0.00"), nullable=False)
    total_value: Mapped[Decimal] = mapped_column(Numeric(16, 2), default=Decimal("0.00"), nullable=False)

    status: Mapped[ItemStatus] = mapped_column(
        _enum(ItemStatus, "item_status"),
        default=ItemStatus.active,
        nullable=False,
    )

    # Scopes externes (verticale, fournisseur, créateur) : ids opaques, pas de FK
    vertical_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    vendor_id: Mapped[int | None] = mapped_column(BigInteger)
    created_by: Mapped[int | None] = mapped_column(BigInteger)

    last_restocked_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_used_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("minimum_quantity >= 0", name="ck_inventory_min_nonneg"),
        CheckConstraint("reorder_quantity >= 0", name="ck_inventory_reorder_nonneg"),
        CheckConstraint("unit_cost >= 0", name="ck_inventory_unit_cost_nonneg"),
    )


class StockTransaction(Base):
    """Ligne du ledger. Insérée une fois, jamais modifiée ni supprimée."""

    __tablename__ = "stock_transactions"
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    transaction_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)

    inventory_id: Mapped[int] = mapped_column(
        ForeignKey("inventory.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    transaction_type: Mapped[TransactionType] = mapped_column(
        _enum(TransactionType, "transaction_type"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    new_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0.00"), nullable=False)

    reference_type: Mapped[ReferenceType] = mapped_column(
        _enum(ReferenceType, "reference_type"),
        default=ReferenceType.manual,
        nullable=False,
    )
    reference_id: Mapped[int | None] = mapped_column(BigInteger)
    reason: Mapped[str | None] = mapped_column(String(255))

    performed_by: Mapped[int | None] = mapped_column(BigInteger)
    vertical_id: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    item: Mapped[InventoryItem] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_transaction_qty_pos"),
        Index("ix_stock_transactions_reference", "reference_type", "reference_id"),
    )


# ---------- PROCUREMENT ----------
class Requisition(Base):
    __tablename__ = "requisitions"
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    requisition_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    purpose: Mapped[str | None] = mapped_column(Text)
    department: Mapped[str | None] = mapped_column(String(128))
    notes: Mapped[str | None] = mapped_column(Text)

    vertical_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    program_id: Mapped[int | None] = mapped_column(BigInteger)
    requested_by: Mapped[int | None] = mapped_column(BigInteger)

    priority: Mapped[Priority] = mapped_column(
        _enum(Priority, "requisition_priority"),
        default=Priority.medium,
        nullable=False,
    )
    status: Mapped[RequisitionStatus] = mapped_column(
        _enum(RequisitionStatus, "requisition_status"),
        default=RequisitionStatus.pending,
        nullable=False,
        index=True,
    )
    # Projection cachée de SUM(quantity * estimated_unit_cost), jamais source de vérité
    estimated_total: Mapped[Decimal] = mapped_column(Numeric(16, 2), default=Decimal("0.00"), nullable=False)

    approved_by: Mapped[int | None] = mapped_column(BigInteger)
    approved_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_by: Mapped[int | None] = mapped_column(BigInteger)
    rejected_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    ordered_by: Mapped[int | None] = mapped_column(BigInteger)
    ordered_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    vendor_id: Mapped[int | None] = mapped_column(BigInteger)
    po_number: Mapped[str | None] = mapped_column(String(64))
    received_by: Mapped[int | None] = mapped_column(BigInteger)
    received_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[int | None] = mapped_column(BigInteger)
    cancelled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    items: Mapped[list["RequisitionItem"]] = relationship(
        back_populates="requisition",
        cascade="all, delete-orphan",
        order_by="RequisitionItem.id",
    )

    __mapper_args__ = {"version_id_col": version}


class RequisitionItem(Base):
    __tablename__ = "requisition_items"
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    requisition_id: Mapped[int] = mapped_column(
        ForeignKey("requisitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    item_code: Mapped[str | None] = mapped_column(String(64))
    description: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit: Mapped[str | None] = mapped_column(String(32))
    estimated_unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0.00"), nullable=False)
    actual_unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    received_quantity: Mapped[int | None] = mapped_column(Integer)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(16, 2), default=Decimal("0.00"), nullable=False)

    inventory_id: Mapped[int | None] = mapped_column(ForeignKey("inventory.id", ondelete="SET NULL"))
    category: Mapped[str | None] = mapped_column(String(100))
    specifications: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    requisition: Mapped[Requisition] = relationship(back_populates="items")
    inventory_item: Mapped[InventoryItem | None] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_requisition_item_qty_pos"),
        CheckConstraint("estimated_unit_cost >= 0", name="ck_requisition_item_cost_nonneg"),
        CheckConstraint("received_quantity IS NULL OR received_quantity >= 0", name="ck_requisition_item_received_nonneg"),
    )


# ---------- AUDIT ----------
class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    actor_id: Mapped[int | None] = mapped_column(BigInteger)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    meta: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_audit_entity", "entity_type", "entity_id"),)
