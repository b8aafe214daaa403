from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, computed_field

from stockroom.app.core.config import DEFAULT_MINIMUM_QUANTITY, DEFAULT_REORDER_QUANTITY
from stockroom.app.db.models.core_types import (
    ItemStatus,
    ReferenceType,
    TransactionType,
)


# ---------- Inputs ----------
class InventoryItemCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    subcategory: str | None = Field(default=None, max_length=100)
    unit: str = Field(default="unit", min_length=1, max_length=32)
    location: str | None = Field(default=None, max_length=128)

    # Quantité initiale : postée dans le ledger ("Initial stock entry")
    current_quantity: int = Field(default=0, ge=0)
    minimum_quantity: int = Field(default=DEFAULT_MINIMUM_QUANTITY, ge=0)
    maximum_quantity: int | None = Field(default=None, ge=0)
    reorder_quantity: int = Field(default=DEFAULT_REORDER_QUANTITY, ge=0)
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0)

    vendor_id: int | None = None
    vertical_id: int | None = None

    class Config:
        extra = "forbid"


class InventoryItemUpdate(BaseModel):
    """
    Patch des champs descriptifs / de configuration.

    current_quantity et status n'y figurent pas : la quantité ne bouge
    que via le ledger, le statut via discontinue_item.
    """

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    subcategory: str | None = Field(default=None, max_length=100)
    unit: str | None = Field(default=None, min_length=1, max_length=32)
    location: str | None = Field(default=None, max_length=128)
    minimum_quantity: int | None = Field(default=None, ge=0)
    maximum_quantity: int | None = Field(default=None, ge=0)
    reorder_quantity: int | None = Field(default=None, ge=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)
    vendor_id: int | None = None

    class Config:
        extra = "forbid"


class StockTransactionCreate(BaseModel):
    inventory_id: int
    transaction_type: TransactionType
    quantity: int = Field(gt=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)
    reference_type: ReferenceType = ReferenceType.manual
    reference_id: int | None = None
    reason: str | None = Field(default=None, max_length=255)
    vertical_id: int | None = None
    allow_negative: bool | None = None

    class Config:
        extra = "forbid"


class QuantityAdjust(BaseModel):
    quantity: int = Field(ge=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)
    reason: str | None = Field(default=None, max_length=255)

    class Config:
        extra = "forbid"


# ---------- Outputs ----------
class StockTransactionRead(BaseModel):
    id: int
    transaction_number: str
    inventory_id: int
    transaction_type: TransactionType
    quantity: int
    previous_quantity: int
    new_quantity: int
    unit_cost: Decimal
    reference_type: ReferenceType
    reference_id: int | None
    reason: str | None
    performed_by: int | None
    vertical_id: int | None
    created_at: datetime

    class Config:
        from_attributes = True


class InventoryItemRead(BaseModel):
    id: int
    item_code: str
    name: str
    description: str | None
    category: str | None
    subcategory: str | None
    unit: str
    location: str | None

    current_quantity: int  # READ ONLY : maintenu par le ledger
    minimum_quantity: int
    maximum_quantity: int | None
    reorder_quantity: int
    unit_cost: Decimal
    total_value: Decimal

    status: ItemStatus
    vertical_id: int | None
    vendor_id: int | None
    last_restocked_date: datetime | None
    last_used_date: datetime | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class InventoryItemDetail(InventoryItemRead):
    recent_transactions: list[StockTransactionRead] = Field(default_factory=list)


class LowStockRow(InventoryItemRead):
    @computed_field
    @property
    def quantity_needed(self) -> int:
        return self.minimum_quantity - self.current_quantity


class AgingRow(BaseModel):
    id: int
    item_code: str
    name: str
    category: str | None
    current_quantity: int
    total_value: Decimal
    last_restocked_date: datetime | None
    last_used_date: datetime | None
    days_since_restock: int | None
    days_since_used: int | None
    age_category: str
    vertical_id: int | None


class StatusBucket(BaseModel):
    status: ItemStatus
    count: int
    total_value: Decimal


class CategoryBucket(BaseModel):
    category: str | None
    count: int
    total_quantity: int
    total_value: Decimal


class InventoryStats(BaseModel):
    total_items: int
    total_value: Decimal
    low_stock_items: int
    out_of_stock_items: int
    healthy_items: int
    by_status: list[StatusBucket]
    by_category: list[CategoryBucket]
