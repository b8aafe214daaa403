from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from stockroom.app.db.models.core_types import Priority, RequisitionStatus


# ---------- Inputs ----------
class RequisitionItemCreate(BaseModel):
    item_name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    quantity: int = Field(gt=0)
    unit: str | None = Field(default=None, max_length=32)
    estimated_unit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    item_code: str | None = Field(default=None, max_length=64)
    inventory_id: int | None = None
    category: str | None = Field(default=None, max_length=100)
    specifications: str | None = None
    notes: str | None = None

    class Config:
        extra = "forbid"


class RequisitionItemUpdate(BaseModel):
    item_name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    quantity: int | None = Field(default=None, gt=0)
    unit: str | None = Field(default=None, max_length=32)
    estimated_unit_cost: Decimal | None = Field(default=None, ge=0)
    actual_unit_cost: Decimal | None = Field(default=None, ge=0)
    received_quantity: int | None = Field(default=None, ge=0)
    item_code: str | None = Field(default=None, max_length=64)
    inventory_id: int | None = None
    category: str | None = Field(default=None, max_length=100)
    specifications: str | None = None
    notes: str | None = None

    class Config:
        extra = "forbid"


class RequisitionCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    purpose: str | None = None
    department: str | None = Field(default=None, max_length=128)
    notes: str | None = None
    vertical_id: int | None = None
    program_id: int | None = None
    priority: Priority = Priority.medium
    items: list[RequisitionItemCreate] = Field(default_factory=list)

    class Config:
        extra = "forbid"


class RequisitionUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    purpose: str | None = None
    department: str | None = Field(default=None, max_length=128)
    notes: str | None = None
    program_id: int | None = None
    priority: Priority | None = None

    class Config:
        extra = "forbid"


class RejectRequest(BaseModel):
    rejection_reason: str = Field(min_length=1)


class OrderRequest(BaseModel):
    vendor_id: int | None = None
    po_number: str | None = Field(default=None, max_length=64)


class ReceiveLine(BaseModel):
    item_id: int
    received_quantity: int = Field(ge=0)
    actual_unit_cost: Decimal | None = Field(default=None, ge=0)


class ReceiveRequest(BaseModel):
    lines: list[ReceiveLine] = Field(default_factory=list)


# ---------- Outputs ----------
class RequisitionItemRead(BaseModel):
    id: int
    requisition_id: int
    item_name: str
    item_code: str | None
    description: str | None
    quantity: int
    unit: str | None
    estimated_unit_cost: Decimal
    actual_unit_cost: Decimal | None
    received_quantity: int | None
    total_cost: Decimal
    inventory_id: int | None
    category: str | None
    specifications: str | None
    notes: str | None

    class Config:
        from_attributes = True


class RequisitionRead(BaseModel):
    id: int
    requisition_number: str
    title: str
    description: str | None
    purpose: str | None
    department: str | None
    notes: str | None
    vertical_id: int | None
    program_id: int | None
    requested_by: int | None
    priority: Priority
    status: RequisitionStatus
    estimated_total: Decimal

    approved_by: int | None
    approved_date: datetime | None
    rejected_by: int | None
    rejected_date: datetime | None
    rejection_reason: str | None
    ordered_by: int | None
    ordered_date: datetime | None
    vendor_id: int | None
    po_number: str | None
    received_by: int | None
    received_date: datetime | None
    cancelled_by: int | None
    cancelled_date: datetime | None

    created_at: datetime
    updated_at: datetime
    items: list[RequisitionItemRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class RequisitionStatusBucket(BaseModel):
    status: RequisitionStatus
    count: int
    total_value: Decimal


class PriorityBucket(BaseModel):
    priority: Priority
    count: int


class RequisitionStats(BaseModel):
    total_requisitions: int
    pending_requisitions: int
    total_value: Decimal
    avg_processing_days: str
    by_status: list[RequisitionStatusBucket]
    by_priority: list[PriorityBucket]
