from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockroom.app.api.audit import record_audit, snapshot
from stockroom.app.api.deps import get_actor_id, get_db
from stockroom.app.db.models.core_types import ItemStatus, TransactionType
from stockroom.app.schemas.inventory import (
    AgingRow,
    InventoryItemCreate,
    InventoryItemDetail,
    InventoryItemRead,
    InventoryItemUpdate,
    InventoryStats,
    LowStockRow,
    QuantityAdjust,
    StockTransactionRead,
)
from stockroom.services import inventory

router = APIRouter(prefix="/inventory")


@router.get("", response_model=list[InventoryItemRead])
def list_items(
    status: ItemStatus | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    vertical_id: int | None = None,
    vendor_id: int | None = None,
    db: Session = Depends(get_db),
):
    return inventory.list_items(
        db,
        status=status,
        category=category,
        subcategory=subcategory,
        vertical_id=vertical_id,
        vendor_id=vendor_id,
    )


@router.post("", response_model=InventoryItemRead, status_code=201)
def create_item(
    payload: InventoryItemCreate,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    item = inventory.create_item(db, payload, created_by=actor_id)
    after = snapshot(InventoryItemRead, item)
    record_audit(db, actor_id=actor_id, action="CREATE", entity_type="inventory", entity_id=item.id, after=after)
    return after


# ---------- Projections (avant /{inventory_id}) ----------
@router.get("/low-stock", response_model=list[LowStockRow])
def low_stock(vertical_id: int | None = None, db: Session = Depends(get_db)):
    return inventory.get_low_stock(db, vertical_id)


@router.get("/out-of-stock", response_model=list[InventoryItemRead])
def out_of_stock(vertical_id: int | None = None, db: Session = Depends(get_db)):
    return inventory.get_out_of_stock(db, vertical_id)


@router.get("/aging", response_model=list[AgingRow])
def aging_report(vertical_id: int | None = None, db: Session = Depends(get_db)):
    return inventory.get_aging_report(db, vertical_id)


@router.get("/stats", response_model=InventoryStats)
def stats(vertical_id: int | None = None, db: Session = Depends(get_db)):
    return inventory.get_stats(db, vertical_id)


# ---------- Article ----------
@router.get("/{inventory_id}", response_model=InventoryItemDetail)
def get_item(inventory_id: int, db: Session = Depends(get_db)):
    item = inventory.get_item(db, inventory_id)
    detail = InventoryItemDetail.model_validate(item)
    detail.recent_transactions = [
        StockTransactionRead.model_validate(tx) for tx in inventory.recent_transactions(db, inventory_id)
    ]
    return detail


@router.patch("/{inventory_id}", response_model=InventoryItemRead)
def update_item(
    inventory_id: int,
    patch: InventoryItemUpdate,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    before = snapshot(InventoryItemRead, inventory.get_item(db, inventory_id))
    item = inventory.update_item(db, inventory_id, patch)
    after = snapshot(InventoryItemRead, item)
    record_audit(db, actor_id=actor_id, action="UPDATE", entity_type="inventory", entity_id=inventory_id, before=before, after=after)
    return after


@router.delete("/{inventory_id}", response_model=InventoryItemRead)
def discontinue_item(
    inventory_id: int,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    before = snapshot(InventoryItemRead, inventory.get_item(db, inventory_id))
    item = inventory.discontinue_item(db, inventory_id)
    after = snapshot(InventoryItemRead, item)
    record_audit(db, actor_id=actor_id, action="DELETE", entity_type="inventory", entity_id=inventory_id, before=before, after=after)
    return after


@router.post("/{inventory_id}/adjust", response_model=InventoryItemRead)
def adjust_quantity(
    inventory_id: int,
    payload: QuantityAdjust,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    before = snapshot(InventoryItemRead, inventory.get_item(db, inventory_id))
    item = inventory.adjust_quantity(
        db,
        inventory_id,
        payload.quantity,
        unit_cost=payload.unit_cost,
        reason=payload.reason,
        performed_by=actor_id,
    )
    after = snapshot(InventoryItemRead, item)
    record_audit(db, actor_id=actor_id, action="ADJUST", entity_type="inventory", entity_id=inventory_id, before=before, after=after)
    return after


@router.get("/{inventory_id}/transactions", response_model=list[StockTransactionRead])
def list_transactions(
    inventory_id: int,
    transaction_type: TransactionType | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return inventory.list_transactions(db, inventory_id, transaction_type=transaction_type, limit=limit)
