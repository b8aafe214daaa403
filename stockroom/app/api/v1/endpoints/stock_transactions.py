from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockroom.app.api.audit import record_audit, snapshot
from stockroom.app.api.deps import get_actor_id, get_db
from stockroom.app.schemas.inventory import StockTransactionCreate, StockTransactionRead
from stockroom.services import inventory

router = APIRouter(prefix="/stock-transactions")


@router.post("", response_model=StockTransactionRead, status_code=201)
def record_transaction(
    payload: StockTransactionCreate,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    tx = inventory.record_transaction(
        db,
        payload.inventory_id,
        payload.transaction_type,
        payload.quantity,
        unit_cost=payload.unit_cost,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        reason=payload.reason,
        performed_by=actor_id,
        vertical_id=payload.vertical_id,
        allow_negative=payload.allow_negative,
    )
    after = snapshot(StockTransactionRead, tx)
    record_audit(db, actor_id=actor_id, action="CREATE", entity_type="stock_transaction", entity_id=tx.id, after=after)
    return after
