from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from stockroom.app.api.audit import record_audit, snapshot
from stockroom.app.api.deps import get_actor_id, get_db
from stockroom.app.db.models.core_types import Priority, RequisitionStatus
from stockroom.app.schemas.requisition import (
    OrderRequest,
    ReceiveRequest,
    RejectRequest,
    RequisitionCreate,
    RequisitionItemCreate,
    RequisitionItemUpdate,
    RequisitionRead,
    RequisitionStats,
    RequisitionUpdate,
)
from stockroom.services import procurement

router = APIRouter(prefix="/requisitions")


def _audited(db: Session, requisition_id: int, actor_id: int | None, action: str, mutate) -> dict:
    """Snapshot avant, mutation (commitée par le service), snapshot après, audit."""
    before = snapshot(RequisitionRead, procurement.get_requisition(db, requisition_id))
    req = mutate()
    after = snapshot(RequisitionRead, req)
    record_audit(
        db,
        actor_id=actor_id,
        action=action,
        entity_type="requisition",
        entity_id=requisition_id,
        before=before,
        after=after,
    )
    return after


@router.get("", response_model=list[RequisitionRead])
def list_requisitions(
    status: RequisitionStatus | None = None,
    priority: Priority | None = None,
    vertical_id: int | None = None,
    program_id: int | None = None,
    requested_by: int | None = None,
    vendor_id: int | None = None,
    db: Session = Depends(get_db),
):
    return procurement.list_requisitions(
        db,
        status=status,
        priority=priority,
        vertical_id=vertical_id,
        program_id=program_id,
        requested_by=requested_by,
        vendor_id=vendor_id,
    )


@router.post("", response_model=RequisitionRead, status_code=201)
def create_requisition(
    payload: RequisitionCreate,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    req = procurement.create_requisition(db, payload, requested_by=actor_id)
    after = snapshot(RequisitionRead, req)
    record_audit(db, actor_id=actor_id, action="CREATE", entity_type="requisition", entity_id=req.id, after=after)
    return after


@router.get("/stats", response_model=RequisitionStats)
def stats(
    vertical_id: int | None = None,
    program_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    db: Session = Depends(get_db),
):
    return procurement.get_stats(
        db,
        vertical_id=vertical_id,
        program_id=program_id,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/{requisition_id}", response_model=RequisitionRead)
def get_requisition(requisition_id: int, db: Session = Depends(get_db)):
    return procurement.get_requisition(db, requisition_id)


@router.patch("/{requisition_id}", response_model=RequisitionRead)
def update_requisition(
    requisition_id: int,
    patch: RequisitionUpdate,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _audited(
        db, requisition_id, actor_id, "UPDATE",
        lambda: procurement.update_requisition(db, requisition_id, patch),
    )


@router.delete("/{requisition_id}", status_code=204)
def delete_requisition(
    requisition_id: int,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    before = snapshot(RequisitionRead, procurement.get_requisition(db, requisition_id))
    procurement.delete_requisition(db, requisition_id)
    record_audit(db, actor_id=actor_id, action="DELETE", entity_type="requisition", entity_id=requisition_id, before=before)
    return Response(status_code=204)


# ---------- Lignes ----------
@router.post("/{requisition_id}/items", response_model=RequisitionRead, status_code=201)
def add_item(
    requisition_id: int,
    payload: RequisitionItemCreate,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _audited(
        db, requisition_id, actor_id, "ADD_ITEM",
        lambda: procurement.add_item(db, requisition_id, payload),
    )


@router.patch("/{requisition_id}/items/{item_id}", response_model=RequisitionRead)
def update_item(
    requisition_id: int,
    item_id: int,
    patch: RequisitionItemUpdate,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _audited(
        db, requisition_id, actor_id, "UPDATE_ITEM",
        lambda: procurement.update_item(db, requisition_id, item_id, patch),
    )


@router.delete("/{requisition_id}/items/{item_id}", response_model=RequisitionRead)
def delete_item(
    requisition_id: int,
    item_id: int,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _audited(
        db, requisition_id, actor_id, "DELETE_ITEM",
        lambda: procurement.delete_item(db, requisition_id, item_id),
    )


# ---------- Transitions ----------
@router.post("/{requisition_id}/approve", response_model=RequisitionRead)
def approve(
    requisition_id: int,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _audited(
        db, requisition_id, actor_id, "APPROVE",
        lambda: procurement.approve(db, requisition_id, approved_by=actor_id),
    )


@router.post("/{requisition_id}/reject", response_model=RequisitionRead)
def reject(
    requisition_id: int,
    payload: RejectRequest,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _audited(
        db, requisition_id, actor_id, "REJECT",
        lambda: procurement.reject(db, requisition_id, payload.rejection_reason, rejected_by=actor_id),
    )


@router.post("/{requisition_id}/order", response_model=RequisitionRead)
def order(
    requisition_id: int,
    payload: OrderRequest,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _audited(
        db, requisition_id, actor_id, "ORDER",
        lambda: procurement.order(
            db,
            requisition_id,
            ordered_by=actor_id,
            vendor_id=payload.vendor_id,
            po_number=payload.po_number,
        ),
    )


@router.post("/{requisition_id}/receive", response_model=RequisitionRead)
def receive(
    requisition_id: int,
    payload: ReceiveRequest | None = None,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    lines = payload.lines if payload else None
    return _audited(
        db, requisition_id, actor_id, "RECEIVE",
        lambda: procurement.receive(db, requisition_id, received_by=actor_id, lines=lines),
    )


@router.post("/{requisition_id}/cancel", response_model=RequisitionRead)
def cancel(
    requisition_id: int,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _audited(
        db, requisition_id, actor_id, "CANCEL",
        lambda: procurement.cancel(db, requisition_id, cancelled_by=actor_id),
    )
