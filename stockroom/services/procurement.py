"""
Procurement service : cycle de vie des réquisitions.

    pending ──approve──> approved ──order──> ordered ──receive──> received
       │                    │                   │
       ├──reject──> rejected│                   │
       └──cancel────────────┴───────cancel──────┴──> cancelled

Chaque transition lit la réquisition sous verrou (FOR UPDATE + colonne
version), vérifie la garde puis écrit ; une garde violée lève
InvalidStateTransition sans rien muter.

Ce module ne calcule AUCUN stock : la réception délègue au ledger
(stockroom.services.inventory.post_transaction) dans la même transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select, func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockroom.app.db.models.models_v1 import (
    InventoryItem,
    Requisition,
    RequisitionItem,
    StockTransaction,
)
from stockroom.app.db.models.core_types import (
    Priority,
    ReferenceType,
    RequisitionStatus,
    TransactionType,
)
from stockroom.app.schemas.requisition import (
    ReceiveLine,
    RequisitionCreate,
    RequisitionItemCreate,
    RequisitionItemUpdate,
    RequisitionUpdate,
)
from stockroom.services import inventory
from stockroom.services.errors import (
    ConcurrencyConflict,
    InvalidStateTransition,
    NotFound,
    ReceiptError,
    StockroomError,
    ValidationError,
)
from stockroom.services.identifiers import generate_requisition_number
from stockroom.services.unit_of_work import transactional

logger = logging.getLogger(__name__)

S = RequisitionStatus

# action -> statuts sources autorisés
_VALID_TRANSITIONS: dict[str, frozenset[RequisitionStatus]] = {
    "approve": frozenset({S.pending}),
    "reject": frozenset({S.pending}),
    "order": frozenset({S.approved}),
    "receive": frozenset({S.ordered}),
    "cancel": frozenset({S.pending, S.approved, S.ordered}),
    "update": frozenset({S.pending}),
    "delete": frozenset({S.pending, S.rejected, S.cancelled}),
    "add item to": frozenset({S.pending}),
    "update item of": frozenset({S.pending, S.approved}),
    "delete item from": frozenset({S.pending}),
}

# action -> statut visé (les éditions ne changent pas de statut)
_TARGET_STATUS: dict[str, RequisitionStatus] = {
    "approve": S.approved,
    "reject": S.rejected,
    "order": S.ordered,
    "receive": S.received,
    "cancel": S.cancelled,
}

# Statuts dont la date d'approbation compte dans le délai moyen
_PROCESSED_STATUSES = (S.approved, S.ordered, S.received)

_CENTS = Decimal("0.01")


def _money(value: Decimal | int | float | None) -> Decimal:
    return Decimal(str(value or 0)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _guard(req: Requisition, action: str) -> None:
    if req.status not in _VALID_TRANSITIONS[action]:
        target = _TARGET_STATUS.get(action)
        raise InvalidStateTransition(req.status.value, target.value if target else None, action)


# ---------- Lecture ----------
def _load(db: Session, requisition_id: int, *, lock: bool) -> Requisition:
    stmt = select(Requisition).where(Requisition.id == requisition_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)

    req = db.execute(stmt).scalar_one_or_none()
    if not req:
        raise NotFound("Requisition", requisition_id)
    return req


def get_requisition(db: Session, requisition_id: int) -> Requisition:
    return _load(db, requisition_id, lock=False)


def list_requisitions(
    db: Session,
    *,
    status: RequisitionStatus | None = None,
    priority: Priority | None = None,
    vertical_id: int | None = None,
    program_id: int | None = None,
    requested_by: int | None = None,
    vendor_id: int | None = None,
) -> list[Requisition]:
    stmt = select(Requisition).order_by(Requisition.created_at.desc(), Requisition.id.desc())

    if status is not None:
        stmt = stmt.where(Requisition.status == status)
    if priority is not None:
        stmt = stmt.where(Requisition.priority == priority)
    if vertical_id is not None:
        stmt = stmt.where(Requisition.vertical_id == vertical_id)
    if program_id is not None:
        stmt = stmt.where(Requisition.program_id == program_id)
    if requested_by is not None:
        stmt = stmt.where(Requisition.requested_by == requested_by)
    if vendor_id is not None:
        stmt = stmt.where(Requisition.vendor_id == vendor_id)

    return list(db.execute(stmt).scalars().all())


# ---------- Lignes ----------
def _line_total(line: RequisitionItem) -> Decimal:
    cost = line.actual_unit_cost if line.actual_unit_cost is not None else line.estimated_unit_cost
    return _money(Decimal(line.quantity) * _money(cost))


def _recompute_totals(req: Requisition) -> None:
    """estimated_total = SUM(quantity * estimated_unit_cost) ; les lignes font foi."""
    estimated = Decimal("0")
    for line in req.items:
        line.total_cost = _line_total(line)
        estimated += Decimal(line.quantity) * _money(line.estimated_unit_cost)
    req.estimated_total = _money(estimated)


def _check_inventory_link(db: Session, inventory_id: int | None) -> None:
    if inventory_id is not None and db.get(InventoryItem, inventory_id) is None:
        raise NotFound("Inventory item", inventory_id)


def _get_line(req: Requisition, item_id: int) -> RequisitionItem:
    for line in req.items:
        if line.id == item_id:
            return line
    raise NotFound("Requisition item", item_id)


def _build_line(db: Session, payload: RequisitionItemCreate) -> RequisitionItem:
    if not payload.item_name.strip():
        raise ValidationError("item_name is required")
    _check_inventory_link(db, payload.inventory_id)

    return RequisitionItem(
        item_name=payload.item_name.strip(),
        item_code=payload.item_code,
        description=payload.description,
        quantity=payload.quantity,
        unit=payload.unit,
        estimated_unit_cost=_money(payload.estimated_unit_cost),
        inventory_id=payload.inventory_id,
        category=payload.category,
        specifications=payload.specifications,
        notes=payload.notes,
    )


# ---------- Création / édition ----------
@transactional
def create_requisition(db: Session, payload: RequisitionCreate, *, requested_by: int | None = None) -> Requisition:
    if not payload.title.strip():
        raise ValidationError("title is required")

    req = Requisition(
        requisition_number=generate_requisition_number(db),
        title=payload.title.strip(),
        description=payload.description,
        purpose=payload.purpose,
        department=payload.department,
        notes=payload.notes,
        vertical_id=payload.vertical_id,
        program_id=payload.program_id,
        requested_by=requested_by,
        priority=payload.priority,
        status=S.pending,
    )
    req.items = [_build_line(db, line) for line in payload.items]
    _recompute_totals(req)

    db.add(req)
    db.flush()
    logger.info(
        "requisition %s created (id=%s, %d lines, estimated_total=%s)",
        req.requisition_number,
        req.id,
        len(req.items),
        req.estimated_total,
    )
    return req


@transactional
def update_requisition(db: Session, requisition_id: int, patch: RequisitionUpdate) -> Requisition:
    changes = patch.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No valid fields to update")

    req = _load(db, requisition_id, lock=True)
    _guard(req, "update")

    if "title" in changes and (changes["title"] is None or not changes["title"].strip()):
        raise ValidationError("title cannot be empty")
    if "priority" in changes and changes["priority"] is None:
        raise ValidationError("priority cannot be null")

    for field, value in changes.items():
        setattr(req, field, value)

    db.flush()
    logger.info("requisition %s updated: %s", req.requisition_number, sorted(changes))
    return req


@transactional
def add_item(db: Session, requisition_id: int, payload: RequisitionItemCreate) -> Requisition:
    req = _load(db, requisition_id, lock=True)
    _guard(req, "add item to")

    req.items.append(_build_line(db, payload))
    _recompute_totals(req)
    db.flush()
    logger.info("requisition %s: line added, estimated_total=%s", req.requisition_number, req.estimated_total)
    return req


@transactional
def update_item(db: Session, requisition_id: int, item_id: int, patch: RequisitionItemUpdate) -> Requisition:
    changes = patch.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No valid fields to update")

    req = _load(db, requisition_id, lock=True)
    _guard(req, "update item of")
    line = _get_line(req, item_id)

    for field in ("item_name", "quantity", "estimated_unit_cost"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null")
    if "inventory_id" in changes:
        _check_inventory_link(db, changes["inventory_id"])

    for field, value in changes.items():
        if field in ("estimated_unit_cost", "actual_unit_cost") and value is not None:
            value = _money(value)
        setattr(line, field, value)

    _recompute_totals(req)
    db.flush()
    logger.info(
        "requisition %s: line %s updated %s, estimated_total=%s",
        req.requisition_number,
        line.id,
        sorted(changes),
        req.estimated_total,
    )
    return req


@transactional
def delete_item(db: Session, requisition_id: int, item_id: int) -> Requisition:
    req = _load(db, requisition_id, lock=True)
    _guard(req, "delete item from")
    line = _get_line(req, item_id)

    req.items.remove(line)
    _recompute_totals(req)
    db.flush()
    logger.info("requisition %s: line %s deleted, estimated_total=%s", req.requisition_number, item_id, req.estimated_total)
    return req


@transactional
def delete_requisition(db: Session, requisition_id: int) -> None:
    """Suppression physique (lignes comprises), interdite une fois approuvée."""
    req = _load(db, requisition_id, lock=True)
    _guard(req, "delete")

    number = req.requisition_number
    db.delete(req)
    db.flush()
    logger.info("requisition %s deleted", number)


# ---------- Transitions ----------
@transactional
def approve(db: Session, requisition_id: int, *, approved_by: int | None = None) -> Requisition:
    req = _load(db, requisition_id, lock=True)
    _guard(req, "approve")

    req.status = S.approved
    req.approved_by = approved_by
    req.approved_date = _now()
    db.flush()
    logger.info("requisition %s approved by %s", req.requisition_number, approved_by)
    return req


@transactional
def reject(db: Session, requisition_id: int, rejection_reason: str, *, rejected_by: int | None = None) -> Requisition:
    if not rejection_reason or not rejection_reason.strip():
        raise ValidationError("rejection_reason is required")

    req = _load(db, requisition_id, lock=True)
    _guard(req, "reject")

    req.status = S.rejected
    req.rejected_by = rejected_by
    req.rejected_date = _now()
    req.rejection_reason = rejection_reason.strip()
    db.flush()
    logger.info("requisition %s rejected by %s", req.requisition_number, rejected_by)
    return req


@transactional
def order(
    db: Session,
    requisition_id: int,
    *,
    ordered_by: int | None = None,
    vendor_id: int | None = None,
    po_number: str | None = None,
) -> Requisition:
    req = _load(db, requisition_id, lock=True)
    _guard(req, "order")

    req.status = S.ordered
    req.ordered_by = ordered_by
    req.ordered_date = _now()
    req.vendor_id = vendor_id
    req.po_number = po_number
    db.flush()
    logger.info("requisition %s ordered (po=%s, vendor=%s)", req.requisition_number, po_number, vendor_id)
    return req


@transactional
def cancel(db: Session, requisition_id: int, *, cancelled_by: int | None = None) -> Requisition:
    req = _load(db, requisition_id, lock=True)
    _guard(req, "cancel")

    req.status = S.cancelled
    req.cancelled_by = cancelled_by
    req.cancelled_date = _now()
    db.flush()
    logger.info("requisition %s cancelled by %s", req.requisition_number, cancelled_by)
    return req


@transactional
def receive(
    db: Session,
    requisition_id: int,
    *,
    received_by: int | None = None,
    lines: list[ReceiveLine] | None = None,
) -> Requisition:
    """
    ordered -> received, puis réception en stock des lignes liées.

    Tout ou rien : un échec du ledger sur une ligne annule la transition
    et toutes les transactions déjà postées (rollback de l'unité de travail).
    """
    req = _load(db, requisition_id, lock=True)
    _guard(req, "receive")

    for received in lines or []:
        line = _get_line(req, received.item_id)
        line.received_quantity = received.received_quantity
        if received.actual_unit_cost is not None:
            line.actual_unit_cost = _money(received.actual_unit_cost)
    _recompute_totals(req)

    req.status = S.received
    req.received_by = received_by
    req.received_date = _now()
    db.flush()

    posted = receive_into_stock(db, req, performed_by=received_by)
    logger.info("requisition %s received by %s, %d stock transactions posted", req.requisition_number, received_by, len(posted))
    return req


# ---------- Pont réception -> ledger ----------
def _already_posted(db: Session, requisition_id: int) -> dict[int, int]:
    """Quantités "in" déjà postées par article pour cette réquisition."""
    rows = db.execute(
        select(StockTransaction.inventory_id, func.sum(StockTransaction.quantity))
        .where(StockTransaction.reference_type == ReferenceType.requisition)
        .where(StockTransaction.reference_id == requisition_id)
        .where(StockTransaction.transaction_type == TransactionType.inbound)
        .group_by(StockTransaction.inventory_id)
    ).all()
    return {inventory_id: int(quantity) for inventory_id, quantity in rows}


def receive_into_stock(db: Session, req: Requisition, *, performed_by: int | None = None) -> list[StockTransaction]:
    """
    Poste une entrée "in" par ligne liée à un article avec received_quantity > 0.

    Ne commit pas. Ce qui a déjà été posté pour (réquisition, article) est
    déduit : seul le reliquat est posté. Un déjà-posté supérieur aux
    quantités reçues lève ReceiptError. Les erreurs métier du ledger sont
    enveloppées dans ReceiptError ; les conflits de concurrence remontent
    tels quels pour que l'unité de travail rejoue.
    """
    already = _already_posted(db, req.id)
    posted: list[StockTransaction] = []

    for line in req.items:
        if line.inventory_id is None or not line.received_quantity or line.received_quantity <= 0:
            continue

        covered = min(already.get(line.inventory_id, 0), line.received_quantity)
        if covered:
            already[line.inventory_id] -= covered
            logger.warning(
                "requisition %s: line %s, %d of %d already posted to item %s",
                req.requisition_number,
                line.id,
                covered,
                line.received_quantity,
                line.inventory_id,
            )
        remainder = line.received_quantity - covered
        if remainder == 0:
            continue

        unit_cost = line.actual_unit_cost if line.actual_unit_cost is not None else line.estimated_unit_cost
        try:
            tx = inventory.post_transaction(
                db,
                line.inventory_id,
                TransactionType.inbound,
                remainder,
                unit_cost=unit_cost,
                reference_type=ReferenceType.requisition,
                reference_id=req.id,
                reason=f"Received from requisition {req.requisition_number}",
                performed_by=performed_by,
                vertical_id=req.vertical_id,
            )
        except (ConcurrencyConflict, StaleDataError):
            raise
        except StockroomError as exc:
            raise ReceiptError(req.id, f"line {line.id}: {exc.message}") from exc
        posted.append(tx)

    excess = {inventory_id: quantity for inventory_id, quantity in already.items() if quantity > 0}
    if excess:
        raise ReceiptError(req.id, f"stock already posted beyond received quantities: {excess}")

    return posted


# ---------- Statistiques ----------
def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def get_stats(
    db: Session,
    *,
    vertical_id: int | None = None,
    program_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict:
    scope = []
    if vertical_id is not None:
        scope.append(Requisition.vertical_id == vertical_id)
    if program_id is not None:
        scope.append(Requisition.program_id == program_id)
    if start_date is not None:
        scope.append(Requisition.created_at >= start_date)
    if end_date is not None:
        scope.append(Requisition.created_at <= end_date)

    total, total_value = db.execute(
        select(
            func.count(Requisition.id),
            func.coalesce(func.sum(Requisition.estimated_total), 0),
        ).where(*scope)
    ).one()

    status_rows = db.execute(
        select(
            Requisition.status,
            func.count(Requisition.id),
            func.coalesce(func.sum(Requisition.estimated_total), 0),
        )
        .where(*scope)
        .group_by(Requisition.status)
        .order_by(Requisition.status)
    ).all()

    priority_rows = db.execute(
        select(Requisition.priority, func.count(Requisition.id))
        .where(*scope)
        .group_by(Requisition.priority)
        .order_by(Requisition.priority)
    ).all()

    # Délai création -> approbation, calculé côté Python (portable SQLite / PostgreSQL)
    processed = db.execute(
        select(Requisition.created_at, Requisition.approved_date)
        .where(*scope)
        .where(Requisition.status.in_(_PROCESSED_STATUSES))
        .where(Requisition.approved_date.is_not(None))
    ).all()
    if processed:
        seconds = sum((_as_utc(approved) - _as_utc(created)).total_seconds() for created, approved in processed)
        avg_days = Decimal(str(seconds / len(processed) / 86400))
    else:
        avg_days = Decimal("0")

    by_status = {status: (count, value) for status, count, value in status_rows}

    return {
        "total_requisitions": int(total),
        "pending_requisitions": int(by_status.get(S.pending, (0, 0))[0]),
        "total_value": _money(total_value),
        "avg_processing_days": str(avg_days.quantize(_CENTS, rounding=ROUND_HALF_UP)),
        "by_status": [
            {"status": status, "count": int(count), "total_value": _money(value)}
            for status, (count, value) in by_status.items()
        ],
        "by_priority": [
            {"priority": priority, "count": int(count)}
            for priority, count in priority_rows
        ],
    }
