"""
Inventory ledger.

`current_quantity` d'un article ne bouge QUE par `post_transaction` :
lecture de la quantité sous verrou, insertion de la ligne de ledger avec
le couple previous/new, puis mise à jour de l'article, le tout dans la
même transaction SQL.

Invariant (réconciliation) :
    current_quantity == SUM(+qty pour "in", -qty pour "out")

La quantité initiale d'un article est elle-même postée comme
transaction "in" ("Initial stock entry"), l'article naît donc à 0.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select, func, case
from sqlalchemy.orm import Session

from stockroom.app.core.config import ALLOW_NEGATIVE_STOCK
from stockroom.app.db.models.models_v1 import InventoryItem, StockTransaction
from stockroom.app.db.models.core_types import (
    ItemStatus,
    ReferenceType,
    TransactionType,
)
from stockroom.app.schemas.inventory import InventoryItemCreate, InventoryItemUpdate
from stockroom.services.errors import InsufficientStock, NotFound, ValidationError
from stockroom.services.identifiers import generate_item_code, generate_transaction_number
from stockroom.services.unit_of_work import transactional

logger = logging.getLogger(__name__)

INITIAL_STOCK_REASON = "Initial stock entry"
MANUAL_ADJUSTMENT_REASON = "Manual quantity adjustment"

RECENT_TRANSACTIONS = 20
CATEGORY_STATS_LIMIT = 10

# Buckets du rapport d'ancienneté (jours depuis la dernière sortie)
AGE_NEVER_USED = "Never Used"
AGE_OLD = "Old (6+ months)"
AGE_AGING = "Aging (3-6 months)"
AGE_RECENT = "Recent (0-3 months)"
OLD_AFTER_DAYS = 180
AGING_AFTER_DAYS = 90

_CENTS = Decimal("0.01")


def _money(value: Decimal | int | float | None) -> Decimal:
    return Decimal(str(value or 0)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def _refresh_total_value(item: InventoryItem) -> None:
    item.total_value = _money(Decimal(item.current_quantity) * _money(item.unit_cost))


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite rend des datetimes naïfs
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ---------- Lecture ----------
def get_item(db: Session, inventory_id: int, *, lock: bool = False) -> InventoryItem:
    stmt = select(InventoryItem).where(InventoryItem.id == inventory_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)

    item = db.execute(stmt).scalar_one_or_none()
    if not item:
        raise NotFound("Inventory item", inventory_id)
    return item


def list_items(
    db: Session,
    *,
    status: ItemStatus | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    vertical_id: int | None = None,
    vendor_id: int | None = None,
) -> list[InventoryItem]:
    stmt = select(InventoryItem).order_by(InventoryItem.created_at.desc(), InventoryItem.id.desc())

    if status is not None:
        stmt = stmt.where(InventoryItem.status == status)
    if category is not None:
        stmt = stmt.where(InventoryItem.category == category)
    if subcategory is not None:
        stmt = stmt.where(InventoryItem.subcategory == subcategory)
    if vertical_id is not None:
        stmt = stmt.where(InventoryItem.vertical_id == vertical_id)
    if vendor_id is not None:
        stmt = stmt.where(InventoryItem.vendor_id == vendor_id)

    return list(db.execute(stmt).scalars().all())


def list_transactions(
    db: Session,
    inventory_id: int,
    *,
    transaction_type: TransactionType | None = None,
    limit: int = 50,
) -> list[StockTransaction]:
    get_item(db, inventory_id)

    stmt = (
        select(StockTransaction)
        .where(StockTransaction.inventory_id == inventory_id)
        .order_by(StockTransaction.id.desc())
        .limit(limit)
    )
    if transaction_type is not None:
        stmt = stmt.where(StockTransaction.transaction_type == transaction_type)

    return list(db.execute(stmt).scalars().all())


def recent_transactions(db: Session, inventory_id: int) -> list[StockTransaction]:
    return list_transactions(db, inventory_id, limit=RECENT_TRANSACTIONS)


def ledger_quantity(db: Session, inventory_id: int) -> int:
    """Somme signée du ledger pour un article (source de vérité)."""
    signed = case(
        (StockTransaction.transaction_type == TransactionType.inbound, StockTransaction.quantity),
        else_=-StockTransaction.quantity,
    )
    total = db.execute(
        select(func.coalesce(func.sum(signed), 0)).where(StockTransaction.inventory_id == inventory_id)
    ).scalar_one()
    return int(total)


# ---------- Ledger ----------
def post_transaction(
    db: Session,
    inventory_id: int,
    transaction_type: TransactionType,
    quantity: int,
    *,
    unit_cost: Decimal | None = None,
    reference_type: ReferenceType = ReferenceType.manual,
    reference_id: int | None = None,
    reason: str | None = None,
    performed_by: int | None = None,
    vertical_id: int | None = None,
    allow_negative: bool | None = None,
) -> StockTransaction:
    """
    Poste une transaction SANS commit : l'appelant possède la transaction.

    Utilisé tel quel par la réception de réquisition (plusieurs lignes,
    un seul commit) et via `record_transaction` pour un appel isolé.
    """
    if quantity is None or int(quantity) <= 0:
        raise ValidationError("quantity must be a positive integer")
    transaction_type = TransactionType(transaction_type)
    quantity = int(quantity)

    item = get_item(db, inventory_id, lock=True)

    previous_quantity = int(item.current_quantity)
    if transaction_type == TransactionType.inbound:
        new_quantity = previous_quantity + quantity
    else:
        new_quantity = previous_quantity - quantity

    if allow_negative is None:
        allow_negative = ALLOW_NEGATIVE_STOCK
    if new_quantity < 0 and not allow_negative:
        raise InsufficientStock(item.id, available=previous_quantity, requested=quantity)

    effective_cost = _money(unit_cost if unit_cost is not None else item.unit_cost)

    tx = StockTransaction(
        transaction_number=generate_transaction_number(db),
        inventory_id=item.id,
        transaction_type=transaction_type,
        quantity=quantity,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        unit_cost=effective_cost,
        reference_type=ReferenceType(reference_type),
        reference_id=reference_id,
        reason=reason,
        performed_by=performed_by,
        vertical_id=vertical_id if vertical_id is not None else item.vertical_id,
    )
    db.add(tx)

    now = datetime.now(timezone.utc)
    item.current_quantity = new_quantity
    if unit_cost is not None:
        item.unit_cost = effective_cost
    if transaction_type == TransactionType.inbound:
        item.last_restocked_date = now
    else:
        item.last_used_date = now
    _refresh_total_value(item)

    db.flush()
    logger.info(
        "stock %s %s x%d on item %s (%d -> %d) ref=%s:%s",
        tx.transaction_number,
        transaction_type.value,
        quantity,
        item.item_code,
        previous_quantity,
        new_quantity,
        tx.reference_type.value,
        reference_id,
    )
    return tx


@transactional
def record_transaction(db: Session, inventory_id: int, transaction_type: TransactionType, quantity: int, **kwargs) -> StockTransaction:
    return post_transaction(db, inventory_id, transaction_type, quantity, **kwargs)


# ---------- Articles ----------
@transactional
def create_item(db: Session, payload: InventoryItemCreate, *, created_by: int | None = None) -> InventoryItem:
    if not payload.name.strip():
        raise ValidationError("name is required")
    if payload.maximum_quantity is not None and payload.maximum_quantity < payload.minimum_quantity:
        raise ValidationError("maximum_quantity must be >= minimum_quantity")

    item = InventoryItem(
        item_code=generate_item_code(db, payload.category),
        name=payload.name.strip(),
        description=payload.description,
        category=payload.category,
        subcategory=payload.subcategory,
        unit=payload.unit,
        location=payload.location,
        current_quantity=0,
        minimum_quantity=payload.minimum_quantity,
        maximum_quantity=payload.maximum_quantity,
        reorder_quantity=payload.reorder_quantity,
        unit_cost=_money(payload.unit_cost),
        total_value=_money(0),
        status=ItemStatus.active,
        vendor_id=payload.vendor_id,
        vertical_id=payload.vertical_id,
        created_by=created_by,
    )
    db.add(item)
    db.flush()

    if payload.current_quantity > 0:
        post_transaction(
            db,
            item.id,
            TransactionType.inbound,
            payload.current_quantity,
            unit_cost=payload.unit_cost,
            reference_type=ReferenceType.manual,
            reference_id=item.id,
            reason=INITIAL_STOCK_REASON,
            performed_by=created_by,
            vertical_id=payload.vertical_id,
        )

    logger.info("inventory item %s created (id=%s)", item.item_code, item.id)
    return item


@transactional
def update_item(db: Session, inventory_id: int, patch: InventoryItemUpdate) -> InventoryItem:
    changes = patch.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No valid fields to update")

    item = get_item(db, inventory_id, lock=True)

    if "name" in changes and (changes["name"] is None or not changes["name"].strip()):
        raise ValidationError("name cannot be empty")
    if "unit" in changes and changes["unit"] is None:
        raise ValidationError("unit cannot be empty")
    for field in ("minimum_quantity", "reorder_quantity", "unit_cost"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null")

    minimum = changes.get("minimum_quantity", item.minimum_quantity)
    maximum = changes.get("maximum_quantity", item.maximum_quantity)
    if maximum is not None and maximum < minimum:
        raise ValidationError("maximum_quantity must be >= minimum_quantity")

    for field, value in changes.items():
        if field == "unit_cost":
            value = _money(value)
        setattr(item, field, value)

    _refresh_total_value(item)
    db.flush()
    logger.info("inventory item %s updated: %s", item.item_code, sorted(changes))
    return item


@transactional
def discontinue_item(db: Session, inventory_id: int) -> InventoryItem:
    """Suppression logique : la ligne et son historique restent."""
    item = get_item(db, inventory_id, lock=True)
    item.status = ItemStatus.discontinued
    db.flush()
    logger.info("inventory item %s discontinued", item.item_code)
    return item


@transactional
def adjust_quantity(
    db: Session,
    inventory_id: int,
    new_quantity: int,
    *,
    unit_cost: Decimal | None = None,
    reason: str | None = None,
    performed_by: int | None = None,
) -> InventoryItem:
    """
    Correction manuelle : "mettre la quantité à N".

    Le delta signé est posté au ledger ; un delta nul ne crée aucune
    transaction (seul le coût unitaire éventuel est appliqué).
    """
    if new_quantity is None or int(new_quantity) < 0:
        raise ValidationError("quantity must be >= 0")

    item = get_item(db, inventory_id, lock=True)
    difference = int(new_quantity) - int(item.current_quantity)

    if difference == 0:
        if unit_cost is not None:
            item.unit_cost = _money(unit_cost)
            _refresh_total_value(item)
            db.flush()
        return item

    post_transaction(
        db,
        item.id,
        TransactionType.inbound if difference > 0 else TransactionType.outbound,
        abs(difference),
        unit_cost=unit_cost,
        reference_type=ReferenceType.manual,
        reference_id=item.id,
        reason=reason or MANUAL_ADJUSTMENT_REASON,
        performed_by=performed_by,
        vertical_id=item.vertical_id,
    )
    return item


# ---------- Projections (lecture seule) ----------
def get_low_stock(db: Session, vertical_id: int | None = None) -> list[InventoryItem]:
    stmt = (
        select(InventoryItem)
        .where(InventoryItem.current_quantity <= InventoryItem.minimum_quantity)
        .order_by((InventoryItem.minimum_quantity - InventoryItem.current_quantity).desc(), InventoryItem.id)
    )
    if vertical_id is not None:
        stmt = stmt.where(InventoryItem.vertical_id == vertical_id)
    return list(db.execute(stmt).scalars().all())


def get_out_of_stock(db: Session, vertical_id: int | None = None) -> list[InventoryItem]:
    stmt = (
        select(InventoryItem)
        .where(InventoryItem.current_quantity == 0)
        .order_by(InventoryItem.name, InventoryItem.id)
    )
    if vertical_id is not None:
        stmt = stmt.where(InventoryItem.vertical_id == vertical_id)
    return list(db.execute(stmt).scalars().all())


def age_category(days_since_used: int | None) -> str:
    if days_since_used is None:
        return AGE_NEVER_USED
    if days_since_used >= OLD_AFTER_DAYS:
        return AGE_OLD
    if days_since_used >= AGING_AFTER_DAYS:
        return AGE_AGING
    return AGE_RECENT


def _days_since(value: datetime | None, now: datetime) -> int | None:
    value = _as_utc(value)
    if value is None:
        return None
    return (now - value).days


def get_aging_report(db: Session, vertical_id: int | None = None, *, now: datetime | None = None) -> list[dict]:
    now = now or datetime.now(timezone.utc)

    stmt = select(InventoryItem)
    if vertical_id is not None:
        stmt = stmt.where(InventoryItem.vertical_id == vertical_id)

    rows = []
    for item in db.execute(stmt).scalars():
        days_since_used = _days_since(item.last_used_date, now)
        rows.append(
            {
                "id": item.id,
                "item_code": item.item_code,
                "name": item.name,
                "category": item.category,
                "current_quantity": item.current_quantity,
                "total_value": item.total_value,
                "last_restocked_date": item.last_restocked_date,
                "last_used_date": item.last_used_date,
                "days_since_restock": _days_since(item.last_restocked_date, now),
                "days_since_used": days_since_used,
                "age_category": age_category(days_since_used),
                "vertical_id": item.vertical_id,
            }
        )

    # Plus ancien d'abord, jamais utilisés en dernier
    rows.sort(key=lambda r: (r["days_since_used"] is None, -(r["days_since_used"] or 0), r["id"]))
    return rows


def get_stats(db: Session, vertical_id: int | None = None) -> dict:
    scope = []
    if vertical_id is not None:
        scope.append(InventoryItem.vertical_id == vertical_id)

    total, total_value = db.execute(
        select(
            func.count(InventoryItem.id),
            func.coalesce(func.sum(InventoryItem.total_value), 0),
        ).where(*scope)
    ).one()

    low_stock = db.execute(
        select(func.count(InventoryItem.id))
        .where(*scope)
        .where(InventoryItem.current_quantity <= InventoryItem.minimum_quantity)
    ).scalar_one()

    out_of_stock = db.execute(
        select(func.count(InventoryItem.id))
        .where(*scope)
        .where(InventoryItem.current_quantity == 0)
    ).scalar_one()

    status_rows = db.execute(
        select(
            InventoryItem.status,
            func.count(InventoryItem.id),
            func.coalesce(func.sum(InventoryItem.total_value), 0),
        )
        .where(*scope)
        .group_by(InventoryItem.status)
        .order_by(InventoryItem.status)
    ).all()

    category_value = func.coalesce(func.sum(InventoryItem.total_value), 0)
    category_rows = db.execute(
        select(
            InventoryItem.category,
            func.count(InventoryItem.id),
            func.coalesce(func.sum(InventoryItem.current_quantity), 0),
            category_value,
        )
        .where(*scope)
        .group_by(InventoryItem.category)
        .order_by(category_value.desc())
        .limit(CATEGORY_STATS_LIMIT)
    ).all()

    return {
        "total_items": int(total),
        "total_value": _money(total_value),
        "low_stock_items": int(low_stock),
        "out_of_stock_items": int(out_of_stock),
        "healthy_items": int(total) - int(low_stock),
        "by_status": [
            {"status": status, "count": int(count), "total_value": _money(value)}
            for status, count, value in status_rows
        ],
        "by_category": [
            {
                "category": category,
                "count": int(count),
                "total_quantity": int(quantity),
                "total_value": _money(value),
            }
            for category, count, quantity, value in category_rows
        ],
    }
