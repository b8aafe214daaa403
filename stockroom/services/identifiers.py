"""
Génération des identifiants lisibles.

    item_code           {PFX}-{seq:04d}        PFX = 3 premières lettres de la catégorie (GEN sinon)
    transaction_number  STX-{year}-{seq:04d}
    requisition_number  REQ-{year}-{seq:03d}

Les séquences viennent de `identifier_counters` (incrément sous verrou de
ligne), jamais d'un compteur en mémoire. À la première utilisation d'un
scope, le compteur est amorcé avec COUNT(code LIKE 'prefix%') pour reprendre
la numérotation des données existantes.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select, func
from sqlalchemy.orm import InstrumentedAttribute, Session

from stockroom.app.db.models.models_v1 import (
    IdentifierCounter,
    InventoryItem,
    StockTransaction,
    Requisition,
)
from stockroom.services.errors import Conflict

DEFAULT_CATEGORY_PREFIX = "GEN"

# Garde-fou : nombre de séquences tirées avant d'abandonner sur collision
MAX_DRAWS = 50


def category_prefix(category: str | None) -> str:
    cleaned = (category or "").strip()
    if not cleaned:
        return DEFAULT_CATEGORY_PREFIX
    return cleaned[:3].upper()


def format_item_code(prefix: str, sequence: int) -> str:
    return f"{prefix}-{sequence:04d}"


def format_transaction_number(year: int, sequence: int) -> str:
    return f"STX-{year}-{sequence:04d}"


def format_requisition_number(year: int, sequence: int) -> str:
    return f"REQ-{year}-{sequence:03d}"


def _count_like(db: Session, column: InstrumentedAttribute, prefix: str) -> int:
    return int(
        db.execute(select(func.count()).where(column.like(f"{prefix}%"))).scalar_one()
    )


def next_sequence(db: Session, scope: str, column: InstrumentedAttribute, like_prefix: str) -> int:
    """Incrémente et retourne le compteur du scope (verrou FOR UPDATE)."""
    counter = (
        db.execute(
            select(IdentifierCounter)
            .where(IdentifierCounter.scope == scope)
            .with_for_update()
        )
        .scalar_one_or_none()
    )
    if counter is None:
        counter = IdentifierCounter(scope=scope, value=_count_like(db, column, like_prefix))
        db.add(counter)

    counter.value += 1
    db.flush()
    return int(counter.value)


def _exists(db: Session, column: InstrumentedAttribute, value: str) -> bool:
    return db.execute(select(column).where(column == value).limit(1)).first() is not None


def _allocate(db: Session, scope: str, like_prefix: str, column: InstrumentedAttribute, fmt) -> str:
    for _ in range(MAX_DRAWS):
        candidate = fmt(next_sequence(db, scope, column, like_prefix))
        if not _exists(db, column, candidate):
            return candidate
    raise Conflict(f"Could not allocate a free identifier for scope {scope}")


def _current_year(now: datetime | None) -> int:
    return (now or datetime.now(timezone.utc)).year


def generate_item_code(db: Session, category: str | None) -> str:
    prefix = category_prefix(category)
    return _allocate(
        db,
        f"item:{prefix}",
        f"{prefix}-",
        InventoryItem.item_code,
        lambda seq: format_item_code(prefix, seq),
    )


def generate_transaction_number(db: Session, now: datetime | None = None) -> str:
    year = _current_year(now)
    return _allocate(
        db,
        f"STX-{year}",
        f"STX-{year}-",
        StockTransaction.transaction_number,
        lambda seq: format_transaction_number(year, seq),
    )


def generate_requisition_number(db: Session, now: datetime | None = None) -> str:
    year = _current_year(now)
    return _allocate(
        db,
        f"REQ-{year}",
        f"REQ-{year}-",
        Requisition.requisition_number,
        lambda seq: format_requisition_number(year, seq),
    )
