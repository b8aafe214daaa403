"""
Unité de travail transactionnelle.

Toute opération publique qui mute la base passe par `@transactional` :
- commit si la fonction retourne,
- rollback sur n'importe quelle exception,
- UN seul rejeu sur conflit de concurrence (version optimiste périmée,
  verrou perdu, identifiant généré déjà pris). Le rejeu relit tout,
  donc les gardes sont re-vérifiées.
"""

from __future__ import annotations

import functools
import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockroom.services.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2

# Colonnes uniques alimentées par le générateur d'identifiants
_GENERATED_KEYS = ("identifier_counters", "item_code", "transaction_number", "requisition_number")

T = TypeVar("T")


def is_identifier_conflict(exc: IntegrityError) -> bool:
    message = str(exc).lower()
    return any(key in message for key in _GENERATED_KEYS) and (
        "unique" in message or "duplicate" in message
    )


def transactional(fn: Callable[..., T]) -> Callable[..., T]:
    @functools.wraps(fn)
    def wrapper(db: Session, *args, **kwargs) -> T:
        for attempt in range(MAX_ATTEMPTS):
            try:
                result = fn(db, *args, **kwargs)
                db.commit()
                return result
            except (ConcurrencyConflict, StaleDataError, IntegrityError) as exc:
                db.rollback()
                if isinstance(exc, IntegrityError) and not is_identifier_conflict(exc):
                    raise
                if attempt >= MAX_ATTEMPTS - 1:
                    if isinstance(exc, ConcurrencyConflict):
                        raise
                    raise ConcurrencyConflict(f"{fn.__name__}: concurrent modification, retry later") from exc
                logger.warning("%s: conflict on attempt %d, retrying (%s)", fn.__name__, attempt + 1, exc)
            except Exception:
                db.rollback()
                raise
        raise AssertionError("unreachable")

    return wrapper
