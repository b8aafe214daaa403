"""
Journal d'audit côté appelant.

Les services retournent l'agrégat complet ; l'endpoint écrit ensuite
un snapshot {"before", "after"} dans audit_log, dans sa propre
transaction (l'opération métier est déjà commitée).
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel
from sqlalchemy.orm import Session

from stockroom.app.db.models.models_v1 import AuditLog

logger = logging.getLogger(__name__)


def snapshot(schema: type[BaseModel], obj) -> dict | None:
    if obj is None:
        return None
    return schema.model_validate(obj).model_dump(mode="json")


def record_audit(
    db: Session,
    *,
    actor_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int,
    before: dict | None = None,
    after: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        meta=json.dumps({"before": before, "after": after}),
    )
    db.add(entry)
    db.commit()
    logger.info("audit %s %s:%s by %s", action, entity_type, entity_id, actor_id)
    return entry
