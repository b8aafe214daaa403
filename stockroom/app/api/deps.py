from __future__ import annotations

from typing import Generator

from fastapi import Header

from stockroom.app.db.session import SessionLocal


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(x_user_id: int | None = Header(default=None, alias="X-User-Id")) -> int | None:
    # Identité déjà authentifiée en amont : on la propage seulement
    return x_user_id
