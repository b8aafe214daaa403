import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from stockroom.app.api.deps import get_db
from stockroom.app.db.base import Base
from stockroom.app.db.models import models_v1  # noqa: F401  (enregistre les tables)
from stockroom.app.db.session import make_engine
from stockroom.app.main import app


@pytest.fixture(scope="function")
def engine():
    """
    Moteur SQLite en mémoire, neuf pour chaque test.

    Les services commitent eux-mêmes (unité de travail) : pas de SAVEPOINT
    englobant, on jette simplement le schéma à la fin.
    """
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def api_client(session_factory):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app, raise_server_exceptions=False) as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_item(db_session):
    """Fabrique d'articles via le ledger (quantité initiale postée)."""
    from stockroom.app.schemas.inventory import InventoryItemCreate
    from stockroom.services import inventory

    def _make(**fields):
        fields.setdefault("name", "Widget")
        fields.setdefault("category", "Electronics")
        return inventory.create_item(db_session, InventoryItemCreate(**fields), created_by=1)

    return _make


@pytest.fixture
def make_requisition(db_session):
    from stockroom.app.schemas.requisition import RequisitionCreate
    from stockroom.services import procurement

    def _make(items=None, **fields):
        fields.setdefault("title", "Lab supplies")
        return procurement.create_requisition(
            db_session,
            RequisitionCreate(items=items or [], **fields),
            requested_by=1,
        )

    return _make
