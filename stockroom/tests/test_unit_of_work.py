import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from stockroom.app.db.base import Base
from stockroom.app.db.models import models_v1  # noqa: F401  (enregistre les tables)
from stockroom.app.db.models.models_v1 import InventoryItem
from stockroom.app.db.session import make_engine
from stockroom.app.schemas.inventory import InventoryItemCreate, InventoryItemUpdate
from stockroom.services import inventory
from stockroom.services.errors import ConcurrencyConflict, NotFound
from stockroom.services.unit_of_work import is_identifier_conflict, transactional


class RecordingSession:
    """Session factice : on ne regarde que commit / rollback."""

    def __init__(self):
        self.calls = []

    def commit(self):
        self.calls.append("commit")

    def rollback(self):
        self.calls.append("rollback")


def _integrity_error(message: str) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception(message))


def _failing(*errors):
    """Lève les erreurs données dans l'ordre, puis retourne 'ok'."""
    pending = list(errors)
    attempts = []

    @transactional
    def operation(db):
        attempts.append(1)
        if pending:
            raise pending.pop(0)
        return "ok"

    return operation, attempts


def test_commits_on_success():
    db = RecordingSession()
    operation, attempts = _failing()

    assert operation(db) == "ok"
    assert db.calls == ["commit"]
    assert len(attempts) == 1


def test_domain_error_rolls_back_without_retry():
    db = RecordingSession()
    operation, attempts = _failing(NotFound("Inventory item", 1))

    with pytest.raises(NotFound):
        operation(db)

    assert db.calls == ["rollback"]
    assert len(attempts) == 1


@pytest.mark.parametrize(
    "error",
    [
        ConcurrencyConflict("locked"),
        StaleDataError("version mismatch"),
        _integrity_error("UNIQUE constraint failed: stock_transactions.transaction_number"),
    ],
)
def test_conflict_is_retried_once(error):
    db = RecordingSession()
    operation, attempts = _failing(error)

    assert operation(db) == "ok"
    assert db.calls == ["rollback", "commit"]
    assert len(attempts) == 2


def test_second_conflict_surfaces_as_concurrency_conflict():
    db = RecordingSession()
    operation, attempts = _failing(StaleDataError("v1"), StaleDataError("v2"))

    with pytest.raises(ConcurrencyConflict):
        operation(db)

    assert db.calls == ["rollback", "rollback"]
    assert len(attempts) == 2


def test_other_integrity_errors_are_not_retried():
    db = RecordingSession()
    operation, attempts = _failing(_integrity_error("CHECK constraint failed: ck_stock_transaction_qty_pos"))

    with pytest.raises(IntegrityError):
        operation(db)

    assert len(attempts) == 1


@pytest.mark.parametrize(
    "message, expected",
    [
        ("UNIQUE constraint failed: inventory.item_code", True),
        ('duplicate key value violates unique constraint "requisitions_requisition_number_key"', True),
        ("UNIQUE constraint failed: identifier_counters.scope", True),
        ("FOREIGN KEY constraint failed", False),
        ("NOT NULL constraint failed: inventory.name", False),
    ],
)
def test_is_identifier_conflict(message, expected):
    assert is_identifier_conflict(_integrity_error(message)) is expected


# ---------- Deux sessions sur une vraie base ----------
@pytest.fixture
def two_sessions(tmp_path):
    """Base SQLite fichier : chaque session a sa propre connexion."""
    engine = make_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    first, second = factory(), factory()
    try:
        yield first, second
    finally:
        first.close()
        second.close()
        engine.dispose()


def test_stale_version_is_detected_across_sessions(two_sessions):
    """
    GIVEN
    - A lit un article
    - B modifie et commit le même article

    THEN
    - l'écriture de A sur sa version périmée lève StaleDataError
    """
    a, b = two_sessions
    item_id = inventory.create_item(b, InventoryItemCreate(name="Widget", category="Electronics")).id

    stale = a.get(InventoryItem, item_id)
    assert stale.location is None

    inventory.update_item(b, item_id, InventoryItemUpdate(location="B"))

    stale.location = "A"
    with pytest.raises(StaleDataError):
        a.flush()
    a.rollback()


def test_repeated_version_race_surfaces_as_concurrency_conflict(two_sessions):
    """
    GIVEN
    - une opération transactionnelle sur A qui lit puis écrit un article
    - B commit une écriture concurrente entre la lecture et l'écriture, à chaque tentative

    THEN
    - deux tentatives, puis ConcurrencyConflict
    - la dernière écriture de B est conservée
    """
    a, b = two_sessions
    item_id = inventory.create_item(b, InventoryItemCreate(name="Widget", category="Electronics")).id
    attempts = []

    @transactional
    def relocate(db):
        attempts.append(1)
        item = db.get(InventoryItem, item_id)
        assert item.name == "Widget"
        inventory.update_item(b, item_id, InventoryItemUpdate(location=f"L{len(attempts)}"))
        item.location = "A"
        db.flush()

    with pytest.raises(ConcurrencyConflict):
        relocate(a)

    assert len(attempts) == 2
    a.expire_all()
    assert a.get(InventoryItem, item_id).location == "L2"
