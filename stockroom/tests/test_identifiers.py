from datetime import datetime, timezone

import pytest

from stockroom.app.db.models.models_v1 import IdentifierCounter, InventoryItem
from stockroom.services import identifiers
from stockroom.services.errors import Conflict
from stockroom.services.identifiers import (
    category_prefix,
    generate_item_code,
    generate_requisition_number,
    generate_transaction_number,
)


@pytest.mark.parametrize(
    "category, expected",
    [
        ("Electronics", "ELE"),
        ("office supplies", "OFF"),
        ("IT", "IT"),
        ("  lab  ", "LAB"),
        ("", "GEN"),
        (None, "GEN"),
    ],
)
def test_category_prefix(category, expected):
    assert category_prefix(category) == expected


def test_item_codes_are_sequential_per_prefix(make_item):
    first = make_item(category="Electronics")
    second = make_item(category="Electrical")
    other = make_item(category="Furniture")
    generic = make_item(category=None)

    assert first.item_code == "ELE-0001"
    assert second.item_code == "ELE-0002"
    assert other.item_code == "FUR-0001"
    assert generic.item_code == "GEN-0001"


def test_counter_is_seeded_from_existing_codes(db_session):
    """
    GIVEN
    - deux articles ELE importés sans compteur

    THEN
    - la séquence reprend après eux
    """
    db_session.add_all([
        InventoryItem(item_code="ELE-0001", name="legacy 1"),
        InventoryItem(item_code="ELE-0002", name="legacy 2"),
    ])
    db_session.flush()

    assert generate_item_code(db_session, "Electronics") == "ELE-0003"
    assert db_session.get(IdentifierCounter, "item:ELE").value == 3


def test_existing_candidate_is_skipped(db_session):
    # Un seul article mais qui porte déjà le numéro 2 : COUNT+1 collisionnerait
    db_session.add(InventoryItem(item_code="ELE-0002", name="legacy"))
    db_session.flush()

    assert generate_item_code(db_session, "Electronics") == "ELE-0003"


def test_transaction_numbers_are_scoped_per_year(db_session):
    y2025 = datetime(2025, 6, 1, tzinfo=timezone.utc)
    y2026 = datetime(2026, 1, 2, tzinfo=timezone.utc)

    assert generate_transaction_number(db_session, now=y2025) == "STX-2025-0001"
    assert generate_transaction_number(db_session, now=y2025) == "STX-2025-0002"
    assert generate_transaction_number(db_session, now=y2026) == "STX-2026-0001"


def test_requisition_number_format(db_session):
    now = datetime(2026, 3, 15, tzinfo=timezone.utc)

    assert generate_requisition_number(db_session, now=now) == "REQ-2026-001"
    assert generate_requisition_number(db_session, now=now) == "REQ-2026-002"


def test_item_scope_does_not_collide_with_year_scopes(db_session):
    now = datetime(2026, 3, 15, tzinfo=timezone.utc)

    # Catégorie "Requests" -> préfixe REQ, distinct du scope annuel REQ-2026
    assert generate_item_code(db_session, "Requests") == "REQ-0001"
    assert generate_requisition_number(db_session, now=now) == "REQ-2026-001"


def test_gives_up_after_max_draws(db_session, monkeypatch):
    monkeypatch.setattr(identifiers, "MAX_DRAWS", 3)
    monkeypatch.setattr(identifiers, "_exists", lambda db, column, value: True)

    with pytest.raises(Conflict):
        generate_item_code(db_session, "Electronics")

    assert db_session.get(IdentifierCounter, "item:ELE").value == 3
