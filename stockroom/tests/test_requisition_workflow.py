from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stockroom.app.db.models.core_types import Priority, RequisitionStatus
from stockroom.app.db.models.models_v1 import Requisition, RequisitionItem
from stockroom.app.schemas.requisition import (
    ReceiveLine,
    RequisitionItemCreate,
    RequisitionItemUpdate,
    RequisitionUpdate,
)
from stockroom.services import procurement
from stockroom.services.errors import InvalidStateTransition, NotFound, ValidationError

S = RequisitionStatus

TWO_LINES = [
    {"item_name": "Pipettes", "quantity": 3, "estimated_unit_cost": Decimal("10.00")},
    {"item_name": "Gloves", "quantity": 2, "estimated_unit_cost": Decimal("5.00")},
]


def _bring_to(db, req_id: int, status: RequisitionStatus) -> None:
    """Fait avancer une réquisition pending jusqu'à `status` par les transitions légales."""
    paths = {
        S.pending: [],
        S.approved: ["approve"],
        S.rejected: ["reject"],
        S.ordered: ["approve", "order"],
        S.received: ["approve", "order", "receive"],
        S.cancelled: ["cancel"],
    }
    for action in paths[status]:
        _attempt(db, req_id, action)


def _attempt(db, req_id: int, action: str):
    if action == "approve":
        return procurement.approve(db, req_id, approved_by=2)
    if action == "reject":
        return procurement.reject(db, req_id, "Over budget", rejected_by=2)
    if action == "order":
        return procurement.order(db, req_id, ordered_by=3, vendor_id=9, po_number="PO-1")
    if action == "receive":
        return procurement.receive(db, req_id, received_by=4)
    if action == "cancel":
        return procurement.cancel(db, req_id, cancelled_by=5)
    raise AssertionError(action)


def _status(db, req_id: int) -> RequisitionStatus:
    db.expire_all()
    return procurement.get_requisition(db, req_id).status


# ---------- Création / totaux ----------
def test_create_requisition(make_requisition):
    req = make_requisition(items=TWO_LINES, priority=Priority.high, vertical_id=3)

    year = datetime.now(timezone.utc).year
    assert req.requisition_number == f"REQ-{year}-001"
    assert req.status == S.pending
    assert req.priority == Priority.high
    assert req.requested_by == 1
    assert len(req.items) == 2


def test_estimated_total_follows_line_deletion(db_session, make_requisition):
    req = make_requisition(items=TWO_LINES)
    assert req.estimated_total == Decimal("40.00")

    pipettes = next(line for line in req.items if line.item_name == "Pipettes")
    req = procurement.delete_item(db_session, req.id, pipettes.id)

    assert req.estimated_total == Decimal("10.00")
    assert [line.item_name for line in req.items] == ["Gloves"]


def test_add_and_update_item_recompute_total(db_session, make_requisition):
    req = make_requisition(items=TWO_LINES)

    req = procurement.add_item(
        db_session,
        req.id,
        RequisitionItemCreate(item_name="Tips", quantity=10, estimated_unit_cost=Decimal("0.50")),
    )
    assert req.estimated_total == Decimal("45.00")

    gloves = next(line for line in req.items if line.item_name == "Gloves")
    req = procurement.update_item(db_session, req.id, gloves.id, RequisitionItemUpdate(quantity=4))
    assert req.estimated_total == Decimal("55.00")

    expected = sum(line.quantity * line.estimated_unit_cost for line in req.items)
    assert req.estimated_total == expected


def test_line_total_uses_actual_cost_when_known(db_session, make_requisition):
    req = make_requisition(items=TWO_LINES[:1])
    line = req.items[0]

    req = procurement.update_item(db_session, req.id, line.id, RequisitionItemUpdate(actual_unit_cost=Decimal("12.00")))

    assert req.items[0].total_cost == Decimal("36.00")
    # Le total estimé reste sur le coût estimé
    assert req.estimated_total == Decimal("30.00")


def test_update_item_allowed_while_approved(db_session, make_requisition):
    req = make_requisition(items=TWO_LINES)
    procurement.approve(db_session, req.id, approved_by=2)

    req = procurement.update_item(db_session, req.id, req.items[0].id, RequisitionItemUpdate(notes="urgent"))

    assert req.items[0].notes == "urgent"


@pytest.mark.parametrize("status", [S.approved, S.ordered, S.received, S.rejected, S.cancelled])
def test_line_add_and_delete_only_while_pending(db_session, make_requisition, status):
    req = make_requisition(items=TWO_LINES)
    _bring_to(db_session, req.id, status)
    line_id = req.items[0].id

    with pytest.raises(InvalidStateTransition) as exc_info:
        procurement.add_item(db_session, req.id, RequisitionItemCreate(item_name="X", quantity=1))
    # Édition de ligne : pas de statut visé
    assert exc_info.value.attempted is None
    assert exc_info.value.action == "add item to"
    with pytest.raises(InvalidStateTransition):
        procurement.delete_item(db_session, req.id, line_id)

    count = db_session.execute(
        select(func.count(RequisitionItem.id)).where(RequisitionItem.requisition_id == req.id)
    ).scalar_one()
    assert count == 2


@pytest.mark.parametrize("status", [S.ordered, S.received, S.rejected, S.cancelled])
def test_update_item_blocked_after_approval_stage(db_session, make_requisition, status):
    req = make_requisition(items=TWO_LINES)
    _bring_to(db_session, req.id, status)

    with pytest.raises(InvalidStateTransition):
        procurement.update_item(db_session, req.id, req.items[0].id, RequisitionItemUpdate(quantity=99))


def test_unknown_line_and_unknown_inventory_link(db_session, make_requisition):
    req = make_requisition(items=TWO_LINES)

    with pytest.raises(NotFound):
        procurement.delete_item(db_session, req.id, 9999)
    with pytest.raises(NotFound):
        procurement.add_item(db_session, req.id, RequisitionItemCreate(item_name="X", quantity=1, inventory_id=555))


def test_update_header_only_while_pending(db_session, make_requisition):
    req = make_requisition()

    req = procurement.update_requisition(db_session, req.id, RequisitionUpdate(title="Renamed", notes="n"))
    assert (req.title, req.notes) == ("Renamed", "n")

    procurement.approve(db_session, req.id)
    with pytest.raises(InvalidStateTransition):
        procurement.update_requisition(db_session, req.id, RequisitionUpdate(title="Late"))

    with pytest.raises(ValidationError):
        procurement.update_requisition(db_session, req.id, RequisitionUpdate())


# ---------- Machine à états ----------
def test_double_approve_and_early_order_are_rejected(db_session, make_requisition):
    req = make_requisition()

    approved = procurement.approve(db_session, req.id, approved_by=2)
    assert approved.status == S.approved
    assert approved.approved_by == 2
    assert approved.approved_date is not None

    with pytest.raises(InvalidStateTransition) as exc_info:
        procurement.approve(db_session, req.id, approved_by=2)
    assert exc_info.value.current == "approved"
    assert exc_info.value.attempted == "approved"
    assert exc_info.value.action == "approve"

    fresh = make_requisition(title="Fresh")
    with pytest.raises(InvalidStateTransition):
        procurement.order(db_session, fresh.id, ordered_by=3)
    assert _status(db_session, fresh.id) == S.pending


LEGAL = {
    (S.pending, "approve"): S.approved,
    (S.pending, "reject"): S.rejected,
    (S.pending, "cancel"): S.cancelled,
    (S.approved, "order"): S.ordered,
    (S.approved, "cancel"): S.cancelled,
    (S.ordered, "receive"): S.received,
    (S.ordered, "cancel"): S.cancelled,
}

TARGETS = {
    "approve": S.approved,
    "reject": S.rejected,
    "order": S.ordered,
    "receive": S.received,
    "cancel": S.cancelled,
}

ALL_PAIRS = [(status, action) for status in S for action in ("approve", "reject", "order", "receive", "cancel")]


@pytest.mark.parametrize("status, action", ALL_PAIRS)
def test_transition_matrix(db_session, make_requisition, status, action):
    req = make_requisition(items=TWO_LINES)
    _bring_to(db_session, req.id, status)

    if (status, action) in LEGAL:
        result = _attempt(db_session, req.id, action)
        assert result.status == LEGAL[(status, action)]
    else:
        with pytest.raises(InvalidStateTransition) as exc_info:
            _attempt(db_session, req.id, action)
        assert exc_info.value.current == status.value
        assert exc_info.value.attempted == TARGETS[action].value
        assert exc_info.value.action == action
        assert _status(db_session, req.id) == status


def test_transition_fields(db_session, make_requisition):
    req = make_requisition()
    procurement.approve(db_session, req.id, approved_by=2)
    req = procurement.order(db_session, req.id, ordered_by=3, vendor_id=9, po_number="PO-77")

    assert (req.ordered_by, req.vendor_id, req.po_number) == (3, 9, "PO-77")
    assert req.ordered_date is not None

    req = procurement.cancel(db_session, req.id, cancelled_by=5)
    assert req.cancelled_by == 5
    assert req.cancelled_date is not None


def test_reject_requires_reason(db_session, make_requisition):
    req = make_requisition()

    with pytest.raises(ValidationError):
        procurement.reject(db_session, req.id, "  ", rejected_by=2)

    req = procurement.reject(db_session, req.id, "Duplicate request", rejected_by=2)
    assert req.rejection_reason == "Duplicate request"
    assert req.rejected_by == 2


def test_unknown_requisition(db_session):
    with pytest.raises(NotFound):
        procurement.approve(db_session, 404)


@pytest.mark.parametrize(
    "status, deletable",
    [(S.pending, True), (S.rejected, True), (S.cancelled, True),
     (S.approved, False), (S.ordered, False), (S.received, False)],
)
def test_delete_rules(db_session, make_requisition, status, deletable):
    req = make_requisition(items=TWO_LINES)
    _bring_to(db_session, req.id, status)

    if deletable:
        procurement.delete_requisition(db_session, req.id)
        assert db_session.get(Requisition, req.id) is None
        assert db_session.execute(select(func.count(RequisitionItem.id))).scalar_one() == 0
    else:
        with pytest.raises(InvalidStateTransition):
            procurement.delete_requisition(db_session, req.id)
        assert _status(db_session, req.id) == status


def test_receive_rejects_foreign_line(db_session, make_requisition):
    req = make_requisition(items=TWO_LINES)
    _bring_to(db_session, req.id, S.ordered)

    with pytest.raises(NotFound):
        procurement.receive(db_session, req.id, lines=[ReceiveLine(item_id=9999, received_quantity=1)])
    assert _status(db_session, req.id) == S.ordered


# ---------- Lecture ----------
def test_list_requisitions_filters(db_session, make_requisition):
    a = make_requisition(vertical_id=1, priority=Priority.urgent)
    b = make_requisition(vertical_id=2)
    procurement.approve(db_session, b.id)

    assert [r.id for r in procurement.list_requisitions(db_session, vertical_id=1)] == [a.id]
    assert [r.id for r in procurement.list_requisitions(db_session, status=S.approved)] == [b.id]
    assert [r.id for r in procurement.list_requisitions(db_session, priority=Priority.urgent)] == [a.id]


def test_stats(db_session, make_requisition):
    a = make_requisition(items=TWO_LINES, priority=Priority.high)
    make_requisition(items=TWO_LINES[1:])

    # Approbation 2 jours après création
    a_row = db_session.get(Requisition, a.id)
    a_row.created_at = datetime.now(timezone.utc) - timedelta(days=2)
    db_session.commit()
    procurement.approve(db_session, a.id)

    stats = procurement.get_stats(db_session)

    assert stats["total_requisitions"] == 2
    assert stats["pending_requisitions"] == 1
    assert stats["total_value"] == Decimal("50.00")
    assert stats["avg_processing_days"] == "2.00"
    assert {b["status"]: b["count"] for b in stats["by_status"]} == {S.pending: 1, S.approved: 1}
    assert {b["priority"]: b["count"] for b in stats["by_priority"]} == {Priority.high: 1, Priority.medium: 1}


def test_stats_without_processed_requisitions(db_session, make_requisition):
    make_requisition()

    assert procurement.get_stats(db_session)["avg_processing_days"] == "0.00"
