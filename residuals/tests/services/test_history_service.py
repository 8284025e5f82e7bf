import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from residuals.core.errors import NotFoundError, ValidationError
from residuals.models.action_history import ActionHistory
from residuals.models.deal import Deal
from residuals.models.payout import Payout
from residuals.models.revenue_event import RevenueEvent
from residuals.services.history_service import ActionHistoryService
from residuals.tests.factories import assign_and_confirm


def _count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def test_undo_deal_reject_brings_events_back_pending(history, deal_service, event_service, db):
    event_id, deal, _ = assign_and_confirm(db, deal_service, event_service, "123456")
    deal_id = deal.id
    deal_service.reject_deal(db, deal_id)
    assert _count(db, Deal) == 0

    action = history.list_actions(db, entity_type="deal")[0]
    assert action.action_type == "reject"
    history.undo(db, action.id)

    db.expire_all()
    restored = db.get(Deal, deal_id)
    assert restored is not None
    assert [p["partner_airtable_id"] for p in restored.participants_json] == ["recAgent1", "recFund1"]
    ev = db.get(RevenueEvent, event_id)
    assert ev.assignment_status == "pending"
    assert ev.deal_id == deal_id

    # payouts come back through a fresh confirm
    out = event_service.confirm_events(db, [event_id])
    assert out.payouts_created == 2


def test_undo_payout_update(history, payout_service, deal_service, event_service, db):
    assign_and_confirm(db, deal_service, event_service, "123456")
    pid = db.execute(select(Payout.id).where(Payout.partner_airtable_id == "recAgent1")).scalar_one()
    payout_service.update_payout(db, pid, partner_split_pct=55, paid_status="paid")

    action = history.list_actions(db, entity_type="payout", entity_id=str(pid))[0]
    history.undo(db, action.id)

    db.expire_all()
    row = db.get(Payout, pid)
    assert row.partner_split_pct == Decimal("60")
    assert row.paid_status == "unpaid"
    assert row.paid_at is None


def test_undo_force_delete_restores_event_deal_and_payouts(history, deal_service, event_service, db):
    event_id, _, _ = assign_and_confirm(db, deal_service, event_service, "123456")
    event_service.force_delete_event(db, event_id)
    assert _count(db, RevenueEvent) == 0

    action = history.list_actions(db, entity_type="event", entity_id=str(event_id))[0]
    history.undo(db, action.id)

    assert _count(db, RevenueEvent) == 1
    assert _count(db, Deal) == 1
    assert _count(db, Payout) == 2


def test_undo_twice_is_rejected(history, payout_service, deal_service, event_service, db):
    assign_and_confirm(db, deal_service, event_service, "123456")
    pid = db.execute(select(Payout.id).limit(1)).scalar_one()
    payout_service.update_payout(db, pid, partner_split_pct=1)
    action = history.list_actions(db, entity_type="payout", entity_id=str(pid))[0]

    undone = history.undo(db, action.id)
    assert undone.is_undone is True
    assert undone.undone_at is not None
    with pytest.raises(ValidationError):
        history.undo(db, action.id)

    # the undo itself is logged
    latest = history.list_actions(db, entity_type="payout", entity_id=str(pid))[0]
    assert latest.action_type == "undo"
    assert latest.description.startswith("Undid: ")


def test_undo_unknown_action(history, db):
    with pytest.raises(NotFoundError):
        history.undo(db, uuid.uuid4())


def test_undo_without_snapshot(history, import_service, db):
    import_service.import_csv(db, "MID,Fees\n1,10\n")
    action = history.list_actions(db)[0]
    with pytest.raises(ValidationError):
        history.undo(db, action.id)


def test_background_writer(session_factory, db):
    svc = ActionHistoryService(session_factory, background=True)
    for i in range(5):
        svc.log_action(action_type="update", entity_type="deal", entity_id=i, description=f"change {i}")
    svc.wait_idle()
    assert _count(db, ActionHistory) == 5


def test_failed_write_never_reaches_the_caller(db):
    def broken_factory():
        raise RuntimeError("database is gone")

    svc = ActionHistoryService(broken_factory, background=False)
    svc.log_action(action_type="update", entity_type="deal", entity_id="x", description="lost")
    assert _count(db, ActionHistory) == 0
