import uuid

import pytest
from sqlalchemy import func, select

from residuals.core.errors import NotFoundError, ValidationError
from residuals.models.deal import Deal
from residuals.models.enums import AssignmentStatus
from residuals.models.payout import Payout
from residuals.models.revenue_event import RevenueEvent
from residuals.tests.factories import assign_and_confirm, make_event


def test_split_total_below_band_is_rejected(deal_service, db):
    make_event(db, "111")
    with pytest.raises(ValidationError) as exc:
        deal_service.assign_participants(
            db,
            mid="111",
            payout_type="residual",
            participants=[{"partner_id": "a", "split_pct": 40}, {"partner_id": "b", "split_pct": 39.9}],
        )
    assert "Total split (79.9%) should be between 80% and 105%" in str(exc.value)
    assert db.execute(select(func.count()).select_from(Deal)).scalar_one() == 0


def test_split_band_edges_are_inclusive(deal_service):
    assert deal_service.validate_split([{"split_pct": 80}]) == 80
    assert deal_service.validate_split([{"split_pct": 100}, {"split_pct": 5}]) == 105
    with pytest.raises(ValidationError):
        deal_service.validate_split([{"split_pct": 105.01}])


def test_empty_participants_rejected(deal_service):
    with pytest.raises(ValidationError):
        deal_service.validate_split([])


def test_assign_creates_deal_and_moves_events_to_pending(deal_service, db, participants):
    e1 = make_event(db, "123456")
    e2 = make_event(db, "123456", payout_month="2025-02")

    res = deal_service.assign_participants(db, mid="123456", payout_type="residual", participants=participants)

    assert res.created is True
    assert res.events_updated == 2
    assert res.deal.mid == "123456"
    assert res.deal.deal_id.startswith("deal_")
    assert res.deal.assigned_agent_name == "Ann Agent"

    for ev_id in (e1.id, e2.id):
        ev = db.get(RevenueEvent, ev_id)
        assert ev.assignment_status == AssignmentStatus.pending.value
        assert ev.deal_id == res.deal.id
        assert ev.assigned_agent_id == "recAgent1"


def test_second_assignment_updates_the_same_deal(deal_service, db, participants):
    make_event(db, "555")
    first = deal_service.assign_participants(db, mid="555", payout_type="residual", participants=participants)
    second = deal_service.assign_participants(
        db,
        mid="555",
        payout_type="upfront",
        participants=[{"agent_id": "recSolo", "name": "Solo", "split": 100}],
    )

    assert second.created is False
    assert second.deal.id == first.deal.id
    assert db.execute(select(func.count()).select_from(Deal).where(Deal.mid == "555")).scalar_one() == 1
    assert second.deal.payout_type == "upfront"
    assert second.deal.participants_json == [
        {"partner_airtable_id": "recSolo", "partner_name": "Solo", "partner_role": "Partner", "split_pct": 100.0}
    ]


def test_assign_only_listed_events(deal_service, db, participants):
    keep = make_event(db, "777")
    target = make_event(db, "777", payout_month="2025-02")
    deal_service.assign_participants(
        db, mid="777", payout_type="residual", participants=participants, event_ids=[target.id]
    )
    assert db.get(RevenueEvent, keep.id).assignment_status == AssignmentStatus.unassigned.value
    assert db.get(RevenueEvent, target.id).assignment_status == AssignmentStatus.pending.value


def test_reject_deal_cascades(deal_service, event_service, db):
    event_id, deal, _ = assign_and_confirm(db, deal_service, event_service, "888")
    deal_pk = deal.id
    assert db.execute(select(func.count()).select_from(Payout)).scalar_one() == 2

    result = deal_service.reject_deal(db, deal_pk)

    assert result.ok
    assert db.get(Deal, deal_pk) is None
    assert db.execute(select(func.count()).select_from(Payout)).scalar_one() == 0
    ev = db.get(RevenueEvent, event_id)
    assert ev.assignment_status == AssignmentStatus.unassigned.value
    assert ev.deal_id is None
    assert ev.assigned_agent_name is None


def test_reject_deal_with_two_confirmed_events_clears_all_payouts(deal_service, event_service, db, participants):
    first = make_event(db, "890", payout_month="2025-01")
    second = make_event(db, "890", payout_month="2025-02")
    ids = [first.id, second.id]
    deal = deal_service.assign_participants(
        db, mid="890", payout_type="residual", participants=participants, event_ids=ids
    ).deal
    deal_pk = deal.id
    event_service.confirm_events(db, ids)
    assert db.execute(select(func.count()).select_from(Payout)).scalar_one() == 4

    result = deal_service.reject_deal(db, deal_pk)

    assert result.ok
    assert db.execute(select(func.count()).select_from(Payout)).scalar_one() == 0
    for event_id in ids:
        ev = db.get(RevenueEvent, event_id)
        assert ev.assignment_status == AssignmentStatus.unassigned.value
        assert ev.deal_id is None


def test_reject_deal_can_be_rerun_after_partial_failure(deal_service, db, participants):
    make_event(db, "889")
    deal = deal_service.assign_participants(db, mid="889", payout_type="residual", participants=participants).deal
    steps = deal_service.cascade_steps(deal, [])
    # running the steps twice is harmless
    for _attempt in range(2):
        for _name, step in steps:
            step(db)
        db.commit()
    assert db.get(Deal, deal.id) is None


def test_delete_deal_logs_distinct_description(deal_service, db, history, participants):
    make_event(db, "999")
    deal = deal_service.assign_participants(db, mid="999", payout_type="residual", participants=participants).deal
    deal_service.delete_deal(db, deal.id)

    actions = history.list_actions(db, entity_type="deal")
    assert actions[0].description == "Deleted deal 999"
    assert actions[0].previous_data["deal"]["mid"] == "999"


def test_get_deal_by_mid_and_missing(deal_service, db, participants):
    make_event(db, "444")
    deal_service.assign_participants(db, mid="444", payout_type="residual", participants=participants)
    assert deal_service.get_deal_by_mid(db, "444").mid == "444"
    assert deal_service.get_deal_by_mid(db, "nope") is None
    with pytest.raises(NotFoundError):
        deal_service.get_deal(db, uuid.uuid4())


def test_list_deals_search_matches_participant_and_merchant(deal_service, db, participants):
    make_event(db, "1001", merchant_name="Blue Bottle")
    make_event(db, "1002", merchant_name="Red Door")
    deal_service.assign_participants(db, mid="1001", payout_type="residual", participants=participants)
    deal_service.assign_participants(
        db, mid="1002", payout_type="residual", participants=[{"partner_id": "recX", "name": "Xavier", "split": 100}]
    )

    items, total = deal_service.list_deals(db, search="xavier")
    assert total == 1 and items[0]["mid"] == "1002"

    items, total = deal_service.list_deals(db, search="blue")
    assert total == 1 and items[0]["merchant_name"] == "Blue Bottle"

    items, total = deal_service.list_deals(db, page=2, limit=1)
    assert total == 2 and len(items) == 1


def test_update_deal_validates_and_keeps_payouts(deal_service, event_service, db):
    _, deal, _ = assign_and_confirm(db, deal_service, event_service, "2020")
    with pytest.raises(ValidationError):
        deal_service.update_deal(db, deal.id, participants=[{"partner_id": "a", "split_pct": 10}])

    updated = deal_service.update_deal(
        db, deal.id, participants=[{"partner_id": "recNew", "name": "New", "split_pct": 100}],
        available_to_purchase=True,
    )
    assert updated.available_to_purchase is True
    assert updated.participants_json[0]["partner_airtable_id"] == "recNew"
    names = set(db.execute(select(Payout.partner_name)).scalars())
    assert names == {"Ann Agent", "Fund One"}
