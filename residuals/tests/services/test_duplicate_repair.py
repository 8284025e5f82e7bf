import pytest
from sqlalchemy import func, select

from residuals.core.errors import ValidationError
from residuals.models.deal import Deal
from residuals.models.payout import Payout
from residuals.models.revenue_event import RevenueEvent
from residuals.services.duplicate_repair import STEPS, VERSION
from residuals.services.event_service import EventService
from residuals.tests.factories import PARTICIPANTS, assign_and_confirm

STALE = [
    {"partner_airtable_id": "recOld1", "partner_name": "Old Agent", "partner_role": "Agent", "split_pct": 60},
    {"partner_airtable_id": "recOld2", "partner_name": "Old Fund", "partner_role": "Fund", "split_pct": 40},
]


@pytest.fixture
def duplicated(db, deal_service, history, settings):
    """
    0022660744: the kept copy, stale partners.
    22660744:   the duplicate, correct partners.
    555:        an ordinary merchant with no sibling.
    """
    events = EventService(history, settings)
    assign_and_confirm(db, deal_service, events, "0022660744", participants=STALE)
    event_id, _, _ = assign_and_confirm(db, deal_service, events, "22660744", participants=PARTICIPANTS)
    assign_and_confirm(db, deal_service, events, "555")
    return event_id


def _payout_count(db, mid):
    return db.execute(select(func.count()).select_from(Payout).where(Payout.mid == mid)).scalar_one()


def test_count(repair, db, duplicated):
    res = repair.count(db)
    assert res.details == {"payouts": 2, "deals": 1}
    assert res.message == "Found 2 duplicate payout(s) and 1 duplicate deal(s)"


def test_unknown_step(repair):
    with pytest.raises(ValidationError):
        repair.step("drop_everything")


def test_dry_run_changes_nothing(repair, db, duplicated):
    results = repair.run_all(db, dry_run=True)

    assert [r.step for r in results] == list(STEPS)
    by_step = {r.step: r for r in results}
    assert by_step["update_payouts"].affected_count == 2
    assert by_step["update_payouts"].message == "[dry run] Would update 2 old payout records with correct partner info"
    assert by_step["delete_deals"].message == "[dry run] Would delete 1 duplicate deal records"

    db.expire_all()
    names = set(db.execute(select(Payout.partner_name).where(Payout.mid == "0022660744")).scalars())
    assert names == {"Old Agent", "Old Fund"}
    assert _payout_count(db, "22660744") == 2
    assert db.execute(select(Deal).where(Deal.mid == "22660744")).first() is not None


def test_update_steps_copy_partner_data(repair, db, duplicated):
    res = repair.update_payouts(db, dry_run=False)
    assert res.affected_count == 2
    assert res.message == "Updated 2 old payout records with correct partner info"

    rows = db.execute(select(Payout).where(Payout.mid == "0022660744")).scalars().all()
    assert {(p.partner_airtable_id, p.partner_name) for p in rows} == {
        ("recAgent1", "Ann Agent"),
        ("recFund1", "Fund One"),
    }

    assert repair.update_deals(db, dry_run=False).affected_count == 1
    kept = db.execute(select(Deal).where(Deal.mid == "0022660744")).scalar_one()
    assert [p["partner_airtable_id"] for p in kept.participants_json] == ["recAgent1", "recFund1"]

    # already aligned
    assert repair.update_payouts(db, dry_run=False).affected_count == 0
    assert repair.update_deals(db, dry_run=False).affected_count == 0


def test_delete_steps_only_touch_duplicates(repair, db, duplicated):
    assert repair.delete_payouts(db, dry_run=False).affected_count == 2
    assert _payout_count(db, "22660744") == 0
    assert _payout_count(db, "0022660744") == 2
    assert _payout_count(db, "555") == 2

    res = repair.delete_deals(db, dry_run=False)
    assert res.affected_count == 1
    assert res.details is None
    assert {d.mid for d in db.execute(select(Deal)).scalars()} == {"0022660744", "555"}

    ev = db.get(RevenueEvent, duplicated)
    assert ev.assignment_status == "unassigned"
    assert ev.deal_id is None


def test_rerun_is_a_no_op(repair, db, duplicated):
    repair.run_all(db, dry_run=False)
    again = repair.run_all(db, dry_run=False)
    assert [r.affected_count for r in again] == [0, 0, 0, 0, 0]


def test_committed_steps_are_logged(repair, history, db, duplicated):
    repair.update_payouts(db, dry_run=False)
    repair.count(db)

    actions = history.list_actions(db, entity_type="merchant")
    assert [a.entity_id for a in actions] == [f"{VERSION}:update_payouts"]
    assert actions[0].action_type == "maintenance"


def test_even_split_pairs_each_partner_once(repair, db, deal_service, history, settings):
    events = EventService(history, settings)
    half = [
        {"partner_airtable_id": "recA", "partner_name": "Partner A", "partner_role": "Agent", "split_pct": 50},
        {"partner_airtable_id": "recB", "partner_name": "Partner B", "partner_role": "Agent", "split_pct": 50},
    ]
    stale = [dict(p, partner_airtable_id=f"old{i}", partner_name=f"Old {i}") for i, p in enumerate(half, 1)]
    assign_and_confirm(db, deal_service, events, "0033", participants=stale)
    assign_and_confirm(db, deal_service, events, "33", participants=half)

    assert repair.update_payouts(db, dry_run=False).affected_count == 2

    partners = sorted(db.execute(select(Payout.partner_airtable_id).where(Payout.mid == "0033")).scalars())
    assert partners == ["recA", "recB"]
    assert repair.update_payouts(db, dry_run=False).affected_count == 0
