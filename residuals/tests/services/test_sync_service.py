import pytest
from sqlalchemy import select

from residuals.core.config import Settings
from residuals.core.errors import ExternalServiceError, ValidationError
from residuals.models.payout import Payout
from residuals.services.airtable_client import AirtableClient
from residuals.services.event_service import EventService
from residuals.services.sync_service import SyncService, diff_fields
from residuals.tests.factories import assign_and_confirm


@pytest.fixture
def quiet_events(history, settings):
    # no confirm-time push; the external table starts empty
    return EventService(history, settings)


@pytest.fixture
def two_merchants(db, deal_service, quiet_events):
    assign_and_confirm(db, deal_service, quiet_events, "100", payout_month="2025-01")
    assign_and_confirm(db, deal_service, quiet_events, "200", payout_month="2025-02")


def test_first_sync_creates_everything(sync_service, airtable, db, two_merchants):
    plan = sync_service.compare(db)
    assert len(plan.new) == 4
    assert plan.changed == []
    assert plan.totals == {"local": 4, "remote": 0, "new": 4, "changed": 0, "unchanged": 0}

    out = sync_service.sync_payouts(db)
    assert out["created_count"] == 4
    assert out["errors"] == []
    assert len(airtable.records) == 4


def test_second_sync_is_a_no_op(sync_service, airtable, db, two_merchants):
    sync_service.sync_payouts(db)
    airtable.calls.clear()

    out = sync_service.sync_payouts(db)

    assert out["created_count"] == 0 and out["updated_count"] == 0
    assert out["unchanged_count"] == 4
    assert "POST" not in airtable.calls and "PATCH" not in airtable.calls
    # 4 records with page size 3
    assert airtable.calls.count("GET") == 2


def test_changed_records_send_only_differing_fields(sync_service, payout_service, airtable, db, two_merchants):
    sync_service.sync_payouts(db)
    payout_service.mark_paid(db, partner_id="recAgent1", payout_month="2025-01")

    plan = sync_service.compare(db)
    assert len(plan.changed) == 1
    assert set(plan.changed[0]["fields"]) == {"Paid Status", "Paid At"}

    sync_service.apply(plan.new, plan.changed)
    paid_id = db.execute(select(Payout.id).where(Payout.paid_status == "paid")).scalar_one()
    assert airtable.by_payout_id(paid_id)["fields"]["Paid Status"] == "paid"
    assert sync_service.compare(db).changed == []


def test_month_filter(sync_service, db, two_merchants):
    plan = sync_service.compare(db, payout_month="2025-02")
    assert plan.totals["local"] == 2
    assert {f["Payout Month"] for f in plan.new} == {"2025-02"}


def test_failed_batches_are_reported_and_do_not_stop_the_run(
    airtable_client, airtable, history, settings, db, two_merchants
):
    svc = SyncService(airtable_client, history, settings.model_copy(update={"sync_batch_size": 2}))
    airtable.fail_writes = True

    out = svc.sync_payouts(db)

    assert out["created_count"] == 0
    assert out["errors"] == ["Create batch 0: upstream unavailable", "Create batch 1: upstream unavailable"]
    assert airtable.calls.count("POST") == 2


def test_batches_respect_batch_size(airtable_client, airtable, history, settings, db, two_merchants):
    svc = SyncService(airtable_client, history, settings.model_copy(update={"sync_batch_size": 3}))
    out = svc.sync_payouts(db)
    assert out["created_count"] == 4
    assert airtable.calls.count("POST") == 2


def test_sync_logs_history(sync_service, history, db, two_merchants):
    sync_service.sync_payouts(db, payout_month="2025-01")
    action = history.list_actions(db, entity_type="payout")[0]
    assert action.action_type == "sync"
    assert action.entity_id == "2025-01"
    assert action.new_data["created"] == 2


def test_unconfigured_sync_raises(history, db):
    client = AirtableClient(Settings(database_url="sqlite://", airtable_api_key=None))
    with pytest.raises(ExternalServiceError):
        SyncService(client, history).compare(db)


def test_diff_fields_tolerates_formatting_noise():
    local = {"Split %": 33.3333, "Paid At": "2025-01-31T10:00:00.123456", "Partner Name": "Ann", "Status": "confirmed"}
    remote = {"Split %": 33.33330001, "Paid At": "2025-01-31T10:00:00.000Z", "Partner Name": "Ann", "Status": "confirmed"}
    # Paid Status / Payout Amount / Partner Role are missing on both sides
    assert diff_fields(local, remote) == {}

    remote["Partner Name"] = "Anne"
    assert diff_fields(local, remote) == {"Partner Name": "Ann"}


def test_update_batch_errors_are_labelled_by_phase(
    airtable_client, airtable, payout_service, history, settings, db, two_merchants
):
    svc = SyncService(airtable_client, history, settings.model_copy(update={"sync_batch_size": 2}))
    svc.sync_payouts(db)
    payout_service.mark_paid(db, partner_id="recAgent1", payout_month="2025-01")
    airtable.fail_writes = True

    out = svc.sync_payouts(db)

    assert out["errors"] == ["Update batch 0: upstream unavailable"]


def test_pause_only_between_requests(airtable_client, airtable, history, settings, db, two_merchants, monkeypatch):
    sleeps = []
    monkeypatch.setattr("residuals.services.sync_service.time.sleep", sleeps.append)
    svc = SyncService(
        airtable_client, history, settings.model_copy(update={"sync_batch_size": 2, "sync_batch_delay_ms": 50})
    )

    svc.apply(svc.compare(db).new, [])

    # two POSTs, one gap
    assert airtable.calls.count("POST") == 2
    assert sleeps == [0.05]


def test_oversized_batch_setting_is_capped(airtable_client, airtable, history, settings, db, deal_service, quiet_events):
    for i in range(6):
        assign_and_confirm(db, deal_service, quiet_events, f"9{i}")
    svc = SyncService(airtable_client, history, settings.model_copy(update={"sync_batch_size": 50}))

    out = svc.sync_payouts(db)

    assert out["created_count"] == 12
    assert out["errors"] == []
    assert airtable.calls.count("POST") == 2


def test_malformed_month_is_rejected(sync_service, db):
    with pytest.raises(ValidationError):
        sync_service.compare(db, payout_month="2025-01' OR '1'='1")
