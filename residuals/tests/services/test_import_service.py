from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from residuals.core.errors import ValidationError
from residuals.models.revenue_event import RevenueEvent
from residuals.services.import_service import parse_csv, parse_date, parse_money, parse_month

CSV = (
    "Merchant ID,Merchant Name,Volume,Fees,Date\n"
    "12-34 56,Acme Coffee,\"$50,000.00\",$1000.50,01/15/2025\n"
    "777,Bolt Bikes,1200,(12.00),2025-02-03\n"
    ",Nameless,10,1,2025-02-03\n"
)


def test_parse_money():
    assert parse_money("$1,234.50") == Decimal("1234.50")
    assert parse_money("(12.00)") == Decimal("-12.00")
    assert parse_money("") == Decimal("0")
    assert parse_money(None) == Decimal("0")


def test_parse_date_and_month():
    assert parse_date("01/15/2025") == date(2025, 1, 15)
    assert parse_date("2025-02-03T00:00:00") == date(2025, 2, 3)
    assert parse_date("someday") is None
    assert parse_month("2025-3") == "2025-03"
    assert parse_month("2025-13") is None


def test_parse_csv_maps_headers_and_reports_bad_rows():
    rows, errors = parse_csv(CSV)
    assert errors == ["Row 4: missing Merchant ID"]
    first, second = rows
    assert first.mid == "123456"
    assert first.volume == Decimal("50000.00")
    assert first.fees == Decimal("1000.50")
    assert first.payout_month == "2025-01"
    assert second.fees == Decimal("-12.00")
    assert second.payout_month == "2025-02"


def test_parse_csv_header_aliases():
    rows, _ = parse_csv("merchant_id,DBA,Residual,Month\n9,Shop,5,2024-11\n")
    assert (rows[0].mid, rows[0].merchant_name, rows[0].fees, rows[0].payout_month) == (
        "9", "Shop", Decimal("5"), "2024-11"
    )


def test_parse_csv_without_mid_column():
    rows, errors = parse_csv("Name,Fees\nAcme,1\n")
    assert rows == []
    assert errors[0].startswith("No Merchant ID column found")


def test_import_lands_unassigned_events(import_service, db):
    res = import_service.import_csv(db, CSV, filename="jan.csv")

    assert res.imported == 2 and res.duplicates == 0
    assert res.errors == ["Row 4: missing Merchant ID"]
    events = db.execute(select(RevenueEvent)).scalars().all()
    assert {e.assignment_status for e in events} == {"unassigned"}
    assert {e.batch_id for e in events} == {res.batch_id}


def test_reimport_skips_duplicates(import_service, db):
    import_service.import_csv(db, CSV)
    res = import_service.import_csv(db, CSV)
    assert res.imported == 0
    assert res.duplicates == 2
    assert len(db.execute(select(RevenueEvent)).scalars().all()) == 2


def test_duplicate_rows_within_one_file(import_service, db):
    text = "MID,Fees\n1,10\n1,10\n2,10\n"
    res = import_service.import_csv(db, text)
    assert (res.imported, res.duplicates) == (2, 1)


def test_payout_month_override(import_service, db):
    import_service.import_csv(db, CSV, payout_month="2024-12")
    months = set(db.execute(select(RevenueEvent.payout_month)).scalars())
    assert months == {"2024-12"}


@pytest.mark.parametrize(
    "text, month",
    [
        ("", None),
        (CSV, "12/2024"),
        ("Name,Fees\nAcme,1\n", None),
        ("MID,Fees\n,1\n", None),
    ],
)
def test_import_rejects(import_service, db, text, month):
    with pytest.raises(ValidationError):
        import_service.import_csv(db, text, payout_month=month)


def test_list_batches(import_service, db):
    first = import_service.import_csv(db, CSV)
    batches = import_service.list_batches(db)
    assert len(batches) == 1
    assert batches[0]["batch_id"] == first.batch_id
    assert batches[0]["event_count"] == 2
    assert batches[0]["payout_months"] == ["2025-01", "2025-02"]


def test_import_is_logged(import_service, history, db):
    res = import_service.import_csv(db, CSV, filename="jan.csv")
    action = history.list_actions(db, entity_type="event")[0]
    assert action.action_type == "import"
    assert action.entity_id == str(res.batch_id)
    assert action.new_data["importedRows"] == 2
