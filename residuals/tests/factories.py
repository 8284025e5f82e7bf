import uuid
from decimal import Decimal

from residuals.models.enums import AssignmentStatus
from residuals.models.revenue_event import RevenueEvent

PARTICIPANTS = [
    {"partner_airtable_id": "recAgent1", "partner_name": "Ann Agent", "partner_role": "Agent", "split_pct": 60},
    {"partner_airtable_id": "recFund1", "partner_name": "Fund One", "partner_role": "Fund", "split_pct": 40},
]


def make_event(
    db,
    mid="123456",
    *,
    fees="1000",
    adjustments="0",
    chargebacks="0",
    payout_month="2025-01",
    merchant_name="Acme Coffee",
    status=AssignmentStatus.unassigned.value,
    **extra,
):
    ev = RevenueEvent(
        row_hash=uuid.uuid4().hex,
        mid=mid,
        merchant_name=merchant_name,
        volume=Decimal("50000"),
        fees=Decimal(fees),
        adjustments=Decimal(adjustments),
        chargebacks=Decimal(chargebacks),
        payout_month=payout_month,
        assignment_status=status,
        **extra,
    )
    db.add(ev)
    db.commit()
    return ev


def assign_and_confirm(db, deal_service, event_service, mid="123456", participants=None, **event_kw):
    """Event -> deal -> confirmed payouts. Returns (event_id, deal, confirm result)."""
    ev = make_event(db, mid, **event_kw)
    event_id = ev.id
    res = deal_service.assign_participants(
        db, mid=mid, payout_type="residual", participants=participants or PARTICIPANTS
    )
    out = event_service.confirm_events(db, [event_id])
    return event_id, res.deal, out
