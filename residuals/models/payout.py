from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from residuals.db.base import Base
from residuals.models.enums import AssignmentStatus, PaidStatus, PayoutType


def _now():
    return datetime.now(timezone.utc)


class Payout(Base):
    """
    One participant's payout line for one confirmed revenue event.
    Amounts are fixed at creation; later edits do not recompute.
    """
    __tablename__ = "payouts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    csv_data_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("csv_data.id", ondelete="CASCADE"), nullable=True, index=True
    )
    deal_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)  # Deal.deal_id token

    mid: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    merchant_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payout_month: Mapped[Optional[str]] = mapped_column(String(7), nullable=True, index=True)
    payout_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    payout_type: Mapped[str] = mapped_column(String(32), nullable=False, default=PayoutType.residual.value)

    volume: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    fees: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    adjustments: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    chargebacks: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    net_residual: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))

    partner_airtable_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    partner_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    partner_role: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    partner_split_pct: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False, default=Decimal("0"))
    partner_payout_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))

    assignment_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=AssignmentStatus.confirmed.value
    )
    paid_status: Mapped[str] = mapped_column(String(16), nullable=False, default=PaidStatus.unpaid.value)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_payouts_partner_month", "partner_airtable_id", "payout_month"),
        Index("ix_payouts_mid_month", "mid", "payout_month"),
    )
