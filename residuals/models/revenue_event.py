from __future__ import annotations

import uuid
import datetime as dt
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from residuals.db.base import Base, JSONType
from residuals.models.enums import AssignmentStatus, PayoutType


def _now():
    return datetime.now(timezone.utc)


class RevenueEvent(Base):
    """
    One imported row of processor revenue for one merchant and period.
    Table name kept as csv_data for continuity with existing data.
    """
    __tablename__ = "csv_data"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    row_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)

    mid: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    merchant_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    volume: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    fees: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    adjustments: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    chargebacks: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))

    date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    payout_month: Mapped[Optional[str]] = mapped_column(String(7), nullable=True, index=True)  # YYYY-MM
    payout_type: Mapped[str] = mapped_column(String(32), nullable=False, default=PayoutType.residual.value)

    assignment_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=AssignmentStatus.unassigned.value, index=True
    )
    deal_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("deals.id", ondelete="SET NULL"), nullable=True, index=True
    )
    assigned_agent_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    assigned_agent_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    is_held: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hold_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    raw_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_csv_data_mid_status", "mid", "assignment_status"),
    )
