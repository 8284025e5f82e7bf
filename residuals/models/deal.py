from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from residuals.db.base import Base, JSONType
from residuals.models.enums import PayoutType


def _now():
    return datetime.now(timezone.utc)


class Deal(Base):
    """
    Current participant-split configuration for a merchant.
    participants_json holds canonical participant dicts; rows written before
    normalization existed may still carry legacy keys.
    """
    __tablename__ = "deals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    deal_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # human-readable token

    mid: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    participants_json: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    payout_type: Mapped[str] = mapped_column(String(32), nullable=False, default=PayoutType.residual.value)

    assigned_agent_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    available_to_purchase: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_deals_mid_created", "mid", "created_at"),
    )
