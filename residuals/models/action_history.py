from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from residuals.db.base import Base, JSONType


def _now():
    return datetime.now(timezone.utc)


class ActionHistory(Base):
    """
    Audit/undo log.
    - Append-only; the only mutation allowed is the is_undone/undone_at transition.
    - previous_data is the snapshot an undo restores from.
    """
    __tablename__ = "action_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    action_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(Text, nullable=False)
    entity_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    previous_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    new_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    batch_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    is_undone: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    undone_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    undo_action_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_action_history_entity", "entity_type", "entity_id"),
        Index("ix_action_history_created", "created_at"),
    )
