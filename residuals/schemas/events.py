from __future__ import annotations

import uuid
import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    batch_id: Optional[uuid.UUID] = None
    mid: str
    merchant_name: Optional[str] = None
    volume: float = 0
    fees: float = 0
    adjustments: float = 0
    chargebacks: float = 0
    date: Optional[dt.date] = None
    payout_month: Optional[str] = None
    payout_type: str
    assignment_status: str
    deal_id: Optional[uuid.UUID] = None
    assigned_agent_id: Optional[str] = None
    assigned_agent_name: Optional[str] = None
    is_held: bool = False
    hold_reason: Optional[str] = None
    created_at: dt.datetime


class EventIdsRequest(BaseModel):
    event_ids: List[uuid.UUID] = Field(..., min_length=1)


class HoldRequest(EventIdsRequest):
    hold_reason: Optional[str] = None


class BulkPayoutMonthRequest(EventIdsRequest):
    payout_month: str = Field(..., description="YYYY-MM")


class ConfirmResponse(BaseModel):
    confirmed_count: int
    payouts_created: int
    failed_event_ids: List[uuid.UUID] = Field(default_factory=list)
    external_sync_summary: Dict[str, Any] = Field(default_factory=dict)


class CountResponse(BaseModel):
    count: int


class CascadeResponse(BaseModel):
    ok: bool
    completed: Dict[str, int] = Field(default_factory=dict)
    failed: Dict[str, str] = Field(default_factory=dict)
