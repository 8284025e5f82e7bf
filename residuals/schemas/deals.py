from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from residuals.models.enums import PayoutType
from residuals.schemas.participants import Participant


class AssignParticipantsRequest(BaseModel):
    mid: str = Field(..., min_length=1)
    payout_type: PayoutType = PayoutType.residual
    participants: List[Participant]
    # None: every unassigned/pending event of the MID
    event_ids: Optional[List[uuid.UUID]] = None


class DealUpdateRequest(BaseModel):
    participants: Optional[List[Participant]] = None
    payout_type: Optional[PayoutType] = None
    available_to_purchase: Optional[bool] = None


class DealResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    deal_id: str
    mid: str
    participants_json: List[Participant] = Field(default_factory=list)
    payout_type: str
    assigned_agent_name: Optional[str] = None
    assigned_at: Optional[datetime] = None
    available_to_purchase: bool = False
    created_at: datetime
    updated_at: datetime


class AssignResponse(BaseModel):
    deal: DealResponse
    created: bool
    events_updated: int


class DealListResponse(BaseModel):
    items: List[Dict[str, Any]]
    total: int
    page: int
    limit: int
