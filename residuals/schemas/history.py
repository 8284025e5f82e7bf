from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class ActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action_type: str
    entity_type: str
    entity_id: str
    entity_name: Optional[str] = None
    previous_data: Optional[Any] = None
    new_data: Optional[Any] = None
    description: str
    batch_id: Optional[str] = None
    request_id: Optional[str] = None
    is_undone: bool
    undone_at: Optional[datetime] = None
    created_at: datetime


class UndoRequest(BaseModel):
    action_id: uuid.UUID
