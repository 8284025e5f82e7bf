from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ImportResponse(BaseModel):
    batch_id: Optional[uuid.UUID] = None
    imported: int
    duplicates: int
    errors: List[str] = Field(default_factory=list)


class BatchSummary(BaseModel):
    batch_id: uuid.UUID
    event_count: int
    imported_at: Optional[datetime] = None
    payout_months: List[str] = Field(default_factory=list)
