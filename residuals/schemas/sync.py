from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SyncRequest(BaseModel):
    payout_month: Optional[str] = Field(
        default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$", description="YYYY-MM; omit for all months"
    )


class SyncPlanResponse(BaseModel):
    new: List[Dict[str, Any]]
    changed: List[Dict[str, Any]]
    unchanged_count: int
    totals: Dict[str, int]


class ApplySyncRequest(BaseModel):
    new: List[Dict[str, Any]] = Field(default_factory=list)
    changed: List[Dict[str, Any]] = Field(default_factory=list)


class ApplySyncResponse(BaseModel):
    created_count: int
    updated_count: int
    errors: List[str] = Field(default_factory=list)


class SyncRunResponse(ApplySyncResponse):
    unchanged_count: int
    totals: Dict[str, int]
