from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel

RepairStepName = Literal["count", "update_payouts", "update_deals", "delete_payouts", "delete_deals", "all"]


class RepairRequest(BaseModel):
    step: RepairStepName = "count"
    dry_run: bool = True


class RepairStepResponse(BaseModel):
    step: str
    message: str
    affected_count: int
    dry_run: bool
    details: Optional[Dict[str, Any]] = None
