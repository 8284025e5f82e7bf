from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

from residuals.services.participant_normalizer import normalize_participant


class Participant(BaseModel):
    """
    Canonical participant. Accepts any historical shape on input
    (partner_id / agent_id / name / role / split) and normalizes it once here;
    everything downstream sees only the canonical fields.
    """
    partner_airtable_id: str = ""
    partner_name: str = ""
    partner_role: str = "Partner"
    split_pct: float = Field(default=0.0)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return normalize_participant(data)
        return data
