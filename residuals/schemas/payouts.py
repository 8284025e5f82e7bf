from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from residuals.models.enums import PaidStatus


class PayoutResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    csv_data_id: Optional[uuid.UUID] = None
    deal_id: Optional[str] = None
    mid: str
    merchant_name: Optional[str] = None
    payout_month: Optional[str] = None
    payout_date: Optional[date] = None
    payout_type: str
    volume: float
    fees: float
    adjustments: float
    chargebacks: float
    net_residual: float
    partner_airtable_id: Optional[str] = None
    partner_name: Optional[str] = None
    partner_role: Optional[str] = None
    partner_split_pct: float
    partner_payout_amount: float
    assignment_status: str
    paid_status: str
    paid_at: Optional[datetime] = None
    created_at: datetime


class PayoutUpdateRequest(BaseModel):
    partner_split_pct: Optional[float] = None
    partner_payout_amount: Optional[float] = None
    paid_status: Optional[PaidStatus] = None


class MarkPaidRequest(BaseModel):
    partner_id: str = Field(..., min_length=1)
    payout_month: str = Field(..., min_length=7, max_length=7)


class UpdateMerchantRequest(BaseModel):
    old_mid: str = Field(..., min_length=1)
    new_mid: Optional[str] = None
    new_merchant_name: Optional[str] = None


class MergeParticipantsRequest(BaseModel):
    source_id: str = Field(..., min_length=1)
    target_id: str = Field(..., min_length=1)
    target_name: str = Field(..., min_length=1)
    target_role: Optional[str] = None


class MergeParticipantsResponse(BaseModel):
    payouts_updated: int
    deals_updated: int


class MonthlySummary(BaseModel):
    payout_month: str
    total_amount: float
    paid_amount: float
    unpaid_amount: float
    total_payouts: int


class QuarterlySummary(BaseModel):
    quarter: str
    total_amount: float
    total_payouts: int
    average_payout: float


class ParticipantSummary(BaseModel):
    partner_airtable_id: Optional[str] = None
    partner_name: Optional[str] = None
    partner_role: Optional[str] = None
    total_amount: float
    paid_amount: float
    unpaid_amount: float
    total_payouts: int
    merchant_count: int


class UniqueMonthsResponse(BaseModel):
    months: List[str]


class MerchantUpdateResponse(BaseModel):
    counts: Dict[str, int]
