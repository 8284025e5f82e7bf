from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from residuals.api.deps import get_payout_service, http_error, request_id_of
from residuals.core.errors import ResidualsError
from residuals.db.session import get_db
from residuals.schemas.events import CountResponse
from residuals.schemas.payouts import (
    MarkPaidRequest,
    MerchantUpdateResponse,
    MergeParticipantsRequest,
    MergeParticipantsResponse,
    MonthlySummary,
    ParticipantSummary,
    PayoutResponse,
    PayoutUpdateRequest,
    QuarterlySummary,
    UniqueMonthsResponse,
    UpdateMerchantRequest,
)
from residuals.services.payout_service import PayoutService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts")


@router.get("", response_model=List[PayoutResponse])
async def list_payouts(
    payout_month: Optional[str] = Query(None),
    partner_id: Optional[str] = Query(None),
    mid: Optional[str] = Query(None),
    paid_status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    svc: PayoutService = Depends(get_payout_service),
):
    return svc.list_payouts(db, payout_month=payout_month, partner_id=partner_id, mid=mid, paid_status=paid_status)


# ---------------------------
# SUMMARIES
# ---------------------------

@router.get("/months", response_model=UniqueMonthsResponse)
async def unique_months(db: Session = Depends(get_db), svc: PayoutService = Depends(get_payout_service)):
    return UniqueMonthsResponse(months=svc.unique_months(db))


@router.get("/summary/monthly", response_model=List[MonthlySummary])
async def monthly_summary(db: Session = Depends(get_db), svc: PayoutService = Depends(get_payout_service)):
    return svc.monthly_summary(db)


@router.get("/summary/quarterly", response_model=List[QuarterlySummary])
async def quarterly_summary(db: Session = Depends(get_db), svc: PayoutService = Depends(get_payout_service)):
    return svc.quarterly_summary(db)


@router.get("/summary/participants", response_model=List[ParticipantSummary])
async def participant_summary(
    payout_month: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    svc: PayoutService = Depends(get_payout_service),
):
    return svc.participant_summary(db, payout_month=payout_month)


# ---------------------------
# BULK MUTATIONS
# ---------------------------

@router.post("/mark-paid", response_model=CountResponse)
async def mark_paid(
    request: Request,
    payload: MarkPaidRequest,
    db: Session = Depends(get_db),
    svc: PayoutService = Depends(get_payout_service),
):
    try:
        count = svc.mark_paid(
            db, partner_id=payload.partner_id, payout_month=payload.payout_month, request_id=request_id_of(request)
        )
    except ResidualsError as e:
        raise http_error(e)
    return CountResponse(count=count)


@router.post("/update-merchant", response_model=MerchantUpdateResponse)
async def update_merchant(
    request: Request,
    payload: UpdateMerchantRequest,
    db: Session = Depends(get_db),
    svc: PayoutService = Depends(get_payout_service),
):
    try:
        counts = svc.update_merchant(
            db,
            old_mid=payload.old_mid,
            new_mid=payload.new_mid,
            new_merchant_name=payload.new_merchant_name,
            request_id=request_id_of(request),
        )
    except ResidualsError as e:
        raise http_error(e)
    return MerchantUpdateResponse(counts=counts)


@router.post("/merge-participants", response_model=MergeParticipantsResponse)
async def merge_participants(
    request: Request,
    payload: MergeParticipantsRequest,
    db: Session = Depends(get_db),
    svc: PayoutService = Depends(get_payout_service),
):
    try:
        result = svc.merge_participants(
            db,
            source_id=payload.source_id,
            target_id=payload.target_id,
            target_name=payload.target_name,
            target_role=payload.target_role,
            request_id=request_id_of(request),
        )
    except ResidualsError as e:
        raise http_error(e)
    return MergeParticipantsResponse(payouts_updated=result.payouts_updated, deals_updated=result.deals_updated)


# ---------------------------
# SINGLE PAYOUT
# ---------------------------

@router.get("/{payout_id}", response_model=PayoutResponse)
async def get_payout(payout_id: uuid.UUID, db: Session = Depends(get_db),
                     svc: PayoutService = Depends(get_payout_service)):
    try:
        return svc.get_payout(db, payout_id)
    except ResidualsError as e:
        raise http_error(e)


@router.patch("/{payout_id}", response_model=PayoutResponse)
async def update_payout(
    request: Request,
    payout_id: uuid.UUID,
    payload: PayoutUpdateRequest,
    db: Session = Depends(get_db),
    svc: PayoutService = Depends(get_payout_service),
):
    try:
        return svc.update_payout(
            db,
            payout_id,
            partner_split_pct=payload.partner_split_pct,
            partner_payout_amount=payload.partner_payout_amount,
            paid_status=payload.paid_status.value if payload.paid_status else None,
            request_id=request_id_of(request),
        )
    except ResidualsError as e:
        raise http_error(e)


@router.delete("/{payout_id}", status_code=204)
async def delete_payout(
    request: Request,
    payout_id: uuid.UUID,
    db: Session = Depends(get_db),
    svc: PayoutService = Depends(get_payout_service),
):
    try:
        svc.delete_payout(db, payout_id, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
