from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from residuals.api.deps import get_deal_service, http_error, request_id_of
from residuals.core.errors import ResidualsError
from residuals.db.session import get_db
from residuals.schemas.deals import (
    AssignParticipantsRequest,
    AssignResponse,
    DealListResponse,
    DealResponse,
    DealUpdateRequest,
)
from residuals.schemas.events import CascadeResponse
from residuals.services.deal_service import DealService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/deals")


@router.get("", response_model=DealListResponse)
async def list_deals(
    search: str = Query(""),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    svc: DealService = Depends(get_deal_service),
):
    items, total = svc.list_deals(db, search=search, page=page, limit=limit)
    return DealListResponse(items=items, total=total, page=page, limit=limit)


@router.post("/assign", response_model=AssignResponse)
async def assign_participants(
    request: Request,
    payload: AssignParticipantsRequest,
    db: Session = Depends(get_db),
    svc: DealService = Depends(get_deal_service),
):
    """
    Create or update the MID's deal and move its events to pending.
    """
    try:
        result = svc.assign_participants(
            db,
            mid=payload.mid,
            payout_type=payload.payout_type.value,
            participants=[p.model_dump() for p in payload.participants],
            event_ids=payload.event_ids,
            request_id=request_id_of(request),
        )
    except ResidualsError as e:
        raise http_error(e)
    return AssignResponse(
        deal=DealResponse.model_validate(result.deal),
        created=result.created,
        events_updated=result.events_updated,
    )


@router.get("/by-mid/{mid}", response_model=DealResponse)
async def get_deal_by_mid(mid: str, db: Session = Depends(get_db), svc: DealService = Depends(get_deal_service)):
    deal = svc.get_deal_by_mid(db, mid)
    if deal is None:
        raise HTTPException(status_code=404, detail="Deal not found")
    return deal


@router.get("/{deal_id}", response_model=DealResponse)
async def get_deal(deal_id: uuid.UUID, db: Session = Depends(get_db), svc: DealService = Depends(get_deal_service)):
    try:
        return svc.get_deal(db, deal_id)
    except ResidualsError as e:
        raise http_error(e)


@router.patch("/{deal_id}", response_model=DealResponse)
async def update_deal(
    request: Request,
    deal_id: uuid.UUID,
    payload: DealUpdateRequest,
    db: Session = Depends(get_db),
    svc: DealService = Depends(get_deal_service),
):
    try:
        return svc.update_deal(
            db,
            deal_id,
            participants=[p.model_dump() for p in payload.participants] if payload.participants is not None else None,
            payout_type=payload.payout_type.value if payload.payout_type else None,
            available_to_purchase=payload.available_to_purchase,
            request_id=request_id_of(request),
        )
    except ResidualsError as e:
        raise http_error(e)


@router.post("/{deal_id}/reject", response_model=CascadeResponse)
async def reject_deal(
    request: Request,
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    svc: DealService = Depends(get_deal_service),
):
    try:
        result = svc.reject_deal(db, deal_id, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
    return CascadeResponse(ok=result.ok, completed=result.completed, failed=result.failed)


@router.delete("/{deal_id}", response_model=CascadeResponse)
async def delete_deal(
    request: Request,
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    svc: DealService = Depends(get_deal_service),
):
    try:
        result = svc.delete_deal(db, deal_id, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
    return CascadeResponse(ok=result.ok, completed=result.completed, failed=result.failed)
