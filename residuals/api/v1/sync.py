from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from residuals.api.deps import get_sync_service, http_error, request_id_of
from residuals.core.errors import ResidualsError
from residuals.db.session import get_db
from residuals.schemas.sync import (
    ApplySyncRequest,
    ApplySyncResponse,
    SyncPlanResponse,
    SyncRequest,
    SyncRunResponse,
)
from residuals.services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync")


@router.post("/compare", response_model=SyncPlanResponse)
def compare(payload: SyncRequest, db: Session = Depends(get_db), svc: SyncService = Depends(get_sync_service)):
    """Read-only diff of local payouts against the Airtable table."""
    try:
        plan = svc.compare(db, payout_month=payload.payout_month)
    except ResidualsError as e:
        raise http_error(e)
    return SyncPlanResponse(**asdict(plan))


@router.post("/apply", response_model=ApplySyncResponse)
def apply(payload: ApplySyncRequest, svc: SyncService = Depends(get_sync_service)):
    try:
        result = svc.apply(payload.new, payload.changed)
    except ResidualsError as e:
        raise http_error(e)
    return ApplySyncResponse(**asdict(result))


@router.post("/payouts", response_model=SyncRunResponse)
def sync_payouts(
    request: Request,
    payload: SyncRequest,
    db: Session = Depends(get_db),
    svc: SyncService = Depends(get_sync_service),
):
    try:
        result = svc.sync_payouts(db, payout_month=payload.payout_month, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
    return SyncRunResponse(**result)

