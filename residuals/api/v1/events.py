from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from sqlalchemy.orm import Session

from residuals.api.deps import (
    get_event_service,
    get_import_service,
    http_error,
    request_id_of,
)
from residuals.core.errors import ResidualsError
from residuals.db.session import get_db
from residuals.schemas.deals import DealResponse
from residuals.schemas.events import (
    BulkPayoutMonthRequest,
    CascadeResponse,
    ConfirmResponse,
    CountResponse,
    EventIdsRequest,
    EventResponse,
    HoldRequest,
)
from residuals.schemas.imports import BatchSummary, ImportResponse
from residuals.services.event_service import EventService
from residuals.services.import_service import ImportService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events")


@router.get("", response_model=List[EventResponse])
async def list_events(
    status: Optional[str] = Query(None),
    payout_month: Optional[str] = Query(None),
    mid: Optional[str] = Query(None),
    limit: int = Query(1000, ge=1, le=10000),
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    return svc.list_events(db, status=status, payout_month=payout_month, mid=mid, limit=limit)


# ---------------------------
# IMPORT
# ---------------------------

@router.post("/upload", response_model=ImportResponse)
def upload_events(
    request: Request,
    file: UploadFile = File(...),
    payout_month: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    svc: ImportService = Depends(get_import_service),
):
    raw = file.file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")

    try:
        result = svc.import_csv(
            db, text, payout_month=payout_month, filename=file.filename, request_id=request_id_of(request)
        )
    except ResidualsError as e:
        raise http_error(e)
    return ImportResponse(
        batch_id=result.batch_id, imported=result.imported, duplicates=result.duplicates, errors=result.errors
    )


@router.get("/batches", response_model=List[BatchSummary])
async def list_batches(db: Session = Depends(get_db), svc: ImportService = Depends(get_import_service)):
    return svc.list_batches(db)


# ---------------------------
# LIFECYCLE
# ---------------------------

@router.post("/confirm", response_model=ConfirmResponse)
def confirm_events(
    request: Request,
    payload: EventIdsRequest,
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    try:
        result = svc.confirm_events(db, payload.event_ids, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
    return ConfirmResponse(
        confirmed_count=result.confirmed_count,
        payouts_created=result.payouts_created,
        failed_event_ids=result.failed_event_ids,
        external_sync_summary=result.external_sync_summary,
    )


@router.post("/hold", response_model=CountResponse)
async def hold_events(
    request: Request,
    payload: HoldRequest,
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    try:
        count = svc.hold_events(db, payload.event_ids, hold_reason=payload.hold_reason,
                                request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
    return CountResponse(count=count)


@router.post("/release", response_model=CountResponse)
async def release_events(
    request: Request,
    payload: EventIdsRequest,
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    try:
        count = svc.release_events(db, payload.event_ids, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
    return CountResponse(count=count)


@router.post("/payout-month", response_model=CountResponse)
async def bulk_update_payout_month(
    request: Request,
    payload: BulkPayoutMonthRequest,
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    try:
        count = svc.bulk_update_payout_month(db, payload.event_ids, payload.payout_month,
                                             request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
    return CountResponse(count=count)


@router.post("/delete", response_model=CountResponse)
async def delete_unassigned_events(
    request: Request,
    payload: EventIdsRequest,
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    try:
        count = svc.delete_unassigned_events(db, payload.event_ids, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
    return CountResponse(count=count)


# ---------------------------
# SINGLE EVENT
# ---------------------------

@router.get("/{event_id}", response_model=EventResponse)
async def get_event(event_id: uuid.UUID, db: Session = Depends(get_db), svc: EventService = Depends(get_event_service)):
    try:
        return svc.get_event(db, event_id)
    except ResidualsError as e:
        raise http_error(e)


@router.get("/{event_id}/deal", response_model=DealResponse)
async def get_deal_for_event(
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    try:
        return svc.get_deal_for_event(db, event_id)
    except ResidualsError as e:
        raise http_error(e)


@router.post("/{event_id}/reject", response_model=EventResponse)
async def reject_event(
    request: Request,
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    try:
        return svc.reject_event(db, event_id, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)


@router.post("/{event_id}/reset", response_model=EventResponse)
async def reset_event(
    request: Request,
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    try:
        return svc.reset_event(db, event_id, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)


@router.delete("/{event_id}", response_model=CascadeResponse)
async def force_delete_event(
    request: Request,
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    svc: EventService = Depends(get_event_service),
):
    try:
        result = svc.force_delete_event(db, event_id, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
    return CascadeResponse(ok=result.ok, completed=result.completed, failed=result.failed)
