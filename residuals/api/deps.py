from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Request

from residuals.core.config import get_settings
from residuals.core.errors import (
    ExternalServiceError,
    NotFoundError,
    PersistenceError,
    ResidualsError,
    ValidationError,
)
from residuals.db.session import SessionLocal
from residuals.services.airtable_client import AirtableClient
from residuals.services.deal_service import DealService
from residuals.services.duplicate_repair import DuplicateMidRepair
from residuals.services.event_service import EventService
from residuals.services.history_service import ActionHistoryService
from residuals.services.import_service import ImportService
from residuals.services.payout_service import PayoutService
from residuals.services.sync_service import SyncService


@lru_cache(maxsize=1)
def get_history_service() -> ActionHistoryService:
    return ActionHistoryService(SessionLocal, background=get_settings().history_background)


def get_airtable_client() -> AirtableClient:
    return AirtableClient(get_settings())


def get_sync_service(
    client: AirtableClient = Depends(get_airtable_client),
    history: ActionHistoryService = Depends(get_history_service),
) -> SyncService:
    return SyncService(client, history, get_settings())


def get_event_service(
    history: ActionHistoryService = Depends(get_history_service),
    sync: SyncService = Depends(get_sync_service),
) -> EventService:
    return EventService(history, get_settings(), sync_service=sync)


def get_deal_service(history: ActionHistoryService = Depends(get_history_service)) -> DealService:
    return DealService(history, get_settings())


def get_payout_service(history: ActionHistoryService = Depends(get_history_service)) -> PayoutService:
    return PayoutService(history, get_settings())


def get_import_service(history: ActionHistoryService = Depends(get_history_service)) -> ImportService:
    return ImportService(history)


def get_repair(history: ActionHistoryService = Depends(get_history_service)) -> DuplicateMidRepair:
    return DuplicateMidRepair(history, get_settings())


def request_id_of(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def http_error(e: ResidualsError) -> HTTPException:
    """Domain error -> HTTPException (400 / 404 / 502 / 500)."""
    if isinstance(e, ValidationError):
        detail = {"message": e.message, **e.details} if e.details else e.message
        return HTTPException(status_code=400, detail=detail)
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ExternalServiceError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=500, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
