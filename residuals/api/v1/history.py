from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from residuals.api.deps import get_history_service, http_error, request_id_of
from residuals.core.errors import ResidualsError
from residuals.db.session import get_db
from residuals.schemas.history import ActionResponse, UndoRequest
from residuals.services.history_service import ActionHistoryService

router = APIRouter(prefix="/history")


@router.get("", response_model=List[ActionResponse])
async def list_actions(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    history: ActionHistoryService = Depends(get_history_service),
):
    return history.list_actions(db, entity_type=entity_type, entity_id=entity_id, limit=limit)


@router.post("/undo", response_model=ActionResponse)
async def undo(
    request: Request,
    payload: UndoRequest,
    db: Session = Depends(get_db),
    history: ActionHistoryService = Depends(get_history_service),
):
    try:
        return history.undo(db, payload.action_id, request_id=request_id_of(request))
    except ResidualsError as e:
        raise http_error(e)
