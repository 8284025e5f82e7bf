import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from residuals.api.deps import get_airtable_client
from residuals.db.session import get_db
from residuals.services.airtable_client import AirtableClient

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health(
    request: Request,
    db: Session = Depends(get_db),
    airtable: AirtableClient = Depends(get_airtable_client),
):
    rid = getattr(request.state, "request_id", None)
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        logger.exception("health check: database unreachable")
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "request_id": rid,
        "database": database,
        "airtable_sync": "configured" if airtable.configured else "disabled",
    }
