from __future__ import annotations

import logging
from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from residuals.api.deps import get_repair, http_error, request_id_of
from residuals.core.errors import ResidualsError
from residuals.db.session import get_db
from residuals.schemas.repair import RepairRequest, RepairStepResponse
from residuals.services.duplicate_repair import DuplicateMidRepair

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


@router.get("/duplicate-mids", response_model=RepairStepResponse)
async def count_duplicate_mids(db: Session = Depends(get_db), repair: DuplicateMidRepair = Depends(get_repair)):
    return asdict(repair.count(db))


@router.post("/duplicate-mids", response_model=List[RepairStepResponse])
async def repair_duplicate_mids(
    request: Request,
    payload: RepairRequest,
    db: Session = Depends(get_db),
    repair: DuplicateMidRepair = Depends(get_repair),
):
    """
    Run one repair step (or all of them). Dry run unless dry_run=false.
    """
    rid = request_id_of(request)
    logger.info("duplicate mid repair requested", extra={"step": payload.step, "dry_run": payload.dry_run,
                                                          "request_id": rid})
    try:
        if payload.step == "all":
            results = repair.run_all(db, dry_run=payload.dry_run, request_id=rid)
        else:
            results = [repair.step(payload.step)(db, dry_run=payload.dry_run, request_id=rid)]
    except ResidualsError as e:
        raise http_error(e)
    return [asdict(r) for r in results]
