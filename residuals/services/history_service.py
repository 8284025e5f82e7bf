from __future__ import annotations

import logging
import queue
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from residuals.core.errors import NotFoundError, PersistenceError, ValidationError
from residuals.core.logging import current_request_id
from residuals.models.action_history import ActionHistory
from residuals.models.deal import Deal
from residuals.models.enums import ActionType, AssignmentStatus, EntityType
from residuals.models.payout import Payout
from residuals.models.revenue_event import RevenueEvent
from residuals.services import snapshots

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


@dataclass
class ActionRecord:
    action_type: str
    entity_type: str
    entity_id: str
    description: str
    entity_name: Optional[str] = None
    previous_data: Optional[Dict[str, Any]] = None
    new_data: Optional[Dict[str, Any]] = None
    batch_id: Optional[str] = None
    request_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class ActionHistoryService:
    """
    Audit/undo log writer.

    log_action() never raises and never blocks the caller: records go onto a
    queue drained by one worker thread that writes with its own session.
    With background=False the write happens inline, still guarded.
    """

    def __init__(self, session_factory: Callable[[], Session], *, background: bool = True):
        self._session_factory = session_factory
        self._background = background
        self._queue: "queue.Queue[ActionRecord]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    # ─────────────────────────────────────────────
    # WRITE (fire-and-forget)
    # ─────────────────────────────────────────────

    def log_action(
        self,
        *,
        action_type: str,
        entity_type: str,
        entity_id: Any,
        description: str,
        entity_name: Optional[str] = None,
        previous_data: Optional[Dict[str, Any]] = None,
        new_data: Optional[Dict[str, Any]] = None,
        batch_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> None:
        try:
            record = ActionRecord(
                action_type=action_type,
                entity_type=entity_type,
                entity_id=str(entity_id),
                entity_name=entity_name,
                description=description,
                previous_data=jsonable_encoder(previous_data) if previous_data is not None else None,
                new_data=jsonable_encoder(new_data) if new_data is not None else None,
                batch_id=batch_id,
                request_id=request_id or current_request_id(),
            )
        except Exception:
            logger.exception("history record could not be built", extra={"description": description})
            return

        if not self._background:
            self._write(record)
            return

        self._ensure_worker()
        self._queue.put(record)

    def wait_idle(self) -> None:
        """Block until every queued record has been written (or dropped)."""
        if self._background:
            self._queue.join()

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._drain, name="action-history-writer", daemon=True
                )
                self._worker.start()

    def _drain(self) -> None:
        while True:
            record = self._queue.get()
            try:
                self._write(record)
            finally:
                self._queue.task_done()

    def _write(self, record: ActionRecord) -> Optional[uuid.UUID]:
        db = None
        try:
            db = self._session_factory()
            row = ActionHistory(
                action_type=record.action_type,
                entity_type=record.entity_type,
                entity_id=record.entity_id,
                entity_name=record.entity_name,
                previous_data=record.previous_data,
                new_data=record.new_data,
                description=record.description,
                batch_id=record.batch_id,
                request_id=record.request_id,
            )
            db.add(row)
            db.commit()
            return row.id
        except Exception:
            logger.exception(
                "failed to write action history",
                extra={"action_type": record.action_type, "entity_id": record.entity_id},
            )
            if db is not None:
                db.rollback()
            return None
        finally:
            if db is not None:
                db.close()

    # ─────────────────────────────────────────────
    # READ
    # ─────────────────────────────────────────────

    def list_actions(
        self,
        db: Session,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[ActionHistory]:
        stmt = select(ActionHistory)
        if entity_type:
            stmt = stmt.where(ActionHistory.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(ActionHistory.entity_id == entity_id)
        stmt = stmt.order_by(ActionHistory.created_at.desc()).limit(limit)
        return list(db.execute(stmt).scalars().all())

    # ─────────────────────────────────────────────
    # UNDO (single entity, best effort)
    # ─────────────────────────────────────────────

    def undo(self, db: Session, action_id: uuid.UUID, *, request_id: Optional[str] = None) -> ActionHistory:
        """
        Restore the entity from the action's previous_data snapshot.
        Not a replay log: undoing twice does not walk further back.
        """
        action = db.get(ActionHistory, action_id)
        if not action:
            raise NotFoundError("Action not found")
        if action.is_undone:
            raise ValidationError("Action already undone")
        if not action.previous_data:
            raise ValidationError("No previous data to restore")

        try:
            if action.entity_type == EntityType.deal.value:
                self._restore_deal(db, action)
            elif action.entity_type == EntityType.payout.value:
                self._restore_rows(db, Payout, action.previous_data, "payouts")
            elif action.entity_type == EntityType.event.value and "event" in action.previous_data:
                # force-delete snapshot: {event, deal, siblings, payouts}
                data = action.previous_data
                if data.get("deal"):
                    self._restore_rows(db, Deal, data["deal"], "deals")
                    db.flush()
                self._restore_rows(db, RevenueEvent, data["event"], "events")
                self._restore_rows(db, RevenueEvent, data, "siblings")
                db.flush()
                self._restore_rows(db, Payout, data, "payouts")
            elif action.entity_type == EntityType.event.value:
                self._restore_rows(db, RevenueEvent, action.previous_data, "events")
            else:
                raise ValidationError(f"Undo not supported for entity type: {action.entity_type}")

            action.is_undone = True
            action.undone_at = _now()
            action.undo_action_id = uuid.uuid4()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Undo failed: {e}") from e

        db.refresh(action)
        self.log_action(
            action_type=ActionType.undo.value,
            entity_type=action.entity_type,
            entity_id=action.entity_id,
            entity_name=action.entity_name,
            previous_data=action.new_data,
            new_data=action.previous_data,
            description=f"Undid: {action.description}",
            request_id=request_id,
        )
        return action

    def _restore_deal(self, db: Session, action: ActionHistory) -> None:
        data = action.previous_data or {}
        if "deal" not in data:
            # plain update snapshot
            deal = db.get(Deal, uuid.UUID(action.entity_id))
            if not deal:
                raise ValidationError("Deal no longer exists; cannot restore update")
            snapshots.restore(deal, data)
            return

        deal_data = data.get("deal")
        if not deal_data:
            raise ValidationError("Snapshot has no deal to restore")
        deal = db.get(Deal, uuid.UUID(str(deal_data["id"])))
        if deal is None:
            deal = snapshots.build(Deal, deal_data)
            db.add(deal)
            db.flush()
        else:
            snapshots.restore(deal, deal_data)

        # Payouts were deleted by the cascade, so events come back pending
        # and are re-confirmed to regenerate them.
        for ev_data in data.get("events") or []:
            ev = db.get(RevenueEvent, uuid.UUID(str(ev_data["id"])))
            if ev is None:
                continue
            ev.deal_id = deal.id
            ev.assigned_agent_id = ev_data.get("assigned_agent_id")
            ev.assigned_agent_name = ev_data.get("assigned_agent_name")
            ev.assignment_status = AssignmentStatus.pending.value

    def _restore_rows(self, db: Session, model, data: Dict[str, Any], list_key: str) -> None:
        rows = data.get(list_key) if list_key in data else [data]
        for row_data in rows or []:
            if not isinstance(row_data, dict) or not row_data.get("id"):
                continue
            row = db.get(model, uuid.UUID(str(row_data["id"])))
            if row is None:
                db.add(snapshots.build(model, row_data))
            else:
                snapshots.restore(row, row_data)
