from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from residuals.core.config import Settings, get_settings
from residuals.core.errors import ExternalServiceError, NotFoundError, PersistenceError, ValidationError
from residuals.core.mid import normalize_mid
from residuals.models.deal import Deal
from residuals.models.enums import PENDING_STATUSES, ActionType, AssignmentStatus, EntityType
from residuals.models.payout import Payout
from residuals.models.revenue_event import RevenueEvent
from residuals.services.cascade import CascadeCoordinator, CascadeResult
from residuals.services.history_service import ActionHistoryService
from residuals.services.participant_normalizer import normalize_participants
from residuals.services.payout_service import build_payouts
from residuals.services.snapshots import snapshot

logger = logging.getLogger(__name__)

MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _now():
    return datetime.now(timezone.utc)


def _mid_list(events: Sequence[RevenueEvent]) -> List[str]:
    seen: List[str] = []
    for e in events:
        if e.mid not in seen:
            seen.append(e.mid)
    return seen


@dataclass
class ConfirmResult:
    confirmed_count: int = 0
    payouts_created: int = 0
    payout_ids: List[uuid.UUID] = field(default_factory=list)
    failed_event_ids: List[uuid.UUID] = field(default_factory=list)
    external_sync_summary: Dict[str, Any] = field(default_factory=dict)


class EventService:
    """
    Assignment lifecycle of revenue events:

        unassigned -> pending -> confirmed
        pending    -> unassigned           (reject / deal reject)
        confirmed  -> unassigned           (deal reject: payouts + deal removed)

    pending_confirmation is read as pending.
    """

    def __init__(
        self,
        history: ActionHistoryService,
        settings: Optional[Settings] = None,
        sync_service=None,
    ):
        self.history = history
        self.settings = settings or get_settings()
        self.sync_service = sync_service

    # ---------------------------
    # READS
    # ---------------------------

    def get_event(self, db: Session, event_id: uuid.UUID) -> RevenueEvent:
        ev = db.get(RevenueEvent, event_id)
        if not ev:
            raise NotFoundError("Event not found")
        return ev

    def list_events(
        self,
        db: Session,
        *,
        status: Optional[str] = None,
        payout_month: Optional[str] = None,
        mid: Optional[str] = None,
        limit: int = 1000,
    ) -> List[RevenueEvent]:
        stmt = select(RevenueEvent)
        if status:
            if status in PENDING_STATUSES:
                stmt = stmt.where(RevenueEvent.assignment_status.in_(PENDING_STATUSES))
            else:
                stmt = stmt.where(RevenueEvent.assignment_status == status)
        if payout_month:
            stmt = stmt.where(RevenueEvent.payout_month == payout_month)
        if mid:
            stmt = stmt.where(RevenueEvent.mid == normalize_mid(mid))
        stmt = stmt.order_by(RevenueEvent.created_at.desc()).limit(limit)
        return list(db.execute(stmt).scalars().all())

    def get_deal_for_event(self, db: Session, event_id: uuid.UUID) -> Deal:
        ev = self.get_event(db, event_id)
        if not ev.deal_id:
            raise NotFoundError("Deal not found for event")
        deal = db.get(Deal, ev.deal_id)
        if not deal:
            raise NotFoundError("Deal not found")
        return deal

    # ---------------------------
    # CONFIRM
    # ---------------------------

    def confirm_events(
        self,
        db: Session,
        event_ids: Sequence[uuid.UUID],
        *,
        request_id: Optional[str] = None,
    ) -> ConfirmResult:
        """
        pending -> confirmed, generating one payout per deal participant.

        Preconditions are checked for the whole batch before any write.
        After that, each event is written and committed on its own: a failure
        on one event is logged and does not undo the others.
        """
        if not event_ids:
            raise ValidationError("No events specified")

        events = db.execute(select(RevenueEvent).where(RevenueEvent.id.in_(list(event_ids)))).scalars().all()
        if not events:
            raise NotFoundError("No events found")

        without_deal = [e for e in events if not e.deal_id]
        if without_deal:
            mids = _mid_list(without_deal)
            raise ValidationError(
                f"Cannot confirm events without deals assigned. Please assign partners first for MIDs: {', '.join(mids)}",
                details={"unassigned_mids": mids},
            )

        deal_ids = {e.deal_id for e in events}
        deals = {d.id: d for d in db.execute(select(Deal).where(Deal.id.in_(deal_ids))).scalars().all()}
        participants = {d_id: normalize_participants(d.participants_json) for d_id, d in deals.items()}

        without_people = [e for e in events if not participants.get(e.deal_id)]
        if without_people:
            mids = _mid_list(without_people)
            raise ValidationError(
                f"Cannot confirm events without participants assigned. Please assign partners first for MIDs: {', '.join(mids)}",
                details={"missing_participant_mids": mids},
            )

        if self.settings.enforce_hold_on_confirm:
            held = [e for e in events if e.is_held]
            if held:
                mids = _mid_list(held)
                raise ValidationError(
                    f"Cannot confirm events that are on hold. Release them first for MIDs: {', '.join(mids)}",
                    details={"held_mids": mids},
                )

        result = ConfirmResult()
        previous = {str(e.id): e.assignment_status for e in events}
        # Plain values: a rollback below expires ORM instances.
        work = [(e.id, e.mid, e.deal_id) for e in events]

        for event_pk, mid, deal_pk in work:
            try:
                created = self._confirm_one(db, event_pk, deals[deal_pk], participants[deal_pk], result)
                db.commit()
                result.confirmed_count += 1
                result.payouts_created += created
            except SQLAlchemyError as e:
                db.rollback()
                result.failed_event_ids.append(event_pk)
                logger.error(
                    "confirm failed for event",
                    extra={"event_id": str(event_pk), "mid": mid, "error": str(e), "request_id": request_id},
                )

        logger.info(
            "events confirmed",
            extra={
                "confirmed": result.confirmed_count,
                "payouts_created": result.payouts_created,
                "failed": len(result.failed_event_ids),
                "request_id": request_id,
            },
        )
        self.history.log_action(
            action_type=ActionType.bulk_update.value,
            entity_type=EntityType.assignment.value,
            entity_id=",".join(str(i) for i in event_ids),
            entity_name=f"{len(events)} events",
            previous_data={"statuses": previous},
            new_data={
                "status": AssignmentStatus.confirmed.value,
                "event_ids": [str(i) for i in event_ids],
                "mids": _mid_list(events),
            },
            description=f"Confirmed {result.confirmed_count} assignment(s)",
            request_id=request_id,
        )

        result.external_sync_summary = self._push(db, result.payout_ids, request_id)
        return result

    def _confirm_one(
        self,
        db: Session,
        event_pk: uuid.UUID,
        deal: Deal,
        people: List[Dict[str, Any]],
        result: ConfirmResult,
    ) -> int:
        event = db.get(RevenueEvent, event_pk)
        event.assignment_status = AssignmentStatus.confirmed.value
        event.updated_at = _now()

        existing = db.execute(select(Payout.id).where(Payout.csv_data_id == event_pk)).scalars().all()
        if existing:
            # Payouts survive re-assignment; only mirror the status.
            db.execute(
                update(Payout)
                .where(Payout.csv_data_id == event_pk)
                .values(assignment_status=AssignmentStatus.confirmed.value, updated_at=_now())
                .execution_options(synchronize_session=False)
            )
            result.payout_ids.extend(existing)
            return 0

        rows = build_payouts(event, deal, people)
        db.add_all(rows)
        db.flush()
        result.payout_ids.extend(r.id for r in rows)
        return len(rows)

    def _push(self, db: Session, payout_ids: List[uuid.UUID], request_id: Optional[str]) -> Dict[str, Any]:
        """Best-effort mirror to the external store; never fails the confirm."""
        if not payout_ids or self.sync_service is None:
            return {"skipped": True, "synced": 0}
        try:
            return self.sync_service.push_payouts(db, payout_ids)
        except ExternalServiceError as e:
            logger.warning("external sync after confirm failed", extra={"error": str(e), "request_id": request_id})
            return {"synced": 0, "error": str(e)}
        except Exception as e:
            # events are committed by now
            logger.exception("external sync after confirm crashed", extra={"request_id": request_id})
            return {"synced": 0, "error": str(e)}

    # ---------------------------
    # SIMPLE TRANSITIONS
    # ---------------------------

    def reject_event(self, db: Session, event_id: uuid.UUID, *, request_id: Optional[str] = None) -> RevenueEvent:
        """Status back to unassigned. Deal and payouts are untouched."""
        return self._set_status(db, event_id, AssignmentStatus.unassigned.value, clear_deal=False,
                                request_id=request_id, verb="Rejected")

    def reset_event(self, db: Session, event_id: uuid.UUID, *, request_id: Optional[str] = None) -> RevenueEvent:
        """Back to pending with the deal link cleared."""
        return self._set_status(db, event_id, AssignmentStatus.pending.value, clear_deal=True,
                                request_id=request_id, verb="Reset")

    def _set_status(
        self,
        db: Session,
        event_id: uuid.UUID,
        status: str,
        *,
        clear_deal: bool,
        request_id: Optional[str],
        verb: str,
    ) -> RevenueEvent:
        ev = self.get_event(db, event_id)
        before = snapshot(ev)
        ev.assignment_status = status
        if clear_deal:
            ev.deal_id = None
        ev.updated_at = _now()
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to update event: {e}") from e
        db.refresh(ev)

        self.history.log_action(
            action_type=ActionType.update.value,
            entity_type=EntityType.event.value,
            entity_id=ev.id,
            entity_name=f"{ev.mid} - {ev.merchant_name}",
            previous_data=before,
            new_data=snapshot(ev),
            description=f"{verb} event {ev.mid} ({ev.merchant_name})",
            request_id=request_id,
        )
        return ev

    def hold_events(
        self,
        db: Session,
        event_ids: Sequence[uuid.UUID],
        *,
        hold_reason: Optional[str],
        request_id: Optional[str] = None,
    ) -> int:
        return self._set_hold(db, event_ids, True, hold_reason, request_id)

    def release_events(self, db: Session, event_ids: Sequence[uuid.UUID], *, request_id: Optional[str] = None) -> int:
        return self._set_hold(db, event_ids, False, None, request_id)

    def _set_hold(
        self,
        db: Session,
        event_ids: Sequence[uuid.UUID],
        held: bool,
        reason: Optional[str],
        request_id: Optional[str],
    ) -> int:
        if not event_ids:
            raise ValidationError("No events specified")
        ids = list(event_ids)
        before = [
            {"id": str(i), "mid": m, "is_held": h, "hold_reason": r}
            for i, m, h, r in db.execute(
                select(RevenueEvent.id, RevenueEvent.mid, RevenueEvent.is_held, RevenueEvent.hold_reason)
                .where(RevenueEvent.id.in_(ids))
            ).all()
        ]
        try:
            res = db.execute(
                update(RevenueEvent)
                .where(RevenueEvent.id.in_(ids))
                .values(is_held=held, hold_reason=reason, updated_at=_now())
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to update hold flag: {e}") from e

        count = res.rowcount or 0
        desc = (
            f"Put {count} event(s) on hold: {reason or 'No reason specified'}"
            if held else f"Released {count} event(s) from hold"
        )
        self.history.log_action(
            action_type=ActionType.update.value,
            entity_type=EntityType.event.value,
            entity_id=",".join(str(i) for i in ids),
            entity_name=f"{len(ids)} events",
            previous_data={"events": before},
            new_data={"is_held": held, "hold_reason": reason, "event_ids": [str(i) for i in ids]},
            description=desc,
            request_id=request_id,
        )
        return count

    def bulk_update_payout_month(
        self,
        db: Session,
        event_ids: Sequence[uuid.UUID],
        payout_month: str,
        *,
        request_id: Optional[str] = None,
    ) -> int:
        if not event_ids:
            raise ValidationError("No events specified")
        if not payout_month or not MONTH_RE.match(payout_month):
            raise ValidationError("Invalid payout_month format. Use YYYY-MM")
        ids = list(event_ids)

        before = [
            {"id": str(i), "payout_month": m}
            for i, m in db.execute(
                select(RevenueEvent.id, RevenueEvent.payout_month).where(RevenueEvent.id.in_(ids))
            ).all()
        ]
        try:
            res = db.execute(
                update(RevenueEvent)
                .where(RevenueEvent.id.in_(ids))
                .values(payout_month=payout_month, updated_at=_now())
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to update events: {e}") from e

        batch_id = str(uuid.uuid4())
        self.history.log_action(
            action_type=ActionType.bulk_update.value,
            entity_type=EntityType.event.value,
            entity_id=batch_id,
            entity_name=f"Bulk update {len(ids)} events",
            previous_data={"events": before},
            new_data={"payout_month": payout_month, "event_ids": [str(i) for i in ids]},
            description=f"Changed payout_month to {payout_month} for {len(ids)} events",
            batch_id=batch_id,
            request_id=request_id,
        )
        return res.rowcount or 0

    # ---------------------------
    # DELETION
    # ---------------------------

    def delete_unassigned_events(
        self,
        db: Session,
        event_ids: Sequence[uuid.UUID],
        *,
        request_id: Optional[str] = None,
    ) -> int:
        """
        Only unassigned events may be deleted here; assigned ones are skipped.
        """
        if not event_ids:
            raise ValidationError("No event IDs provided")

        events = db.execute(select(RevenueEvent).where(RevenueEvent.id.in_(list(event_ids)))).scalars().all()
        deletable = [
            e for e in events
            if e.assignment_status in (None, AssignmentStatus.unassigned.value)
        ]
        if not deletable:
            raise ValidationError("No unassigned events found to delete. Only unassigned events can be deleted.")

        before = [snapshot(e) for e in deletable]
        ids = [e.id for e in deletable]
        try:
            db.execute(
                delete(RevenueEvent).where(
                    RevenueEvent.id.in_(ids),
                    RevenueEvent.assignment_status == AssignmentStatus.unassigned.value,
                ).execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to delete events: {e}") from e

        self.history.log_action(
            action_type=ActionType.delete.value,
            entity_type=EntityType.event.value,
            entity_id=",".join(str(i) for i in ids),
            entity_name=f"{len(ids)} events",
            previous_data={"events": before},
            new_data=None,
            description=f"Deleted {len(ids)} unassigned event(s)",
            request_id=request_id,
        )
        return len(ids)

    def force_delete_event(
        self,
        db: Session,
        event_id: uuid.UUID,
        *,
        request_id: Optional[str] = None,
    ) -> CascadeResult:
        """
        Delete an event whatever its status, together with its payouts and its deal.
        The full prior state is logged for manual recovery.
        """
        ev = self.get_event(db, event_id)
        deal = db.get(Deal, ev.deal_id) if ev.deal_id else None
        siblings = []
        if deal is not None:
            siblings = db.execute(
                select(RevenueEvent).where(RevenueEvent.deal_id == deal.id, RevenueEvent.id != event_id)
            ).scalars().all()
        event_ids = [event_id] + [s.id for s in siblings]
        payout_conds = [Payout.csv_data_id.in_(event_ids)]
        if deal is not None:
            payout_conds.append(Payout.deal_id == deal.deal_id)
        payouts = db.execute(select(Payout).where(or_(*payout_conds))).scalars().all()
        recovery = {
            "event": snapshot(ev),
            "deal": snapshot(deal),
            "siblings": [snapshot(s) for s in siblings],
            "payouts": [snapshot(p) for p in payouts],
        }
        deal_pk = deal.id if deal else None
        name = f"{ev.mid} - {ev.merchant_name}"

        def delete_payouts(s: Session) -> int:
            # Every payout of the deal goes, siblings' included.
            return s.execute(
                delete(Payout).where(or_(*payout_conds)).execution_options(synchronize_session=False)
            ).rowcount or 0

        def detach_deal_events(s: Session) -> int:
            # Other events sharing the deal go back to the queue rather than dangle.
            if deal_pk is None:
                return 0
            return s.execute(
                update(RevenueEvent)
                .where(RevenueEvent.deal_id == deal_pk, RevenueEvent.id != event_id)
                .values(assignment_status=AssignmentStatus.unassigned.value, deal_id=None,
                        assigned_agent_id=None, assigned_agent_name=None)
                .execution_options(synchronize_session=False)
            ).rowcount or 0

        def delete_deal(s: Session) -> int:
            if deal_pk is None:
                return 0
            return s.execute(
                delete(Deal).where(Deal.id == deal_pk).execution_options(synchronize_session=False)
            ).rowcount or 0

        def delete_event(s: Session) -> int:
            return s.execute(
                delete(RevenueEvent).where(RevenueEvent.id == event_id).execution_options(synchronize_session=False)
            ).rowcount or 0

        steps = [
            ("delete_payouts", delete_payouts),
            ("detach_deal_events", detach_deal_events),
            ("delete_deal", delete_deal),
            ("delete_event", delete_event),
        ]
        result = CascadeCoordinator(self.settings.cascade_max_attempts).run(db, steps, context="force_delete_event")
        db.expire_all()

        self.history.log_action(
            action_type=ActionType.delete.value,
            entity_type=EntityType.event.value,
            entity_id=event_id,
            entity_name=name,
            previous_data=recovery,
            new_data=None,
            description=f"Permanently deleted event {name}",
            request_id=request_id,
        )
        return result
