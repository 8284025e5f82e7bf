from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from residuals.core.config import Settings, get_settings
from residuals.core.errors import NotFoundError, PersistenceError, ValidationError
from residuals.core.mid import normalize_mid
from residuals.models.deal import Deal
from residuals.models.enums import ActionType, AssignmentStatus, EntityType, PayoutType
from residuals.models.payout import Payout
from residuals.models.revenue_event import RevenueEvent
from residuals.services.cascade import CascadeCoordinator, CascadeResult, CascadeStep
from residuals.services.history_service import ActionHistoryService
from residuals.services.participant_normalizer import normalize_participants
from residuals.services.snapshots import snapshot
from residuals.services.split_calculator import total_split

logger = logging.getLogger(__name__)

# Events that an assignment may (re)point at a deal.
_ASSIGNABLE_STATUSES = (
    AssignmentStatus.unassigned.value,
    AssignmentStatus.pending.value,
    AssignmentStatus.pending_confirmation.value,
)


def _now():
    return datetime.now(timezone.utc)


def _fmt_pct(d: Decimal) -> str:
    return format(d.normalize(), "f")


def new_deal_token() -> str:
    return f"deal_{uuid.uuid4()}"


@dataclass
class AssignResult:
    deal: Deal
    created: bool
    events_updated: int


class DealService:
    def __init__(self, history: ActionHistoryService, settings: Optional[Settings] = None):
        self.history = history
        self.settings = settings or get_settings()

    # ---------------------------
    # VALIDATION
    # ---------------------------

    def validate_split(self, participants: Sequence[Mapping[str, Any]]) -> Decimal:
        """
        Sum of split_pct must sit in [split_min_pct, split_max_pct].
        The band is wider than 100 to tolerate rounding in legacy deals.
        """
        if not participants:
            raise ValidationError("At least one participant is required")

        total = total_split(p.get("split_pct") for p in participants)
        lo = Decimal(str(self.settings.split_min_pct))
        hi = Decimal(str(self.settings.split_max_pct))
        if total < lo or total > hi:
            raise ValidationError(
                f"Total split ({_fmt_pct(total)}%) should be between {_fmt_pct(lo)}% and {_fmt_pct(hi)}%",
                details={"total_split": float(total)},
            )
        return total

    # ---------------------------
    # READS
    # ---------------------------

    def get_deal(self, db: Session, deal_id: uuid.UUID) -> Deal:
        deal = db.get(Deal, deal_id)
        if not deal:
            raise NotFoundError("Deal not found")
        return deal

    def get_deal_by_mid(self, db: Session, mid: str) -> Optional[Deal]:
        """
        Latest deal for the MID. Lookup ignores payout_type (see DESIGN.md).
        """
        return (
            db.execute(
                select(Deal)
                .where(Deal.mid == normalize_mid(mid))
                .order_by(Deal.created_at.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )

    def participants_of(self, deal: Deal) -> List[Dict[str, Any]]:
        return normalize_participants(deal.participants_json)

    def list_deals(
        self,
        db: Session,
        *,
        search: str = "",
        page: int = 1,
        limit: int = 100,
    ) -> Tuple[List[Dict[str, Any]], int]:
        deals = db.execute(select(Deal).order_by(Deal.created_at.desc())).scalars().all()

        mids = {d.mid for d in deals if d.mid}
        merchant_map: Dict[str, str] = {}
        paid_map: Dict[str, str] = {}
        if mids:
            rows = db.execute(
                select(Payout.mid, Payout.merchant_name, Payout.paid_status).where(Payout.mid.in_(mids))
            ).all()
            for mid, name, paid in rows:
                if name and mid not in merchant_map:
                    merchant_map[mid] = name
                if paid == "paid":
                    paid_map[mid] = "paid"
                else:
                    paid_map.setdefault(mid, "unpaid")

            missing = mids - set(merchant_map)
            if missing:
                for mid, name in db.execute(
                    select(RevenueEvent.mid, RevenueEvent.merchant_name).where(RevenueEvent.mid.in_(missing))
                ).all():
                    if name and mid not in merchant_map:
                        merchant_map[mid] = name

        items = []
        for d in deals:
            item = snapshot(d)
            item["participants_json"] = self.participants_of(d)
            item["merchant_name"] = merchant_map.get(d.mid)
            item["paid_status"] = paid_map.get(d.mid, "unpaid")
            items.append(item)

        if search:
            needle = search.lower()

            def _hit(item: Dict[str, Any]) -> bool:
                for key in ("mid", "deal_id", "assigned_agent_name", "merchant_name"):
                    if needle in (item.get(key) or "").lower():
                        return True
                return any(needle in (p["partner_name"] or "").lower() for p in item["participants_json"])

            items = [i for i in items if _hit(i)]

        total = len(items)
        offset = (max(page, 1) - 1) * limit
        return items[offset: offset + limit], total

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def assign_participants(
        self,
        db: Session,
        *,
        mid: str,
        payout_type: str,
        participants: Iterable[Mapping[str, Any]],
        event_ids: Optional[Sequence[uuid.UUID]] = None,
        request_id: Optional[str] = None,
    ) -> AssignResult:
        """
        Create-or-update the deal for a MID and move the referenced events to pending.

        - One current deal per MID: a second assignment overwrites participants
          and payout_type in place.
        - event_ids=None means every not-yet-confirmed event for the MID.
        """
        mid = normalize_mid(mid)
        if not mid:
            raise ValidationError("mid is required")
        payout_type = payout_type or PayoutType.residual.value

        people = normalize_participants(participants)
        self.validate_split(people)
        lead = people[0]

        try:
            deal = self.get_deal_by_mid(db, mid)
            before = snapshot(deal)
            created = deal is None

            if deal is None:
                deal = Deal(
                    deal_id=new_deal_token(),
                    mid=mid,
                    participants_json=people,
                    payout_type=payout_type,
                    assigned_agent_name=lead["partner_name"] or None,
                    assigned_at=_now(),
                )
                db.add(deal)
            else:
                deal.participants_json = people
                deal.payout_type = payout_type
                deal.assigned_agent_name = lead["partner_name"] or None
                deal.updated_at = _now()
            db.flush()

            if event_ids is None:
                target = select(RevenueEvent.id).where(
                    RevenueEvent.mid == mid,
                    RevenueEvent.assignment_status.in_(_ASSIGNABLE_STATUSES),
                )
                ids = list(db.execute(target).scalars().all())
            else:
                ids = list(event_ids)

            updated = 0
            if ids:
                res = db.execute(
                    update(RevenueEvent)
                    .where(RevenueEvent.id.in_(ids))
                    .values(
                        assignment_status=AssignmentStatus.pending.value,
                        deal_id=deal.id,
                        assigned_agent_id=lead["partner_airtable_id"] or None,
                        assigned_agent_name=lead["partner_name"] or None,
                        payout_type=payout_type,
                        updated_at=_now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                updated = res.rowcount or 0

            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("assign participants failed", extra={"mid": mid, "error": str(e)})
            raise PersistenceError(f"Failed to save deal: {e}") from e

        db.refresh(deal)
        logger.info(
            "participants assigned",
            extra={"mid": mid, "deal_id": deal.deal_id, "deal_created": created, "events_updated": updated},
        )
        self.history.log_action(
            action_type=(ActionType.create if created else ActionType.update).value,
            entity_type=EntityType.deal.value,
            entity_id=deal.id,
            entity_name=mid,
            previous_data=before,
            new_data=snapshot(deal),
            description=f"{'Created' if created else 'Updated'} deal for {mid} ({len(people)} participants, {updated} events)",
            request_id=request_id,
        )
        return AssignResult(deal=deal, created=created, events_updated=updated)

    def update_deal(
        self,
        db: Session,
        deal_id: uuid.UUID,
        *,
        participants: Optional[Iterable[Mapping[str, Any]]] = None,
        payout_type: Optional[str] = None,
        available_to_purchase: Optional[bool] = None,
        request_id: Optional[str] = None,
    ) -> Deal:
        """
        Direct edit of a deal. Existing payouts are left alone.
        """
        deal = self.get_deal(db, deal_id)
        before = snapshot(deal)

        if participants is not None:
            people = normalize_participants(participants)
            self.validate_split(people)
            deal.participants_json = people
            deal.assigned_agent_name = people[0]["partner_name"] or None
        if payout_type is not None:
            deal.payout_type = payout_type
        if available_to_purchase is not None:
            deal.available_to_purchase = available_to_purchase
        deal.updated_at = _now()

        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to update deal: {e}") from e
        db.refresh(deal)

        self.history.log_action(
            action_type=ActionType.update.value,
            entity_type=EntityType.deal.value,
            entity_id=deal.id,
            entity_name=deal.mid,
            previous_data=before,
            new_data=snapshot(deal),
            description=f"Updated deal {deal.mid}",
            request_id=request_id,
        )
        return deal

    # ---------------------------
    # CASCADES
    # ---------------------------

    def cascade_steps(self, deal: Deal, event_ids: Sequence[uuid.UUID]) -> List[CascadeStep]:
        """
        Teardown of a deal, as idempotent steps:
        payouts of linked events -> events back to unassigned -> the deal itself.
        """
        deal_pk = deal.id
        token = deal.deal_id
        ids = list(event_ids)

        def delete_payouts(db: Session) -> int:
            conds = [Payout.deal_id == token]
            if ids:
                conds.append(Payout.csv_data_id.in_(ids))
            res = db.execute(delete(Payout).where(or_(*conds)).execution_options(synchronize_session=False))
            return res.rowcount or 0

        def reset_events(db: Session) -> int:
            res = db.execute(
                update(RevenueEvent)
                .where(RevenueEvent.deal_id == deal_pk)
                .values(
                    assignment_status=AssignmentStatus.unassigned.value,
                    deal_id=None,
                    assigned_agent_id=None,
                    assigned_agent_name=None,
                    updated_at=_now(),
                )
                .execution_options(synchronize_session=False)
            )
            return res.rowcount or 0

        def delete_deal(db: Session) -> int:
            res = db.execute(delete(Deal).where(Deal.id == deal_pk).execution_options(synchronize_session=False))
            return res.rowcount or 0

        return [
            ("delete_payouts", delete_payouts),
            ("reset_events", reset_events),
            ("delete_deal", delete_deal),
        ]

    def teardown(self, db: Session, deal: Deal, *, context: str) -> Tuple[CascadeResult, Dict[str, Any]]:
        """Capture the recovery snapshot, then run the deal cascade."""
        events = db.execute(select(RevenueEvent).where(RevenueEvent.deal_id == deal.id)).scalars().all()
        recovery = {"deal": snapshot(deal), "events": [snapshot(e) for e in events]}
        steps = self.cascade_steps(deal, [e.id for e in events])
        result = CascadeCoordinator(self.settings.cascade_max_attempts).run(db, steps, context=context)
        db.expire_all()
        return result, recovery

    def reject_deal(self, db: Session, deal_id: uuid.UUID, *, request_id: Optional[str] = None) -> CascadeResult:
        """
        Return the deal's events to the unassigned queue: payouts deleted,
        events reset, deal deleted.
        """
        deal = self.get_deal(db, deal_id)
        mid = deal.mid
        result, recovery = self.teardown(db, deal, context="reject_deal")

        self.history.log_action(
            action_type=ActionType.reject.value,
            entity_type=EntityType.deal.value,
            entity_id=deal_id,
            entity_name=mid,
            previous_data=recovery,
            new_data=None,
            description=f"Rejected assignment for {mid} - returned to unassigned queue",
            request_id=request_id,
        )
        return result

    def delete_deal(self, db: Session, deal_id: uuid.UUID, *, request_id: Optional[str] = None) -> CascadeResult:
        deal = self.get_deal(db, deal_id)
        mid = deal.mid
        result, recovery = self.teardown(db, deal, context="delete_deal")

        self.history.log_action(
            action_type=ActionType.delete.value,
            entity_type=EntityType.deal.value,
            entity_id=deal_id,
            entity_name=mid,
            previous_data=recovery,
            new_data=None,
            description=f"Deleted deal {mid}",
            request_id=request_id,
        )
        return result
