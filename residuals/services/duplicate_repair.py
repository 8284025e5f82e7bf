"""
Duplicate-MID repair.

A legacy double import left merchant pairs whose MIDs differ only by a
leading "00" ("0022660744" vs "22660744"). The prefixed copy is kept; the
unprefixed copy carries the correct partner data, so it is copied across
and then removed. Every step is idempotent and can run on its own.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from residuals.core.config import Settings, get_settings
from residuals.core.errors import PersistenceError, ValidationError
from residuals.core.mid import DUPLICATE_MID_PREFIX, prefixed_sibling
from residuals.models.deal import Deal
from residuals.models.enums import ActionType, EntityType
from residuals.models.payout import Payout
from residuals.models.revenue_event import RevenueEvent
from residuals.services.cascade import CascadeCoordinator
from residuals.services.deal_service import DealService
from residuals.services.history_service import ActionHistoryService
from residuals.services.split_calculator import to_decimal

logger = logging.getLogger(__name__)

VERSION = "0001_duplicate_mid_prefix"

STEPS = ("count", "update_payouts", "update_deals", "delete_payouts", "delete_deals")

# (prefixed mid, payout month, split pct)
_PayoutKey = Tuple[str, Optional[str], Decimal]

_PARTNER_FIELDS = (
    "partner_name",
    "partner_role",
    "partner_airtable_id",
    "partner_split_pct",
    "partner_payout_amount",
)


@dataclass
class RepairStepResult:
    step: str
    message: str
    affected_count: int
    dry_run: bool
    details: Optional[Dict[str, Any]] = None


def _unprefixed(column):
    return ~column.like(DUPLICATE_MID_PREFIX + "%")


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, Decimal) or isinstance(b, Decimal):
        return to_decimal(a) == to_decimal(b)
    return a == b


class DuplicateMidRepair:
    version = VERSION

    def __init__(self, history: ActionHistoryService, settings: Optional[Settings] = None):
        self.history = history
        self.settings = settings or get_settings()
        self.deals = DealService(history, self.settings)

    def step(self, name: str) -> Callable[..., RepairStepResult]:
        if name not in STEPS:
            raise ValidationError(f"Invalid step: {name}", details={"valid_steps": list(STEPS)})
        return getattr(self, name)

    # ---------------------------
    # 1. COUNT
    # ---------------------------

    def _count_pairs(self, db: Session, model) -> int:
        sibling = aliased(model)
        exists = (
            select(sibling.id)
            .where(sibling.mid == DUPLICATE_MID_PREFIX + model.mid)
            .exists()
        )
        return db.execute(
            select(func.count()).select_from(model).where(_unprefixed(model.mid), exists)
        ).scalar_one()

    def count(self, db: Session, *, dry_run: bool = True, request_id: Optional[str] = None) -> RepairStepResult:
        payouts = self._count_pairs(db, Payout)
        deals = self._count_pairs(db, Deal)
        return RepairStepResult(
            step="count",
            message=f"Found {payouts} duplicate payout(s) and {deals} duplicate deal(s)",
            affected_count=payouts + deals,
            dry_run=True,
            details={"payouts": payouts, "deals": deals},
        )

    # ---------------------------
    # 2/3. COPY PARTNER DATA ONTO THE PREFIXED SIBLING
    # ---------------------------

    @staticmethod
    def _pair(sources: List[Payout], targets: List[Payout]) -> List[Tuple[Payout, Payout]]:
        """
        Match each source to at most one prefixed target. A target that already
        names the same partner wins; leftovers are paired in id order.
        """
        free = list(targets)
        pairs: List[Tuple[Payout, Payout]] = []
        unmatched: List[Payout] = []
        for src in sources:
            hit = next(
                (
                    t for t in free
                    if (src.partner_airtable_id and t.partner_airtable_id == src.partner_airtable_id)
                    or (src.partner_name and t.partner_name == src.partner_name)
                ),
                None,
            )
            if hit is None:
                unmatched.append(src)
                continue
            free.remove(hit)
            pairs.append((src, hit))
        for src, target in zip(unmatched, free):
            pairs.append((src, target))
        return pairs

    def update_payouts(self, db: Session, *, dry_run: bool = True, request_id: Optional[str] = None) -> RepairStepResult:
        prefixed: Dict[_PayoutKey, List[Payout]] = {}
        stmt = select(Payout).where(Payout.mid.like(DUPLICATE_MID_PREFIX + "%")).order_by(Payout.id)
        for p in db.execute(stmt).scalars():
            prefixed.setdefault((p.mid, p.payout_month, to_decimal(p.partner_split_pct)), []).append(p)

        grouped: Dict[_PayoutKey, List[Payout]] = {}
        for src in db.execute(select(Payout).where(_unprefixed(Payout.mid)).order_by(Payout.id)).scalars():
            key = (prefixed_sibling(src.mid), src.payout_month, to_decimal(src.partner_split_pct))
            grouped.setdefault(key, []).append(src)

        touched = 0
        for key, sources in grouped.items():
            for src, target in self._pair(sources, prefixed.get(key, [])):
                if all(_same(getattr(target, f), getattr(src, f)) for f in _PARTNER_FIELDS):
                    continue
                touched += 1
                if not dry_run:
                    for f in _PARTNER_FIELDS:
                        setattr(target, f, getattr(src, f))

        self._finish(db, dry_run)
        return self._done(
            "update_payouts", dry_run, touched,
            f"Updated {touched} old payout records with correct partner info", request_id,
        )

    def update_deals(self, db: Session, *, dry_run: bool = True, request_id: Optional[str] = None) -> RepairStepResult:
        prefixed: Dict[str, List[Deal]] = {}
        for d in db.execute(select(Deal).where(Deal.mid.like(DUPLICATE_MID_PREFIX + "%"))).scalars():
            prefixed.setdefault(d.mid, []).append(d)

        touched = 0
        for src in db.execute(select(Deal).where(_unprefixed(Deal.mid))).scalars().all():
            for target in prefixed.get(prefixed_sibling(src.mid), []):
                if target.participants_json == src.participants_json:
                    continue
                touched += 1
                if not dry_run:
                    target.participants_json = list(src.participants_json or [])

        self._finish(db, dry_run)
        return self._done(
            "update_deals", dry_run, touched,
            f"Updated {touched} old deal records with correct participants_json", request_id,
        )

    # ---------------------------
    # 4/5. DELETE THE UNPREFIXED COPY (only when a sibling exists)
    # ---------------------------

    def _with_sibling(self, db: Session, model) -> list:
        sibling_mids = set(
            db.execute(select(model.mid).where(model.mid.like(DUPLICATE_MID_PREFIX + "%")).distinct()).scalars()
        )
        rows = db.execute(select(model).where(_unprefixed(model.mid))).scalars().all()
        return [r for r in rows if prefixed_sibling(r.mid) in sibling_mids]

    def delete_payouts(self, db: Session, *, dry_run: bool = True, request_id: Optional[str] = None) -> RepairStepResult:
        doomed = self._with_sibling(db, Payout)
        if not dry_run:
            for p in doomed:
                db.delete(p)
        self._finish(db, dry_run)
        return self._done(
            "delete_payouts", dry_run, len(doomed),
            f"Deleted {len(doomed)} duplicate payout records", request_id,
        )

    def delete_deals(self, db: Session, *, dry_run: bool = True, request_id: Optional[str] = None) -> RepairStepResult:
        doomed = self._with_sibling(db, Deal)
        if dry_run:
            return self._done(
                "delete_deals", True, len(doomed),
                f"Deleted {len(doomed)} duplicate deal records", request_id,
            )

        coordinator = CascadeCoordinator(self.settings.cascade_max_attempts)
        targets = [(d.id, d.mid, self.deals.cascade_steps(d, self._event_ids(db, d))) for d in doomed]
        deleted = 0
        failures: Dict[str, Dict[str, str]] = {}
        for deal_pk, mid, steps in targets:
            result = coordinator.run(db, steps, context=f"repair:delete_deals:{mid}")
            if result.ok and result.completed.get("delete_deal"):
                deleted += 1
            elif result.failed:
                failures[str(deal_pk)] = result.failed
        db.expire_all()

        out = self._done(
            "delete_deals", False, deleted,
            f"Deleted {deleted} duplicate deal records", request_id,
        )
        if failures:
            out.details = {"failed": failures}
        return out

    @staticmethod
    def _event_ids(db: Session, deal: Deal) -> list:
        return list(db.execute(select(RevenueEvent.id).where(RevenueEvent.deal_id == deal.id)).scalars())

    # ---------------------------
    # ALL
    # ---------------------------

    def run_all(self, db: Session, *, dry_run: bool = True, request_id: Optional[str] = None) -> List[RepairStepResult]:
        return [self.step(name)(db, dry_run=dry_run, request_id=request_id) for name in STEPS]

    # ---------------------------
    # helpers
    # ---------------------------

    @staticmethod
    def _finish(db: Session, dry_run: bool) -> None:
        if dry_run:
            db.rollback()
            return
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Repair step failed: {e}") from e

    def _done(self, step: str, dry_run: bool, count: int, message: str, request_id: Optional[str]) -> RepairStepResult:
        if dry_run:
            message = f"[dry run] {message.replace('Updated', 'Would update').replace('Deleted', 'Would delete')}"
        logger.info(
            "duplicate mid repair step",
            extra={"version": VERSION, "step": step, "dry_run": dry_run, "affected": count, "request_id": request_id},
        )
        if not dry_run:
            self.history.log_action(
                action_type=ActionType.maintenance.value,
                entity_type=EntityType.merchant.value,
                entity_id=f"{VERSION}:{step}",
                entity_name="Duplicate MID cleanup",
                new_data={"version": VERSION, "step": step, "affected_count": count},
                description=message,
                request_id=request_id,
            )
        return RepairStepResult(step=step, message=message, affected_count=count, dry_run=dry_run)
