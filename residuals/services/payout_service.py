from __future__ import annotations

import logging
import math
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from residuals.core.config import Settings, get_settings
from residuals.core.errors import NotFoundError, PersistenceError, ValidationError
from residuals.core.mid import normalize_mid
from residuals.models.deal import Deal
from residuals.models.enums import ActionType, AssignmentStatus, EntityType, PaidStatus, PayoutType
from residuals.models.payout import Payout
from residuals.models.revenue_event import RevenueEvent
from residuals.services.history_service import ActionHistoryService
from residuals.services.participant_normalizer import (
    IDENTIFIER_KEYS,
    matches_identifier,
    normalize_participant,
)
from residuals.services.snapshots import snapshot
from residuals.services.split_calculator import net_residual, payout_amount, to_decimal

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def quarter_of(month: str) -> Optional[str]:
    """'2025-10' -> '2025-Q4'."""
    try:
        year, m = month.split("-")[:2]
        q = math.ceil(int(m) / 3)
    except (ValueError, AttributeError):
        return None
    if not 1 <= q <= 4:
        return None
    return f"{year}-Q{q}"


def build_payouts(event: RevenueEvent, deal: Deal, participants: Sequence[Mapping[str, Any]]) -> List[Payout]:
    """
    One payout row per participant for a confirmed event.
    amount_i = (fees - adjustments - chargebacks) * split_i / 100
    """
    fees = to_decimal(event.fees)
    adjustments = to_decimal(event.adjustments)
    chargebacks = to_decimal(event.chargebacks)
    net = net_residual(fees, adjustments, chargebacks)

    rows = []
    for raw in participants:
        p = normalize_participant(raw)
        split = to_decimal(p["split_pct"])
        rows.append(
            Payout(
                csv_data_id=event.id,
                deal_id=deal.deal_id,
                mid=event.mid,
                merchant_name=event.merchant_name,
                payout_month=event.payout_month,
                payout_date=event.date,
                payout_type=event.payout_type or PayoutType.residual.value,
                volume=to_decimal(event.volume),
                fees=fees,
                adjustments=adjustments,
                chargebacks=chargebacks,
                net_residual=net,
                partner_airtable_id=p["partner_airtable_id"] or None,
                partner_name=p["partner_name"] or None,
                partner_role=p["partner_role"],
                partner_split_pct=split,
                partner_payout_amount=payout_amount(net, split),
                assignment_status=AssignmentStatus.confirmed.value,
                paid_status=PaidStatus.unpaid.value,
            )
        )
    return rows


@dataclass
class MergeResult:
    payouts_updated: int
    deals_updated: int


class PayoutService:
    def __init__(self, history: ActionHistoryService, settings: Optional[Settings] = None):
        self.history = history
        self.settings = settings or get_settings()

    # ---------------------------
    # READS
    # ---------------------------

    def get_payout(self, db: Session, payout_id: uuid.UUID) -> Payout:
        row = db.get(Payout, payout_id)
        if not row:
            raise NotFoundError("Payout not found")
        return row

    def iter_payouts(
        self,
        db: Session,
        *,
        payout_month: Optional[str] = None,
        ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> Iterator[Payout]:
        """
        Every matching payout, fetched page by page so no single query is capped.
        """
        page_size = self.settings.payout_page_size
        offset = 0
        while True:
            stmt = select(Payout).order_by(Payout.created_at.asc(), Payout.id.asc())
            if payout_month:
                stmt = stmt.where(Payout.payout_month == payout_month)
            if ids is not None:
                stmt = stmt.where(Payout.id.in_(list(ids)))
            page = db.execute(stmt.offset(offset).limit(page_size)).scalars().all()
            yield from page
            if len(page) < page_size:
                return
            offset += page_size

    def list_payouts(
        self,
        db: Session,
        *,
        payout_month: Optional[str] = None,
        partner_id: Optional[str] = None,
        mid: Optional[str] = None,
        paid_status: Optional[str] = None,
    ) -> List[Payout]:
        stmt = select(Payout)
        if payout_month:
            stmt = stmt.where(Payout.payout_month == payout_month)
        if partner_id:
            stmt = stmt.where(Payout.partner_airtable_id == partner_id)
        if mid:
            stmt = stmt.where(Payout.mid == normalize_mid(mid))
        if paid_status:
            stmt = stmt.where(Payout.paid_status == paid_status)
        stmt = stmt.order_by(Payout.payout_month.desc(), Payout.mid.asc(), Payout.partner_name.asc())
        return list(db.execute(stmt).scalars().all())

    def unique_months(self, db: Session) -> List[str]:
        rows = db.execute(
            select(Payout.payout_month).where(Payout.payout_month.is_not(None)).distinct()
        ).scalars().all()
        return sorted(rows, reverse=True)

    # ---------------------------
    # AGGREGATES (always recomputed from rows)
    # ---------------------------

    def monthly_summary(self, db: Session) -> List[Dict[str, Any]]:
        buckets: Dict[str, Dict[str, Any]] = {}
        for month, amount, paid in db.execute(
            select(Payout.payout_month, Payout.partner_payout_amount, Payout.paid_status)
        ).all():
            if not month:
                continue
            b = buckets.setdefault(
                month,
                {"payout_month": month, "total_amount": Decimal("0"), "paid_amount": Decimal("0"),
                 "unpaid_amount": Decimal("0"), "total_payouts": 0},
            )
            amt = to_decimal(amount)
            b["total_amount"] += amt
            b["total_payouts"] += 1
            if paid == PaidStatus.paid.value:
                b["paid_amount"] += amt
            else:
                b["unpaid_amount"] += amt
        return [buckets[m] for m in sorted(buckets, reverse=True)]

    def quarterly_summary(self, db: Session) -> List[Dict[str, Any]]:
        buckets: Dict[str, Dict[str, Any]] = {}
        for month, amount in db.execute(select(Payout.payout_month, Payout.partner_payout_amount)).all():
            if not month:
                continue
            q = quarter_of(month)
            if q is None:
                continue
            b = buckets.setdefault(q, {"quarter": q, "total_amount": Decimal("0"), "total_payouts": 0})
            b["total_amount"] += to_decimal(amount)
            b["total_payouts"] += 1

        out = []
        for q in sorted(buckets, reverse=True):
            b = buckets[q]
            b["average_payout"] = b["total_amount"] / b["total_payouts"] if b["total_payouts"] else Decimal("0")
            out.append(b)
        return out

    def participant_summary(self, db: Session, *, payout_month: Optional[str] = None) -> List[Dict[str, Any]]:
        stmt = select(
            Payout.partner_airtable_id,
            Payout.partner_name,
            Payout.partner_role,
            Payout.partner_payout_amount,
            Payout.paid_status,
            Payout.mid,
        )
        if payout_month:
            stmt = stmt.where(Payout.payout_month == payout_month)

        buckets: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for pid, name, role, amount, paid, mid in db.execute(stmt).all():
            key = pid or f"name:{name or ''}"
            b = buckets.get(key)
            if b is None:
                b = buckets[key] = {
                    "partner_airtable_id": pid,
                    "partner_name": name,
                    "partner_role": role,
                    "total_amount": Decimal("0"),
                    "paid_amount": Decimal("0"),
                    "unpaid_amount": Decimal("0"),
                    "total_payouts": 0,
                    "merchants": set(),
                }
            amt = to_decimal(amount)
            b["total_amount"] += amt
            b["total_payouts"] += 1
            b["merchants"].add(mid)
            if paid == PaidStatus.paid.value:
                b["paid_amount"] += amt
            else:
                b["unpaid_amount"] += amt

        out = []
        for b in buckets.values():
            b["merchant_count"] = len(b.pop("merchants"))
            out.append(b)
        out.sort(key=lambda b: b["total_amount"], reverse=True)
        return out

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def update_payout(
        self,
        db: Session,
        payout_id: uuid.UUID,
        *,
        partner_split_pct: Optional[Any] = None,
        partner_payout_amount: Optional[Any] = None,
        paid_status: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Payout:
        """
        Direct edit of one payout line. Nothing flows back into the deal and
        the amount is not recomputed from the new split.
        """
        row = self.get_payout(db, payout_id)
        before = snapshot(row)

        if partner_split_pct is not None:
            row.partner_split_pct = to_decimal(partner_split_pct)
        if partner_payout_amount is not None:
            row.partner_payout_amount = to_decimal(partner_payout_amount)
        if paid_status is not None:
            if paid_status not in (PaidStatus.paid.value, PaidStatus.unpaid.value):
                raise ValidationError(f"Invalid paid_status: {paid_status}")
            if paid_status != row.paid_status:
                row.paid_at = _now() if paid_status == PaidStatus.paid.value else None
            row.paid_status = paid_status
        row.updated_at = _now()

        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to update payout: {e}") from e
        db.refresh(row)

        self.history.log_action(
            action_type=ActionType.update.value,
            entity_type=EntityType.payout.value,
            entity_id=row.id,
            entity_name=f"{row.mid} - {row.partner_name}",
            previous_data=before,
            new_data=snapshot(row),
            description=f"Updated payout for {row.partner_name or row.partner_airtable_id} ({row.mid}, {row.payout_month})",
            request_id=request_id,
        )
        return row

    def delete_payout(self, db: Session, payout_id: uuid.UUID, *, request_id: Optional[str] = None) -> None:
        row = self.get_payout(db, payout_id)
        before = snapshot(row)
        try:
            db.delete(row)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to delete payout: {e}") from e

        self.history.log_action(
            action_type=ActionType.delete.value,
            entity_type=EntityType.payout.value,
            entity_id=payout_id,
            entity_name=f"{before['mid']} - {before['partner_name']}",
            previous_data=before,
            new_data=None,
            description=f"Deleted payout {payout_id}",
            request_id=request_id,
        )

    def mark_paid(
        self,
        db: Session,
        *,
        partner_id: str,
        payout_month: str,
        request_id: Optional[str] = None,
    ) -> int:
        """
        Flip every unpaid payout of (partner, month) to paid in one UPDATE.
        Returns the number of rows changed.
        """
        if not partner_id or not payout_month:
            raise ValidationError("Partner ID and month are required")

        cond = (
            Payout.partner_airtable_id == partner_id,
            Payout.payout_month == payout_month,
            Payout.paid_status == PaidStatus.unpaid.value,
        )
        before = [
            {"id": str(pid), "paid_status": status}
            for pid, status in db.execute(select(Payout.id, Payout.paid_status).where(*cond)).all()
        ]
        paid_at = _now()
        try:
            res = db.execute(
                update(Payout)
                .where(*cond)
                .values(paid_status=PaidStatus.paid.value, paid_at=paid_at, updated_at=paid_at)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                "mark paid failed",
                extra={"partner_id": partner_id, "payout_month": payout_month, "request_id": request_id},
            )
            raise PersistenceError(f"Failed to mark payouts as paid: {e}") from e

        count = res.rowcount or 0
        logger.info(
            "payouts marked paid",
            extra={"partner_id": partner_id, "payout_month": payout_month, "count": count, "request_id": request_id},
        )
        if count:
            self.history.log_action(
                action_type=ActionType.bulk_update.value,
                entity_type=EntityType.payout.value,
                entity_id=partner_id,
                entity_name=f"Partner {partner_id} - {payout_month}",
                previous_data={"payouts": before, "paid_status": PaidStatus.unpaid.value},
                new_data={"paid_status": PaidStatus.paid.value, "count": count},
                description=f"Marked {count} payouts as paid for partner {partner_id} in {payout_month}",
                request_id=request_id,
            )
        return count

    def update_merchant(
        self,
        db: Session,
        *,
        old_mid: str,
        new_mid: Optional[str] = None,
        new_merchant_name: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, int]:
        """
        Rename a merchant (MID and/or name) across payouts, events and deals.
        """
        old_mid = normalize_mid(old_mid)
        if not old_mid:
            raise ValidationError("Old MID is required")

        values: Dict[str, Any] = {}
        if new_mid is not None:
            values["mid"] = normalize_mid(new_mid)
        if new_merchant_name is not None:
            values["merchant_name"] = new_merchant_name
        if not values:
            raise ValidationError("Nothing to update")

        deal_values = {"mid": values["mid"]} if "mid" in values else {}
        counts = {"payouts_updated": 0, "events_updated": 0, "deals_updated": 0}
        try:
            counts["payouts_updated"] = db.execute(
                update(Payout).where(Payout.mid == old_mid).values(**values)
                .execution_options(synchronize_session=False)
            ).rowcount or 0
            counts["events_updated"] = db.execute(
                update(RevenueEvent).where(RevenueEvent.mid == old_mid).values(**values)
                .execution_options(synchronize_session=False)
            ).rowcount or 0
            if deal_values:
                counts["deals_updated"] = db.execute(
                    update(Deal).where(Deal.mid == old_mid).values(**deal_values)
                    .execution_options(synchronize_session=False)
                ).rowcount or 0
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to update merchant: {e}") from e

        self.history.log_action(
            action_type=ActionType.update.value,
            entity_type=EntityType.merchant.value,
            entity_id=old_mid,
            entity_name=new_merchant_name or old_mid,
            previous_data={"mid": old_mid},
            new_data={**values, **counts},
            description=f"Updated merchant {old_mid}",
            request_id=request_id,
        )
        return counts

    def merge_participants(
        self,
        db: Session,
        *,
        source_id: str,
        target_id: str,
        target_name: str,
        target_role: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> MergeResult:
        """
        Re-point everything that references source_id to target_id:
        payout rows and each deal's participants (whatever shape they were stored in).
        """
        if not source_id or not target_id:
            raise ValidationError("Source and target participant IDs are required")
        if source_id == target_id:
            raise ValidationError("Source and target cannot be the same")

        values: Dict[str, Any] = {"partner_airtable_id": target_id, "partner_name": target_name}
        if target_role:
            values["partner_role"] = target_role

        deals_updated = 0
        try:
            payouts_updated = db.execute(
                update(Payout).where(Payout.partner_airtable_id == source_id).values(**values)
                .execution_options(synchronize_session=False)
            ).rowcount or 0

            for deal in db.execute(select(Deal)).scalars().all():
                people = deal.participants_json or []
                if not any(matches_identifier(p, source_id) for p in people):
                    continue
                merged = []
                for p in people:
                    if matches_identifier(p, source_id):
                        p = {k: v for k, v in p.items() if k not in IDENTIFIER_KEYS}
                        p["partner_airtable_id"] = target_id
                        p["partner_name"] = target_name
                        if target_role:
                            p["partner_role"] = target_role
                    merged.append(normalize_participant(p))
                deal.participants_json = merged
                deals_updated += 1
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to merge participants: {e}") from e

        self.history.log_action(
            action_type=ActionType.merge.value,
            entity_type=EntityType.participant_merge.value,
            entity_id=source_id,
            entity_name=f"{source_id} -> {target_id}",
            previous_data={"partner_airtable_id": source_id},
            new_data={**values, "payouts_updated": payouts_updated, "deals_updated": deals_updated},
            description=f"Merged participant {source_id} into {target_name} ({target_id})",
            request_id=request_id,
        )
        return MergeResult(payouts_updated=payouts_updated, deals_updated=deals_updated)
