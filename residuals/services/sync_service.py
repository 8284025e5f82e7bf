from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from residuals.core.config import Settings, get_settings
from residuals.core.errors import ExternalServiceError, ValidationError
from residuals.models.enums import ActionType, EntityType, PaidStatus, PayoutType
from residuals.models.payout import Payout
from residuals.services.airtable_client import MAX_RECORDS_PER_WRITE, AirtableClient
from residuals.services.event_service import MONTH_RE
from residuals.services.history_service import ActionHistoryService
from residuals.services.payout_service import PayoutService

logger = logging.getLogger(__name__)

PAYOUT_ID_FIELD = "Payout ID"

# Fields whose difference makes an external record "changed".
COMPARE_FIELDS = (
    "Paid Status",
    "Paid At",
    "Status",
    "Split %",
    "Payout Amount",
    "Partner Role",
    "Partner Name",
)

_NUMERIC_FIELDS = {"Split %", "Payout Amount", "Volume", "Fees", "Net Residual"}


def _num(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    if isinstance(value, Decimal):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _iso(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def format_payout(p: Payout) -> Dict[str, Any]:
    """Local payout -> external record fields."""
    return {
        PAYOUT_ID_FIELD: str(p.id),
        "Deal ID": p.deal_id or "",
        "MID": str(p.mid or ""),
        "Merchant Name": p.merchant_name or "",
        "Payout Month": p.payout_month or "",
        "Partner ID": p.partner_airtable_id or "",
        "Partner Name": p.partner_name or "",
        "Partner Role": p.partner_role or "",
        "Split %": _num(p.partner_split_pct),
        "Payout Amount": _num(p.partner_payout_amount),
        "Volume": _num(p.volume),
        "Fees": _num(p.fees),
        "Net Residual": _num(p.net_residual),
        "Payout Type": p.payout_type or PayoutType.residual.value,
        "Status": p.assignment_status or "",
        "Paid Status": p.paid_status or PaidStatus.unpaid.value,
        "Paid At": _iso(p.paid_at),
    }


def _comparable(name: str, value: Any) -> Any:
    if name in _NUMERIC_FIELDS:
        return round(_num(value), 4)
    if name == "Paid At":
        # Airtable echoes timestamps as "...Z" with milliseconds.
        s = _iso(value).strip()
        return s[:19] if s else ""
    return "" if value is None else str(value)


def diff_fields(local: Dict[str, Any], remote: Dict[str, Any]) -> Dict[str, Any]:
    return {
        name: local.get(name)
        for name in COMPARE_FIELDS
        if _comparable(name, local.get(name)) != _comparable(name, remote.get(name))
    }


@dataclass
class SyncPlan:
    new: List[Dict[str, Any]] = field(default_factory=list)
    changed: List[Dict[str, Any]] = field(default_factory=list)
    unchanged_count: int = 0
    totals: Dict[str, int] = field(default_factory=dict)


@dataclass
class ApplyResult:
    created_count: int = 0
    updated_count: int = 0
    errors: List[str] = field(default_factory=list)


class SyncService:
    """
    Mirrors local payouts into the Airtable payouts table.

    compare() is read-only on both sides; apply() writes in batches of
    sync_batch_size with a pause between batches. A failed batch is recorded
    as "Batch {i}: {error}" and the remaining batches still run.
    """

    def __init__(
        self,
        client: AirtableClient,
        history: Optional[ActionHistoryService] = None,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.history = history
        self.settings = settings or get_settings()
        self.payouts = PayoutService(history, self.settings)

    # ---------------------------
    # COMPARE
    # ---------------------------

    def _remote_index(self, *, payout_month: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        formula = f"{{Payout Month}}='{payout_month}'" if payout_month else None
        index: Dict[str, Dict[str, Any]] = {}
        for rec in self.client.list_records(filter_formula=formula):
            pid = (rec.get("fields") or {}).get(PAYOUT_ID_FIELD)
            if pid:
                index[str(pid)] = rec
        return index

    def _plan(self, payouts: Sequence[Payout], remote: Dict[str, Dict[str, Any]]) -> SyncPlan:
        plan = SyncPlan()
        for p in payouts:
            fields = format_payout(p)
            existing = remote.get(fields[PAYOUT_ID_FIELD])
            if existing is None:
                plan.new.append(fields)
                continue
            changes = diff_fields(fields, existing.get("fields") or {})
            if changes:
                plan.changed.append({"id": existing["id"], "fields": changes})
            else:
                plan.unchanged_count += 1
        plan.totals = {
            "local": len(payouts),
            "remote": len(remote),
            "new": len(plan.new),
            "changed": len(plan.changed),
            "unchanged": plan.unchanged_count,
        }
        return plan

    def _require_configured(self) -> None:
        if not self.client.configured:
            raise ExternalServiceError("Airtable sync is not configured (missing API key)")

    def compare(self, db: Session, *, payout_month: Optional[str] = None) -> SyncPlan:
        self._require_configured()
        if payout_month is not None and not MONTH_RE.match(payout_month):
            raise ValidationError("payout_month must be YYYY-MM")
        local = list(self.payouts.iter_payouts(db, payout_month=payout_month))
        remote = self._remote_index(payout_month=payout_month)
        return self._plan(local, remote)

    # ---------------------------
    # APPLY
    # ---------------------------

    def _batches(self, records: Sequence[Dict[str, Any]]):
        size = max(1, min(self.settings.sync_batch_size, MAX_RECORDS_PER_WRITE))
        for i in range(0, len(records), size):
            yield i // size, records[i: i + size]

    def _pause(self) -> None:
        if self.settings.sync_batch_delay_ms > 0:
            time.sleep(self.settings.sync_batch_delay_ms / 1000.0)

    def apply(self, new: Sequence[Dict[str, Any]], changed: Sequence[Dict[str, Any]]) -> ApplyResult:
        self._require_configured()
        result = ApplyResult()

        jobs = [("Create", self.client.create_records, i, batch) for i, batch in self._batches(list(new))]
        jobs += [("Update", self.client.update_records, i, batch) for i, batch in self._batches(list(changed))]

        for n, (phase, write, i, batch) in enumerate(jobs):
            if n:
                self._pause()
            try:
                write(batch)
            except ExternalServiceError as e:
                result.errors.append(f"{phase} batch {i}: {e}")
                logger.warning(
                    "airtable batch failed", extra={"phase": phase.lower(), "batch": i, "error": str(e)}
                )
                continue
            if phase == "Create":
                result.created_count += len(batch)
            else:
                result.updated_count += len(batch)

        return result

    # ---------------------------
    # ENTRY POINTS
    # ---------------------------

    def sync_payouts(
        self,
        db: Session,
        *,
        payout_month: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        plan = self.compare(db, payout_month=payout_month)
        applied = self.apply(plan.new, plan.changed)

        logger.info(
            "airtable sync finished",
            extra={"payout_month": payout_month, "created_count": applied.created_count,
                   "updated_count": applied.updated_count, "errors": len(applied.errors), "request_id": request_id},
        )
        if self.history is not None:
            self.history.log_action(
                action_type=ActionType.sync.value,
                entity_type=EntityType.payout.value,
                entity_id=payout_month or "all",
                entity_name=f"Airtable sync {payout_month or 'all months'}",
                new_data={**plan.totals, "created": applied.created_count,
                          "updated": applied.updated_count, "errors": applied.errors[:5]},
                description=f"Sync complete: {applied.created_count} created, {applied.updated_count} updated",
                request_id=request_id,
            )
        return {
            "created_count": applied.created_count,
            "updated_count": applied.updated_count,
            "unchanged_count": plan.unchanged_count,
            "errors": applied.errors,
            "totals": plan.totals,
        }

    def push_payouts(self, db: Session, payout_ids: Sequence[uuid.UUID]) -> Dict[str, Any]:
        """
        Confirm-time push of freshly touched payouts. Zero-split lines are not
        mirrored. Existing records get the full field set, new ones are created.
        """
        if not self.client.configured:
            return {"skipped": True, "synced": 0}
        payouts = [
            p for p in self.payouts.iter_payouts(db, ids=list(payout_ids))
            if _num(p.partner_split_pct) > 0
        ]
        if not payouts:
            return {"synced": 0}

        remote = self._remote_index()
        to_create: List[Dict[str, Any]] = []
        to_update: List[Dict[str, Any]] = []
        for p in payouts:
            fields = format_payout(p)
            existing = remote.get(fields[PAYOUT_ID_FIELD])
            if existing is None:
                to_create.append(fields)
            else:
                to_update.append({"id": existing["id"], "fields": fields})

        applied = self.apply(to_create, to_update)
        return {
            "synced": applied.created_count + applied.updated_count,
            "created": applied.created_count,
            "updated": applied.updated_count,
            "errors": applied.errors,
        }
