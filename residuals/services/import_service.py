from __future__ import annotations

import csv
import io
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from residuals.core.errors import PersistenceError, ValidationError
from residuals.core.hashing import row_hash
from residuals.core.mid import normalize_mid
from residuals.models.enums import ActionType, AssignmentStatus, EntityType, PayoutType
from residuals.models.revenue_event import RevenueEvent
from residuals.services.history_service import ActionHistoryService
from residuals.services.split_calculator import to_decimal

logger = logging.getLogger(__name__)

# Logical field -> accepted header aliases (matched after _header_key()).
FIELD_ALIASES: Dict[str, tuple] = {
    "mid": ("mid", "merchant id", "merchant_id", "merchantid", "merchant_identifier", "merchant number"),
    "merchant_name": ("merchant_name", "merchant name", "merchantname", "company_name", "business_name", "dba", "name"),
    "volume": ("volume", "transaction_volume", "monthly_volume", "total_volume", "sales", "sales volume"),
    "fees": ("fees", "payout_amount", "payout", "payouts", "net_payout", "residual_amount", "residual"),
    "date": ("date", "txn_date", "transaction date", "payment_date", "process_date"),
    "payout_month": ("payout_month", "month", "processing_month", "period"),
    "adjustments": ("adjustments", "adjustment"),
    "chargebacks": ("chargebacks", "chargeback"),
}

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d", "%m-%d-%Y")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})")

IMPORT_CHUNK = 1000


def _header_key(h: str) -> str:
    return re.sub(r"[\s_\-]", "", (h or "").strip().lower())


_ALIAS_INDEX = {_header_key(a): logical for logical, aliases in FIELD_ALIASES.items() for a in aliases}


def parse_money(raw: Any) -> Decimal:
    """'$1,234.50' -> 1234.50, '(12.00)' -> -12.00; junk -> 0."""
    if raw is None:
        return Decimal("0")
    s = str(raw).strip()
    negative = s.startswith("(") and s.endswith(")")
    s = s.strip("()").replace("$", "").replace(",", "").strip()
    value = to_decimal(s)
    return -value if negative else value


def parse_date(raw: Any) -> Optional[date]:
    s = (str(raw).strip() if raw is not None else "")
    if not s:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s[:10], fmt).date()
        except ValueError:
            continue
    return None


def parse_month(raw: Any) -> Optional[str]:
    m = _MONTH_RE.match(str(raw).strip()) if raw else None
    if not m:
        return None
    month = int(m.group(2))
    if not 1 <= month <= 12:
        return None
    return f"{m.group(1)}-{month:02d}"


@dataclass
class ParsedRow:
    mid: str
    merchant_name: Optional[str]
    volume: Decimal
    fees: Decimal
    adjustments: Decimal
    chargebacks: Decimal
    date: Optional[date]
    payout_month: str
    row_hash: str
    raw_data: Dict[str, Any]


@dataclass
class ImportResult:
    batch_id: Optional[uuid.UUID]
    imported: int = 0
    duplicates: int = 0
    errors: List[str] = field(default_factory=list)


def parse_csv(text: str, *, payout_month: Optional[str] = None) -> tuple:
    """
    Returns (rows, errors). Header names are matched case-insensitively
    against FIELD_ALIASES; only Merchant ID is required.
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("﻿")))
    if not reader.fieldnames:
        return [], ["CSV file has no header row"]

    mapping: Dict[str, str] = {}
    for header in reader.fieldnames:
        logical = _ALIAS_INDEX.get(_header_key(header))
        if logical and logical not in mapping:
            mapping[logical] = header
    if "mid" not in mapping:
        return [], ["No Merchant ID column found. Make sure you have a 'Merchant ID' column."]

    fallback_month = datetime.now(timezone.utc).strftime("%Y-%m")
    rows: List[ParsedRow] = []
    errors: List[str] = []
    for line_no, raw in enumerate(reader, start=2):
        raw = {k: v for k, v in raw.items() if k is not None}

        def cell(name: str) -> Optional[str]:
            header = mapping.get(name)
            return raw.get(header) if header else None

        mid = normalize_mid(cell("mid"))
        if not mid:
            errors.append(f"Row {line_no}: missing Merchant ID")
            continue

        row_date = parse_date(cell("date"))
        month = (
            parse_month(payout_month)
            or parse_month(cell("payout_month"))
            or (row_date.strftime("%Y-%m") if row_date else None)
            or fallback_month
        )
        rows.append(
            ParsedRow(
                mid=mid,
                merchant_name=(cell("merchant_name") or "").strip() or None,
                volume=parse_money(cell("volume")),
                fees=parse_money(cell("fees")),
                adjustments=parse_money(cell("adjustments")),
                chargebacks=parse_money(cell("chargebacks")),
                date=row_date,
                payout_month=month,
                row_hash=row_hash(raw),
                raw_data=raw,
            )
        )
    return rows, errors


class ImportService:
    def __init__(self, history: ActionHistoryService):
        self.history = history

    def import_csv(
        self,
        db: Session,
        text: str,
        *,
        payout_month: Optional[str] = None,
        filename: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> ImportResult:
        """
        Land CSV rows as unassigned revenue events, skipping rows whose
        content hash is already stored (or repeated within the file).
        """
        if not text or not text.strip():
            raise ValidationError("CSV file is empty")
        if payout_month and not parse_month(payout_month):
            raise ValidationError("Invalid payout_month format. Use YYYY-MM")

        rows, errors = parse_csv(text, payout_month=payout_month)
        if not rows:
            raise ValidationError(
                "; ".join(errors) if errors else "No valid rows found in CSV.",
                details={"errors": errors},
            )

        existing = set()
        hashes = [r.row_hash for r in rows]
        for i in range(0, len(hashes), IMPORT_CHUNK):
            chunk = hashes[i: i + IMPORT_CHUNK]
            existing.update(
                db.execute(select(RevenueEvent.row_hash).where(RevenueEvent.row_hash.in_(chunk))).scalars().all()
            )

        fresh: List[ParsedRow] = []
        for r in rows:
            if r.row_hash in existing:
                continue
            existing.add(r.row_hash)
            fresh.append(r)

        batch_id = uuid.uuid4()
        result = ImportResult(batch_id=batch_id, duplicates=len(rows) - len(fresh), errors=errors)
        if not fresh:
            return result

        try:
            for i in range(0, len(fresh), IMPORT_CHUNK):
                db.add_all(
                    RevenueEvent(
                        batch_id=batch_id,
                        row_hash=r.row_hash,
                        mid=r.mid,
                        merchant_name=r.merchant_name,
                        volume=r.volume,
                        fees=r.fees,
                        adjustments=r.adjustments,
                        chargebacks=r.chargebacks,
                        date=r.date,
                        payout_month=r.payout_month,
                        payout_type=PayoutType.residual.value,
                        assignment_status=AssignmentStatus.unassigned.value,
                        raw_data=r.raw_data,
                    )
                    for r in fresh[i: i + IMPORT_CHUNK]
                )
                db.flush()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Database insert failed: {e}") from e

        result.imported = len(fresh)
        logger.info(
            "csv imported",
            extra={"batch_id": str(batch_id), "imported": result.imported, "duplicates": result.duplicates,
                   "errors": len(errors), "request_id": request_id},
        )
        suffix = f" ({result.duplicates} duplicates skipped)" if result.duplicates else ""
        self.history.log_action(
            action_type=ActionType.import_.value,
            entity_type=EntityType.event.value,
            entity_id=batch_id,
            entity_name=f"CSV Upload: {filename or 'upload'}",
            new_data={
                "fileName": filename,
                "payout_month": payout_month,
                "totalRows": len(rows),
                "importedRows": result.imported,
                "duplicatesSkipped": result.duplicates,
                "errors": len(errors),
            },
            description=f"Imported {result.imported} events from {filename or 'upload'} "
                        f"for {payout_month or 'row months'}{suffix}",
            request_id=request_id,
        )
        return result

    def list_batches(self, db: Session) -> List[Dict[str, Any]]:
        rows = db.execute(
            select(
                RevenueEvent.batch_id,
                func.count(RevenueEvent.id),
                func.min(RevenueEvent.created_at),
            )
            .where(RevenueEvent.batch_id.is_not(None))
            .group_by(RevenueEvent.batch_id)
            .order_by(func.min(RevenueEvent.created_at).desc())
        ).all()

        out = []
        for batch_id, count, imported_at in rows:
            months = db.execute(
                select(RevenueEvent.payout_month).where(RevenueEvent.batch_id == batch_id).distinct()
            ).scalars().all()
            out.append({
                "batch_id": batch_id,
                "event_count": count,
                "imported_at": imported_at,
                "payout_months": sorted(m for m in months if m),
            })
        return out
