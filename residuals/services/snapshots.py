from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import inspect

# Never restored from a snapshot
_IMMUTABLE_COLUMNS = {"id", "created_at"}


def snapshot(row: Any) -> Optional[Dict[str, Any]]:
    """JSON-safe dict of an ORM row's column values."""
    if row is None:
        return None
    mapper = inspect(row).mapper
    return jsonable_encoder({c.key: getattr(row, c.key) for c in mapper.column_attrs})


def _coerce(column, value: Any) -> Any:
    if value is None:
        return None
    try:
        py = column.type.python_type
    except NotImplementedError:
        return value
    if py is datetime and isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    if py is date and isinstance(value, str):
        return date.fromisoformat(value[:10])
    if py is Decimal and not isinstance(value, Decimal):
        return Decimal(str(value))
    if py is uuid.UUID and isinstance(value, str):
        return uuid.UUID(value)
    return value


def restore(row: Any, data: Dict[str, Any]) -> None:
    """Apply a snapshot produced by snapshot() back onto a row (in place)."""
    mapper = inspect(row).mapper
    for attr in mapper.column_attrs:
        if attr.key in _IMMUTABLE_COLUMNS or attr.key not in data:
            continue
        column = attr.columns[0]
        setattr(row, attr.key, _coerce(column, data[attr.key]))


def build(model, data: Dict[str, Any]) -> Any:
    """New ORM instance from a snapshot, keeping its original id."""
    row = model()
    restore(row, data)
    if data.get("id"):
        row.id = uuid.UUID(str(data["id"]))
    return row
