from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from residuals.services.split_calculator import to_decimal

DEFAULT_ROLE = "Partner"

# Resolution order per logical attribute: canonical name first, then legacy
# names from most to least recent.
IDENTIFIER_KEYS = ("partner_airtable_id", "partner_id", "agent_id")
NAME_KEYS = ("partner_name", "name")
ROLE_KEYS = ("partner_role", "role")
SPLIT_KEYS = ("split_pct", "split")

CANONICAL_KEYS = ("partner_airtable_id", "partner_name", "partner_role", "split_pct")


def _first_present(p: Mapping[str, Any], keys: Iterable[str]) -> Optional[Any]:
    for k in keys:
        v = p.get(k)
        if v is None:
            continue
        if isinstance(v, str) and not v.strip():
            continue
        return v
    return None


def _split(p: Mapping[str, Any]) -> float:
    for k in SPLIT_KEYS:
        if p.get(k) is not None:
            return float(to_decimal(p.get(k)))
    return 0.0


def normalize_participant(p: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Map any historical participant shape to
    {partner_airtable_id, partner_name, partner_role, split_pct}.

    Idempotent: the output is already canonical, so normalizing it again
    returns an equal dict.
    """
    ident = _first_present(p, IDENTIFIER_KEYS)
    name = _first_present(p, NAME_KEYS)
    role = _first_present(p, ROLE_KEYS)

    return {
        "partner_airtable_id": str(ident).strip() if ident is not None else "",
        "partner_name": str(name).strip() if name is not None else "",
        "partner_role": str(role).strip() if role is not None else DEFAULT_ROLE,
        "split_pct": _split(p),
    }


def normalize_participants(raw: Optional[Iterable[Mapping[str, Any]]]) -> List[Dict[str, Any]]:
    if not raw:
        return []
    return [normalize_participant(p) for p in raw if isinstance(p, Mapping)]


def matches_identifier(p: Mapping[str, Any], partner_id: str) -> bool:
    """True if any identifier field (canonical or legacy) equals partner_id."""
    return any(p.get(k) == partner_id for k in IDENTIFIER_KEYS)
