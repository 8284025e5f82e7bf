from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List


ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(x: Any) -> Decimal:
    """
    Lenient numeric coercion: missing or malformed input is zero.
    A bad cell must never fail a whole confirm batch.
    """
    if x is None or isinstance(x, bool):
        return ZERO
    if isinstance(x, Decimal):
        return x if x.is_finite() else ZERO
    try:
        d = Decimal(str(x).strip())
    except (InvalidOperation, TypeError, ValueError):
        return ZERO
    return d if d.is_finite() else ZERO


def net_residual(fees: Any, adjustments: Any, chargebacks: Any) -> Decimal:
    """
    net = fees - adjustments - chargebacks
    Negative results (clawbacks) are kept as-is.
    """
    return to_decimal(fees) - to_decimal(adjustments) - to_decimal(chargebacks)


def payout_amount(net: Any, split_pct: Any) -> Decimal:
    """
    amount = net * split_pct / 100
    """
    return to_decimal(net) * to_decimal(split_pct) / HUNDRED


def split_amounts(net: Any, split_pcts: Iterable[Any]) -> List[Decimal]:
    """
    Per-participant amounts, each computed independently.
    No normalization: the amounts sum to net * sum(split) / 100, whatever that is.
    """
    n = to_decimal(net)
    return [payout_amount(n, pct) for pct in split_pcts]


def total_split(split_pcts: Iterable[Any]) -> Decimal:
    total = ZERO
    for pct in split_pcts:
        total += to_decimal(pct)
    return total
