from __future__ import annotations

import re
from typing import Optional

_SEPARATORS = re.compile(r"[\s-]")

# Legacy double-import prepended this to the processor MID.
DUPLICATE_MID_PREFIX = "00"


def normalize_mid(mid: Optional[object]) -> str:
    """
    Trim and drop whitespace/dashes. Leading zeros are significant and kept.
    """
    if mid is None:
        return ""
    return _SEPARATORS.sub("", str(mid).strip())


def is_prefixed(mid: str) -> bool:
    return mid.startswith(DUPLICATE_MID_PREFIX)


def prefixed_sibling(mid: str) -> str:
    return DUPLICATE_MID_PREFIX + mid
