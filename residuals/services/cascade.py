from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# (name, step) - each step must be idempotent and must not commit itself.
CascadeStep = Tuple[str, Callable[[Session], int]]


@dataclass
class CascadeResult:
    completed: Dict[str, int] = field(default_factory=dict)  # step -> rows affected
    failed: Dict[str, str] = field(default_factory=dict)  # step -> last error

    @property
    def ok(self) -> bool:
        return not self.failed


class CascadeCoordinator:
    """
    Runs a cascade as a sequence of idempotent, individually committed steps.
    A failing step is rolled back and retried; if it keeps failing it is
    recorded and the remaining steps still run. Re-running the same cascade
    later finishes whatever was left.
    """

    def __init__(self, max_attempts: int = 3):
        self.max_attempts = max(1, max_attempts)

    def run(self, db: Session, steps: Sequence[CascadeStep], *, context: str = "") -> CascadeResult:
        result = CascadeResult()
        for name, step in steps:
            last_error = ""
            for attempt in range(1, self.max_attempts + 1):
                try:
                    affected = step(db)
                    db.commit()
                    result.completed[name] = affected or 0
                    break
                except SQLAlchemyError as e:
                    db.rollback()
                    last_error = str(e)
                    logger.warning(
                        "cascade step failed",
                        extra={"context": context, "step": name, "attempt": attempt, "error": last_error},
                    )
            else:
                result.failed[name] = last_error
                logger.error(
                    "cascade step abandoned",
                    extra={"context": context, "step": name, "attempts": self.max_attempts},
                )
        return result

