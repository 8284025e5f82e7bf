import argparse
import json
import logging
import sys
from dataclasses import asdict

from residuals.core.config import get_settings
from residuals.core.logging import configure_logging
from residuals.db.session import SessionLocal
from residuals.services.duplicate_repair import STEPS, VERSION, DuplicateMidRepair
from residuals.services.history_service import ActionHistoryService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m residuals.maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    repair = sub.add_parser("repair-duplicate-mids", help=f"data migration {VERSION}")
    repair.add_argument("--step", choices=STEPS + ("all",), default="all")
    repair.add_argument("--commit", action="store_true", help="write changes (default is a dry run)")
    return parser


def repair_duplicate_mids(step: str, commit: bool) -> int:
    history = ActionHistoryService(SessionLocal, background=False)
    repair = DuplicateMidRepair(history, get_settings())
    db = SessionLocal()
    try:
        if step == "all":
            results = repair.run_all(db, dry_run=not commit)
        else:
            results = [repair.step(step)(db, dry_run=not commit)]
    finally:
        db.close()

    for r in results:
        print(json.dumps(asdict(r), default=str))
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(get_settings())
    if args.command == "repair-duplicate-mids":
        return repair_duplicate_mids(args.step, args.commit)
    return 2


if __name__ == "__main__":
    sys.exit(main())
