"""One-shot daily reconciliation from the command line (``lexsync-sync``).

Exit status: 0 when the run completed (item-level failures included), 1 when
it aborted or the service is not configured.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import date

from lexsync import config
from lexsync.exceptions import FatalConfigurationError
from lexsync.jobs.daily_sync import DailySyncReport
from lexsync.runtime import build_components, ensure_configured, open_session
from lexsync.utils import get_logger, setup_logging
from lexsync.utils.logger import monthly_log_file

logger = get_logger(__name__)


async def run_once(day: date | None) -> DailySyncReport:
    components = build_components(open_session())
    try:
        return await components.reconciler.run(day)
    finally:
        await components.close()


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="LEX -> Zoho daily shipment reconciliation")
    ap.add_argument("--date", type=date.fromisoformat, help="day to reconcile (YYYY-MM-DD); default yesterday")
    ap.add_argument("--verbose", action="store_true", help="log mapped payloads and upstream responses")
    args = ap.parse_args(argv)

    setup_logging(
        log_level=config.LOG_LEVEL,
        log_file=monthly_log_file(config.LOG_DIR) if config.LOG_TO_FILE else None,
        enable_console=True,
    )
    if args.verbose:
        from lexsync.utils import sync_log_toggle
        sync_log_toggle.enable()

    try:
        ensure_configured()
    except FatalConfigurationError as e:
        print(str(e), file=sys.stderr)
        return 1

    report = asyncio.run(run_once(args.date))
    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 0 if report.status == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
