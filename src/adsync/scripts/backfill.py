"""
Backfill script: import a project's history one calendar month at a time.

Usage:
    python -m adsync.scripts.backfill --project <id> --months 12

Walks forward from the oldest requested month to the current month. Each
month gets a ledger row (MonthlyImportLedger) and a single executor call;
the executor is asked not to chain on its own, since this loop does the
chaining. Sleeps between months to stay under the ads platform's rate limits.

Months already marked completed in the ledger are skipped.
A failed month is recorded and the loop moves on to the next one.
"""
import argparse
import asyncio
import calendar
import logging
import time
from datetime import date, datetime

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

MONTH_IMPORT_FUNCTION = "import-month-by-month"
SLEEP_BETWEEN_MONTHS = 120.0
SLEEP_BETWEEN_MONTHS_SAFE = 180.0


def month_range(year: int, month: int):
    """First and last day of a calendar month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def first_month(months: int, today: date):
    """(year, month) that starts a window of `months` months ending with today's month."""
    index = today.year * 12 + (today.month - 1) - (months - 1)
    return index // 12, index % 12 + 1


async def _backfill(project_id: str, months: int, safe_mode: bool = True) -> None:
    from sqlmodel import Session

    from adsync.config import get_settings
    from adsync.db.engine import get_engine
    from adsync.models.project import Project
    from adsync.models.sync import MonthStatus, SyncLogStatus
    from adsync.sync.audit import SyncLog, encode_message
    from adsync.sync.executor import HttpSyncExecutor, parse_response
    from adsync.sync.ledger import MonthlyImportLedger, next_month

    settings = get_settings()
    engine = get_engine()

    with Session(engine) as s:
        project = s.get(Project, project_id)
    if project is None:
        logger.error("Project %s not found", project_id)
        return

    executor = HttpSyncExecutor(settings.executor_base_url, settings.executor_api_key)
    ledger = MonthlyImportLedger(engine)
    sync_log = SyncLog(engine)
    pause = SLEEP_BETWEEN_MONTHS_SAFE if safe_mode else SLEEP_BETWEEN_MONTHS

    today = datetime.utcnow().date()
    done = {
        (m.year, m.month)
        for m in ledger.months(project_id)
        if m.status == MonthStatus.COMPLETED.value
    }
    total_imported = 0
    total_skipped = 0
    total_failed = 0

    current = first_month(months, today)
    while current is not None:
        year, month = current
        if (year, month) in done:
            logger.info("Skipping %04d-%02d (already imported)", year, month)
            total_skipped += 1
            current = next_month(year, month, today)
            continue

        record = ledger.schedule_month(project_id, year, month)
        ledger.mark_started(record.id)
        since, until = month_range(year, month)
        logger.info("Importing %04d-%02d for %s", year, month, project.name)

        started = time.monotonic()
        error = None
        records = 0
        try:
            raw = await executor.invoke(MONTH_IMPORT_FUNCTION, {
                "project_id": project_id,
                "ad_account_id": project.ad_account_id,
                "year": year,
                "month": month,
                "since": since.isoformat(),
                "until": until.isoformat(),
                "continue_chain": False,
                "safe_mode": safe_mode,
            })
            response = parse_response(raw)
            if response.success:
                records = response.records_imported
                if records < 0:
                    error = "Malformed executor response"
            else:
                error = response.error or "Unknown executor error"
        except Exception as exc:
            error = str(exc)
        elapsed = time.monotonic() - started

        if error is None:
            ledger.mark_completed(record.id, records)
            sync_log.append(project_id, SyncLogStatus.SUCCESS.value, encode_message(
                "month_import", records=records, elapsed=elapsed,
            ))
            total_imported += 1
        else:
            logger.warning("Failed to import %04d-%02d: %s", year, month, error)
            ledger.mark_error(record.id, error)
            sync_log.append(project_id, SyncLogStatus.ERROR.value, encode_message(
                "month_import", elapsed=elapsed, error=error,
            ))
            total_failed += 1

        current = next_month(year, month, today)
        if current is not None:
            await asyncio.sleep(pause)

    summary = ledger.summary(project_id)
    logger.info(
        "Backfill complete. Imported: %d, Skipped: %d, Failed: %d (%d of %d months imported)",
        total_imported, total_skipped, total_failed,
        summary.completed_months, summary.total_months,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Month-by-month historical import")
    parser.add_argument("--project", required=True, help="Project id")
    parser.add_argument(
        "--months",
        type=int,
        default=12,
        help="Number of months to import, ending with the current month (default: 12)",
    )
    parser.add_argument(
        "--fast",
        action="store_true",
        help="Shorter pause between months (risks ads platform rate limits)",
    )
    args = parser.parse_args()
    if args.months < 1:
        parser.error("--months must be at least 1")
    asyncio.run(_backfill(args.project, args.months, safe_mode=not args.fast))


if __name__ == "__main__":
    main()
