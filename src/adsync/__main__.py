"""
Main entrypoint: health report, one-off resync, or the periodic health sweep.

FastAPI runs separately under uvicorn.

Usage:
    python -m adsync health         # print projects ranked by sync health
    python -m adsync resync         # resync stale projects once and exit
    python -m adsync                # starts the scheduler (hourly health sweep)
    uvicorn adsync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import logging
import sys
from datetime import datetime

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _print_health() -> None:
    from adsync.db.engine import get_engine
    from adsync.sync.health import rank_projects, summarize
    from adsync.sync.orchestrator import load_projects

    health = rank_projects(load_projects(get_engine()), datetime.utcnow())
    counts = summarize(health)
    for h in health:
        hours = "-" if h.hours_since_sync is None else f"{h.hours_since_sync}h"
        print(f"{h.status.value:<13} {hours:>6}  {h.project.name} ({h.project.id})")
    print(
        f"\nhealthy={counts.healthy} warning={counts.warning} "
        f"critical={counts.critical} never_synced={counts.never_synced}"
    )


def _build_orchestrator(engine):
    from adsync.config import get_settings
    from adsync.notify import build_notifier
    from adsync.sync.executor import HttpSyncExecutor
    from adsync.sync.orchestrator import ResyncOrchestrator

    settings = get_settings()
    return ResyncOrchestrator(
        engine=engine,
        executor=HttpSyncExecutor(settings.executor_base_url, settings.executor_api_key),
        notifier=build_notifier(settings),
        settings=settings,
    )


async def _run_resync() -> None:
    from adsync.db.engine import get_engine
    from adsync.sync.orchestrator import load_projects

    engine = get_engine()
    orchestrator = _build_orchestrator(engine)
    result = await orchestrator.resync_triage(load_projects(engine))
    logger.info(
        "Resync finished: %d succeeded, %d failed, %d skipped",
        len(result.succeeded), len(result.failed), len(result.skipped),
    )
    flush = getattr(orchestrator.notifier, "flush", None)
    if flush is not None:
        await flush()


async def _run_scheduler() -> None:
    from adsync.config import get_settings
    from adsync.db.engine import get_engine
    from adsync.scheduler.jobs import build_scheduler

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info(
        "Scheduler started (health sweep every %d minutes)",
        settings.health_sweep_interval_minutes,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


if __name__ == "__main__":
    from adsync.config import get_settings
    logging.getLogger().setLevel(get_settings().log_level.upper())

    # Dispatch on first argument: `python -m adsync health|resync` or just `python -m adsync`
    command = sys.argv[1] if len(sys.argv) > 1 else None
    if command == "health":
        _print_health()
    elif command == "resync":
        asyncio.run(_run_resync())
    else:
        asyncio.run(_run_scheduler())
