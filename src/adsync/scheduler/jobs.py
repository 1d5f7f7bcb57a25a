"""
APScheduler jobs for background sync health.

The health sweep runs on an interval: it classifies every non-archived
project and resyncs the ones that are stale or have never synced. It catches
projects whose scheduled import silently stopped, without anyone having to
press "resync all" in the dashboard.
"""
import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from adsync.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the orchestrator.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _health_sweep,
        trigger="interval",
        minutes=settings.health_sweep_interval_minutes,
        id="health_sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _health_sweep(engine) -> None:
    """
    Interval job: resync every project that needs attention.

    Failures are logged; the job must not kill the scheduler.
    """
    from adsync.notify import build_notifier
    from adsync.sync.executor import HttpSyncExecutor
    from adsync.sync.orchestrator import ResyncOrchestrator, load_projects

    settings = get_settings()
    logger.info("Health sweep starting at %s", datetime.utcnow().isoformat())

    try:
        executor = HttpSyncExecutor(settings.executor_base_url, settings.executor_api_key)
        orchestrator = ResyncOrchestrator(
            engine=engine,
            executor=executor,
            notifier=build_notifier(settings),
            settings=settings,
        )
        result = await orchestrator.resync_triage(load_projects(engine))
        logger.info(
            "Health sweep done: %d succeeded, %d failed, %d skipped",
            len(result.succeeded), len(result.failed), len(result.skipped),
        )

    except Exception as exc:
        logger.error("Health sweep failed: %s", exc)
