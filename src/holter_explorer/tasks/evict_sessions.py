import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..app_settings import app_settings
from ..services.session_store import SessionStore

logger = logging.getLogger(__name__)


async def run_session_eviction(session_store: SessionStore):
    """Close explorer sessions that have been idle for too long."""
    try:
        evicted = session_store.evict_idle()
        if evicted:
            logger.info(f"Evicted {len(evicted)} idle explorer sessions")
    except Exception as e:
        logger.error(f"Session eviction failed: {e}")


def setup_session_scheduler(session_store: SessionStore) -> AsyncIOScheduler:
    """
    Setup the idle session sweep.

    Runs every `session_sweep_seconds` seconds.
    """
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_session_eviction,
        IntervalTrigger(seconds=app_settings.session_sweep_seconds),
        args=[session_store],
        id="explorer_session_eviction",
        name="Explorer Session Eviction",
        replace_existing=True
    )

    logger.info(
        f"Session scheduler configured (every {app_settings.session_sweep_seconds}s, "
        f"idle timeout {app_settings.session_idle_minutes} min)"
    )

    return scheduler
