from ..core.celery_app import celery_app
from ..core.cache import CacheManager
from ..core.config import settings
from ..core.database import build_async_engine, build_session_factory
from ..services.catalog import SqlCatalog
from ..services.session_service import SessionLifecycleService
import asyncio
import logging

logger = logging.getLogger(__name__)


@celery_app.task(name="examproctor.tasks.maintenance.auto_submit_expired_sessions")
def auto_submit_expired_sessions(limit: int = 100):
    """Score in_progress sessions whose deadline passed with no client left to notice"""
    try:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        try:
            return loop.run_until_complete(_auto_submit_internal(limit))
        finally:
            loop.close()

    except Exception as exc:
        logger.error(f"Error in auto_submit_expired_sessions: {exc}", exc_info=True)
        raise exc


async def _auto_submit_internal(limit: int):
    # connections and redis clients are bound to the loop that opened them
    engine = build_async_engine(settings.async_database_url)
    cache = CacheManager()
    try:
        async with build_session_factory(engine)() as db:
            service = SessionLifecycleService(db, SqlCatalog(db, cache=cache))
            submitted = await service.expire_overdue(limit=limit)
    finally:
        await cache.aclose()
        await engine.dispose()

    if submitted:
        logger.info(f"Auto-submitted {len(submitted)} expired session(s)")
    return {
        'auto_submitted': len(submitted),
        'session_ids': submitted,
    }
