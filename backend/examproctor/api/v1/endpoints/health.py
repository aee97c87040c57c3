from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
import logging
import time

from ....core.cache import cache
from ....core.database import get_async_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def get_health(db: AsyncSession = Depends(get_async_db)):
    """Database, cache and host status - no authentication required"""
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "service": "examproctor-api",
        "services": {},
    }

    try:
        await db.execute(text("SELECT 1"))
        await db.commit()
        health_status["services"]["database"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["services"]["database"] = f"error: {e}"
        health_status["status"] = "unhealthy"

    cache_health = await cache.ahealth_check()
    health_status["services"]["cache"] = "healthy" if cache_health else "unavailable"

    try:
        import psutil
        health_status["system"] = {
            "cpu_percent": psutil.cpu_percent(),
            "memory_percent": psutil.virtual_memory().percent,
            "disk_percent": psutil.disk_usage('/').percent,
        }
    except Exception as e:
        health_status["system"] = f"error: {e}"

    return health_status
