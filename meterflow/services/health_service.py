# meterflow/services/health_service.py
from typing import Dict, Any
from datetime import datetime, timezone
import platform
from meterflow.config import settings
from meterflow.database import check_db_connection
from meterflow.core.redis import check_redis_connection
from meterflow.core.celery_app import celery_app
import logging

logger = logging.getLogger(__name__)


async def get_detailed_health() -> Dict[str, Any]:
    """Health of the database, Redis and the Celery workers"""
    health_status = {
        "services": {},
        "system": {
            "python_version": platform.python_version(),
            "platform": platform.platform(),
            "environment": settings.ENVIRONMENT,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    # DB
    db_healthy = await check_db_connection()
    health_status["services"]["database"] = {
        "healthy": db_healthy,
        "status": "connected" if db_healthy else "disconnected",
    }

    # Redis is only required for distributed locks and the task broker
    redis_healthy = await check_redis_connection()
    health_status["services"]["redis"] = {
        "healthy": redis_healthy,
        "required": settings.LOCK_BACKEND == "redis",
        "status": "connected" if redis_healthy else "disconnected",
    }

    # Celery
    try:
        inspector = celery_app.control.inspect(timeout=1.0)
        stats = inspector.stats() if inspector else None
        active_workers = list(stats.keys()) if stats else []
        health_status["services"]["celery"] = {
            "healthy": bool(active_workers),
            "required": False,
            "workers": active_workers,
            "count": len(active_workers),
        }
    except Exception as e:
        logger.warning(f"Celery inspection failed: {e}")
        health_status["services"]["celery"] = {"healthy": False, "required": False, "error": str(e)}

    required_healthy = all(
        s.get("healthy", False)
        for s in health_status["services"].values()
        if s.get("required", True)
    )
    health_status["overall_health"] = "healthy" if required_healthy else "degraded"

    return health_status
