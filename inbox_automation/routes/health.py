# inbox_automation/routes/health.py
"""
Health check endpoints: liveness, readiness (database + configuration) and
the automation engine's breaker and cache state.
"""

import time

from fastapi import APIRouter, Depends

from inbox_automation.auth.verify import auth_dependency
from inbox_automation.config import settings
from inbox_automation.db.pool import db_health_check
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.routes.dependencies import get_components
from inbox_automation.wiring import AutomationComponents

logger = get_logger(__name__)

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "inbox-automation"}


@router.get("/readyz")
async def readyz():
    """Readiness check covering the database pool and required configuration."""
    checks = {}
    overall_ok = True

    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)

        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }

        if "pool_stats" in db_health:
            pool_stats = db_health["pool_stats"]
            checks["database"].update(
                {
                    "pool_size": pool_stats.get("pool_size", 0),
                    "pool_available": pool_stats.get("pool_available", 0),
                    "pool_utilization_percent": pool_stats.get("pool_utilization_percent", 0),
                    "connection_time_ms": db_health.get("connection_time_ms", 0),
                }
            )

        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
            if "error_type" in db_health:
                checks["database"]["error_type"] = db_health["error_type"]

        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    config_issues = []
    if not settings.SUPABASE_DB_URL:
        config_issues.append("SUPABASE_DB_URL not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()


@router.get("/health/automation")
async def automation_health(components: AutomationComponents = Depends(get_components)):
    """Circuit breaker state, retry policy and cache statistics for this process."""
    resilience = components.resilience.status()
    breaker_state = resilience["circuit_breaker"]["state"]

    return {
        "healthy": breaker_state != "open",
        "resilience": resilience,
        "cache": components.cache.stats(),
        "timestamp": time.time(),
    }


@router.post("/health/automation/circuit-breaker/reset")
async def reset_circuit_breaker(
    claims: dict = Depends(auth_dependency),
    components: AutomationComponents = Depends(get_components),
):
    """Force the circuit breaker closed."""
    components.resilience.reset()
    logger.warning("Circuit breaker reset manually", user_id=claims.get("sub"))
    return components.resilience.status()["circuit_breaker"]
