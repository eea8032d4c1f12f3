# inbox_automation/main.py
"""
FastAPI application: database pool lifecycle, automation component wiring,
the in-process cache sweeper and request logging.
"""

import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from inbox_automation.config import settings
from inbox_automation.db.pool import db_pool
from inbox_automation.infrastructure.observability.logging import (
    get_logger,
    log_request,
    setup_logging,
)
from inbox_automation.jobs.cache_sweep_job import start_cache_sweeper
from inbox_automation.routes import health, rules, scheduler
from inbox_automation.routes.errors import register_exception_handlers
from inbox_automation.wiring import build_components

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        if settings.SUPABASE_DB_URL:
            logger.info("Initializing database pool")
            await db_pool.initialize()
            startup_tasks.append("database_pool")
        else:
            logger.warning("SUPABASE_DB_URL not set, automation store unavailable")

        app.state.components = build_components(settings)
        startup_tasks.append("automation_components")

        app.state.cache_sweeper = asyncio.create_task(
            start_cache_sweeper(app.state.components.cache)
        )
        startup_tasks.append("cache_sweeper")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    logger.info("Application shutting down")

    app.state.cache_sweeper.cancel()
    try:
        await app.state.cache_sweeper
    except asyncio.CancelledError:
        pass

    try:
        logger.info("Closing database pool")
        await db_pool.close()
        logger.info("All services closed successfully")
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))


app = FastAPI(
    title="Inbox Automation",
    description="Scheduled mailbox rules and cleanup jobs with upstream retry and circuit breaking",
    version="0.1.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

app.include_router(health.router)
app.include_router(scheduler.router)
app.include_router(rules.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
