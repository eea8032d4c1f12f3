"""
Maps typed automation errors to JSON responses of the form
{"error": message, "kind": kind}.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from inbox_automation.db.helpers import DatabaseError
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.models.domain.automation_domain import SchedulerError, SchedulerErrorKind
from inbox_automation.models.domain.rule_domain import RuleErrorKind, RuleValidationError

logger = get_logger(__name__)

SCHEDULER_ERROR_STATUS = {
    SchedulerErrorKind.JOB_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    SchedulerErrorKind.JOB_ALREADY_RUNNING: status.HTTP_409_CONFLICT,
}


def scheduler_error_status(kind: str | None) -> int:
    try:
        return SCHEDULER_ERROR_STATUS.get(SchedulerErrorKind(kind), status.HTTP_400_BAD_REQUEST)
    except ValueError:
        return status.HTTP_400_BAD_REQUEST


def error_body(message: str, kind: str) -> dict:
    return {"error": message, "kind": kind}


async def _scheduler_error_handler(request: Request, exc: SchedulerError) -> JSONResponse:
    status_code = scheduler_error_status(exc.kind.value)
    logger.info(
        "Scheduler request rejected",
        path=request.url.path,
        error_kind=exc.kind.value,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content=error_body(exc.message, exc.kind.value))


async def _rule_error_handler(request: Request, exc: RuleValidationError) -> JSONResponse:
    status_code = (
        status.HTTP_404_NOT_FOUND
        if exc.kind == RuleErrorKind.RULE_NOT_FOUND
        else status.HTTP_400_BAD_REQUEST
    )
    logger.info(
        "Rule request rejected",
        path=request.url.path,
        error_kind=exc.kind.value,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content=error_body(exc.message, exc.kind.value))


async def _database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    logger.error(
        "Store failure during request",
        path=request.url.path,
        operation=exc.operation,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=error_body("Automation store unavailable", "store_error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SchedulerError, _scheduler_error_handler)
    app.add_exception_handler(RuleValidationError, _rule_error_handler)
    app.add_exception_handler(DatabaseError, _database_error_handler)
