"""
Scheduler API Routes
HTTP endpoints for managing scheduled jobs and triggering them manually.
"""

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from inbox_automation.auth.verify import get_owner_id
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.models.api.scheduler_request import CreateJobRequest, UpdateJobRequest
from inbox_automation.models.api.scheduler_response import (
    JobExecutionResponse,
    JobExecutionsResponse,
    JobResponse,
    JobRunResponse,
    JobsListResponse,
    JobStatsResponse,
)
from inbox_automation.models.domain.automation_domain import SchedulerErrorKind, TriggeredBy
from inbox_automation.routes.dependencies import get_components, get_mailbox
from inbox_automation.routes.errors import error_body, scheduler_error_status
from inbox_automation.services.mailbox_service import MailboxService
from inbox_automation.wiring import AutomationComponents

logger = get_logger(__name__)

router = APIRouter(prefix="/scheduler", tags=["scheduler"])

# Run failures that mean the job was never started
_REJECTED_RUN_KINDS = {
    SchedulerErrorKind.JOB_NOT_FOUND.value,
    SchedulerErrorKind.JOB_ALREADY_RUNNING.value,
}


@router.get("/jobs", response_model=JobsListResponse)
async def list_jobs(
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    """List the caller's scheduled jobs."""
    jobs = await components.scheduler.get_owner_jobs(owner_id)
    return JobsListResponse(
        jobs=[JobResponse.from_domain(job) for job in jobs], total_count=len(jobs)
    )


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    request: CreateJobRequest,
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    """Create a scheduled job; its first run is one schedule interval from now."""
    job = await components.scheduler.create_job(
        owner_id,
        request.kind,
        request.name,
        request.schedule_expression,
        config=request.config,
        is_active=request.is_active,
    )
    return JobResponse.from_domain(job)


@router.patch("/jobs/{job_id}", response_model=JobResponse)
async def update_job(
    job_id: str,
    request: UpdateJobRequest,
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    updates = request.model_dump(exclude_unset=True, exclude_none=True)
    job = await components.scheduler.update_job(job_id, owner_id, updates)
    return JobResponse.from_domain(job)


@router.delete("/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    """Delete a job. Its execution history is kept."""
    await components.scheduler.delete_job(job_id, owner_id)


@router.post("/jobs/{job_id}/toggle", response_model=JobResponse)
async def toggle_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    job = await components.scheduler.toggle_job(job_id, owner_id)
    return JobResponse.from_domain(job)


@router.post("/jobs/{job_id}/run", response_model=JobRunResponse)
async def run_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
    mailbox: MailboxService = Depends(get_mailbox),
):
    """
    Run a job now, regardless of its next due time.

    A handler failure is still a 200 with ``success: false``; only a missing
    or already-running job is rejected.
    """
    result = await components.scheduler.execute_job_now(
        job_id, owner_id, mailbox, triggered_by=TriggeredBy.API
    )

    if not result.success and result.error_kind in _REJECTED_RUN_KINDS:
        return JSONResponse(
            status_code=scheduler_error_status(result.error_kind),
            content=error_body(result.message, result.error_kind),
        )

    logger.info(
        "Manual job run finished",
        job_id=job_id,
        owner_id=owner_id,
        success=result.success,
        processed_count=result.processed_count,
    )
    return JobRunResponse.from_domain(result)


@router.get("/jobs/{job_id}/executions", response_model=JobExecutionsResponse)
async def list_job_executions(
    job_id: str,
    limit: int = Query(default=50, ge=1, le=100, description="Executions to return"),
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    executions = await components.scheduler.get_job_executions(job_id, owner_id, limit=limit)
    return JobExecutionsResponse(
        executions=[JobExecutionResponse.from_domain(e) for e in executions],
        total_count=len(executions),
    )


@router.get("/jobs/{job_id}/stats", response_model=JobStatsResponse)
async def get_job_stats(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    stats = await components.scheduler.get_job_stats(job_id, owner_id)
    return JobStatsResponse.from_domain(stats)
