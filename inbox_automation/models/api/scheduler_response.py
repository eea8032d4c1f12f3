# inbox_automation/models/api/scheduler_response.py
"""
Scheduler API response models.
Used by routes for output formatting.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from inbox_automation.models.domain.automation_domain import (
    Job,
    JobExecution,
    JobResult,
    JobStats,
)
from inbox_automation.services.schedules import describe_schedule


class JobResponse(BaseModel):
    """A scheduled job."""

    id: str = Field(..., description="Job ID")
    kind: str = Field(..., description="Job type")
    name: str = Field(..., description="Display name")
    schedule_expression: str = Field(..., description="Named schedule")
    schedule_description: str = Field(..., description="Human-readable schedule")
    config: dict[str, Any] = Field(default_factory=dict, description="Job configuration")
    is_active: bool = Field(..., description="Whether the job is picked up when due")
    next_run_at: datetime | None = Field(None, description="Next time the job becomes due")
    last_run_at: datetime | None = Field(None, description="Start of the most recent run")
    last_run_status: str | None = Field(None, description="running, success or failed")
    last_run_message: str | None = Field(None, description="Message from the most recent run")
    created_at: datetime | None = Field(None, description="Creation time")
    updated_at: datetime | None = Field(None, description="Last update time")

    @classmethod
    def from_domain(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.id,
            kind=job.kind.value,
            name=job.name,
            schedule_expression=job.schedule_expression,
            schedule_description=describe_schedule(job.schedule_expression),
            config=job.config,
            is_active=job.is_active,
            next_run_at=job.next_run_at,
            last_run_at=job.last_run_at,
            last_run_status=job.last_run_status.value if job.last_run_status else None,
            last_run_message=job.last_run_message,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobsListResponse(BaseModel):
    jobs: list[JobResponse] = Field(..., description="Jobs owned by the caller")
    total_count: int = Field(..., description="Number of jobs")


class JobExecutionResponse(BaseModel):
    """One run of a job."""

    id: str = Field(..., description="Execution ID")
    job_id: str = Field(..., description="Job ID")
    status: str = Field(..., description="running, success or failed")
    triggered_by: str = Field(..., description="scheduler, manual or api")
    started_at: datetime = Field(..., description="Run start")
    completed_at: datetime | None = Field(None, description="Run end; null while running")
    execution_time_ms: int | None = Field(None, description="Elapsed milliseconds")
    error_message: str | None = Field(None, description="Failure message")
    result: dict[str, Any] | None = Field(None, description="Handler result document")

    @classmethod
    def from_domain(cls, execution: JobExecution) -> "JobExecutionResponse":
        return cls(
            id=execution.id,
            job_id=execution.job_id,
            status=execution.status.value,
            triggered_by=execution.triggered_by.value,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            execution_time_ms=execution.execution_time_ms,
            error_message=execution.error_message,
            result=execution.result,
        )


class JobExecutionsResponse(BaseModel):
    executions: list[JobExecutionResponse] = Field(..., description="Newest first")
    total_count: int = Field(..., description="Number of executions returned")


class JobStatsResponse(BaseModel):
    """Aggregates over the most recent executions of a job."""

    total_executions: int = Field(..., description="Executions in the window")
    successful_executions: int = Field(..., description="Executions that succeeded")
    failed_executions: int = Field(..., description="Executions that failed")
    average_execution_time_ms: float = Field(..., description="Mean elapsed milliseconds")
    last_execution: JobExecutionResponse | None = Field(None, description="Most recent execution")

    @classmethod
    def from_domain(cls, stats: JobStats) -> "JobStatsResponse":
        return cls(
            total_executions=stats.total_executions,
            successful_executions=stats.successful_executions,
            failed_executions=stats.failed_executions,
            average_execution_time_ms=round(stats.average_execution_time_ms, 2),
            last_execution=(
                JobExecutionResponse.from_domain(stats.last_execution)
                if stats.last_execution
                else None
            ),
        )


class JobRunResponse(BaseModel):
    """Outcome of a manually triggered run."""

    success: bool = Field(..., description="Whether the handler reported success")
    message: str = Field(..., description="Handler summary")
    processed_count: int = Field(default=0, description="Messages processed")
    errors: list[str] = Field(default_factory=list, description="Per-item or per-step errors")
    details: dict[str, Any] = Field(default_factory=dict, description="Handler-specific details")
    error_kind: str | None = Field(None, description="Failure category")
    job_id: str | None = Field(None, description="Job ID")
    execution_id: str | None = Field(None, description="Execution ID, when a run was recorded")

    @classmethod
    def from_domain(cls, result: JobResult) -> "JobRunResponse":
        return cls(**result.to_dict())
