# inbox_automation/models/domain/automation_domain.py
"""
Automation Domain Models
Persisted jobs, their executions, and the uniform result shape every job
handler returns. Kept free of persistence and HTTP concerns so the store,
the scheduler and the API layer can share them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobKind(str, Enum):
    CLEANUP = "cleanup"
    RULE_EXECUTION = "rule_execution"
    ANALYTICS_COLLECTION = "analytics_collection"
    UNSUBSCRIBE_SCAN = "unsubscribe_scan"


class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class TriggeredBy(str, Enum):
    SCHEDULER = "scheduler"
    MANUAL = "manual"
    API = "api"


class SchedulerErrorKind(str, Enum):
    JOB_NOT_FOUND = "job_not_found"
    INVALID_SCHEDULE = "invalid_schedule"
    INVALID_JOB_CONFIG = "invalid_job_config"
    JOB_ALREADY_RUNNING = "job_already_running"
    HANDLER_EXCEPTION = "handler_exception"


class SchedulerError(Exception):
    """Typed scheduler outcome raised by job management operations."""

    def __init__(self, kind: SchedulerErrorKind, message: str, job_id: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.job_id = job_id


@dataclass(slots=True)
class Job:
    """Represents a scheduled_jobs row."""

    id: str
    owner_id: str
    kind: JobKind
    name: str
    schedule_expression: str
    config: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_status: JobStatus | None = None
    last_run_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        return (
            self.is_active
            and self.next_run_at is not None
            and self.next_run_at <= now
            and self.last_run_status != JobStatus.RUNNING
        )


@dataclass(slots=True)
class JobExecution:
    """Represents a job_executions row; open while completed_at is None."""

    id: str
    job_id: str
    owner_id: str
    started_at: datetime
    status: JobStatus = JobStatus.RUNNING
    triggered_by: TriggeredBy = TriggeredBy.SCHEDULER
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None
    execution_time_ms: int | None = None

    @property
    def is_open(self) -> bool:
        return self.completed_at is None


@dataclass(slots=True)
class JobResult:
    """Uniform handler result: {success, message, details, processedCount, errors}."""

    success: bool
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    processed_count: int = 0
    errors: list[str] = field(default_factory=list)
    error_kind: str | None = None
    job_id: str | None = None
    execution_id: str | None = None

    @classmethod
    def failure(cls, message: str, error_kind: str, job_id: str | None = None) -> "JobResult":
        return cls(success=False, message=message, error_kind=error_kind, job_id=job_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "details": self.details,
            "processed_count": self.processed_count,
            "errors": self.errors,
            "error_kind": self.error_kind,
            "job_id": self.job_id,
            "execution_id": self.execution_id,
        }


@dataclass(slots=True)
class JobStats:
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_execution_time_ms: float = 0.0
    last_execution: JobExecution | None = None
