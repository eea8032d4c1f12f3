"""
Scheduler / Job Orchestrator.

Owns job definitions, due-job selection, dispatch to the four handlers and
execution bookkeeping. Every run goes idle -> running -> idle: the execution
is opened and the job marked running before the handler is invoked, and
next_run_at is recomputed from the run's start time whatever the outcome.
Jobs in one pass run sequentially.
"""

import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from inbox_automation.db.helpers import DatabaseError
from inbox_automation.infrastructure.observability.logging import get_logger, log_job_outcome
from inbox_automation.models.domain.automation_domain import (
    Job,
    JobExecution,
    JobKind,
    JobResult,
    JobStats,
    JobStatus,
    SchedulerError,
    SchedulerErrorKind,
    TriggeredBy,
)
from inbox_automation.models.domain.job_config import parse_job_config
from inbox_automation.repositories.automation_repository import AutomationStore
from inbox_automation.services.job_handlers import (
    HANDLERS,
    Collaborators,
    HandlerContext,
    JobHandler,
)
from inbox_automation.services.mailbox_service import MailboxService
from inbox_automation.services.resilience.errors import MailServiceError
from inbox_automation.services.rules_engine import RulesEngine
from inbox_automation.services.schedules import calculate_next_run, validate_schedule_expression

logger = get_logger(__name__)

DEFAULT_EXECUTION_HISTORY_LIMIT = 50
STATS_WINDOW = 100

MailboxFactory = Callable[[str], Awaitable[MailboxService | None]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SchedulerService:
    """Persisted job orchestration on top of an AutomationStore."""

    def __init__(
        self,
        store: AutomationStore,
        rules_engine: RulesEngine,
        collaborators: Collaborators | None = None,
        handlers: dict[JobKind, JobHandler] | None = None,
        execution_retention: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.rules_engine = rules_engine
        self.collaborators = collaborators or Collaborators()
        self._handlers = handlers or HANDLERS
        self.execution_retention = execution_retention
        self._clock = clock

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_schedule(expression: str) -> None:
        if not validate_schedule_expression(expression):
            raise SchedulerError(
                SchedulerErrorKind.INVALID_SCHEDULE,
                f"Invalid schedule expression '{expression}'",
            )

    @staticmethod
    def _normalize_config(kind: JobKind, config: dict[str, Any] | None) -> dict[str, Any]:
        return parse_job_config(kind, config).model_dump()

    async def create_job(
        self,
        owner_id: str,
        kind: JobKind | str,
        name: str,
        schedule_expression: str,
        config: dict[str, Any] | None = None,
        is_active: bool = True,
        now: datetime | None = None,
    ) -> Job:
        """
        Create a job and compute its first next_run_at.

        Raises:
            SchedulerError: INVALID_SCHEDULE or INVALID_JOB_CONFIG
        """
        try:
            kind = JobKind(kind)
        except ValueError as e:
            raise SchedulerError(
                SchedulerErrorKind.INVALID_JOB_CONFIG, f"Unknown job kind '{kind}'"
            ) from e

        self._validate_schedule(schedule_expression)
        now = now or self._clock()

        job = Job(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            kind=kind,
            name=name,
            schedule_expression=schedule_expression,
            config=self._normalize_config(kind, config),
            is_active=is_active,
            next_run_at=calculate_next_run(schedule_expression, now),
        )
        created = await self.store.insert_job(job)

        logger.info(
            "Scheduled job created",
            job_id=created.id,
            owner_id=owner_id,
            job_kind=kind.value,
            schedule=schedule_expression,
            next_run_at=created.next_run_at.isoformat() if created.next_run_at else None,
        )
        return created

    async def get_owner_jobs(self, owner_id: str) -> list[Job]:
        return await self.store.list_jobs(owner_id)

    async def get_job(self, job_id: str, owner_id: str) -> Job:
        job = await self.store.get_job(job_id)
        if job is None or job.owner_id != owner_id:
            raise SchedulerError(SchedulerErrorKind.JOB_NOT_FOUND, f"Job {job_id} not found", job_id)
        return job

    async def update_job(
        self, job_id: str, owner_id: str, updates: dict[str, Any], now: datetime | None = None
    ) -> Job:
        """Apply name / schedule_expression / config / is_active updates.

        A new schedule expression always recomputes next_run_at from ``now``.
        """
        job = await self.get_job(job_id, owner_id)

        if "name" in updates:
            job.name = updates["name"]
        if "config" in updates:
            job.config = self._normalize_config(job.kind, updates["config"])
        if "is_active" in updates:
            job.is_active = bool(updates["is_active"])
        if "schedule_expression" in updates:
            expression = updates["schedule_expression"]
            self._validate_schedule(expression)
            job.schedule_expression = expression
            job.next_run_at = calculate_next_run(expression, now or self._clock())

        updated = await self.store.update_job(job)
        logger.info("Scheduled job updated", job_id=job_id, fields=sorted(updates))
        return updated

    async def toggle_job(self, job_id: str, owner_id: str, now: datetime | None = None) -> Job:
        job = await self.get_job(job_id, owner_id)
        job.is_active = not job.is_active
        if job.is_active:
            job.next_run_at = calculate_next_run(job.schedule_expression, now or self._clock())

        updated = await self.store.update_job(job)
        logger.info("Scheduled job toggled", job_id=job_id, is_active=updated.is_active)
        return updated

    async def delete_job(self, job_id: str, owner_id: str) -> None:
        """Delete the job; its execution history is kept."""
        await self.get_job(job_id, owner_id)
        await self.store.delete_job(job_id)
        logger.info("Scheduled job deleted", job_id=job_id, owner_id=owner_id)

    # ------------------------------------------------------------------
    # Due selection and dispatch
    # ------------------------------------------------------------------

    async def get_due_jobs(self, now: datetime | None = None, owner_id: str | None = None) -> list[Job]:
        now = now or self._clock()
        jobs = await self.store.list_due_jobs(now, owner_id)
        return [job for job in jobs if job.is_due(now)]

    async def execute_job_now(
        self,
        job_id: str,
        owner_id: str,
        mailbox: MailboxService,
        triggered_by: TriggeredBy = TriggeredBy.MANUAL,
        now: datetime | None = None,
    ) -> JobResult:
        """Manual trigger: same running/idle path as a scheduled run, regardless of due time."""
        try:
            job = await self.get_job(job_id, owner_id)

            if job.last_run_status == JobStatus.RUNNING:
                return JobResult.failure(
                    f"Job {job_id} is already running",
                    SchedulerErrorKind.JOB_ALREADY_RUNNING.value,
                    job_id,
                )

            return await self._run_job(job, mailbox, triggered_by, now)
        except SchedulerError as e:
            return JobResult.failure(e.message, e.kind.value, job_id)
        except DatabaseError as e:
            logger.error("Store failure while running job", job_id=job_id, error=str(e))
            return JobResult.failure(f"Job bookkeeping failed: {e}", "store_error", job_id)

    async def process_due_jobs(
        self, mailbox_factory: MailboxFactory, now: datetime | None = None
    ) -> list[JobResult]:
        """
        Run every due job once, sequentially.

        A failing job is recorded and the pass moves on. Owners without a
        mailbox handle (no stored token) are skipped and stay due.
        """
        now = now or self._clock()
        due_jobs = await self.get_due_jobs(now)
        results = []

        if due_jobs:
            logger.info("Processing due jobs", job_count=len(due_jobs))

        for job in due_jobs:
            try:
                mailbox = await mailbox_factory(job.owner_id)
                if mailbox is None:
                    logger.warning("No mailbox access for job owner, skipping", job_id=job.id, owner_id=job.owner_id)
                    continue
                results.append(await self._run_job(job, mailbox, TriggeredBy.SCHEDULER, now))
            except Exception as e:
                logger.error(
                    "Error executing due job",
                    job_id=job.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                results.append(
                    JobResult.failure(f"Job {job.id} failed: {e}", SchedulerErrorKind.HANDLER_EXCEPTION.value, job.id)
                )

        return results

    async def _dispatch(self, job: Job, mailbox: MailboxService, now: datetime) -> JobResult:
        try:
            config = parse_job_config(job.kind, job.config)
            handler = self._handlers[job.kind]
            context = HandlerContext(
                job=job,
                config=config,
                mailbox=mailbox,
                rules_engine=self.rules_engine,
                collaborators=self.collaborators,
                now=now,
            )
            return await handler(context)
        except SchedulerError as e:
            return JobResult.failure(e.message, e.kind.value, job.id)
        except MailServiceError as e:
            return JobResult.failure(
                f"{job.kind.value} job failed: {e.message}", e.kind.value, job.id
            )
        except Exception as e:
            logger.error(
                "Job handler raised",
                job_id=job.id,
                job_kind=job.kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return JobResult.failure(
                f"{job.kind.value} job failed: {e}",
                SchedulerErrorKind.HANDLER_EXCEPTION.value,
                job.id,
            )

    async def _run_job(
        self,
        job: Job,
        mailbox: MailboxService,
        triggered_by: TriggeredBy,
        now: datetime | None = None,
    ) -> JobResult:
        started_at = now or self._clock()
        start_time = time.perf_counter()

        execution = await self.store.insert_execution(
            JobExecution(
                id=str(uuid.uuid4()),
                job_id=job.id,
                owner_id=job.owner_id,
                started_at=started_at,
                status=JobStatus.RUNNING,
                triggered_by=triggered_by,
            )
        )
        job.last_run_status = JobStatus.RUNNING
        job = await self.store.update_job(job)

        result = await self._dispatch(job, mailbox, started_at)
        result.job_id = job.id
        result.execution_id = execution.id

        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
        status = JobStatus.SUCCESS if result.success else JobStatus.FAILED

        execution.completed_at = started_at + timedelta(milliseconds=elapsed_ms)
        execution.status = status
        execution.result = result.to_dict()
        execution.error_message = None if result.success else result.message
        execution.execution_time_ms = elapsed_ms
        await self.store.update_execution(execution)

        job.last_run_at = started_at
        job.last_run_status = status
        job.last_run_message = result.message
        try:
            job.next_run_at = calculate_next_run(job.schedule_expression, started_at)
        except SchedulerError as e:
            # Stored expression predates validation; keep the job out of the due set
            logger.error("Cannot reschedule job", job_id=job.id, error=e.message)
            job.next_run_at = None
        await self.store.update_job(job)

        try:
            await self.store.prune_executions(job.id, self.execution_retention)
        except DatabaseError as e:
            logger.warning("Failed to prune job executions", job_id=job.id, error=str(e))

        log_job_outcome(job.id, job.kind.value, result.success, elapsed_ms, result.message)
        return result

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_job_executions(
        self, job_id: str, owner_id: str, limit: int = DEFAULT_EXECUTION_HISTORY_LIMIT
    ) -> list[JobExecution]:
        await self.get_job(job_id, owner_id)
        return await self.store.list_executions(job_id, limit)

    async def get_job_stats(self, job_id: str, owner_id: str) -> JobStats:
        executions = await self.get_job_executions(job_id, owner_id, limit=STATS_WINDOW)

        timed = [e.execution_time_ms for e in executions if e.execution_time_ms is not None]
        return JobStats(
            total_executions=len(executions),
            successful_executions=sum(1 for e in executions if e.status == JobStatus.SUCCESS),
            failed_executions=sum(1 for e in executions if e.status == JobStatus.FAILED),
            average_execution_time_ms=sum(timed) / len(timed) if timed else 0.0,
            last_execution=executions[0] if executions else None,
        )
