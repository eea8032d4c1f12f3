"""
Automation Scheduler Job.
Polls the job store on a fixed interval, runs every due scheduled job and
every rule whose embedded schedule matches the current minute.
"""

import asyncio
from datetime import UTC, datetime, timedelta

from inbox_automation.config import settings
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.jobs.cache_sweep_job import start_cache_sweeper
from inbox_automation.models.domain.automation_domain import JobResult
from inbox_automation.wiring import AutomationComponents

logger = get_logger(__name__)

ERROR_BACKOFF_SECONDS = 60


class AutomationSchedulerJobError(Exception):
    """Raised when a scheduler pass fails as a whole (store unreachable, etc.)."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AutomationSchedulerMetrics:
    """Per-pass counters."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = _utcnow()
        self.jobs_run = 0
        self.jobs_succeeded = 0
        self.jobs_failed = 0
        self.rules_run = 0
        self.rules_failed = 0
        self.owners_scanned = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_job(self, result: JobResult):
        self.jobs_run += 1
        if result.success:
            self.jobs_succeeded += 1
        else:
            self.jobs_failed += 1
            self.errors.append(
                {
                    "job_id": result.job_id,
                    "error": result.message,
                    "error_kind": result.error_kind,
                    "timestamp": _utcnow().isoformat(),
                }
            )

    def record_rule_owner(self, owner_id: str, executed: int, failed: int):
        self.owners_scanned += 1
        self.rules_run += executed
        self.rules_failed += failed

    def record_owner_error(self, owner_id: str, error: str):
        self.owners_scanned += 1
        self.errors.append(
            {"owner_id": owner_id, "error": error, "timestamp": _utcnow().isoformat()}
        )
        logger.warning(
            "Scheduled rules failed for owner",
            owner_id=owner_id,
            error=error,
            job_run="automation_scheduler",
        )

    def finalize(self):
        self.total_duration_seconds = (_utcnow() - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "automation_scheduler",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "jobs_run": self.jobs_run,
            "jobs_succeeded": self.jobs_succeeded,
            "jobs_failed": self.jobs_failed,
            "rules_run": self.rules_run,
            "rules_failed": self.rules_failed,
            "owners_scanned": self.owners_scanned,
            "errors_count": len(self.errors),
        }


class AutomationSchedulerJob:
    """
    Background poller driving the scheduler and rule schedules.

    Each pass runs due jobs first, then scheduled rules for every owner that
    has at least one active rule with an enabled schedule. Owners without a
    stored Google token are skipped and picked up on a later pass.
    """

    def __init__(self, components: AutomationComponents, interval_seconds: int | None = None):
        self.components = components
        self.interval_seconds = interval_seconds or settings.SCHEDULER_POLL_INTERVAL_SECONDS
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = AutomationSchedulerMetrics()

    async def run_once(self, now: datetime | None = None) -> dict:
        """
        Run a single scheduler pass.

        Returns:
            Dict: pass metrics, or ``{"skipped": True}`` when a pass is in progress

        Raises:
            AutomationSchedulerJobError: when due jobs cannot be selected at all
        """
        if self.is_running:
            logger.warning("Automation scheduler pass already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()
            now = now or _utcnow()
            mailbox_factory = self.components.token_mailbox_factory()

            results = await self.components.scheduler.process_due_jobs(mailbox_factory, now)
            for result in results:
                self.job_metrics.record_job(result)

            await self._run_scheduled_rules(mailbox_factory, now)

            self.job_metrics.finalize()
            self.last_run_time = _utcnow()
            metrics = self.job_metrics.to_dict()

            if metrics["jobs_run"] or metrics["rules_run"]:
                logger.info("Automation scheduler pass completed", **metrics)
            else:
                logger.debug("Automation scheduler pass found nothing to do")

            return metrics

        except Exception as e:
            logger.error(
                "Automation scheduler pass failed", error=str(e), error_type=type(e).__name__
            )
            self.job_metrics.finalize()
            raise AutomationSchedulerJobError(
                f"Automation scheduler pass failed: {e}", operation="run_once"
            ) from e

        finally:
            self.is_running = False

    async def _run_scheduled_rules(self, mailbox_factory, now: datetime) -> None:
        owners = await self.components.store.list_scheduled_rule_owners()

        for owner_id in owners:
            try:
                mailbox = await mailbox_factory(owner_id)
                if mailbox is None:
                    logger.warning("No mailbox access for rule owner, skipping", owner_id=owner_id)
                    continue

                records = await self.components.rules_engine.run_scheduled_rules(
                    owner_id, mailbox, now
                )
                failed = sum(1 for record in records if not record.success)
                self.job_metrics.record_rule_owner(owner_id, len(records), failed)
            except Exception as e:
                self.job_metrics.record_owner_error(owner_id, f"{type(e).__name__}: {e}")

    def get_job_status(self) -> dict:
        return {
            "job_name": "automation_scheduler",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_seconds": self.interval_seconds,
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
        }

    def health_check(self, now: datetime | None = None) -> dict:
        """Unhealthy once no pass has completed within twice the poll interval."""
        now = now or _utcnow()
        overdue_threshold = timedelta(seconds=self.interval_seconds * 2)
        is_overdue = (
            self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold
        )

        health_status = {
            "healthy": not is_overdue,
            "service": "automation_scheduler_job",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "is_overdue": is_overdue,
            "configuration": {"interval_seconds": self.interval_seconds},
        }

        if is_overdue:
            health_status["warning"] = (
                f"Scheduler overdue by {(now - self.last_run_time).total_seconds():.0f} seconds"
            )

        return health_status


async def start_automation_scheduler(components: AutomationComponents | None = None) -> None:
    """
    Run the automation scheduler forever.

    Without explicit components the database pool is initialized and the
    Postgres-backed graph is built.
    """
    if components is None:
        from inbox_automation.db.pool import db_pool
        from inbox_automation.wiring import build_components

        await db_pool.initialize()
        components = build_components()

    job = AutomationSchedulerJob(components)
    sweeper = asyncio.create_task(start_cache_sweeper(components.cache))
    logger.info("Starting automation scheduler", interval_seconds=job.interval_seconds)

    try:
        while True:
            try:
                await job.run_once()
                await asyncio.sleep(job.interval_seconds)

            except AutomationSchedulerJobError as e:
                logger.error("Error in automation scheduler loop", error=str(e))
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
    finally:
        sweeper.cancel()
