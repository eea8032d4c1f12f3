# inbox_automation/repositories/automation_repository.py
"""
Durable store for jobs, job executions, rules and rule execution records.

``AutomationStore`` is the capability the scheduler and rules engine depend
on. ``PostgresAutomationRepository`` implements it over the shared psycopg
pool; tests use an in-memory fake.
"""

from datetime import datetime
from typing import Any, Protocol

from psycopg.types.json import Jsonb

from inbox_automation.db.helpers import (
    DatabaseError,
    execute_query,
    fetch_all,
    fetch_one,
    with_db_retry,
)
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.models.domain.automation_domain import (
    Job,
    JobExecution,
    JobKind,
    JobStatus,
    TriggeredBy,
)
from inbox_automation.models.domain.rule_domain import (
    Rule,
    RuleAction,
    RuleCondition,
    RuleExecutionRecord,
    RuleSchedule,
)

logger = get_logger(__name__)


class AutomationRepositoryError(DatabaseError):
    """Store failure surfaced to the scheduler and rules engine."""


class AutomationStore(Protocol):
    # Jobs
    async def insert_job(self, job: Job) -> Job: ...

    async def get_job(self, job_id: str) -> Job | None: ...

    async def list_jobs(self, owner_id: str) -> list[Job]: ...

    async def update_job(self, job: Job) -> Job: ...

    async def delete_job(self, job_id: str) -> bool: ...

    async def list_due_jobs(self, now: datetime, owner_id: str | None = None) -> list[Job]: ...

    # Job executions
    async def insert_execution(self, execution: JobExecution) -> JobExecution: ...

    async def update_execution(self, execution: JobExecution) -> None: ...

    async def list_executions(self, job_id: str, limit: int) -> list[JobExecution]: ...

    async def prune_executions(self, job_id: str, keep: int) -> int: ...

    # Rules
    async def insert_rule(self, rule: Rule) -> Rule: ...

    async def get_rule(self, rule_id: str) -> Rule | None: ...

    async def update_rule(self, rule: Rule) -> Rule: ...

    async def delete_rule(self, rule_id: str) -> bool: ...

    async def list_rules(self, owner_id: str, active_only: bool = True) -> list[Rule]: ...

    async def list_scheduled_rule_owners(self) -> list[str]: ...

    async def insert_rule_execution(self, record: RuleExecutionRecord) -> RuleExecutionRecord: ...

    async def list_rule_executions(self, rule_id: str, limit: int) -> list[RuleExecutionRecord]: ...


# ----------------------------------------------------------------------
# Row mapping
# ----------------------------------------------------------------------


def _row_to_job(row: dict[str, Any]) -> Job:
    return Job(
        id=str(row["id"]),
        owner_id=str(row["user_id"]),
        kind=JobKind(row["job_type"]),
        name=row["job_name"],
        schedule_expression=row["schedule_expression"],
        config=row.get("job_config") or {},
        is_active=row["is_active"],
        next_run_at=row.get("next_run_at"),
        last_run_at=row.get("last_run_at"),
        last_run_status=JobStatus(row["last_run_status"]) if row.get("last_run_status") else None,
        last_run_message=row.get("last_run_message"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _row_to_execution(row: dict[str, Any]) -> JobExecution:
    return JobExecution(
        id=str(row["id"]),
        job_id=str(row["job_id"]),
        owner_id=str(row["user_id"]),
        started_at=row["started_at"],
        status=JobStatus(row["status"]),
        triggered_by=TriggeredBy(row.get("triggered_by") or TriggeredBy.SCHEDULER.value),
        completed_at=row.get("completed_at"),
        result=row.get("result"),
        error_message=row.get("error_message"),
        execution_time_ms=row.get("execution_time_ms"),
    )


def _row_to_rule(row: dict[str, Any]) -> Rule:
    return Rule(
        id=str(row["id"]),
        owner_id=str(row["user_id"]),
        name=row["name"],
        conditions=[RuleCondition.from_dict(c) for c in row.get("conditions") or []],
        actions=[RuleAction.from_dict(a) for a in row.get("actions") or []],
        is_active=row["is_active"],
        schedule=RuleSchedule.from_dict(row.get("schedule")),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _row_to_rule_execution(row: dict[str, Any]) -> RuleExecutionRecord:
    return RuleExecutionRecord(
        id=str(row["id"]),
        rule_id=str(row["rule_id"]),
        owner_id=str(row["user_id"]),
        emails_processed=row["emails_processed"],
        emails_matched=row["emails_matched"],
        actions_performed=row["actions_performed"],
        success=row["success"],
        error_message=row.get("error_message"),
        partial_failures=list(row.get("partial_failures") or []),
        execution_time_ms=row["execution_time_ms"],
        executed_at=row["executed_at"],
    )


def _enum_value(value) -> str | None:
    return value.value if hasattr(value, "value") else value


class PostgresAutomationRepository:
    """AutomationStore over the scheduled_jobs / job_executions / user_rules tables."""

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    @with_db_retry()
    async def insert_job(self, job: Job) -> Job:
        row = await fetch_one(
            """
            INSERT INTO scheduled_jobs (
                id, user_id, job_type, job_name, schedule_expression, job_config,
                is_active, next_run_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                job.id,
                job.owner_id,
                _enum_value(job.kind),
                job.name,
                job.schedule_expression,
                Jsonb(job.config),
                job.is_active,
                job.next_run_at,
            ),
        )
        if not row:
            raise AutomationRepositoryError("Job insert returned no row", operation="insert_job")
        return _row_to_job(row)

    @with_db_retry()
    async def get_job(self, job_id: str) -> Job | None:
        row = await fetch_one("SELECT * FROM scheduled_jobs WHERE id = %s", (job_id,))
        return _row_to_job(row) if row else None

    @with_db_retry()
    async def list_jobs(self, owner_id: str) -> list[Job]:
        rows = await fetch_all(
            "SELECT * FROM scheduled_jobs WHERE user_id = %s ORDER BY created_at DESC",
            (owner_id,),
        )
        return [_row_to_job(row) for row in rows]

    @with_db_retry()
    async def update_job(self, job: Job) -> Job:
        row = await fetch_one(
            """
            UPDATE scheduled_jobs SET
                job_name = %s,
                schedule_expression = %s,
                job_config = %s,
                is_active = %s,
                next_run_at = %s,
                last_run_at = %s,
                last_run_status = %s,
                last_run_message = %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING *
            """,
            (
                job.name,
                job.schedule_expression,
                Jsonb(job.config),
                job.is_active,
                job.next_run_at,
                job.last_run_at,
                _enum_value(job.last_run_status),
                job.last_run_message,
                job.id,
            ),
        )
        if not row:
            raise AutomationRepositoryError(f"Job {job.id} not found", operation="update_job")
        return _row_to_job(row)

    @with_db_retry()
    async def delete_job(self, job_id: str) -> bool:
        affected = await execute_query("DELETE FROM scheduled_jobs WHERE id = %s", (job_id,))
        return affected > 0

    @with_db_retry()
    async def list_due_jobs(self, now: datetime, owner_id: str | None = None) -> list[Job]:
        query = """
            SELECT * FROM scheduled_jobs
            WHERE is_active = true
              AND next_run_at <= %s
              AND (last_run_status IS NULL OR last_run_status != 'running')
        """
        params: tuple = (now,)
        if owner_id:
            query += " AND user_id = %s"
            params = (now, owner_id)
        query += " ORDER BY next_run_at ASC"

        rows = await fetch_all(query, params)
        return [_row_to_job(row) for row in rows]

    # ------------------------------------------------------------------
    # Job executions
    # ------------------------------------------------------------------

    @with_db_retry()
    async def insert_execution(self, execution: JobExecution) -> JobExecution:
        row = await fetch_one(
            """
            INSERT INTO job_executions (id, job_id, user_id, started_at, status, triggered_by)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                execution.id,
                execution.job_id,
                execution.owner_id,
                execution.started_at,
                _enum_value(execution.status),
                _enum_value(execution.triggered_by),
            ),
        )
        if not row:
            raise AutomationRepositoryError(
                "Execution insert returned no row", operation="insert_execution"
            )
        return _row_to_execution(row)

    @with_db_retry()
    async def update_execution(self, execution: JobExecution) -> None:
        await execute_query(
            """
            UPDATE job_executions SET
                completed_at = %s,
                status = %s,
                result = %s,
                error_message = %s,
                execution_time_ms = %s
            WHERE id = %s
            """,
            (
                execution.completed_at,
                _enum_value(execution.status),
                Jsonb(execution.result) if execution.result is not None else None,
                execution.error_message,
                execution.execution_time_ms,
                execution.id,
            ),
        )

    @with_db_retry()
    async def list_executions(self, job_id: str, limit: int) -> list[JobExecution]:
        rows = await fetch_all(
            """
            SELECT * FROM job_executions
            WHERE job_id = %s
            ORDER BY started_at DESC
            LIMIT %s
            """,
            (job_id, limit),
        )
        return [_row_to_execution(row) for row in rows]

    @with_db_retry()
    async def prune_executions(self, job_id: str, keep: int) -> int:
        return await execute_query(
            """
            DELETE FROM job_executions
            WHERE job_id = %s AND id NOT IN (
                SELECT id FROM job_executions
                WHERE job_id = %s
                ORDER BY started_at DESC
                LIMIT %s
            )
            """,
            (job_id, job_id, keep),
        )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @with_db_retry()
    async def insert_rule(self, rule: Rule) -> Rule:
        row = await fetch_one(
            """
            INSERT INTO user_rules (id, user_id, name, conditions, actions, is_active, schedule)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                rule.id,
                rule.owner_id,
                rule.name,
                Jsonb([c.to_dict() for c in rule.conditions]),
                Jsonb([a.to_dict() for a in rule.actions]),
                rule.is_active,
                Jsonb(rule.schedule.to_dict()) if rule.schedule else None,
            ),
        )
        if not row:
            raise AutomationRepositoryError("Rule insert returned no row", operation="insert_rule")
        return _row_to_rule(row)

    @with_db_retry()
    async def get_rule(self, rule_id: str) -> Rule | None:
        row = await fetch_one("SELECT * FROM user_rules WHERE id = %s", (rule_id,))
        return _row_to_rule(row) if row else None

    @with_db_retry()
    async def update_rule(self, rule: Rule) -> Rule:
        row = await fetch_one(
            """
            UPDATE user_rules SET
                name = %s,
                conditions = %s,
                actions = %s,
                is_active = %s,
                schedule = %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING *
            """,
            (
                rule.name,
                Jsonb([c.to_dict() for c in rule.conditions]),
                Jsonb([a.to_dict() for a in rule.actions]),
                rule.is_active,
                Jsonb(rule.schedule.to_dict()) if rule.schedule else None,
                rule.id,
            ),
        )
        if not row:
            raise AutomationRepositoryError(f"Rule {rule.id} not found", operation="update_rule")
        return _row_to_rule(row)

    @with_db_retry()
    async def delete_rule(self, rule_id: str) -> bool:
        affected = await execute_query("DELETE FROM user_rules WHERE id = %s", (rule_id,))
        return affected > 0

    @with_db_retry()
    async def list_rules(self, owner_id: str, active_only: bool = True) -> list[Rule]:
        query = "SELECT * FROM user_rules WHERE user_id = %s"
        if active_only:
            query += " AND is_active = true"
        query += " ORDER BY created_at DESC"

        rows = await fetch_all(query, (owner_id,))
        return [_row_to_rule(row) for row in rows]

    @with_db_retry()
    async def list_scheduled_rule_owners(self) -> list[str]:
        rows = await fetch_all(
            """
            SELECT DISTINCT user_id FROM user_rules
            WHERE is_active = true AND (schedule->>'enabled')::boolean IS TRUE
            """
        )
        return [str(row["user_id"]) for row in rows]

    @with_db_retry()
    async def insert_rule_execution(self, record: RuleExecutionRecord) -> RuleExecutionRecord:
        row = await fetch_one(
            """
            INSERT INTO rule_executions (
                rule_id, user_id, emails_processed, emails_matched, actions_performed,
                success, error_message, partial_failures, execution_time_ms, executed_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                record.rule_id,
                record.owner_id,
                record.emails_processed,
                record.emails_matched,
                record.actions_performed,
                record.success,
                record.error_message,
                Jsonb(record.partial_failures),
                record.execution_time_ms,
                record.executed_at,
            ),
        )
        if not row:
            raise AutomationRepositoryError(
                "Rule execution insert returned no row", operation="insert_rule_execution"
            )
        stored = _row_to_rule_execution(row)
        stored.matched_ids = record.matched_ids
        return stored

    @with_db_retry()
    async def list_rule_executions(self, rule_id: str, limit: int) -> list[RuleExecutionRecord]:
        rows = await fetch_all(
            """
            SELECT * FROM rule_executions
            WHERE rule_id = %s
            ORDER BY executed_at DESC
            LIMIT %s
            """,
            (rule_id, limit),
        )
        return [_row_to_rule_execution(row) for row in rows]
