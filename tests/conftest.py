import copy
import random
from datetime import UTC, datetime, timedelta

import pytest

from inbox_automation.auth.verify import auth_dependency, get_owner_id
from inbox_automation.config import Settings
from inbox_automation.db.helpers import DatabaseError
from inbox_automation.models.domain.automation_domain import Job, JobExecution
from inbox_automation.models.domain.mail_domain import (
    BulkOperationResult,
    MailboxCounts,
    MailLabel,
    MailMessage,
)
from inbox_automation.models.domain.rule_domain import Rule, RuleExecutionRecord
from inbox_automation.services.cache_service import MailCacheService
from inbox_automation.services.mailbox_service import MailboxService
from inbox_automation.services.resilience import CircuitBreaker, ResilienceService
from inbox_automation.services.rules_engine import RulesEngine
from inbox_automation.services.scheduler_service import SchedulerService
from inbox_automation.wiring import build_components

OWNER_ID = "user-123"

# Wednesday
FIXED_NOW = datetime(2024, 6, 5, 12, 0, tzinfo=UTC)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": OWNER_ID}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override
        app.dependency_overrides[get_owner_id] = lambda: OWNER_ID

    return _apply


class FakeAutomationStore:
    """In-memory AutomationStore. Records are copied in and out like a real database."""

    def __init__(self):
        self.jobs: dict[str, Job] = {}
        self.executions: list[JobExecution] = []
        self.rules: dict[str, Rule] = {}
        self.rule_executions: list[RuleExecutionRecord] = []
        self.failing: set[str] = set()
        self._rule_seq = 0

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise DatabaseError(f"{operation} failed", operation=operation)

    # Jobs

    async def insert_job(self, job: Job) -> Job:
        self._check("insert_job")
        job.created_at = job.created_at or FIXED_NOW
        job.updated_at = job.updated_at or FIXED_NOW
        self.jobs[job.id] = copy.deepcopy(job)
        return copy.deepcopy(job)

    async def get_job(self, job_id: str) -> Job | None:
        self._check("get_job")
        job = self.jobs.get(job_id)
        return copy.deepcopy(job) if job else None

    async def list_jobs(self, owner_id: str) -> list[Job]:
        return [copy.deepcopy(j) for j in self.jobs.values() if j.owner_id == owner_id]

    async def update_job(self, job: Job) -> Job:
        self._check("update_job")
        self.jobs[job.id] = copy.deepcopy(job)
        return copy.deepcopy(job)

    async def delete_job(self, job_id: str) -> bool:
        return self.jobs.pop(job_id, None) is not None

    async def list_due_jobs(self, now: datetime, owner_id: str | None = None) -> list[Job]:
        self._check("list_due_jobs")
        due = [
            job
            for job in self.jobs.values()
            if job.is_due(now) and (owner_id is None or job.owner_id == owner_id)
        ]
        return [copy.deepcopy(job) for job in sorted(due, key=lambda j: j.next_run_at)]

    # Executions

    async def insert_execution(self, execution: JobExecution) -> JobExecution:
        self._check("insert_execution")
        self.executions.append(copy.deepcopy(execution))
        return copy.deepcopy(execution)

    async def update_execution(self, execution: JobExecution) -> None:
        self._check("update_execution")
        for index, existing in enumerate(self.executions):
            if existing.id == execution.id:
                self.executions[index] = copy.deepcopy(execution)

    async def list_executions(self, job_id: str, limit: int) -> list[JobExecution]:
        matching = [e for e in reversed(self.executions) if e.job_id == job_id]
        return [copy.deepcopy(e) for e in matching[:limit]]

    async def prune_executions(self, job_id: str, keep: int) -> int:
        self._check("prune_executions")
        newest = {e.id for e in [e for e in reversed(self.executions) if e.job_id == job_id][:keep]}
        before = len(self.executions)
        self.executions = [e for e in self.executions if e.job_id != job_id or e.id in newest]
        return before - len(self.executions)

    # Rules

    async def insert_rule(self, rule: Rule) -> Rule:
        self._rule_seq += 1
        rule.created_at = FIXED_NOW + timedelta(seconds=self._rule_seq)
        rule.updated_at = rule.created_at
        self.rules[rule.id] = copy.deepcopy(rule)
        return copy.deepcopy(rule)

    async def get_rule(self, rule_id: str) -> Rule | None:
        rule = self.rules.get(rule_id)
        return copy.deepcopy(rule) if rule else None

    async def update_rule(self, rule: Rule) -> Rule:
        self.rules[rule.id] = copy.deepcopy(rule)
        return copy.deepcopy(rule)

    async def delete_rule(self, rule_id: str) -> bool:
        return self.rules.pop(rule_id, None) is not None

    async def list_rules(self, owner_id: str, active_only: bool = True) -> list[Rule]:
        rules = [
            r
            for r in self.rules.values()
            if r.owner_id == owner_id and (r.is_active or not active_only)
        ]
        rules.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in rules]

    async def list_scheduled_rule_owners(self) -> list[str]:
        return sorted(
            {
                r.owner_id
                for r in self.rules.values()
                if r.is_active and r.schedule is not None and r.schedule.enabled
            }
        )

    async def insert_rule_execution(self, record: RuleExecutionRecord) -> RuleExecutionRecord:
        self._check("insert_rule_execution")
        record.id = record.id or f"rule-exec-{len(self.rule_executions) + 1}"
        self.rule_executions.append(copy.deepcopy(record))
        return copy.deepcopy(record)

    async def list_rule_executions(self, rule_id: str, limit: int) -> list[RuleExecutionRecord]:
        matching = [r for r in reversed(self.rule_executions) if r.rule_id == rule_id]
        return [copy.deepcopy(r) for r in matching[:limit]]


class FakeMailProvider:
    """
    In-memory MailProvider.

    ``calls`` records every invocation as (operation, args). ``script`` maps an
    operation name to exceptions raised on successive calls before it starts
    succeeding. ``failing_ids`` makes bulk operations report those ids as failed.
    """

    def __init__(self, messages: list[MailMessage] | None = None):
        self.messages = list(messages or [])
        self.messages_by_query: dict[str, list[MailMessage]] = {}
        self.labels = [
            MailLabel(id="INBOX", name="INBOX", type="system"),
            MailLabel(id="Label_1", name="Newsletters"),
        ]
        self.counts = MailboxCounts(total=120, unread=7)
        self.calls: list[tuple[str, tuple]] = []
        self.script: dict[str, list[Exception]] = {}
        self.failing_ids: set[str] = set()

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, args))
        pending = self.script.get(operation)
        if pending:
            raise pending.pop(0)

    def calls_for(self, operation: str) -> list[tuple]:
        return [args for name, args in self.calls if name == operation]

    async def list_messages(self, query: str, max_results: int) -> list[MailMessage]:
        self._record("list_messages", query, max_results)
        source = self.messages_by_query.get(query, self.messages)
        return list(source[:max_results])

    async def list_labels(self) -> list[MailLabel]:
        self._record("list_labels")
        return list(self.labels)

    async def get_mailbox_counts(self) -> MailboxCounts:
        self._record("get_mailbox_counts")
        return self.counts

    def _bulk(self, operation: str, ids: list[str], *extra) -> BulkOperationResult:
        self._record(operation, list(ids), *extra)
        failed = [i for i in ids if i in self.failing_ids]
        return BulkOperationResult(
            success=not failed,
            processed_count=len(ids) - len(failed),
            errors=[f"Failed to {operation} email {i}" for i in failed],
            failed_ids=failed,
        )

    async def archive(self, ids: list[str]) -> BulkOperationResult:
        return self._bulk("archive", ids)

    async def delete(self, ids: list[str]) -> BulkOperationResult:
        return self._bulk("delete", ids)

    async def add_labels(self, ids: list[str], label_ids: list[str]) -> BulkOperationResult:
        return self._bulk("add_labels", ids, list(label_ids))

    async def mark_read(self, ids: list[str]) -> BulkOperationResult:
        return self._bulk("mark_read", ids)

    async def mark_unread(self, ids: list[str]) -> BulkOperationResult:
        return self._bulk("mark_unread", ids)

    async def star(self, ids: list[str]) -> BulkOperationResult:
        return self._bulk("star", ids)

    async def unstar(self, ids: list[str]) -> BulkOperationResult:
        return self._bulk("unstar", ids)


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def make_message():
    def _make(
        message_id: str,
        *,
        sender: str = "alice@example.com",
        subject: str = "Hello",
        snippet: str = "",
        age_days: int = 1,
        size: int = 2048,
        labels: list[str] | None = None,
        has_attachment: bool = False,
        unsubscribe_header: bool = False,
    ) -> MailMessage:
        return MailMessage(
            id=message_id,
            thread_id=f"thread-{message_id}",
            sender=sender,
            to="me@example.com",
            subject=subject,
            snippet=snippet,
            body=snippet,
            date=FIXED_NOW - timedelta(days=age_days),
            size_estimate=size,
            has_attachment=has_attachment,
            label_ids=list(labels if labels is not None else ["INBOX"]),
            has_unsubscribe_header=unsubscribe_header,
        )

    return _make


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeAutomationStore:
    return FakeAutomationStore()


@pytest.fixture
def provider() -> FakeMailProvider:
    return FakeMailProvider()


@pytest.fixture
def cache(fake_clock) -> MailCacheService:
    return MailCacheService(clock=fake_clock)


@pytest.fixture
def resilience(recording_sleep, fake_clock) -> ResilienceService:
    return ResilienceService(
        breaker=CircuitBreaker(clock=fake_clock),
        sleep=recording_sleep,
        rng=random.Random(7),
    )


@pytest.fixture
def mailbox(provider, cache, resilience) -> MailboxService:
    return MailboxService(provider, OWNER_ID, cache, resilience)


@pytest.fixture
def rules_engine(store) -> RulesEngine:
    return RulesEngine(store, clock=lambda: FIXED_NOW)


@pytest.fixture
def scheduler(store, rules_engine) -> SchedulerService:
    return SchedulerService(store, rules_engine, clock=lambda: FIXED_NOW)


@pytest.fixture
def components(store):
    return build_components(Settings(_env_file=None), store=store)
