"""
Tests for the automation scheduler poller: one pass over due jobs and
scheduled rules, metrics, overlap protection and health reporting.
"""

from datetime import timedelta

import pytest

from inbox_automation.jobs.automation_scheduler_job import (
    AutomationSchedulerJob,
    AutomationSchedulerJobError,
)
from inbox_automation.models.domain.automation_domain import JobKind
from inbox_automation.models.domain.rule_domain import RuleAction, RuleCondition, RuleSchedule
from inbox_automation.wiring import AutomationComponents

OWNER_ID = "user-123"


@pytest.fixture
def with_mailboxes(monkeypatch, mailbox):
    """Give every owner in ``allowed`` the test mailbox; everyone else has no token."""
    allowed = {OWNER_ID}

    def token_mailbox_factory(self):
        async def factory(owner_id):
            return mailbox if owner_id in allowed else None

        return factory

    monkeypatch.setattr(AutomationComponents, "token_mailbox_factory", token_mailbox_factory)
    return allowed


@pytest.mark.asyncio
async def test_run_once_runs_due_jobs(components, store, with_mailboxes, now):
    job = await components.scheduler.create_job(OWNER_ID, JobKind.UNSUBSCRIBE_SCAN, "Scan", "@daily", now=now)
    store.jobs[job.id].next_run_at = now - timedelta(minutes=1)

    metrics = await AutomationSchedulerJob(components, interval_seconds=60).run_once(now)

    assert metrics["jobs_run"] == 1
    assert metrics["jobs_succeeded"] == 1
    assert metrics["jobs_failed"] == 0
    assert store.jobs[job.id].next_run_at == now + timedelta(hours=24)


@pytest.mark.asyncio
async def test_run_once_runs_scheduled_rules(components, store, provider, with_mailboxes, now, make_message):
    provider.messages = [make_message("n1", sender="newsletter@shop.com")]
    await components.rules_engine.create_rule(
        OWNER_ID,
        "Hourly archive",
        [RuleCondition("from", "contains", "newsletter")],
        [RuleAction("archive")],
        schedule=RuleSchedule(enabled=True, frequency="hourly"),
    )

    metrics = await AutomationSchedulerJob(components).run_once(now)

    assert metrics["owners_scanned"] == 1
    assert metrics["rules_run"] == 1
    assert metrics["rules_failed"] == 0
    assert provider.calls_for("archive") == [(["n1"],)]


@pytest.mark.asyncio
async def test_hourly_rule_runs_once_per_hour_across_polls(
    components, provider, with_mailboxes, now, make_message
):
    provider.messages = [make_message("n1", sender="newsletter@shop.com")]
    await components.rules_engine.create_rule(
        OWNER_ID,
        "Hourly archive",
        [RuleCondition("from", "contains", "newsletter")],
        [RuleAction("archive")],
        schedule=RuleSchedule(enabled=True, frequency="hourly"),
    )
    job = AutomationSchedulerJob(components, interval_seconds=60)

    for minute in range(5):
        await job.run_once(now + timedelta(minutes=minute))

    assert len(provider.calls_for("archive")) == 1

    await job.run_once(now + timedelta(hours=1))

    assert len(provider.calls_for("archive")) == 2


@pytest.mark.asyncio
async def test_untimed_daily_rule_runs_once_per_day_across_polls(
    components, provider, with_mailboxes, now, make_message
):
    provider.messages = [make_message("a")]
    await components.rules_engine.create_rule(
        OWNER_ID,
        "Daily star",
        [RuleCondition("from", "contains", "alice")],
        [RuleAction("star")],
        schedule=RuleSchedule(enabled=True, frequency="daily"),
    )
    job = AutomationSchedulerJob(components, interval_seconds=60)

    for minute in range(3):
        await job.run_once(now + timedelta(minutes=minute))

    assert len(provider.calls_for("star")) == 1


@pytest.mark.asyncio
async def test_run_once_skips_owner_without_token(components, store, provider, with_mailboxes, now):
    await components.rules_engine.create_rule(
        "no-token-owner",
        "Hourly star",
        [RuleCondition("from", "contains", "x")],
        [RuleAction("star")],
        schedule=RuleSchedule(enabled=True, frequency="hourly"),
    )

    metrics = await AutomationSchedulerJob(components).run_once(now)

    assert metrics["owners_scanned"] == 0
    assert metrics["errors_count"] == 0
    assert provider.calls == []


@pytest.mark.asyncio
async def test_run_once_wraps_store_failure(components, store, with_mailboxes, now):
    store.failing.add("list_due_jobs")
    job = AutomationSchedulerJob(components)

    with pytest.raises(AutomationSchedulerJobError) as exc_info:
        await job.run_once(now)

    assert exc_info.value.operation == "run_once"
    assert job.is_running is False


@pytest.mark.asyncio
async def test_run_once_skips_when_pass_in_progress(components):
    job = AutomationSchedulerJob(components)
    job.is_running = True

    assert await job.run_once() == {"skipped": True, "reason": "already_running"}


@pytest.mark.asyncio
async def test_job_status_after_pass(components, with_mailboxes, now):
    job = AutomationSchedulerJob(components, interval_seconds=30)

    await job.run_once(now)
    status = job.get_job_status()

    assert status["job_name"] == "automation_scheduler"
    assert status["interval_seconds"] == 30
    assert status["last_run_metrics"]["jobs_run"] == 0


def test_health_check_reports_overdue(components, now):
    job = AutomationSchedulerJob(components, interval_seconds=60)
    job.last_run_time = now

    assert job.health_check(now + timedelta(seconds=100))["healthy"] is True

    health = job.health_check(now + timedelta(seconds=121))
    assert health["healthy"] is False
    assert health["is_overdue"] is True
    assert "overdue" in health["warning"]


def test_health_check_before_first_pass(components):
    health = AutomationSchedulerJob(components).health_check()

    assert health["healthy"] is True
    assert health["last_run_time"] is None
