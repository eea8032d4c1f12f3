"""
Job-type handlers dispatched by the scheduler.

A closed set of four coroutines, one per JobKind. Each receives a
HandlerContext (typed config, mailbox gateway, collaborators) and returns a
JobResult. Exceptions escaping a handler are caught by the scheduler.
"""

from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.models.domain.automation_domain import Job, JobKind, JobResult
from inbox_automation.models.domain.job_config import (
    AnalyticsJobConfig,
    CleanupJobConfig,
    JobConfig,
    RuleExecutionJobConfig,
    UnsubscribeScanJobConfig,
)
from inbox_automation.services.collaborators import (
    AnalyticsCollector,
    DefaultPreferencesProvider,
    ListUnsubscribeDetector,
    LoggingAnalyticsCollector,
    PreferencesProvider,
    UnsubscribeDetector,
)
from inbox_automation.services.mailbox_service import MailboxService
from inbox_automation.services.resilience.errors import MailServiceError
from inbox_automation.services.rules_engine import RulesEngine

logger = get_logger(__name__)

TOP_SENDERS_LIMIT = 10


@dataclass(slots=True)
class Collaborators:
    analytics: AnalyticsCollector = field(default_factory=LoggingAnalyticsCollector)
    unsubscribe: UnsubscribeDetector = field(default_factory=ListUnsubscribeDetector)
    preferences: PreferencesProvider = field(default_factory=DefaultPreferencesProvider)


@dataclass(slots=True)
class HandlerContext:
    job: Job
    config: JobConfig
    mailbox: MailboxService
    rules_engine: RulesEngine
    collaborators: Collaborators
    now: datetime


JobHandler = Callable[[HandlerContext], Awaitable[JobResult]]


async def run_cleanup_job(ctx: HandlerContext) -> JobResult:
    """Archive old inbox mail and purge old trash according to the owner's cleanup strategy."""
    config: CleanupJobConfig = ctx.config
    prefs = await ctx.collaborators.preferences.get_cleanup_preferences(ctx.job.owner_id)

    processed_count = 0
    archived = 0
    deleted = 0
    errors: list[str] = []

    if config.auto_archive and prefs.auto_archive_days:
        query = f"in:inbox older_than:{prefs.auto_archive_days}d"
        if prefs.preserve_starred:
            query += " -is:starred"

        messages = await ctx.mailbox.list_messages(query, config.max_emails)
        if prefs.preserve_starred:
            messages = [message for message in messages if not message.is_starred]

        if messages:
            result = await ctx.mailbox.archive([message.id for message in messages])
            archived = result.processed_count
            processed_count += result.processed_count
            if not result.success:
                errors.append(f"Archive operation failed: {', '.join(result.errors)}")

    if config.auto_delete and prefs.auto_delete_days:
        query = f"in:trash older_than:{prefs.auto_delete_days}d"
        messages = await ctx.mailbox.list_messages(query, config.max_emails)

        if messages:
            result = await ctx.mailbox.delete([message.id for message in messages])
            deleted = result.processed_count
            processed_count += result.processed_count
            if not result.success:
                errors.append(f"Delete operation failed: {', '.join(result.errors)}")

    return JobResult(
        success=not errors,
        message=f"Cleanup completed. Processed {processed_count} emails.",
        details={
            "archived": archived,
            "deleted": deleted,
            "preferences": prefs.to_dict(),
            "errors": errors,
        },
        processed_count=processed_count,
        errors=errors,
    )


async def run_rule_execution_job(ctx: HandlerContext) -> JobResult:
    """Run each listed rule against a fresh batch; one rule's failure does not stop the others."""
    config: RuleExecutionJobConfig = ctx.config

    processed_count = 0
    errors: list[str] = []
    executions = []

    for rule_id in config.rule_ids:
        try:
            record = await ctx.rules_engine.run_rule_by_id(
                rule_id,
                ctx.job.owner_id,
                ctx.mailbox,
                max_emails=config.max_emails,
                query=config.email_query,
                now=ctx.now,
            )
        except Exception as e:
            logger.warning("Rule in job failed", job_id=ctx.job.id, rule_id=rule_id, error=str(e))
            errors.append(f"Rule {rule_id} error: {e}")
            continue

        executions.append(record.to_dict())
        processed_count += record.emails_matched

        if not record.success:
            errors.append(f"Rule {rule_id} failed: {record.error_message}")
        for failure in record.partial_failures:
            errors.append(f"Rule {rule_id} partial failure: {failure}")

    return JobResult(
        success=not errors,
        message=f"Rule execution completed. Processed {processed_count} emails.",
        details={"executions": executions, "errors": errors},
        processed_count=processed_count,
        errors=errors,
    )


async def run_analytics_job(ctx: HandlerContext) -> JobResult:
    """Collect mailbox counts and size aggregates and hand them to the analytics collector."""
    config: AnalyticsJobConfig = ctx.config

    counts = await ctx.mailbox.get_mailbox_counts()
    messages = await ctx.mailbox.list_messages(f"newer_than:{config.days}d", config.max_emails)

    sizes = [message.size_estimate for message in messages]
    senders = Counter(message.sender for message in messages if message.sender)

    snapshot = {
        "total_emails": counts.total,
        "unread_emails": counts.unread,
        "period_days": config.days,
        "sampled_emails": len(messages),
        "unread_in_sample": sum(1 for message in messages if message.is_unread),
        "with_attachments": sum(1 for message in messages if message.has_attachment),
        "total_size": sum(sizes),
        "largest_email_size": max(sizes, default=0),
        "average_email_size": round(sum(sizes) / len(sizes)) if sizes else 0,
        "top_senders": [
            {"sender": sender, "count": count}
            for sender, count in senders.most_common(TOP_SENDERS_LIMIT)
        ],
        "collected_at": ctx.now.isoformat(),
    }

    ctx.mailbox.store_analytics(config.days, snapshot)
    await ctx.collaborators.analytics.record_snapshot(ctx.job.owner_id, snapshot)

    return JobResult(
        success=True,
        message=f"Analytics collection completed. Collected stats for {counts.total} emails.",
        details={"email_stats": snapshot},
        processed_count=1,
    )


async def run_unsubscribe_scan_job(ctx: HandlerContext) -> JobResult:
    """Run discovery queries and pass each message to the unsubscribe detector."""
    config: UnsubscribeScanJobConfig = ctx.config

    seen: set[str] = set()
    found = 0
    errors: list[str] = []

    for query in config.queries:
        try:
            messages = await ctx.mailbox.list_messages(query, config.max_emails_per_query)
        except MailServiceError as e:
            errors.append(f'Query "{query}" failed: {e.message}')
            continue

        for message in messages:
            if message.id in seen:
                continue
            seen.add(message.id)
            if await ctx.collaborators.unsubscribe.detect(ctx.job.owner_id, message):
                found += 1

    return JobResult(
        success=not errors,
        message=f"Unsubscribe scan completed. Found {found} opportunities.",
        details={"found_opportunities": found, "scanned_emails": len(seen), "errors": errors},
        processed_count=found,
        errors=errors,
    )


HANDLERS: dict[JobKind, JobHandler] = {
    JobKind.CLEANUP: run_cleanup_job,
    JobKind.RULE_EXECUTION: run_rule_execution_job,
    JobKind.ANALYTICS_COLLECTION: run_analytics_job,
    JobKind.UNSUBSCRIBE_SCAN: run_unsubscribe_scan_job,
}
