"""
Tests for rule validation, evaluation, execution and embedded rule schedules.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from inbox_automation.models.domain.mail_domain import BulkOperationResult
from inbox_automation.models.domain.rule_domain import (
    Rule,
    RuleAction,
    RuleActionError,
    RuleCondition,
    RuleErrorKind,
    RuleSchedule,
    RuleValidationError,
)
from inbox_automation.services.resilience import MailErrorKind, MailServiceError

OWNER_ID = "user-123"


def _rule(conditions, actions, **kwargs) -> Rule:
    return Rule(
        id=kwargs.pop("rule_id", "rule-1"),
        owner_id=OWNER_ID,
        name=kwargs.pop("name", "Test rule"),
        conditions=conditions,
        actions=actions,
        **kwargs,
    )


def _newsletter_batch(make_message):
    messages = [make_message(f"m{i}", sender=f"friend{i}@example.com") for i in range(7)]
    messages += [
        make_message("n1", sender="Weekly Newsletter <newsletter@shop.com>"),
        make_message("n2", sender="newsletter@news.org"),
        make_message("n3", sender="NEWSLETTER@example.net"),
    ]
    return messages


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------


def test_validate_rule_rejects_empty_conditions(rules_engine):
    with pytest.raises(RuleValidationError) as exc_info:
        rules_engine.validate_rule([], [RuleAction(type="archive")])

    assert exc_info.value.kind == RuleErrorKind.EMPTY_CONDITIONS


def test_validate_rule_rejects_empty_actions(rules_engine):
    with pytest.raises(RuleValidationError) as exc_info:
        rules_engine.validate_rule([RuleCondition("from", "contains", "x")], [])

    assert exc_info.value.kind == RuleErrorKind.EMPTY_ACTIONS


@pytest.mark.parametrize(
    ("condition", "action", "kind"),
    [
        (RuleCondition("sender", "contains", "x"), RuleAction("archive"), RuleErrorKind.UNKNOWN_CONDITION_FIELD),
        (RuleCondition("from", "matches", "x"), RuleAction("archive"), RuleErrorKind.UNKNOWN_CONDITION_OPERATOR),
        (RuleCondition("from", "contains", "x"), RuleAction("snooze"), RuleErrorKind.UNKNOWN_ACTION_TYPE),
        (RuleCondition("from", "contains", "x"), RuleAction("label"), RuleErrorKind.MISSING_ACTION_VALUE),
    ],
)
def test_validate_rule_rejects_unknown_parts(rules_engine, condition, action, kind):
    with pytest.raises(RuleValidationError) as exc_info:
        rules_engine.validate_rule([condition], [action])

    assert exc_info.value.kind == kind


@pytest.mark.asyncio
async def test_create_rule_persists_valid_rule(rules_engine, store):
    rule = await rules_engine.create_rule(
        OWNER_ID,
        "Archive newsletters",
        [RuleCondition("from", "contains", "newsletter")],
        [RuleAction("archive")],
    )

    assert rule.id in store.rules
    assert store.rules[rule.id].name == "Archive newsletters"


@pytest.mark.asyncio
async def test_create_rule_does_not_persist_invalid_rule(rules_engine, store):
    with pytest.raises(RuleValidationError):
        await rules_engine.create_rule(OWNER_ID, "Broken", [], [RuleAction("archive")])

    assert store.rules == {}


@pytest.mark.asyncio
async def test_get_rule_hides_other_owners_rules(rules_engine):
    rule = await rules_engine.create_rule(
        "someone-else", "Theirs", [RuleCondition("subject", "contains", "x")], [RuleAction("star")]
    )

    with pytest.raises(RuleValidationError) as exc_info:
        await rules_engine.get_rule(rule.id, OWNER_ID)

    assert exc_info.value.kind == RuleErrorKind.RULE_NOT_FOUND


@pytest.mark.asyncio
async def test_update_rule_revalidates(rules_engine):
    rule = await rules_engine.create_rule(
        OWNER_ID, "Rule", [RuleCondition("subject", "contains", "x")], [RuleAction("star")]
    )

    with pytest.raises(RuleValidationError) as exc_info:
        await rules_engine.update_rule(rule.id, OWNER_ID, {"actions": []})

    assert exc_info.value.kind == RuleErrorKind.EMPTY_ACTIONS


@pytest.mark.asyncio
async def test_get_active_rules_excludes_inactive_and_orders_newest_first(rules_engine):
    first = await rules_engine.create_rule(
        OWNER_ID, "First", [RuleCondition("subject", "contains", "a")], [RuleAction("star")]
    )
    await rules_engine.create_rule(
        OWNER_ID,
        "Disabled",
        [RuleCondition("subject", "contains", "b")],
        [RuleAction("star")],
        is_active=False,
    )
    latest = await rules_engine.create_rule(
        OWNER_ID, "Latest", [RuleCondition("subject", "contains", "c")], [RuleAction("star")]
    )

    active = await rules_engine.get_active_rules(OWNER_ID)

    assert [rule.id for rule in active] == [latest.id, first.id]


# ----------------------------------------------------------------------
# Evaluation
# ----------------------------------------------------------------------


def test_evaluate_matches_newsletters_case_insensitively(rules_engine, make_message, now):
    rule = _rule([RuleCondition("from", "contains", "newsletter")], [RuleAction("archive")])

    matched = rules_engine.evaluate(rule, _newsletter_batch(make_message), now)

    assert [message.id for message in matched] == ["n1", "n2", "n3"]


def test_evaluate_conditions_are_anded(rules_engine, make_message, now):
    messages = [
        make_message("old-big", age_days=40, size=6_000_000),
        make_message("old-small", age_days=40, size=1000),
        make_message("new-big", age_days=2, size=6_000_000),
    ]
    rule = _rule(
        [
            RuleCondition("age_days", "greater_than", 30),
            RuleCondition("size", "greater_than", "5000000"),
        ],
        [RuleAction("delete")],
    )

    matched = rules_engine.evaluate(rule, messages, now)

    assert [message.id for message in matched] == ["old-big"]


def test_evaluate_case_sensitive_string_comparison(rules_engine, make_message, now):
    messages = [make_message("a", subject="Invoice #42"), make_message("b", subject="invoice #43")]
    rule = _rule(
        [RuleCondition("subject", "starts_with", "Invoice", case_sensitive=True)],
        [RuleAction("star")],
    )

    matched = rules_engine.evaluate(rule, messages, now)

    assert [message.id for message in matched] == ["a"]


def test_evaluate_boolean_and_label_fields(rules_engine, make_message, now):
    messages = [
        make_message("unread-attach", labels=["INBOX", "UNREAD"], has_attachment=True),
        make_message("read-attach", labels=["INBOX"], has_attachment=True),
        make_message("unread-plain", labels=["INBOX", "UNREAD"]),
    ]
    rule = _rule(
        [
            RuleCondition("is_unread", "equals", "true"),
            RuleCondition("has_attachment", "has", None),
            RuleCondition("label", "has", "inbox"),
        ],
        [RuleAction("mark_read")],
    )

    matched = rules_engine.evaluate(rule, messages, now)

    assert [message.id for message in matched] == ["unread-attach"]


def test_evaluate_label_not_has(rules_engine, make_message, now):
    messages = [make_message("starred", labels=["STARRED"]), make_message("plain", labels=[])]
    rule = _rule([RuleCondition("label", "not_has", "starred")], [RuleAction("archive")])

    matched = rules_engine.evaluate(rule, messages, now)

    assert [message.id for message in matched] == ["plain"]


def test_evaluate_treats_condition_errors_as_non_match(rules_engine, make_message, now):
    good = make_message("good", sender="news@example.com")
    broken = make_message("broken")
    broken.sender = None
    broken.date = "not-a-date"  # age_days() raises on this
    rule = _rule(
        [RuleCondition("age_days", "less_than", 10)],
        [RuleAction("archive")],
    )

    matched = rules_engine.evaluate(rule, [broken, good], now)

    assert [message.id for message in matched] == ["good"]


def test_evaluate_non_numeric_threshold_never_matches(rules_engine, make_message, now):
    rule = _rule([RuleCondition("size", "greater_than", "big")], [RuleAction("archive")])

    assert rules_engine.evaluate(rule, [make_message("a")], now) == []


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_rule_archives_matched_newsletters(rules_engine, mailbox, provider, store, make_message, now):
    rule = _rule([RuleCondition("from", "contains", "newsletter")], [RuleAction("archive")])

    record = await rules_engine.run_rule(rule, _newsletter_batch(make_message), mailbox, now)

    assert record.success is True
    assert record.emails_processed == 10
    assert record.emails_matched == 3
    assert record.actions_performed == 1
    assert provider.calls_for("archive") == [(["n1", "n2", "n3"],)]
    assert store.rule_executions[0].rule_id == rule.id


@pytest.mark.asyncio
async def test_execute_with_no_matches_performs_no_actions(rules_engine, mailbox, provider):
    rule = _rule([RuleCondition("from", "contains", "x")], [RuleAction("archive"), RuleAction("star")])

    outcome = await rules_engine.execute(rule, [], mailbox)

    assert outcome.actions_performed == 0
    assert provider.calls == []


@pytest.mark.asyncio
async def test_execute_runs_actions_in_declared_order(rules_engine, mailbox, provider, make_message):
    rule = _rule(
        [RuleCondition("from", "contains", "x")],
        [RuleAction("mark_read"), RuleAction("label", "Newsletters"), RuleAction("archive")],
    )

    outcome = await rules_engine.execute(rule, [make_message("a"), make_message("b")], mailbox)

    mutations = [name for name, _ in provider.calls if name != "list_labels"]
    assert mutations == ["mark_read", "add_labels", "archive"]
    assert provider.calls_for("add_labels") == [(["a", "b"], ["Label_1"])]
    assert outcome.actions_performed == 3


@pytest.mark.asyncio
async def test_execute_collects_partial_failures_and_continues(rules_engine, mailbox, provider, make_message):
    provider.failing_ids = {"b"}
    rule = _rule([RuleCondition("from", "contains", "x")], [RuleAction("archive"), RuleAction("star")])

    outcome = await rules_engine.execute(rule, [make_message("a"), make_message("b")], mailbox)

    assert outcome.actions_performed == 2
    assert len(outcome.partial_failures) == 2
    assert all("b" in failure for failure in outcome.partial_failures)


@pytest.mark.asyncio
async def test_execute_forward_is_recorded_not_counted(rules_engine, mailbox, provider, make_message):
    rule = _rule([RuleCondition("from", "contains", "x")], [RuleAction("forward", "a@b.com"), RuleAction("star")])

    outcome = await rules_engine.execute(rule, [make_message("a")], mailbox)

    assert outcome.actions_performed == 1
    assert outcome.partial_failures == ["forward is not supported"]


@pytest.mark.asyncio
async def test_execute_aborts_remaining_actions_on_exception(rules_engine, make_message):
    mailbox = AsyncMock()
    mailbox.mark_read.return_value = BulkOperationResult(success=True, processed_count=1)
    mailbox.archive.side_effect = MailServiceError(MailErrorKind.INVALID_TOKEN, "expired")
    rule = _rule(
        [RuleCondition("from", "contains", "x")],
        [RuleAction("mark_read"), RuleAction("archive"), RuleAction("star")],
    )

    with pytest.raises(RuleActionError) as exc_info:
        await rules_engine.execute(rule, [make_message("a")], mailbox)

    assert exc_info.value.actions_performed == 1
    assert exc_info.value.action == "archive"
    mailbox.star.assert_not_called()


@pytest.mark.asyncio
async def test_run_rule_records_failure_with_partial_count(rules_engine, store, make_message, now):
    mailbox = AsyncMock()
    mailbox.mark_read.return_value = BulkOperationResult(success=True, processed_count=1)
    mailbox.archive.side_effect = RuntimeError("boom")
    rule = _rule([RuleCondition("from", "contains", "alice")], [RuleAction("mark_read"), RuleAction("archive")])

    record = await rules_engine.run_rule(rule, [make_message("a")], mailbox, now)

    assert record.success is False
    assert record.actions_performed == 1
    assert "boom" in record.error_message
    assert store.rule_executions[0].success is False


@pytest.mark.asyncio
async def test_run_rule_keeps_partial_failures_collected_before_abort(rules_engine, make_message, now):
    mailbox = AsyncMock()
    mailbox.mark_read.return_value = BulkOperationResult(
        success=False, processed_count=1, errors=["Failed to mark_read email b"], failed_ids=["b"]
    )
    mailbox.archive.side_effect = RuntimeError("boom")
    rule = _rule(
        [RuleCondition("from", "contains", "alice")],
        [RuleAction("forward", "x@y.com"), RuleAction("mark_read"), RuleAction("archive")],
    )

    record = await rules_engine.run_rule(rule, [make_message("a"), make_message("b")], mailbox, now)

    assert record.success is False
    assert record.actions_performed == 1
    assert record.partial_failures == [
        "forward is not supported",
        "mark_read: Failed to mark_read email b",
    ]


@pytest.mark.asyncio
async def test_run_rule_still_returns_record_when_store_fails(rules_engine, store, mailbox, make_message, now):
    store.failing.add("insert_rule_execution")
    rule = _rule([RuleCondition("from", "contains", "alice")], [RuleAction("star")])

    record = await rules_engine.run_rule(rule, [make_message("a")], mailbox, now)

    assert record.success is True
    assert record.id is None


@pytest.mark.asyncio
async def test_run_rule_by_id_rejects_inactive_rule(rules_engine, mailbox):
    rule = await rules_engine.create_rule(
        OWNER_ID,
        "Off",
        [RuleCondition("from", "contains", "x")],
        [RuleAction("archive")],
        is_active=False,
    )

    with pytest.raises(RuleValidationError) as exc_info:
        await rules_engine.run_rule_by_id(rule.id, OWNER_ID, mailbox)

    assert exc_info.value.kind == RuleErrorKind.RULE_NOT_FOUND


@pytest.mark.asyncio
async def test_run_rule_by_id_records_fetch_failure(rules_engine, mailbox, provider, store):
    provider.script["list_messages"] = [MailServiceError(MailErrorKind.INVALID_TOKEN, "expired")]
    rule = await rules_engine.create_rule(
        OWNER_ID, "Rule", [RuleCondition("from", "contains", "x")], [RuleAction("archive")]
    )

    record = await rules_engine.run_rule_by_id(rule.id, OWNER_ID, mailbox)

    assert record.success is False
    assert record.error_message.startswith("invalid_token")
    assert len(store.rule_executions) == 1


@pytest.mark.asyncio
async def test_test_conditions_previews_without_acting(rules_engine, mailbox, provider, make_message):
    provider.messages = _newsletter_batch(make_message)

    result = await rules_engine.test_conditions(
        [RuleCondition("from", "contains", "newsletter")], mailbox
    )

    assert result.success is True
    assert result.total_emails == 10
    assert result.matching_emails == 3
    assert [item["id"] for item in result.preview] == ["n1", "n2", "n3"]
    assert [name for name, _ in provider.calls] == ["list_messages"]


@pytest.mark.asyncio
async def test_test_conditions_preview_is_capped(rules_engine, mailbox, provider, make_message):
    provider.messages = [make_message(f"m{i}") for i in range(25)]

    result = await rules_engine.test_conditions([RuleCondition("from", "contains", "alice")], mailbox)

    assert result.matching_emails == 25
    assert len(result.preview) == 10


@pytest.mark.asyncio
async def test_test_conditions_reports_fetch_error(rules_engine, mailbox, provider):
    provider.script["list_messages"] = [MailServiceError(MailErrorKind.INSUFFICIENT_PERMISSIONS, "scope")]

    result = await rules_engine.test_conditions([RuleCondition("from", "contains", "x")], mailbox)

    assert result.success is False
    assert result.error_kind == "insufficient_permissions"


# ----------------------------------------------------------------------
# Embedded schedules
# ----------------------------------------------------------------------


@pytest.mark.parametrize(
    ("schedule", "moment", "expected"),
    [
        (None, datetime(2024, 6, 5, 9, 0, tzinfo=UTC), False),
        (RuleSchedule(False, "hourly"), datetime(2024, 6, 5, 9, 0, tzinfo=UTC), False),
        (RuleSchedule(True, "hourly"), datetime(2024, 6, 5, 9, 17, tzinfo=UTC), True),
        (RuleSchedule(True, "daily", time="09:00"), datetime(2024, 6, 5, 9, 0, tzinfo=UTC), True),
        (RuleSchedule(True, "daily", time="09:00"), datetime(2024, 6, 5, 9, 1, tzinfo=UTC), False),
        (RuleSchedule(True, "daily"), datetime(2024, 6, 5, 3, 0, tzinfo=UTC), True),
        # 2024-06-09 is a Sunday (0), 2024-06-05 a Wednesday (3)
        (RuleSchedule(True, "weekly", days=[0]), datetime(2024, 6, 9, 8, 0, tzinfo=UTC), True),
        (RuleSchedule(True, "weekly", days=[0, 6]), datetime(2024, 6, 5, 8, 0, tzinfo=UTC), False),
        (RuleSchedule(True, "weekly", days=[3]), datetime(2024, 6, 5, 8, 0, tzinfo=UTC), True),
        (RuleSchedule(True, "monthly"), datetime(2024, 6, 5, 8, 0, tzinfo=UTC), False),
    ],
)
def test_should_run_rule(rules_engine, schedule, moment, expected):
    rule = _rule([RuleCondition("from", "contains", "x")], [RuleAction("archive")], schedule=schedule)

    assert rules_engine.should_run_rule(rule, moment) is expected


@pytest.mark.parametrize(
    ("schedule", "last_run_at", "expected"),
    [
        (RuleSchedule(True, "hourly"), datetime(2024, 6, 5, 8, 30, tzinfo=UTC), False),
        (RuleSchedule(True, "hourly"), datetime(2024, 6, 5, 8, 0, tzinfo=UTC), True),
        (RuleSchedule(True, "daily"), datetime(2024, 6, 5, 0, 1, tzinfo=UTC), False),
        (RuleSchedule(True, "daily"), datetime(2024, 6, 4, 23, 59, tzinfo=UTC), True),
        (RuleSchedule(True, "daily", time="09:00"), datetime(2024, 6, 5, 9, 0, tzinfo=UTC), False),
        (RuleSchedule(True, "weekly", days=[3]), datetime(2024, 6, 5, 9, 0, tzinfo=UTC), False),
        # Week starts Sunday 2024-06-02
        (RuleSchedule(True, "weekly"), datetime(2024, 6, 2, 7, 0, tzinfo=UTC), False),
        (RuleSchedule(True, "weekly"), datetime(2024, 6, 1, 23, 0, tzinfo=UTC), True),
    ],
)
def test_should_run_rule_respects_last_run(rules_engine, schedule, last_run_at, expected):
    rule = _rule([RuleCondition("from", "contains", "x")], [RuleAction("archive")], schedule=schedule)
    moment = datetime(2024, 6, 5, 9, 0, tzinfo=UTC)

    assert rules_engine.should_run_rule(rule, moment, last_run_at) is expected


@pytest.mark.asyncio
async def test_run_scheduled_rules_isolates_failures(rules_engine, mailbox, provider, make_message, now, monkeypatch):
    provider.messages = [make_message("a", sender="news@example.com")]
    failing = await rules_engine.create_rule(
        OWNER_ID,
        "Failing",
        [RuleCondition("from", "contains", "news")],
        [RuleAction("archive")],
        schedule=RuleSchedule(True, "hourly"),
    )
    healthy = await rules_engine.create_rule(
        OWNER_ID,
        "Healthy",
        [RuleCondition("from", "contains", "news")],
        [RuleAction("star")],
        schedule=RuleSchedule(True, "hourly"),
    )
    await rules_engine.create_rule(
        OWNER_ID,
        "Unscheduled",
        [RuleCondition("from", "contains", "news")],
        [RuleAction("delete")],
    )

    original_run_rule = rules_engine.run_rule

    async def flaky_run_rule(rule, messages, mailbox, now=None):
        if rule.id == failing.id:
            raise RuntimeError("unexpected")
        return await original_run_rule(rule, messages, mailbox, now)

    monkeypatch.setattr(rules_engine, "run_rule", flaky_run_rule)

    records = await rules_engine.run_scheduled_rules(OWNER_ID, mailbox, now)

    assert [record.rule_id for record in records] == [healthy.id]
    assert provider.calls_for("list_messages")[0] == ("in:inbox", 500)
    assert provider.calls_for("delete") == []
