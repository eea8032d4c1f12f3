"""
Rule Evaluation Engine.

Matches message batches against a rule's AND-combined conditions and applies
the rule's actions, in declared order, to the whole matched set through the
mailbox gateway. Evaluation has no side effects; only ``execute`` touches the
mail provider.
"""

import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from inbox_automation.db.helpers import DatabaseError
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.models.domain.mail_domain import BulkOperationResult, MailMessage
from inbox_automation.models.domain.rule_domain import (
    ActionOutcome,
    ActionType,
    ConditionField,
    ConditionOperator,
    ConditionTestResult,
    Rule,
    RuleAction,
    RuleActionError,
    RuleCondition,
    RuleErrorKind,
    RuleExecutionRecord,
    RuleSchedule,
    RuleValidationError,
    ScheduleFrequency,
)
from inbox_automation.repositories.automation_repository import AutomationStore
from inbox_automation.services.mailbox_service import MailboxService
from inbox_automation.services.resilience.errors import MailServiceError

logger = get_logger(__name__)

DEFAULT_RULE_QUERY = "in:inbox"
SCHEDULED_RULE_BATCH_SIZE = 500
CONDITION_TEST_PREVIEW_SIZE = 10
FORWARD_NOT_SUPPORTED = "forward is not supported"

STRING_FIELDS = {
    ConditionField.FROM,
    ConditionField.TO,
    ConditionField.SUBJECT,
    ConditionField.BODY,
}
BOOLEAN_FIELDS = {ConditionField.HAS_ATTACHMENT, ConditionField.IS_UNREAD}
NUMERIC_FIELDS = {ConditionField.SIZE, ConditionField.AGE_DAYS}

STRING_OPERATORS = {
    ConditionOperator.CONTAINS,
    ConditionOperator.EQUALS,
    ConditionOperator.STARTS_WITH,
    ConditionOperator.ENDS_WITH,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


class RulesEngine:
    """Validates, evaluates and executes owner rules against message batches."""

    def __init__(self, store: AutomationStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self._clock = clock

    # ------------------------------------------------------------------
    # Validation and management
    # ------------------------------------------------------------------

    @staticmethod
    def validate_rule(conditions: list[RuleCondition], actions: list[RuleAction]) -> None:
        """
        Reject a rule definition before it is stored or evaluated.

        Raises:
            RuleValidationError: with the first problem found
        """
        if not conditions:
            raise RuleValidationError(
                RuleErrorKind.EMPTY_CONDITIONS, "Rule must have at least one condition"
            )
        if not actions:
            raise RuleValidationError(RuleErrorKind.EMPTY_ACTIONS, "Rule must have at least one action")

        valid_fields = {f.value for f in ConditionField}
        valid_operators = {o.value for o in ConditionOperator}
        for condition in conditions:
            if condition.field not in valid_fields:
                raise RuleValidationError(
                    RuleErrorKind.UNKNOWN_CONDITION_FIELD,
                    f"Unknown condition field: {condition.field}",
                )
            if condition.operator not in valid_operators:
                raise RuleValidationError(
                    RuleErrorKind.UNKNOWN_CONDITION_OPERATOR,
                    f"Unknown condition operator: {condition.operator}",
                )

        valid_actions = {a.value for a in ActionType}
        for action in actions:
            if action.type not in valid_actions:
                raise RuleValidationError(
                    RuleErrorKind.UNKNOWN_ACTION_TYPE, f"Unknown action type: {action.type}"
                )
            if action.type == ActionType.LABEL.value and not action.value:
                raise RuleValidationError(
                    RuleErrorKind.MISSING_ACTION_VALUE, "Label action requires a label name"
                )

    async def create_rule(
        self,
        owner_id: str,
        name: str,
        conditions: list[RuleCondition],
        actions: list[RuleAction],
        is_active: bool = True,
        schedule: RuleSchedule | None = None,
    ) -> Rule:
        self.validate_rule(conditions, actions)

        rule = Rule(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            name=name,
            conditions=list(conditions),
            actions=list(actions),
            is_active=is_active,
            schedule=schedule,
        )
        created = await self.store.insert_rule(rule)
        logger.info("Rule created", rule_id=created.id, owner_id=owner_id, rule_name=name)
        return created

    async def get_rule(self, rule_id: str, owner_id: str) -> Rule:
        rule = await self.store.get_rule(rule_id)
        if rule is None or rule.owner_id != owner_id:
            raise RuleValidationError(RuleErrorKind.RULE_NOT_FOUND, f"Rule {rule_id} not found")
        return rule

    async def update_rule(self, rule_id: str, owner_id: str, updates: dict[str, Any]) -> Rule:
        """Apply field updates (name, conditions, actions, is_active, schedule) and re-validate."""
        rule = await self.get_rule(rule_id, owner_id)

        if "name" in updates:
            rule.name = updates["name"]
        if "conditions" in updates:
            rule.conditions = list(updates["conditions"])
        if "actions" in updates:
            rule.actions = list(updates["actions"])
        if "is_active" in updates:
            rule.is_active = bool(updates["is_active"])
        if "schedule" in updates:
            rule.schedule = updates["schedule"]

        self.validate_rule(rule.conditions, rule.actions)
        return await self.store.update_rule(rule)

    async def delete_rule(self, rule_id: str, owner_id: str) -> None:
        await self.get_rule(rule_id, owner_id)
        await self.store.delete_rule(rule_id)
        logger.info("Rule deleted", rule_id=rule_id, owner_id=owner_id)

    async def get_active_rules(self, owner_id: str) -> list[Rule]:
        return await self.store.list_rules(owner_id, active_only=True)

    async def list_rules(self, owner_id: str) -> list[Rule]:
        return await self.store.list_rules(owner_id, active_only=False)

    async def get_rule_executions(
        self, rule_id: str, owner_id: str, limit: int = 50
    ) -> list[RuleExecutionRecord]:
        await self.get_rule(rule_id, owner_id)
        return await self.store.list_rule_executions(rule_id, limit)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self, rule: Rule, messages: list[MailMessage], now: datetime | None = None
    ) -> list[MailMessage]:
        """Messages for which every condition holds. Never touches the provider."""
        now = now or self._clock()
        return [
            message
            for message in messages
            if all(self.evaluate_condition(message, condition, now) for condition in rule.conditions)
        ]

    def evaluate_condition(self, message: MailMessage, condition: RuleCondition, now: datetime) -> bool:
        try:
            return self._evaluate_condition(message, condition, now)
        except Exception as e:
            logger.debug(
                "Condition evaluation failed, treating as non-match",
                message_id=getattr(message, "id", None),
                field=condition.field,
                operator=condition.operator,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def _evaluate_condition(self, message: MailMessage, condition: RuleCondition, now: datetime) -> bool:
        try:
            field = ConditionField(condition.field)
            operator = ConditionOperator(condition.operator)
        except ValueError:
            return False

        if field in STRING_FIELDS:
            return self._compare_strings(
                self._string_value(message, field), operator, condition.value, condition.case_sensitive
            )

        if field in NUMERIC_FIELDS:
            actual = message.size_estimate if field == ConditionField.SIZE else message.age_days(now)
            return self._compare_numbers(actual, operator, condition.value)

        if field in BOOLEAN_FIELDS:
            actual = message.has_attachment if field == ConditionField.HAS_ATTACHMENT else message.is_unread
            if operator == ConditionOperator.EQUALS:
                return actual == _as_bool(condition.value)
            if operator == ConditionOperator.HAS:
                return actual
            if operator == ConditionOperator.NOT_HAS:
                return not actual
            return False

        # Label membership
        if operator not in (ConditionOperator.HAS, ConditionOperator.NOT_HAS):
            return False
        wanted = str(condition.value)
        labels = message.label_ids or []
        if condition.case_sensitive:
            present = wanted in labels
        else:
            present = wanted.lower() in {label.lower() for label in labels}
        return present if operator == ConditionOperator.HAS else not present

    @staticmethod
    def _string_value(message: MailMessage, field: ConditionField) -> str:
        if field == ConditionField.FROM:
            return message.sender or ""
        if field == ConditionField.TO:
            return message.to or ""
        if field == ConditionField.SUBJECT:
            return message.subject or ""
        return message.snippet or message.body or ""

    @staticmethod
    def _compare_strings(actual: str, operator: ConditionOperator, value: Any, case_sensitive: bool) -> bool:
        if operator not in STRING_OPERATORS:
            return False

        expected = "" if value is None else str(value)
        if not case_sensitive:
            actual = actual.lower()
            expected = expected.lower()

        if operator == ConditionOperator.CONTAINS:
            return expected in actual
        if operator == ConditionOperator.EQUALS:
            return actual == expected
        if operator == ConditionOperator.STARTS_WITH:
            return actual.startswith(expected)
        return actual.endswith(expected)

    @staticmethod
    def _compare_numbers(actual: int, operator: ConditionOperator, value: Any) -> bool:
        try:
            expected = float(value)
        except (TypeError, ValueError):
            return False

        if operator == ConditionOperator.GREATER_THAN:
            return actual > expected
        if operator == ConditionOperator.LESS_THAN:
            return actual < expected
        if operator == ConditionOperator.EQUALS:
            return actual == expected
        return False

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, rule: Rule, matched: list[MailMessage], mailbox: MailboxService) -> ActionOutcome:
        """
        Apply the rule's actions in order to the whole matched set.

        Partial failures reported by the provider are collected and the next
        action still runs. Any exception aborts the remaining actions.

        Raises:
            RuleActionError: carrying the actions performed and partial failures so far
        """
        outcome = ActionOutcome()
        ids = [message.id for message in matched]
        if not ids:
            return outcome

        for action in rule.actions:
            try:
                result = await self._apply_action(action, ids, mailbox)
            except Exception as e:
                logger.error(
                    "Rule action failed, aborting remaining actions",
                    rule_id=rule.id,
                    action=action.type,
                    actions_performed=outcome.actions_performed,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise RuleActionError(
                    f"Action '{action.type}' failed: {e}",
                    actions_performed=outcome.actions_performed,
                    action=action.type,
                    partial_failures=outcome.partial_failures,
                    processed_count=outcome.processed_count,
                ) from e

            if result is None:
                logger.warning("Forward action skipped", rule_id=rule.id, email_count=len(ids))
                outcome.partial_failures.append(FORWARD_NOT_SUPPORTED)
                continue

            outcome.actions_performed += 1
            outcome.processed_count += result.processed_count
            if not result.success:
                outcome.partial_failures.extend(f"{action.type}: {error}" for error in result.errors)

        return outcome

    async def _apply_action(
        self, action: RuleAction, ids: list[str], mailbox: MailboxService
    ) -> BulkOperationResult | None:
        action_type = ActionType(action.type)

        if action_type == ActionType.ARCHIVE:
            return await mailbox.archive(ids)
        if action_type == ActionType.DELETE:
            return await mailbox.delete(ids)
        if action_type == ActionType.LABEL:
            if not action.value:
                raise ValueError("Label action requires a label name")
            label_ids = await mailbox.resolve_label_ids([action.value])
            return await mailbox.add_labels(ids, label_ids)
        if action_type == ActionType.MARK_READ:
            return await mailbox.mark_read(ids)
        if action_type == ActionType.MARK_UNREAD:
            return await mailbox.mark_unread(ids)
        if action_type == ActionType.STAR:
            return await mailbox.star(ids)
        if action_type == ActionType.UNSTAR:
            return await mailbox.unstar(ids)
        # Forward: the provider interface has no capability for it
        return None

    async def run_rule(
        self,
        rule: Rule,
        messages: list[MailMessage],
        mailbox: MailboxService,
        now: datetime | None = None,
    ) -> RuleExecutionRecord:
        """Evaluate + execute one rule against a batch and persist the record."""
        start_time = time.perf_counter()
        now = now or self._clock()

        matched = self.evaluate(rule, messages, now)
        success = True
        error_message = None

        try:
            outcome = await self.execute(rule, matched, mailbox)
        except RuleActionError as e:
            success = False
            error_message = str(e)
            outcome = ActionOutcome(
                actions_performed=e.actions_performed,
                partial_failures=e.partial_failures,
                processed_count=e.processed_count,
            )

        record = RuleExecutionRecord(
            rule_id=rule.id,
            owner_id=rule.owner_id,
            emails_processed=len(messages),
            emails_matched=len(matched),
            actions_performed=outcome.actions_performed,
            success=success,
            error_message=error_message,
            partial_failures=outcome.partial_failures,
            matched_ids=[message.id for message in matched],
            execution_time_ms=int((time.perf_counter() - start_time) * 1000),
            executed_at=now,
        )

        logger.info(
            "Rule executed",
            rule_id=rule.id,
            owner_id=rule.owner_id,
            emails_processed=record.emails_processed,
            emails_matched=record.emails_matched,
            actions_performed=record.actions_performed,
            success=success,
        )
        return await self._record(record)

    async def _record(self, record: RuleExecutionRecord) -> RuleExecutionRecord:
        try:
            return await self.store.insert_rule_execution(record)
        except DatabaseError as e:
            logger.error("Failed to store rule execution", rule_id=record.rule_id, error=str(e))
            return record

    async def run_rule_by_id(
        self,
        rule_id: str,
        owner_id: str,
        mailbox: MailboxService,
        max_emails: int = 100,
        query: str = DEFAULT_RULE_QUERY,
        now: datetime | None = None,
    ) -> RuleExecutionRecord:
        """
        Run an active rule against the owner's most recent messages.

        Raises:
            RuleValidationError: RULE_NOT_FOUND for a missing, foreign or inactive rule
        """
        rule = await self.get_rule(rule_id, owner_id)
        if not rule.is_active:
            raise RuleValidationError(RuleErrorKind.RULE_NOT_FOUND, f"Rule {rule_id} is not active")

        try:
            messages = await mailbox.list_messages(query, max_emails)
        except MailServiceError as e:
            logger.error("Could not fetch messages for rule", rule_id=rule_id, error_kind=e.kind.value)
            return await self._record(
                RuleExecutionRecord(
                    rule_id=rule.id,
                    owner_id=owner_id,
                    emails_processed=0,
                    emails_matched=0,
                    actions_performed=0,
                    success=False,
                    error_message=f"{e.kind.value}: {e.message}",
                    execution_time_ms=0,
                    executed_at=now or self._clock(),
                )
            )

        return await self.run_rule(rule, messages, mailbox, now)

    async def test_conditions(
        self,
        conditions: list[RuleCondition],
        mailbox: MailboxService,
        max_emails: int = 50,
        query: str = DEFAULT_RULE_QUERY,
        now: datetime | None = None,
    ) -> ConditionTestResult:
        """Dry run: how many recent messages the conditions match. Never executes actions."""
        if not conditions:
            raise RuleValidationError(
                RuleErrorKind.EMPTY_CONDITIONS, "Rule must have at least one condition"
            )

        try:
            messages = await mailbox.list_messages(query, max_emails)
        except MailServiceError as e:
            return ConditionTestResult(
                total_emails=0,
                matching_emails=0,
                error_kind=e.kind.value,
                error_message=e.message,
            )

        dry_run_rule = Rule(id="condition-test", owner_id=mailbox.owner_id, name="test", conditions=conditions, actions=[])
        matched = self.evaluate(dry_run_rule, messages, now)

        return ConditionTestResult(
            total_emails=len(messages),
            matching_emails=len(matched),
            preview=[message.preview() for message in matched[:CONDITION_TEST_PREVIEW_SIZE]],
        )

    # ------------------------------------------------------------------
    # Embedded rule schedules
    # ------------------------------------------------------------------

    @staticmethod
    def should_run_rule(rule: Rule, now: datetime, last_run_at: datetime | None = None) -> bool:
        """
        Whether the rule's embedded schedule is due at ``now``.

        ``last_run_at`` is the newest execution of the rule. Hourly rules wait a
        full hour since it; daily rules run at most once per calendar day and
        weekly rules at most once per matching day, or once per week (starting
        Sunday) when no days are set.
        """
        schedule = rule.schedule
        if schedule is None or not schedule.enabled:
            return False

        if schedule.frequency == ScheduleFrequency.HOURLY.value:
            return last_run_at is None or now - last_run_at >= timedelta(hours=1)

        ran_today = last_run_at is not None and last_run_at.date() == now.date()

        if schedule.frequency == ScheduleFrequency.DAILY.value:
            if ran_today:
                return False
            if not schedule.time:
                return True
            try:
                hours, minutes = (int(part) for part in schedule.time.split(":"))
            except ValueError:
                return False
            return now.hour == hours and now.minute == minutes

        if schedule.frequency == ScheduleFrequency.WEEKLY.value:
            # 0 = Sunday ... 6 = Saturday
            weekday = now.isoweekday() % 7
            if schedule.days:
                return weekday in schedule.days and not ran_today
            week_start = now.date() - timedelta(days=weekday)
            return last_run_at is None or last_run_at.date() < week_start

        return False

    async def _last_run_at(self, rule: Rule) -> datetime | None:
        executions = await self.store.list_rule_executions(rule.id, 1)
        return executions[0].executed_at if executions else None

    async def run_scheduled_rules(
        self,
        owner_id: str,
        mailbox: MailboxService,
        now: datetime | None = None,
        max_emails: int = SCHEDULED_RULE_BATCH_SIZE,
    ) -> list[RuleExecutionRecord]:
        """Run every active rule whose embedded schedule is due. One failure never stops the rest."""
        now = now or self._clock()
        rules = await self.get_active_rules(owner_id)

        records = []
        for rule in rules:
            if rule.schedule is None or not rule.schedule.enabled:
                continue
            try:
                if not self.should_run_rule(rule, now, await self._last_run_at(rule)):
                    continue
                messages = await mailbox.list_messages(DEFAULT_RULE_QUERY, max_emails)
                records.append(await self.run_rule(rule, messages, mailbox, now))
            except Exception as e:
                logger.error(
                    "Scheduled rule failed",
                    rule_id=rule.id,
                    owner_id=owner_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return records
