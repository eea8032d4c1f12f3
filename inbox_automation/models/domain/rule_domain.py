# inbox_automation/models/domain/rule_domain.py
"""
Rule Domain Models
Owner-defined condition/action units applied to message batches,
independent of job scheduling.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ConditionField(str, Enum):
    FROM = "from"
    TO = "to"
    SUBJECT = "subject"
    BODY = "body"
    HAS_ATTACHMENT = "has_attachment"
    SIZE = "size"
    AGE_DAYS = "age_days"
    LABEL = "label"
    IS_UNREAD = "is_unread"


class ConditionOperator(str, Enum):
    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    HAS = "has"
    NOT_HAS = "not_has"


class ActionType(str, Enum):
    ARCHIVE = "archive"
    DELETE = "delete"
    LABEL = "label"
    MARK_READ = "mark_read"
    MARK_UNREAD = "mark_unread"
    FORWARD = "forward"
    STAR = "star"
    UNSTAR = "unstar"


class ScheduleFrequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class RuleErrorKind(str, Enum):
    EMPTY_CONDITIONS = "empty_conditions"
    EMPTY_ACTIONS = "empty_actions"
    UNKNOWN_ACTION_TYPE = "unknown_action_type"
    UNKNOWN_CONDITION_FIELD = "unknown_condition_field"
    UNKNOWN_CONDITION_OPERATOR = "unknown_condition_operator"
    MISSING_ACTION_VALUE = "missing_action_value"
    RULE_NOT_FOUND = "rule_not_found"


class RuleValidationError(Exception):
    """Raised when a rule definition is rejected before any evaluation."""

    def __init__(self, kind: RuleErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class RuleActionError(Exception):
    """Raised when the action phase aborts; keeps what was done before the abort."""

    def __init__(
        self,
        message: str,
        actions_performed: int,
        action: str | None = None,
        partial_failures: list[str] | None = None,
        processed_count: int = 0,
    ):
        super().__init__(message)
        self.actions_performed = actions_performed
        self.action = action
        self.partial_failures = list(partial_failures or [])
        self.processed_count = processed_count


@dataclass(slots=True)
class RuleCondition:
    field: str
    operator: str
    value: Any
    case_sensitive: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "RuleCondition":
        return cls(
            field=data.get("field", ""),
            operator=data.get("operator", ""),
            value=data.get("value"),
            case_sensitive=bool(data.get("case_sensitive", False)),
        )

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "case_sensitive": self.case_sensitive,
        }


@dataclass(slots=True)
class RuleAction:
    type: str
    value: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "RuleAction":
        return cls(type=data.get("type", ""), value=data.get("value"))

    def to_dict(self) -> dict:
        return {"type": self.type, "value": self.value}


@dataclass(slots=True)
class RuleSchedule:
    """Optional schedule embedded in a rule (frequency + time-of-day + weekdays)."""

    enabled: bool
    frequency: str
    time: str | None = None  # HH:MM
    days: list[int] = field(default_factory=list)  # 0 = Sunday ... 6 = Saturday

    @classmethod
    def from_dict(cls, data: dict | None) -> "RuleSchedule | None":
        if not data:
            return None
        return cls(
            enabled=bool(data.get("enabled", False)),
            frequency=data.get("frequency", ""),
            time=data.get("time"),
            days=list(data.get("days") or []),
        )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "frequency": self.frequency,
            "time": self.time,
            "days": self.days,
        }


@dataclass(slots=True)
class Rule:
    id: str
    owner_id: str
    name: str
    conditions: list[RuleCondition]
    actions: list[RuleAction]
    is_active: bool = True
    schedule: RuleSchedule | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class RuleExecutionRecord:
    """Append-only outcome of applying one rule to one message batch."""

    rule_id: str
    owner_id: str
    emails_processed: int
    emails_matched: int
    actions_performed: int
    success: bool
    execution_time_ms: int
    executed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    error_message: str | None = None
    partial_failures: list[str] = field(default_factory=list)
    matched_ids: list[str] = field(default_factory=list)
    id: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "owner_id": self.owner_id,
            "emails_processed": self.emails_processed,
            "emails_matched": self.emails_matched,
            "actions_performed": self.actions_performed,
            "success": self.success,
            "error_message": self.error_message,
            "partial_failures": self.partial_failures,
            "execution_time_ms": self.execution_time_ms,
            "executed_at": self.executed_at.isoformat(),
        }


@dataclass(slots=True)
class ActionOutcome:
    """What the action phase did against a matched set."""

    actions_performed: int = 0
    partial_failures: list[str] = field(default_factory=list)
    processed_count: int = 0


@dataclass(slots=True)
class ConditionTestResult:
    total_emails: int
    matching_emails: int
    preview: list[dict] = field(default_factory=list)
    error_kind: str | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.error_kind is None
