"""
Domain models shared by services, repositories and routes.
"""

from .automation_domain import (
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
from .mail_domain import BulkOperationResult, MailboxCounts, MailLabel, MailMessage
from .rule_domain import (
    ActionType,
    ConditionField,
    ConditionOperator,
    Rule,
    RuleAction,
    RuleCondition,
    RuleErrorKind,
    RuleExecutionRecord,
    RuleSchedule,
    RuleValidationError,
)

__all__ = [
    "ActionType",
    "BulkOperationResult",
    "ConditionField",
    "ConditionOperator",
    "Job",
    "JobExecution",
    "JobKind",
    "JobResult",
    "JobStats",
    "JobStatus",
    "MailLabel",
    "MailMessage",
    "MailboxCounts",
    "Rule",
    "RuleAction",
    "RuleCondition",
    "RuleErrorKind",
    "RuleExecutionRecord",
    "RuleSchedule",
    "RuleValidationError",
    "SchedulerError",
    "SchedulerErrorKind",
    "TriggeredBy",
]
