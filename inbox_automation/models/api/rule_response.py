# inbox_automation/models/api/rule_response.py
"""
Rule API response models.
Used by routes for output formatting.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from inbox_automation.models.domain.rule_domain import (
    ConditionTestResult,
    Rule,
    RuleExecutionRecord,
)


class RuleResponse(BaseModel):
    id: str = Field(..., description="Rule ID")
    name: str = Field(..., description="Rule name")
    conditions: list[dict[str, Any]] = Field(..., description="AND-combined conditions")
    actions: list[dict[str, Any]] = Field(..., description="Ordered actions")
    is_active: bool = Field(..., description="Inactive rules never run")
    schedule: dict[str, Any] | None = Field(None, description="Embedded schedule")
    created_at: datetime | None = Field(None, description="Creation time")
    updated_at: datetime | None = Field(None, description="Last update time")

    @classmethod
    def from_domain(cls, rule: Rule) -> "RuleResponse":
        return cls(
            id=rule.id,
            name=rule.name,
            conditions=[condition.to_dict() for condition in rule.conditions],
            actions=[action.to_dict() for action in rule.actions],
            is_active=rule.is_active,
            schedule=rule.schedule.to_dict() if rule.schedule else None,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class RulesListResponse(BaseModel):
    rules: list[RuleResponse] = Field(..., description="Rules owned by the caller")
    total_count: int = Field(..., description="Number of rules")


class RuleExecutionResponse(BaseModel):
    """Outcome of applying a rule to one batch."""

    id: str | None = Field(None, description="Execution record ID")
    rule_id: str = Field(..., description="Rule ID")
    emails_processed: int = Field(..., description="Messages evaluated")
    emails_matched: int = Field(..., description="Messages matching every condition")
    actions_performed: int = Field(..., description="Actions that completed")
    success: bool = Field(..., description="False when the action phase aborted")
    error_message: str | None = Field(None, description="Abort reason")
    partial_failures: list[str] = Field(default_factory=list, description="Non-fatal action failures")
    execution_time_ms: int = Field(..., description="Elapsed milliseconds")
    executed_at: datetime = Field(..., description="Run time")

    @classmethod
    def from_domain(cls, record: RuleExecutionRecord) -> "RuleExecutionResponse":
        return cls(
            id=record.id,
            rule_id=record.rule_id,
            emails_processed=record.emails_processed,
            emails_matched=record.emails_matched,
            actions_performed=record.actions_performed,
            success=record.success,
            error_message=record.error_message,
            partial_failures=record.partial_failures,
            execution_time_ms=record.execution_time_ms,
            executed_at=record.executed_at,
        )


class ConditionTestResponse(BaseModel):
    success: bool = Field(..., description="False when messages could not be fetched")
    total_emails: int = Field(..., description="Messages scanned")
    matching_emails: int = Field(..., description="Messages matching every condition")
    preview: list[dict[str, Any]] = Field(default_factory=list, description="First matches")
    error_kind: str | None = Field(None, description="Upstream error category")
    error_message: str | None = Field(None, description="Upstream error message")

    @classmethod
    def from_domain(cls, result: ConditionTestResult) -> "ConditionTestResponse":
        return cls(
            success=result.success,
            total_emails=result.total_emails,
            matching_emails=result.matching_emails,
            preview=result.preview,
            error_kind=result.error_kind,
            error_message=result.error_message,
        )
