# inbox_automation/models/api/rule_request.py
"""
Rule API request models.
Used by routes for input validation. Field, operator and action names are
checked by the rules engine so the error carries its rule-specific kind.
"""

from typing import Any

from pydantic import BaseModel, Field

from inbox_automation.models.domain.rule_domain import RuleAction, RuleCondition, RuleSchedule


class RuleConditionModel(BaseModel):
    field: str = Field(..., description="Message attribute, e.g. from, subject, age_days")
    operator: str = Field(..., description="Comparison, e.g. contains, greater_than, has")
    value: Any = Field(None, description="Value to compare against")
    case_sensitive: bool = Field(default=False, description="String comparisons only")

    def to_domain(self) -> RuleCondition:
        return RuleCondition(
            field=self.field,
            operator=self.operator,
            value=self.value,
            case_sensitive=self.case_sensitive,
        )


class RuleActionModel(BaseModel):
    type: str = Field(..., description="archive, delete, label, mark_read, mark_unread, forward, star or unstar")
    value: str | None = Field(None, description="Label name for the label action")

    def to_domain(self) -> RuleAction:
        return RuleAction(type=self.type, value=self.value)


class RuleScheduleModel(BaseModel):
    enabled: bool = Field(default=False, description="Run the rule on its own schedule")
    frequency: str = Field(..., description="hourly, daily or weekly")
    time: str | None = Field(None, pattern=r"^\d{2}:\d{2}$", description="HH:MM for daily rules")
    days: list[int] = Field(default_factory=list, description="Weekdays, 0 = Sunday")

    def to_domain(self) -> RuleSchedule:
        return RuleSchedule(
            enabled=self.enabled, frequency=self.frequency, time=self.time, days=list(self.days)
        )


class CreateRuleRequest(BaseModel):
    """Request for creating a rule."""

    name: str = Field(..., min_length=1, max_length=200, description="Rule name")
    conditions: list[RuleConditionModel] = Field(..., description="All must match")
    actions: list[RuleActionModel] = Field(..., description="Applied in order")
    is_active: bool = Field(default=True, description="Inactive rules never run")
    schedule: RuleScheduleModel | None = Field(None, description="Optional embedded schedule")


class RunRuleRequest(BaseModel):
    max_emails: int = Field(default=100, ge=1, le=500, description="Most recent messages to scan")


class ConditionTestRequest(BaseModel):
    """Dry run of a condition set; no actions are performed."""

    conditions: list[RuleConditionModel] = Field(..., description="Conditions to test")
    max_emails: int = Field(default=50, ge=1, le=500, description="Most recent messages to scan")
