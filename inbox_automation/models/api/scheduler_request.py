# inbox_automation/models/api/scheduler_request.py
"""
Scheduler API request models.
Used by routes for input validation.
"""

from typing import Any

from pydantic import BaseModel, Field

from inbox_automation.models.domain.automation_domain import JobKind


class CreateJobRequest(BaseModel):
    """Request for creating a scheduled job."""

    kind: JobKind = Field(..., description="Job type")
    name: str = Field(..., min_length=1, max_length=200, description="Display name")
    schedule_expression: str = Field(
        ..., description="Named schedule: @hourly, @daily, @weekly or @monthly"
    )
    config: dict[str, Any] = Field(
        default_factory=dict, description="Job-type specific configuration document"
    )
    is_active: bool = Field(default=True, description="Whether the job is picked up when due")


class UpdateJobRequest(BaseModel):
    """Request for updating a scheduled job. Omitted fields are left unchanged."""

    name: str | None = Field(None, min_length=1, max_length=200, description="New display name")
    schedule_expression: str | None = Field(None, description="New named schedule")
    config: dict[str, Any] | None = Field(None, description="Replacement configuration document")
    is_active: bool | None = Field(None, description="Activate or deactivate the job")
