"""
Typed configuration documents, one shape per job kind.

Jobs persist their configuration as a free-form JSON document; the scheduler
decodes it here into the variant matching the job kind before a handler
ever sees it.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from inbox_automation.models.domain.automation_domain import (
    JobKind,
    SchedulerError,
    SchedulerErrorKind,
)

DEFAULT_UNSUBSCRIBE_QUERIES = [
    "category:promotions",
    "from:noreply OR from:no-reply",
    "unsubscribe",
]


class _JobConfigBase(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CleanupJobConfig(_JobConfigBase):
    auto_archive: bool = False
    auto_delete: bool = False
    max_emails: int = Field(default=1000, ge=1, le=5000)


class RuleExecutionJobConfig(_JobConfigBase):
    rule_ids: list[str] = Field(default_factory=list)
    email_query: str = "in:inbox"
    max_emails: int = Field(default=100, ge=1, le=1000)


class AnalyticsJobConfig(_JobConfigBase):
    days: int = Field(default=30, ge=1, le=365)
    max_emails: int = Field(default=500, ge=1, le=5000)


class UnsubscribeScanJobConfig(_JobConfigBase):
    queries: list[str] = Field(default_factory=lambda: list(DEFAULT_UNSUBSCRIBE_QUERIES))
    max_emails_per_query: int = Field(default=50, ge=1, le=500)


JobConfig = CleanupJobConfig | RuleExecutionJobConfig | AnalyticsJobConfig | UnsubscribeScanJobConfig

JOB_CONFIG_MODELS: dict[JobKind, type[_JobConfigBase]] = {
    JobKind.CLEANUP: CleanupJobConfig,
    JobKind.RULE_EXECUTION: RuleExecutionJobConfig,
    JobKind.ANALYTICS_COLLECTION: AnalyticsJobConfig,
    JobKind.UNSUBSCRIBE_SCAN: UnsubscribeScanJobConfig,
}


def parse_job_config(kind: JobKind, document: dict[str, Any] | None) -> JobConfig:
    """
    Decode a job's configuration document into its typed variant.

    Raises:
        SchedulerError: INVALID_JOB_CONFIG when the document does not fit the kind
    """
    model = JOB_CONFIG_MODELS[JobKind(kind)]
    try:
        return model.model_validate(document or {})
    except ValidationError as e:
        raise SchedulerError(
            SchedulerErrorKind.INVALID_JOB_CONFIG,
            f"Invalid configuration for {JobKind(kind).value} job: {e.errors()[0]['msg']}",
        ) from e
