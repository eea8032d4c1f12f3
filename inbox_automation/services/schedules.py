"""
Named-schedule vocabulary for scheduled jobs.

Only four expressions exist. There is no cron-field parser; anything else is
rejected when a job is created or updated. ``now`` is always passed in.
"""

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from inbox_automation.models.domain.automation_domain import SchedulerError, SchedulerErrorKind

HOURLY = "@hourly"
DAILY = "@daily"
WEEKLY = "@weekly"
MONTHLY = "@monthly"

_FIXED_INTERVALS = {
    HOURLY: timedelta(hours=1),
    DAILY: timedelta(hours=24),
    WEEKLY: timedelta(days=7),
}

_DESCRIPTIONS = {
    HOURLY: "Every hour",
    DAILY: "Daily at midnight",
    WEEKLY: "Weekly on Sunday at midnight",
    MONTHLY: "Monthly on the 1st at midnight",
}

SUPPORTED_SCHEDULES = tuple(_DESCRIPTIONS)


def validate_schedule_expression(expression: str) -> bool:
    return expression in _DESCRIPTIONS


def calculate_next_run(expression: str, now: datetime) -> datetime:
    """
    Next run time for ``expression`` measured from ``now``.

    Raises:
        SchedulerError: INVALID_SCHEDULE for anything outside the vocabulary
    """
    if expression == MONTHLY:
        # relativedelta clamps to the last day of a shorter month
        return now + relativedelta(months=1)

    interval = _FIXED_INTERVALS.get(expression)
    if interval is None:
        raise SchedulerError(
            SchedulerErrorKind.INVALID_SCHEDULE,
            f"Invalid schedule expression '{expression}', expected one of {', '.join(SUPPORTED_SCHEDULES)}",
        )
    return now + interval


def describe_schedule(expression: str) -> str:
    return _DESCRIPTIONS.get(expression, expression)
