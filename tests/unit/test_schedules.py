from datetime import UTC, datetime, timedelta

import pytest

from inbox_automation.models.domain.automation_domain import SchedulerError, SchedulerErrorKind
from inbox_automation.services.schedules import (
    calculate_next_run,
    describe_schedule,
    validate_schedule_expression,
)

NOW = datetime(2024, 6, 5, 12, 30, tzinfo=UTC)


@pytest.mark.parametrize(
    ("expression", "expected"),
    [
        ("@hourly", NOW + timedelta(hours=1)),
        ("@daily", NOW + timedelta(hours=24)),
        ("@weekly", NOW + timedelta(days=7)),
        ("@monthly", datetime(2024, 7, 5, 12, 30, tzinfo=UTC)),
    ],
)
def test_calculate_next_run(expression, expected):
    assert calculate_next_run(expression, NOW) == expected


def test_monthly_clamps_to_end_of_shorter_month():
    assert calculate_next_run("@monthly", datetime(2024, 1, 31, tzinfo=UTC)) == datetime(
        2024, 2, 29, tzinfo=UTC
    )


def test_monthly_rolls_over_year():
    assert calculate_next_run("@monthly", datetime(2024, 12, 15, tzinfo=UTC)) == datetime(
        2025, 1, 15, tzinfo=UTC
    )


@pytest.mark.parametrize("expression", ["0 * * * *", "@yearly", "", "daily"])
def test_unknown_expressions_are_rejected(expression):
    assert validate_schedule_expression(expression) is False

    with pytest.raises(SchedulerError) as exc_info:
        calculate_next_run(expression, NOW)

    assert exc_info.value.kind == SchedulerErrorKind.INVALID_SCHEDULE


def test_describe_schedule():
    assert describe_schedule("@hourly") == "Every hour"
    assert describe_schedule("custom") == "custom"
