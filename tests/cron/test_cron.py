import pytest
from datetime import datetime, timedelta, timezone

from cron_scheduler.cron import (
    CronSchedule,
    describe_cron_expression,
    get_next_execution,
    get_previous_execution,
    validate_cron_expression,
)
from cron_scheduler.errors import InvalidScheduleError


def test_next_is_strictly_after_and_matches():
    now = datetime(2024, 5, 1, 12, 3, 27, tzinfo=timezone.utc)
    next_time = get_next_execution("*/5 * * * *", "UTC", now)

    assert next_time > now
    assert next_time == datetime(2024, 5, 1, 12, 5, tzinfo=timezone.utc)
    assert next_time.minute % 5 == 0
    assert next_time.second == 0


def test_next_on_exact_match_moves_forward():
    now = datetime(2024, 5, 1, 12, 5, tzinfo=timezone.utc)
    assert get_next_execution("*/5 * * * *", "UTC", now) == datetime(2024, 5, 1, 12, 10, tzinfo=timezone.utc)


def test_next_defaults_to_now():
    before = datetime.now(timezone.utc)
    next_time = get_next_execution("* * * * *")
    assert before < next_time <= before + timedelta(minutes=1)


def test_results_are_utc():
    next_time = CronSchedule("0 9 * * *", "Europe/Berlin").next(datetime(2024, 1, 15, tzinfo=timezone.utc))
    assert next_time.utcoffset() == timedelta(0)
    assert next_time == datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc)


def test_local_time_follows_daylight_saving():
    schedule = CronSchedule("0 9 * * *", "America/New_York")

    # 09:00 EST is 14:00 UTC, 09:00 EDT is 13:00 UTC.
    assert schedule.next(datetime(2024, 3, 8, 12, 0, tzinfo=timezone.utc)) == datetime(2024, 3, 8, 14, 0, tzinfo=timezone.utc)
    assert schedule.next(datetime(2024, 3, 9, 15, 0, tzinfo=timezone.utc)) == datetime(2024, 3, 10, 13, 0, tzinfo=timezone.utc)


def test_naive_reference_is_treated_as_utc():
    assert get_next_execution("0 * * * *", "UTC", datetime(2024, 5, 1, 12, 30)) == datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc)


def test_six_field_expression_has_leading_seconds():
    now = datetime(2024, 5, 1, 12, 0, 10, tzinfo=timezone.utc)
    assert get_next_execution("*/30 * * * * *", "UTC", now) == datetime(2024, 5, 1, 12, 0, 30, tzinfo=timezone.utc)


def test_previous_execution():
    before = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    assert get_previous_execution("0 * * * *", "UTC", before) == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("expression", ["", "not a cron", "* * * *", "* * * * * * *", "61 * * * *", "* 25 * * *"])
def test_invalid_expressions(expression):
    with pytest.raises(InvalidScheduleError, match="Invalid cron expression"):
        validate_cron_expression(expression)
    assert get_next_execution(expression) is None
    assert get_previous_execution(expression) is None


def test_unknown_timezone():
    with pytest.raises(InvalidScheduleError, match="unknown timezone 'Mars/Olympus_Mons'"):
        validate_cron_expression("0 * * * *", "Mars/Olympus_Mons")
    assert get_next_execution("0 * * * *", "Mars/Olympus_Mons") is None


def test_expression_whitespace_is_normalized():
    assert CronSchedule("  0   3 * * *  ").expression == "0 3 * * *"


@pytest.mark.parametrize("expression, description", [
    ("* * * * *", "Every minute"),
    ("*/5 * * * *", "Every 5 minutes"),
    ("0 * * * *", "Every hour"),
    ("0 0 * * *", "Every day at midnight"),
    ("30 9 * * *", "Every day at 09:30"),
    ("0 9 * * 1-5", "0 9 * * 1-5"),
    ("0 0 * * * *", "Every hour"),
    ("* *", "Invalid cron expression"),
])
def test_describe(expression, description):
    assert describe_cron_expression(expression) == description
