from datetime import datetime, timedelta, timezone

import pytest

from claude_usage_monitor.models import parse_timestamp, parse_usage

FETCHED_AT = datetime(2025, 2, 17, 12, 0, tzinfo=timezone.utc)


def test_parse_session_only_usage() -> None:
    payload = {"five_hour": {"utilization": 42.5, "resets_at": "2025-02-17T18:00:00Z"}}

    snapshot = parse_usage(payload, fetched_at=FETCHED_AT)

    assert snapshot.session_percent == 42.5
    assert snapshot.session_reset_at == datetime(2025, 2, 17, 18, 0, tzinfo=timezone.utc)
    assert snapshot.has_weekly_window is False
    assert snapshot.weekly_percent == 0.0
    assert snapshot.weekly_reset_at is None
    assert snapshot.fetched_at == FETCHED_AT


def test_parse_weekly_window() -> None:
    payload = {
        "five_hour": {"utilization": 10, "resets_at": "2025-02-17T18:00:00Z"},
        "seven_day": {"utilization": 13.0, "resets_at": "2025-02-19T07:00:00Z"},
        "seven_day_opus": {"utilization": 99},
    }

    snapshot = parse_usage(payload, fetched_at=FETCHED_AT)

    assert snapshot.has_weekly_window is True
    assert snapshot.weekly_percent == 13.0
    assert snapshot.weekly_reset_at == datetime(2025, 2, 19, 7, 0, tzinfo=timezone.utc)


def test_null_weekly_window_is_absent() -> None:
    snapshot = parse_usage({"five_hour": {"utilization": 1}, "seven_day": None})

    assert snapshot.has_weekly_window is False


def test_reset_time_is_normalized_to_utc() -> None:
    payload = {
        "five_hour": {"utilization": 5, "resets_at": "2025-02-17T20:00:00.123456+02:00"}
    }

    snapshot = parse_usage(payload)

    assert snapshot.session_reset_at == datetime(
        2025, 2, 17, 18, 0, 0, 123456, tzinfo=timezone.utc
    )
    assert snapshot.session_reset_at.utcoffset() == timedelta(0)


@pytest.mark.parametrize("resets_at", ["soon", "", None, 12, {"at": "x"}])
def test_unparsable_reset_time_is_unset(resets_at) -> None:
    snapshot = parse_usage({"five_hour": {"utilization": 5, "resets_at": resets_at}})

    assert snapshot.session_percent == 5.0
    assert snapshot.session_reset_at is None


def test_missing_or_null_utilization_reads_as_zero() -> None:
    snapshot = parse_usage({"five_hour": {"utilization": None}, "seven_day": {}})

    assert snapshot.session_percent == 0.0
    assert snapshot.has_weekly_window is True
    assert snapshot.weekly_percent == 0.0


def test_over_limit_utilization_is_not_clamped() -> None:
    snapshot = parse_usage({"five_hour": {"utilization": 104.2}})

    assert snapshot.session_percent == 104.2


def test_parsing_is_repeatable() -> None:
    payload = {
        "five_hour": {"utilization": 42.5, "resets_at": "2025-02-17T18:00:00Z"},
        "seven_day": {"utilization": 13.0, "resets_at": "2025-02-19T07:00:00Z"},
    }

    assert parse_usage(payload, fetched_at=FETCHED_AT) == parse_usage(
        payload, fetched_at=FETCHED_AT
    )


def test_non_object_body_is_rejected() -> None:
    with pytest.raises(ValueError):
        parse_usage(["five_hour"])


def test_reset_in_never_goes_negative() -> None:
    snapshot = parse_usage(
        {
            "five_hour": {"utilization": 1, "resets_at": "2025-02-17T13:30:00Z"},
            "seven_day": {"utilization": 1, "resets_at": "2025-02-17T11:00:00Z"},
        }
    )

    assert snapshot.session_reset_in(FETCHED_AT) == timedelta(hours=1, minutes=30)
    assert snapshot.weekly_reset_in(FETCHED_AT) == timedelta(0)


def test_parse_timestamp_accepts_epoch_millis() -> None:
    assert parse_timestamp(1_739_815_200_000) == datetime(
        2025, 2, 17, 18, 0, tzinfo=timezone.utc
    )


@pytest.mark.parametrize(
    ("value", "microsecond"),
    [
        ("2025-02-17T18:00:00.5Z", 500000),
        ("2025-02-17T18:00:00.12Z", 120000),
        ("2025-02-17T18:00:00.123456789Z", 123456),
        ("2025-02-17T18:00:00.250+00:00", 250000),
    ],
)
def test_parse_timestamp_accepts_any_fraction_length(value, microsecond) -> None:
    assert parse_timestamp(value) == datetime(
        2025, 2, 17, 18, 0, 0, microsecond, tzinfo=timezone.utc
    )
