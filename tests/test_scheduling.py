from datetime import UTC, datetime, timedelta

from advisor_orchestrator.workflow.scheduling import parse_meeting_time, to_24_hour

NOW = datetime(2025, 6, 23, 10, 30, 45, tzinfo=UTC)


def test_range_shorthand_lands_on_following_day() -> None:
    start, end = parse_meeting_time("4-5pm", now=NOW)

    assert start.date() == NOW.date() + timedelta(days=1)
    assert (start.hour, start.minute, start.second) == (16, 0, 0)
    assert (end.hour, end.minute, end.second) == (17, 0, 0)
    assert end.date() == start.date()


def test_range_inside_longer_text_and_morning_hours() -> None:
    start, end = parse_meeting_time("meet tomorrow 9 - 10am please", now=NOW)

    assert (start.hour, end.hour) == (9, 10)


def test_unparseable_text_falls_back_to_default_window() -> None:
    start, end = parse_meeting_time("sometime next week at 3pm", now=NOW)

    assert start == datetime(2025, 6, 24, 16, 0, tzinfo=start.tzinfo)
    assert end - start == timedelta(hours=1)


def test_missing_expression_uses_default() -> None:
    start, end = parse_meeting_time(None, now=NOW)

    assert (start.hour, end.hour) == (16, 17)


def test_inverted_range_gets_one_hour() -> None:
    start, end = parse_meeting_time("5-4pm", now=NOW)

    assert start.hour == 17
    assert end - start == timedelta(hours=1)


def test_timezone_is_applied() -> None:
    # 23:30 UTC on the 23rd is already the 24th in Tokyo.
    late = datetime(2025, 6, 23, 23, 30, tzinfo=UTC)
    start, _ = parse_meeting_time("4-5pm", now=late, timezone="Asia/Tokyo")

    assert start.date().isoformat() == "2025-06-25"
    assert start.utcoffset() == timedelta(hours=9)


def test_to_24_hour() -> None:
    assert to_24_hour(12, "am") == 0
    assert to_24_hour(12, "pm") == 12
    assert to_24_hour(4, "pm") == 16
    assert to_24_hour(9, "am") == 9
