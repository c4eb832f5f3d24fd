import pytest

from dlcut.errors import InvalidTimestamp
from dlcut.timecodes import format_bytes, format_duration, parse_timestamp, validate_timestamps


@pytest.mark.parametrize("seconds,expected", [
    (0, "00:00"),
    (65, "01:05"),
    (3661, "01:01:01"),
    (59.9, "00:59"),
    (-3, "00:00"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


@pytest.mark.parametrize("text,expected", [
    ("45", 45.0),
    ("1:30", 90.0),
    ("1:00:00", 3600.0),
    ("0:01.5", 1.5),
    (" 2:00 ", 120.0),
    ("abc", None),
    ("1:2:3:4", None),
    ("1::2", None),
    ("nan", None),
    ("inf", None),
    ("1:nan", None),
    ("1e2", None),
    ("1_0", None),
])
def test_parse_timestamp(text, expected):
    assert parse_timestamp(text) == expected


@pytest.mark.parametrize("size,expected", [
    (500, "500 B"),
    (1024, "1 KB"),
    (1536, "2 KB"),
    (1048576, "1.0 MB"),
    (1073741824, "1.0 GB"),
])
def test_format_bytes(size, expected):
    assert format_bytes(size) == expected


def test_validate_full_range():
    assert validate_timestamps("10", "1:00", 120) == (10.0, 60.0)


@pytest.mark.parametrize("start,end", [(None, None), ("", "  "), (None, "")])
def test_validate_blank_means_unset(start, end):
    assert validate_timestamps(start, end, 120) == (None, None)


def test_validate_open_ended():
    assert validate_timestamps("30", None, 120) == (30.0, None)
    assert validate_timestamps(None, "30", 120) == (None, 30.0)


@pytest.mark.parametrize("start,end,message", [
    ("abc", None, "Invalid start time: abc"),
    ("nan", None, "Invalid start time: nan"),
    ("NaN", None, "Invalid start time: NaN"),
    ("1:nan", None, "Invalid start time: 1:nan"),
    (None, "inf", "Invalid end time: inf"),
    (None, "x:y", "Invalid end time: x:y"),
    ("-5", None, "Start time cannot be negative"),
    ("120", None, "Start time exceeds video duration"),
    (None, "0", "End time must be positive"),
    (None, "121", "End time exceeds video duration"),
    ("50", "40", "Start time must be before end time"),
    ("40", "40", "Start time must be before end time"),
])
def test_validate_rejects(start, end, message):
    with pytest.raises(InvalidTimestamp) as exc:
        validate_timestamps(start, end, 120)
    assert str(exc.value) == f"Invalid timestamp: {message}"
