"""Tests for duration parsing and window arithmetic."""

import pytest

from quotaguard.app.core.utils import parse_duration, window_index, window_reset_at


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("60 s", 60.0),
        ("60s", 60.0),
        ("500ms", 0.5),
        ("1m", 60.0),
        ("2 h", 7200.0),
        ("1d", 86400.0),
        (30, 30.0),
        (1.5, 1.5),
    ],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "60", "sixty s", "1 week", 0, -5, "0s", True])
def test_parse_duration_invalid(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_window_boundaries():
    # 120.0 is the start of the third 60 s window
    assert window_index(119.999, 60) == 1
    assert window_index(120.0, 60) == 2
    assert window_reset_at(120.0, 60) == 180.0
    assert window_reset_at(179.5, 60) == 180.0
