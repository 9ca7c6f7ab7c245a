"""Tests for time and duration helpers."""

import time

import pytest

from distlimit.core.utils import ms, now_ms
from distlimit.exceptions import InvalidArgumentError


class TestDuration:
    @pytest.mark.parametrize(
        "duration,expected",
        [
            ("500ms", 500),
            ("10 s", 10_000),
            ("10s", 10_000),
            ("30 m", 1_800_000),
            ("1 h", 3_600_000),
            ("2 d", 172_800_000),
            (250, 250),
        ],
    )
    def test_parses(self, duration, expected):
        assert ms(duration) == expected

    @pytest.mark.parametrize("duration", ["", "10", "ten s", "10 weeks", "-1 s", "0 s", 0, -5, True])
    def test_rejects(self, duration):
        with pytest.raises(InvalidArgumentError):
            ms(duration)

    def test_invalid_argument_is_value_error(self):
        with pytest.raises(ValueError):
            ms("soon")


def test_now_ms_matches_wall_clock():
    before = int(time.time() * 1000)
    value = now_ms()
    after = int(time.time() * 1000)
    assert before <= value <= after
