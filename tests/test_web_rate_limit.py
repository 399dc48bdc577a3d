from __future__ import annotations

import pytest

from quietstats.core.errors import PayloadTooLargeError, ValidationError
from quietstats.web.security.rate_limit import FixedWindowRateLimiter
from quietstats.web.security.request_guard import enforce_body_limits, json_depth, parse_json_body

from .helpers.fakes import FakeClock


def test_fixed_window_limits_and_resets():
    clock = FakeClock(start=1_000_000.0)
    rl = FixedWindowRateLimiter(limit=2, window_seconds=60, clock=clock.time)
    a = rl.hit("1.2.3.4")
    assert a.allowed and a.remaining == 1
    assert rl.hit("1.2.3.4").remaining == 0
    denied = rl.hit("1.2.3.4")
    assert denied.allowed is False
    assert denied.reset_ms % 60_000 == 0
    assert rl.allow("5.6.7.8")

    clock.advance(60)
    assert rl.allow("1.2.3.4")


def test_stale_windows_pruned():
    clock = FakeClock()
    rl = FixedWindowRateLimiter(limit=5, window_seconds=1, clock=clock.time)
    for i in range(10):
        rl.hit(f"c{i}")
    assert rl.tracked_keys() == 10
    clock.advance(2)
    rl.hit("c0")
    assert rl.tracked_keys() == 1


def test_request_guard():
    enforce_body_limits(b"{}", max_bytes=10)
    with pytest.raises(PayloadTooLargeError):
        enforce_body_limits(b"x" * 11, max_bytes=10)
    with pytest.raises(PayloadTooLargeError):
        enforce_body_limits(None, max_bytes=10, declared=11)
    with pytest.raises(ValidationError):
        enforce_body_limits(b"a\x00b", max_bytes=10)
    with pytest.raises(ValidationError):
        parse_json_body(b"{nope")
    deep = {}
    cur = deep
    for _ in range(12):
        cur["a"] = {}
        cur = cur["a"]
    with pytest.raises(ValidationError):
        json_depth(deep, max_depth=10)
