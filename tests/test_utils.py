"""Tests for logging setup and API rate limiting."""

import logging

import pytest

from bibstruct.utils import rate_limiter
from bibstruct.utils.logging import get_logger, setup_logging


class FakeClock:
    def __init__(self, start=100.0):
        self.now = start
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(rate_limiter, "time", fake)
    rate_limiter.reset_rate_limits()
    yield fake
    rate_limiter.reset_rate_limits()


class TestRateLimiter:
    """Test the sliding-window limiter."""

    def test_calls_within_limit_do_not_wait(self, clock):
        rate_limiter.rate_limit_api("gemini", 2, 60)
        rate_limiter.rate_limit_api("gemini", 2, 60)
        assert clock.sleeps == []

    def test_waits_for_oldest_call_to_expire(self, clock):
        rate_limiter.rate_limit_api("gemini", 2, 60)
        clock.now += 10
        rate_limiter.rate_limit_api("gemini", 2, 60)
        rate_limiter.rate_limit_api("gemini", 2, 60)
        assert clock.sleeps == [50]

    def test_lock_released_while_waiting(self, clock, monkeypatch):
        held = []

        def sleep(seconds):
            held.append(rate_limiter._lock.locked())
            clock.now += seconds

        monkeypatch.setattr(clock, "sleep", sleep)
        rate_limiter.rate_limit_api("gemini", 1, 60)
        rate_limiter.rate_limit_api("gemini", 1, 60)
        assert held == [False]
        assert clock.now == 160

    def test_apis_are_tracked_separately(self, clock):
        rate_limiter.rate_limit_api("gemini", 1, 60)
        rate_limiter.rate_limit_api("other", 1, 60)
        assert clock.sleeps == []


class TestLogging:
    """Test logging configuration."""

    def test_log_file_receives_records(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "preprocessing.log"
        setup_logging(level=logging.INFO, format_string="%(levelname)s %(message)s", log_file=str(log_file))
        get_logger("bibstruct.test").info("✓ structure_engine succeeded")
        for handler in restore_root_logger.handlers:
            handler.flush()
        assert log_file.read_text(encoding="utf-8").strip() == "INFO ✓ structure_engine succeeded"

    def test_get_logger(self):
        assert get_logger("bibstruct.x") is logging.getLogger("bibstruct.x")
