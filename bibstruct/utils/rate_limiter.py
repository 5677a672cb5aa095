"""Rate limiting utilities for API calls."""
import logging
import threading
import time
from typing import Dict, List

logger = logging.getLogger(__name__)

# Global rate limit tracking, keyed by API name
_call_times: Dict[str, List[float]] = {}
_lock = threading.Lock()


def rate_limit_api(api_name: str, max_calls: int, period_seconds: int) -> None:
    """Sliding-window rate limiter for API calls.

    Blocks the calling thread until a call slot is free.

    Args:
        api_name: Name of the API (e.g. 'gemini')
        max_calls: Maximum number of calls allowed in the period
        period_seconds: Time period in seconds
    """
    while True:
        with _lock:
            now = time.time()
            call_times = [t for t in _call_times.get(api_name, []) if now - t < period_seconds]
            if len(call_times) < max_calls:
                call_times.append(now)
                _call_times[api_name] = call_times
                return
            _call_times[api_name] = call_times
            wait_time = period_seconds - (now - call_times[0])

        # The lock is released while waiting
        if wait_time > 0:
            logger.info(f"Rate limit hit for {api_name}. Waiting for {wait_time:.2f} seconds.")
            time.sleep(wait_time)


def reset_rate_limits() -> None:
    """Reset all rate limit trackers. Useful for testing."""
    with _lock:
        _call_times.clear()
