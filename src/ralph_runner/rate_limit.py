# ABOUTME: Hourly call budget for agent invocations
# ABOUTME: Persists the call counter and window key so limits survive restarts

"""Fixed-window rate limiting for agent invocations.

Windows are coarse clock-hour buckets keyed ``YYYYMMDDHH``. The counter
resets to zero the first time a call is checked in a new bucket.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from .errors import ParseError
from .storage import atomic_write_json, read_json

logger = logging.getLogger("ralph.rate_limit")

WINDOW_KEY_FORMAT = "%Y%m%d%H"


def window_key(moment: datetime) -> str:
    """Return the hour bucket a moment falls in."""
    return moment.strftime(WINDOW_KEY_FORMAT)


def should_reset(current_window_key: str, stored_window_key: Optional[str]) -> bool:
    """True when the hour bucket has moved on since the counter was stored."""
    return current_window_key != stored_window_key


@dataclass
class RateLimitCounter:
    window_key: str = ""
    calls_this_window: int = 0

    def to_dict(self) -> dict:
        return {
            "window_key": self.window_key,
            "calls_this_window": self.calls_this_window,
        }


class RateLimiter:
    """Caps agent invocations per clock hour.

    Args:
        state_file: JSON file holding the counter and window key
        max_calls_per_window: Allowed invocations per hour
        clock: Returns the current local time (injectable for tests)
    """

    def __init__(
        self,
        state_file: Path,
        max_calls_per_window: int = 100,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.state_file = Path(state_file)
        self.max_calls_per_window = max_calls_per_window
        self.clock = clock

    def _read(self) -> RateLimitCounter:
        data = read_json(self.state_file, default=None)
        if data is None:
            return RateLimitCounter()
        if not isinstance(data, dict):
            raise ParseError(self.state_file, "expected an object")
        try:
            return RateLimitCounter(
                window_key=str(data.get("window_key", "")),
                calls_this_window=max(0, int(data.get("calls_this_window", 0))),
            )
        except (TypeError, ValueError) as e:
            raise ParseError(self.state_file, f"invalid counter: {e}") from e

    def _write(self, counter: RateLimitCounter) -> None:
        atomic_write_json(self.state_file, counter.to_dict())

    def current(self) -> RateLimitCounter:
        """Counter for the current window, rolling it over when the hour changed."""
        counter = self._read()
        key = window_key(self.clock())
        if should_reset(key, counter.window_key):
            if counter.window_key:
                logger.info("Rate limit counter reset for new hour")
            counter = RateLimitCounter(window_key=key, calls_this_window=0)
            self._write(counter)
        return counter

    def calls_this_window(self) -> int:
        return self.current().calls_this_window

    def can_call(self) -> bool:
        return self.current().calls_this_window < self.max_calls_per_window

    def record_call(self) -> int:
        """Count one invocation and return the new total for this window."""
        counter = self.current()
        counter.calls_this_window += 1
        self._write(counter)
        logger.info(f"API call {counter.calls_this_window}/{self.max_calls_per_window} this hour")
        return counter.calls_this_window

    def seconds_until_next_window(self) -> int:
        now = self.clock()
        next_window = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        return max(1, int((next_window - now).total_seconds()))
