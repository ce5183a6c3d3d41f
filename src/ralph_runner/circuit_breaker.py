# ABOUTME: Circuit breaker that halts the loop on stagnation or repeated errors
# ABOUTME: Tracks no-progress and same-error streaks in a persisted state file

"""Stagnation detection for the Ralph loop.

The breaker only moves CLOSED -> OPEN on its own. Getting back to CLOSED
takes an explicit ``reset()``. HALF_OPEN is part of the state vocabulary but
nothing transitions into it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ParseError
from .storage import atomic_write_json, read_json

logger = logging.getLogger("ralph.circuit_breaker")

HISTORY_LIMIT = 10


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    HALF_OPEN = "HALF_OPEN"
    OPEN = "OPEN"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class CircuitBreakerState:
    state: CircuitState = CircuitState.CLOSED
    no_progress_count: int = 0
    same_error_count: int = 0
    last_error: str = ""
    last_files_changed: int = 0
    last_output_length: int = 0
    history: List[Dict[str, Any]] = field(default_factory=list)
    opened_at: Optional[str] = None
    opened_reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CircuitBreakerState":
        return cls(
            state=CircuitState(data.get("state", CircuitState.CLOSED.value)),
            no_progress_count=max(0, int(data.get("no_progress_count", 0))),
            same_error_count=max(0, int(data.get("same_error_count", 0))),
            last_error=data.get("last_error") or "",
            last_files_changed=int(data.get("last_files_changed", 0)),
            last_output_length=int(data.get("last_output_length", 0)),
            history=list(data.get("history") or []),
            opened_at=data.get("opened_at"),
            opened_reason=data.get("opened_reason"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "no_progress_count": self.no_progress_count,
            "same_error_count": self.same_error_count,
            "last_error": self.last_error,
            "last_files_changed": self.last_files_changed,
            "last_output_length": self.last_output_length,
            "history": self.history,
            "opened_at": self.opened_at,
            "opened_reason": self.opened_reason,
        }


class CircuitBreaker:
    """File-backed breaker; state is re-read on every call.

    Args:
        state_file: Path of ``.circuit_breaker.json``
        no_progress_threshold: Consecutive zero-file-change loops before opening
        same_error_threshold: Consecutive identical errors before opening
        output_decline_threshold: Percent drop in output length that is warned about
    """

    def __init__(
        self,
        state_file: Path,
        no_progress_threshold: int = 3,
        same_error_threshold: int = 5,
        output_decline_threshold: int = 70,
    ):
        self.state_file = Path(state_file)
        self.no_progress_threshold = no_progress_threshold
        self.same_error_threshold = same_error_threshold
        self.output_decline_threshold = output_decline_threshold

    def load(self) -> CircuitBreakerState:
        """Current persisted state; a missing file means a fresh CLOSED breaker."""
        data = read_json(self.state_file, default=None)
        if data is None:
            return CircuitBreakerState()
        if not isinstance(data, dict):
            raise ParseError(self.state_file, "expected an object")
        try:
            return CircuitBreakerState.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ParseError(self.state_file, f"invalid circuit breaker state: {e}") from e

    def save(self, state: CircuitBreakerState) -> None:
        atomic_write_json(self.state_file, state.to_dict())

    def initialize(self) -> CircuitBreakerState:
        """Create the state file if it does not exist yet."""
        state = self.load()
        if not self.state_file.exists():
            self.save(state)
        return state

    def get_state(self) -> CircuitState:
        return self.load().state

    def should_halt_execution(self) -> bool:
        return self.get_state() == CircuitState.OPEN

    def record_loop_result(
        self,
        loop_index: int,
        files_changed: int,
        has_errors: bool,
        output_length: int,
        error_message: str = "",
    ) -> CircuitBreakerState:
        """Fold one loop's signals into the breaker and persist the result.

        Returns:
            The updated state. Inspect ``state`` to see whether it opened.
        """
        cb = self.load()
        previous_state = cb.state
        new_state = previous_state
        open_reason = ""

        if files_changed == 0:
            cb.no_progress_count += 1
            if cb.no_progress_count >= self.no_progress_threshold:
                new_state = CircuitState.OPEN
                open_reason = f"No file changes in {cb.no_progress_count} consecutive loops"
        else:
            cb.no_progress_count = 0

        if has_errors:
            if error_message and error_message == cb.last_error:
                cb.same_error_count += 1
                if cb.same_error_count >= self.same_error_threshold:
                    new_state = CircuitState.OPEN
                    open_reason = f"Same error repeated {cb.same_error_count} times"
            else:
                cb.same_error_count = 1
            cb.last_error = error_message
        else:
            cb.same_error_count = 0
            cb.last_error = ""

        if cb.last_output_length > 0 and output_length > 0:
            decline = (cb.last_output_length - output_length) * 100 // cb.last_output_length
            if decline > self.output_decline_threshold:
                logger.warning(f"Output declined by {decline}% (possible stagnation)")

        timestamp = _utc_timestamp()
        cb.last_files_changed = files_changed
        cb.last_output_length = output_length
        cb.history.append({
            "loop": loop_index,
            "timestamp": timestamp,
            "files_changed": files_changed,
            "output_length": output_length,
        })
        cb.history = cb.history[-HISTORY_LIMIT:]

        cb.state = new_state
        if new_state == CircuitState.OPEN and previous_state != CircuitState.OPEN:
            cb.opened_at = timestamp
            cb.opened_reason = open_reason
            self.save(cb)
            logger.error(f"Circuit breaker OPENED: {open_reason}")
        else:
            self.save(cb)
        return cb

    def reset(self, reason: str = "Manual reset") -> CircuitBreakerState:
        cb = self.load()
        cb.state = CircuitState.CLOSED
        cb.no_progress_count = 0
        cb.same_error_count = 0
        cb.last_error = ""
        cb.opened_at = None
        cb.opened_reason = None
        cb.history.append({"event": "reset", "reason": reason, "timestamp": _utc_timestamp()})
        cb.history = cb.history[-HISTORY_LIMIT:]
        self.save(cb)
        logger.info(f"Circuit breaker reset: {reason}")
        return cb

    def status_lines(self) -> List[str]:
        """Human-readable report used by status mode."""
        if not self.state_file.exists():
            return ["Circuit breaker not initialized"]
        cb = self.load()
        lines = [
            f"State:             {cb.state.value}",
            f"No Progress Count: {cb.no_progress_count}/{self.no_progress_threshold}",
            f"Same Error Count:  {cb.same_error_count}/{self.same_error_threshold}",
        ]
        if cb.last_error:
            lines.append(f"Last Error:        {cb.last_error}")
        if cb.opened_at:
            lines.append(f"Opened At:         {cb.opened_at}")
        if cb.opened_reason:
            lines.append(f"Opened Reason:     {cb.opened_reason}")
        return lines
