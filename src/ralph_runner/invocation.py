# ABOUTME: Classifies a finished agent invocation into a loop control outcome
# ABOUTME: Detects completion token, usage limits, API limits and timeouts

"""Invocation outcome classification.

Order matters: the completion token wins over everything, a clean exit is a
success, and only failed runs are searched for limit messages.
"""

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from .adapters.base import AgentResult
from .errors import (
    ApiLimitReached,
    InvocationFailure,
    InvocationTimeout,
    RalphError,
    UsageLimitReached,
)


class InvocationOutcome(str, Enum):
    SUCCESS = "success"
    PROJECT_COMPLETE = "project_complete"
    USAGE_LIMIT = "usage_limit"
    TIMEOUT = "timeout"
    API_LIMIT = "api_limit"
    GENERIC_ERROR = "generic_error"


# Provider account allowance exhausted; usually carries a reset time.
USAGE_LIMIT_PATTERNS: List[re.Pattern] = [
    re.compile(r"out of extra usage", re.IGNORECASE),
    re.compile(r"hit your (usage )?limit", re.IGNORECASE),
    re.compile(r"usage limit reached\|\d+", re.IGNORECASE),
]

# Generic long-window limit wording.
API_LIMIT_PATTERNS: List[re.Pattern] = [
    re.compile(r"5.*hour.*limit", re.IGNORECASE),
    re.compile(r"limit.*reached", re.IGNORECASE),
    re.compile(r"usage.*limit", re.IGNORECASE),
]

_EPOCH_HINT = re.compile(r"\|\s*(\d{9,11})\b")
_CLOCK_HINT = re.compile(
    r"resets?(\s+at)?\s+(\d{1,2})(?!\d)(?::(\d{2}))?\s*(am|pm)?\b(?:\s*\(?\s*(UTC)\s*\)?)?",
    re.IGNORECASE,
)


def is_usage_limit(output: str) -> bool:
    return any(pattern.search(output) for pattern in USAGE_LIMIT_PATTERNS)


def is_api_limit(output: str) -> bool:
    return any(pattern.search(output) for pattern in API_LIMIT_PATTERNS)


def classify_invocation(result: AgentResult, completion_token: str) -> InvocationOutcome:
    output = result.output or ""
    if completion_token and completion_token in output:
        return InvocationOutcome.PROJECT_COMPLETE
    if result.exit_code == 0 and not result.timed_out:
        return InvocationOutcome.SUCCESS
    if is_usage_limit(output):
        return InvocationOutcome.USAGE_LIMIT
    if result.timed_out:
        return InvocationOutcome.TIMEOUT
    if is_api_limit(output):
        return InvocationOutcome.API_LIMIT
    return InvocationOutcome.GENERIC_ERROR


def parse_usage_reset_time(output: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Find when a usage limit lifts.

    Understands ``usage limit reached|1749718800``, ``resets 5pm (UTC)``,
    ``resets at 3:30pm`` and ``reset at 17:00``. Clock times without a
    date that are already past roll over to the next day.

    Returns:
        Timezone-aware reset time, or None when the output has no hint.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.astimezone()

    epoch = _EPOCH_HINT.search(output)
    if epoch:
        return datetime.fromtimestamp(int(epoch.group(1)), tz=timezone.utc)

    # a bare number ("resets 3 files") is not a time
    match = next(
        (m for m in _CLOCK_HINT.finditer(output) if m.group(1) or m.group(3) or m.group(4)),
        None,
    )
    if not match:
        return None

    hour = int(match.group(2))
    minute = int(match.group(3) or 0)
    meridiem = (match.group(4) or "").lower()
    if meridiem == "pm" and hour != 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0
    if hour > 23 or minute > 59:
        return None

    base = now.astimezone(timezone.utc) if match.group(5) else now
    reset = base.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if reset <= base:
        reset += timedelta(days=1)
    return reset


def outcome_error(
    outcome: InvocationOutcome,
    result: AgentResult,
    reset_at: Optional[datetime] = None,
) -> Optional[RalphError]:
    """The error a failed outcome stands for, or None for success and completion."""
    if outcome == InvocationOutcome.USAGE_LIMIT:
        return UsageLimitReached("Provider usage limit reached", reset_at=reset_at)
    if outcome == InvocationOutcome.API_LIMIT:
        return ApiLimitReached("Provider API limit reached")
    if outcome == InvocationOutcome.TIMEOUT:
        return InvocationTimeout(f"Agent timed out after {result.duration:.0f}s")
    if outcome == InvocationOutcome.GENERIC_ERROR:
        return InvocationFailure(f"Agent exited with code {result.exit_code}")
    return None
