# ABOUTME: Status snapshot written once per iteration for external dashboards
# ABOUTME: Defines the status vocabulary and atomic status.json read/write

"""Status snapshot persistence."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from .storage import atomic_write_json, read_json


class LoopStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    COMPLETE = "complete"
    HALTED = "halted"
    MAX_ITERATIONS = "max_iterations"
    RATE_LIMITED = "rate_limited"
    USAGE_LIMIT = "usage_limit"
    API_LIMIT = "api_limit"
    TIMEOUT = "timeout"
    ERROR = "error"
    STOPPED = "stopped"
    ERROR_EXIT = "error_exit"


def _local_timestamp() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


@dataclass
class StatusSnapshot:
    status: str
    loop_count: int
    stories_complete: int = 0
    stories_total: int = 0
    calls_this_hour: int = 0
    max_calls_per_hour: int = 0
    current_story: str = ""
    reason: str = ""
    timestamp: str = field(default_factory=_local_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusSnapshot":
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})


def write_status(path: Path, snapshot: StatusSnapshot) -> None:
    atomic_write_json(path, snapshot.to_dict())


def read_status(path: Path) -> Optional[StatusSnapshot]:
    data = read_json(path, default=None)
    if not isinstance(data, dict):
        return None
    return StatusSnapshot.from_dict(data)
