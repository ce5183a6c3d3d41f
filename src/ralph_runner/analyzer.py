# ABOUTME: Response analyzer for captured agent output
# ABOUTME: Parses the RALPH_STATUS block and scans free text for completion and error signals

"""Turn one invocation's output into an AnalysisResult.

Two layers, kept apart on purpose:

1. The structured status block the agent is asked to print. It is
   authoritative: ``EXIT_SIGNAL: true`` means stop.
2. Heuristic pattern tables over the free text. Completion phrases and
   error markers are best-effort signals only.

Expected block format::

    ---RALPH_STATUS---
    STATUS: IN_PROGRESS
    TASKS_COMPLETED_THIS_LOOP: 1
    FILES_MODIFIED: 4
    TESTS_STATUS: PASSING
    WORK_TYPE: IMPLEMENTATION
    EXIT_SIGNAL: false
    RECOMMENDATION: Continue with story 2.3
    ---END_RALPH_STATUS---
"""

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .storage import atomic_write_json, read_json

logger = logging.getLogger("ralph.analyzer")

STATUS_BLOCK_START = "---RALPH_STATUS---"
STATUS_BLOCK_END = "---END_RALPH_STATUS---"

ERROR_MESSAGE_LIMIT = 200

# Each pattern that matches anywhere (case-insensitive, within one line)
# counts as one independent completion signal.
COMPLETION_PATTERNS: List[re.Pattern] = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"all.*complete",
        r"project.*complete",
        r"nothing.*left.*to.*implement",
        r"all.*tasks.*done",
        r"implementation.*complete",
        r"feature.*complete",
    )
]

# Stage 1: lines that are JSON fields whose name mentions "error"
# (e.g. ``"error_count": 3``) are removed before stage 2.
JSON_ERROR_FIELD_PATTERN = re.compile(r'"[^"]*error[^"]*":')

# Stage 2: markers of a real error, matched per line.
ERROR_MARKER_PATTERN = re.compile(
    r"(^Error:|^ERROR:|^error:|\]: error|Error occurred|failed with error"
    r"|[Ee]xception|Fatal|FATAL)"
)

GRACEFUL_EXIT_COMPLETION_SIGNALS = 2


class TestsStatus(str, Enum):
    NOT_RUN = "NOT_RUN"
    PASSING = "PASSING"
    FAILING = "FAILING"


class WorkType(str, Enum):
    UNKNOWN = "UNKNOWN"
    IMPLEMENTATION = "IMPLEMENTATION"
    TESTING = "TESTING"
    DOCUMENTATION = "DOCUMENTATION"
    REFACTORING = "REFACTORING"


class AnalysisVerdict(str, Enum):
    NORMAL = "normal"
    HAS_ERRORS = "has_errors"
    EXIT_SIGNAL = "exit_signal"


@dataclass
class AnalysisResult:
    output_length: int = 0
    has_status_block: bool = False
    status: str = ""
    tasks_completed: int = 0
    files_modified: int = 0
    tests_status: str = TestsStatus.NOT_RUN.value
    work_type: str = WorkType.UNKNOWN.value
    exit_signal: bool = False
    recommendation: str = ""
    completion_signals: int = 0
    has_errors: bool = False
    error_count: int = 0
    error_message: str = ""
    is_test_only: bool = False

    @property
    def verdict(self) -> AnalysisVerdict:
        if self.exit_signal:
            return AnalysisVerdict.EXIT_SIGNAL
        if self.has_errors:
            return AnalysisVerdict.HAS_ERRORS
        return AnalysisVerdict.NORMAL

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "AnalysisResult":
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})

    def summary(self) -> str:
        return (
            f"Analysis: status={self.status}, tasks={self.tasks_completed}, "
            f"files={self.files_modified}, tests={self.tests_status}, "
            f"work={self.work_type}, exit={str(self.exit_signal).lower()}"
        )


def extract_status_block(output: str) -> Optional[List[str]]:
    """Lines of the last status block, or None when there is none.

    An echoed template usually comes first, so the final block wins. A
    block without an end marker runs to the end of the output.
    """
    lines = output.splitlines()
    starts = [index for index, line in enumerate(lines) if STATUS_BLOCK_START in line]
    if not starts:
        return None
    block = []
    for line in lines[starts[-1]:]:
        block.append(line)
        if STATUS_BLOCK_END in line:
            break
    return block


def _field(block: List[str], key: str) -> Optional[str]:
    prefix = f"{key}:"
    for line in block:
        if line.startswith(prefix):
            return line[len(prefix):].strip()
    return None


def _as_int(value: Optional[str], key: str) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        logger.debug(f"Ignoring non-numeric {key}: {value!r}")
        return 0


def count_completion_signals(output: str) -> int:
    return sum(1 for pattern in COMPLETION_PATTERNS if pattern.search(output))


def find_error_lines(output: str) -> List[str]:
    """Lines carrying real error markers after dropping JSON error fields."""
    return [
        line
        for line in output.splitlines()
        if not JSON_ERROR_FIELD_PATTERN.search(line) and ERROR_MARKER_PATTERN.search(line)
    ]


def analyze_output(output: str) -> AnalysisResult:
    """Pure analysis of captured agent output."""
    result = AnalysisResult(output_length=len(output))

    block = extract_status_block(output)
    if block is not None:
        result.has_status_block = True
        result.status = _field(block, "STATUS") or ""
        result.tasks_completed = _as_int(_field(block, "TASKS_COMPLETED_THIS_LOOP"), "TASKS_COMPLETED_THIS_LOOP")
        result.files_modified = _as_int(_field(block, "FILES_MODIFIED"), "FILES_MODIFIED")
        result.tests_status = _field(block, "TESTS_STATUS") or TestsStatus.NOT_RUN.value
        result.work_type = _field(block, "WORK_TYPE") or WorkType.UNKNOWN.value
        result.exit_signal = (_field(block, "EXIT_SIGNAL") or "").lower() == "true"
        result.recommendation = _field(block, "RECOMMENDATION") or ""

    result.completion_signals = count_completion_signals(output)

    error_lines = find_error_lines(output)
    if error_lines:
        result.has_errors = True
        result.error_count = len(error_lines)
        result.error_message = error_lines[0][:ERROR_MESSAGE_LIMIT]

    result.is_test_only = (
        result.work_type == WorkType.TESTING.value and result.files_modified == 0
    )
    return result


def should_exit_gracefully(result: AnalysisResult) -> Optional[str]:
    """Reason to end the loop early, or None to keep going."""
    if result.exit_signal:
        return "exit_signal"
    if result.completion_signals >= GRACEFUL_EXIT_COMPLETION_SIGNALS:
        return "completion_signals"
    return None


class ResponseAnalyzer:
    """Analyzes output and keeps the latest result in ``.last_analysis.json``."""

    def __init__(self, analysis_file: Path):
        self.analysis_file = Path(analysis_file)

    def analyze(self, output: str) -> AnalysisResult:
        result = analyze_output(output)
        data = result.to_dict()
        data["timestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        data["verdict"] = result.verdict.value
        atomic_write_json(self.analysis_file, data)
        logger.info(result.summary())
        return result

    def load_last(self) -> Optional[AnalysisResult]:
        data = read_json(self.analysis_file, default=None)
        if not isinstance(data, dict):
            return None
        return AnalysisResult.from_dict(data)
