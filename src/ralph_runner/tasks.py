# ABOUTME: Task store for the PRD task list (prd.json)
# ABOUTME: Loads, validates, counts and atomically saves user stories

"""Task list model and persistence.

The agent edits ``prd.json`` itself between iterations, so nothing here is
cached: every caller re-reads the file when it needs fresh state.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ParseError, StorageError
from .storage import atomic_write_json

logger = logging.getLogger("ralph.tasks")

DEFAULT_PRIORITY = 999


class TaskCategory(str, Enum):
    TECHNICAL = "technical"
    FUNCTIONAL = "functional"
    UI = "ui"


@dataclass
class Task:
    """One user story."""

    id: str
    description: str
    category: TaskCategory = TaskCategory.FUNCTIONAL
    steps: List[str] = field(default_factory=list)
    acceptance_criteria: str = ""
    priority: int = DEFAULT_PRIORITY
    done: bool = False
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "story": self.description,
            "steps": list(self.steps),
            "acceptance": self.acceptance_criteria,
            "priority": self.priority,
            "passes": self.done,
            "notes": self.notes,
        }


@dataclass
class TaskList:
    """Ordered backlog plus the branch the work must land on."""

    tasks: List[Task] = field(default_factory=list)
    branch_identifier: Optional[str] = None

    def count_total(self) -> int:
        return len(self.tasks)

    def count_complete(self) -> int:
        return sum(1 for task in self.tasks if task.done)

    def count_incomplete(self) -> int:
        return sum(1 for task in self.tasks if not task.done)

    def pending(self) -> List[Task]:
        """Incomplete tasks, lowest priority number first (stable for ties)."""
        return sorted((t for t in self.tasks if not t.done), key=lambda t: t.priority)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.branch_identifier:
            data["branchName"] = self.branch_identifier
        data["userStories"] = [task.to_dict() for task in self.tasks]
        return data


def _pick(raw: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return default


def _parse_task(path: Path, index: int, raw: Any) -> Task:
    if not isinstance(raw, dict):
        raise ParseError(path, f"story #{index} is not an object")

    task_id = raw.get("id")
    if task_id is None or str(task_id).strip() == "":
        raise ParseError(path, f"story #{index} has no id")

    category_value = _pick(raw, "category", default=TaskCategory.FUNCTIONAL.value)
    try:
        category = TaskCategory(str(category_value).lower())
    except ValueError:
        raise ParseError(path, f"story {task_id} has unknown category {category_value!r}")

    priority = _pick(raw, "priority", default=DEFAULT_PRIORITY)
    if priority is None:
        priority = DEFAULT_PRIORITY
    if isinstance(priority, bool) or not isinstance(priority, (int, float, str)):
        raise ParseError(path, f"story {task_id} has invalid priority {priority!r}")
    try:
        priority = int(priority)
    except ValueError:
        raise ParseError(path, f"story {task_id} has invalid priority {priority!r}")

    steps = _pick(raw, "steps", default=[]) or []
    if isinstance(steps, str):
        steps = [steps]
    acceptance = _pick(raw, "acceptance", "acceptanceCriteria", default="") or ""
    if isinstance(acceptance, list):
        acceptance = "\n".join(str(item) for item in acceptance)

    return Task(
        id=str(task_id),
        description=str(_pick(raw, "story", "description", "title", default="")),
        category=category,
        steps=[str(step) for step in steps],
        acceptance_criteria=str(acceptance),
        priority=priority,
        done=bool(_pick(raw, "passes", "done", default=False)),
        notes=str(_pick(raw, "notes", default="") or ""),
    )


def parse_task_list(data: Any, path: Path = Path("prd.json")) -> TaskList:
    """Build a TaskList from decoded JSON.

    Accepts ``{"branchName": ..., "userStories": [...]}`` or a bare list.
    """
    branch = None
    if isinstance(data, dict):
        stories = data.get("userStories", data.get("tasks"))
        if stories is None:
            raise ParseError(path, "missing 'userStories' list")
        branch = data.get("branchName") or None
        if branch is not None and not isinstance(branch, str):
            raise ParseError(path, "'branchName' must be a string")
    elif isinstance(data, list):
        stories = data
    else:
        raise ParseError(path, "expected an object or a list of stories")

    if not isinstance(stories, list):
        raise ParseError(path, "'userStories' must be a list")

    tasks = [_parse_task(path, index, raw) for index, raw in enumerate(stories, start=1)]

    seen = set()
    for task in tasks:
        if task.id in seen:
            raise ParseError(path, f"duplicate story id {task.id!r}")
        seen.add(task.id)

    return TaskList(tasks=tasks, branch_identifier=branch)


def load_task_list(path: Path) -> TaskList:
    """Read and validate ``prd.json``.

    Raises:
        ParseError: Missing file, invalid JSON or invalid story records
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ParseError(path, "task list not found")
    except OSError as e:
        raise StorageError(f"Cannot read {path}: {e}") from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ParseError(path, f"invalid JSON ({e.msg} at line {e.lineno})") from e

    task_list = parse_task_list(data, path)
    logger.debug(
        f"Loaded {task_list.count_total()} stories from {path} "
        f"({task_list.count_incomplete()} incomplete)"
    )
    return task_list


def save_task_list(path: Path, task_list: TaskList) -> None:
    atomic_write_json(Path(path), task_list.to_dict())


class TaskStore:
    """File-backed task list. Every ``load`` reads the file again."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> TaskList:
        return load_task_list(self.path)

    def save(self, task_list: TaskList) -> None:
        save_task_list(self.path, task_list)

    def count_incomplete(self) -> int:
        return self.load().count_incomplete()

    def count_complete(self) -> int:
        return self.load().count_complete()

    def count_total(self) -> int:
        return self.load().count_total()

    def branch_identifier(self) -> Optional[str]:
        return self.load().branch_identifier
