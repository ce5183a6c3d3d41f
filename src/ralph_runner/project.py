# ABOUTME: Ralph project directory layout
# ABOUTME: Resolves a project by name or path and names every file the loop uses

"""Project layout.

A project directory holds the task list, prompt inputs, and the state files
the loop keeps between runs::

    <project>/
        prd.json              task list (edited by the agent)
        PROMPT.md             prompt template
        progress.txt          notes from earlier iterations (optional)
        requirements.md       technical requirements (optional)
        status.json           latest status snapshot
        .circuit_breaker.json
        .rate_limit.json
        .last_analysis.json
        logs/
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Union

from .errors import SetupError

DEFAULT_PROJECTS_ROOT = Path("ralph/projects")


@dataclass(frozen=True)
class Project:
    name: str
    root: Path

    @classmethod
    def open(
        cls,
        name_or_path: Union[str, Path],
        projects_root: Union[str, Path] = DEFAULT_PROJECTS_ROOT,
    ) -> "Project":
        """Locate a project and check its required files.

        A path to an existing directory is used as-is; anything else is
        looked up as a name under ``projects_root``.

        Raises:
            SetupError: Directory, prd.json or PROMPT.md missing
        """
        candidate = Path(name_or_path)
        if not candidate.is_dir():
            candidate = Path(projects_root) / str(name_or_path)
        if not candidate.is_dir():
            raise SetupError(f"Project '{name_or_path}' does not exist (looked in {projects_root})")

        project = cls(name=candidate.resolve().name, root=candidate.resolve())
        if not project.task_file.is_file():
            raise SetupError(f"Task list not found: {project.task_file}")
        if not project.prompt_file.is_file():
            raise SetupError(f"Prompt template not found: {project.prompt_file}")
        return project

    @property
    def task_file(self) -> Path:
        return self.root / "prd.json"

    @property
    def prompt_file(self) -> Path:
        return self.root / "PROMPT.md"

    @property
    def progress_file(self) -> Path:
        return self.root / "progress.txt"

    @property
    def requirements_file(self) -> Path:
        return self.root / "requirements.md"

    @property
    def status_file(self) -> Path:
        return self.root / "status.json"

    @property
    def circuit_breaker_file(self) -> Path:
        return self.root / ".circuit_breaker.json"

    @property
    def rate_limit_file(self) -> Path:
        return self.root / ".rate_limit.json"

    @property
    def analysis_file(self) -> Path:
        return self.root / ".last_analysis.json"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    def ensure_logs_dir(self) -> Path:
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        return self.logs_dir

    def agent_log_file(self, moment: datetime) -> Path:
        return self.logs_dir / f"agent_{moment.strftime('%Y-%m-%d_%H-%M-%S_%f')}.log"

    def run_log_file(self, moment: datetime) -> Path:
        return self.logs_dir / f"ralph_{moment.strftime('%Y%m%d')}.log"

    def metrics_file(self, moment: datetime) -> Path:
        return self.logs_dir / f"metrics_{moment.strftime('%Y%m%d_%H%M%S')}.json"
