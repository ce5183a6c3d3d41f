# ABOUTME: Shared pytest fixtures for Ralph Runner tests
# ABOUTME: Builds throwaway project directories with a prd.json and PROMPT.md

"""Shared fixtures."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from ralph_runner.logging_config import RalphLogger
from ralph_runner.project import Project


def make_story(story_id: str, passes: bool = False, priority: int = 1, **extra: Any) -> Dict[str, Any]:
    story = {
        "id": story_id,
        "category": "functional",
        "story": f"Story {story_id}",
        "steps": ["do it"],
        "acceptance": "it works",
        "priority": priority,
        "passes": passes,
        "notes": "",
    }
    story.update(extra)
    return story


def write_prd(path: Path, stories: List[Dict[str, Any]], branch: Optional[str] = None) -> None:
    data: Dict[str, Any] = {"userStories": stories}
    if branch:
        data["branchName"] = branch
    path.write_text(json.dumps(data, indent=2))


@pytest.fixture
def project_factory(tmp_path):
    """Create ``tmp_path/projects/<name>`` with the required files."""

    def make(
        stories: Optional[List[Dict[str, Any]]] = None,
        branch: Optional[str] = None,
        name: str = "demo",
        prompt: str = "# Demo project\nBuild the demo.\n",
    ) -> Project:
        root = tmp_path / "projects" / name
        root.mkdir(parents=True, exist_ok=True)
        if stories is None:
            stories = [make_story("1.1"), make_story("1.2", priority=2)]
        write_prd(root / "prd.json", stories, branch)
        (root / "PROMPT.md").write_text(prompt)
        return Project.open(name, tmp_path / "projects")

    return make


@pytest.fixture(autouse=True)
def reset_ralph_logging():
    """Leave the ``ralph`` logger hierarchy unconfigured between tests."""
    RalphLogger.reset()
    yield
    RalphLogger.reset()
