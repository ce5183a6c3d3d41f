# ABOUTME: Prompt assembly for each Ralph iteration
# ABOUTME: Combines PROMPT.md, the task list, progress notes and requirements

"""Prompt building for Ralph Runner."""

import logging
from pathlib import Path
from typing import Optional

from .analyzer import STATUS_BLOCK_END, STATUS_BLOCK_START
from .tasks import TaskList

logger = logging.getLogger("ralph.context")

DEFAULT_PROGRESS = "No progress yet."
DEFAULT_REQUIREMENTS = "No requirements yet."
TRUNCATION_MARKER = "<!-- Earlier progress truncated -->"


def build_prompt(
    template: str,
    task_list_text: str,
    progress_notes: str,
    requirements: str,
    branch_name: Optional[str],
    complete_token: str,
    stories_complete: int = 0,
    stories_total: int = 0,
) -> str:
    """Render the full instruction sent to the agent on stdin."""
    remaining = stories_total - stories_complete

    branch_info = ""
    branch_warning = ""
    if branch_name:
        branch_info = f"**Branch:** `{branch_name}`\n"
        branch_warning = f"""
## BRANCH RESTRICTION

**You are ONLY allowed to work on branch: `{branch_name}`**
- DO NOT switch to any other branch, do not create new branches.
- DO NOT push to main, master, or any branch other than `{branch_name}`
"""

    return f"""{template.rstrip()}

---

## PRD User Stories

Below are ALL the user stories for this project. Stories with `"passes": true` are complete.
Stories with `"passes": false` still need to be implemented.

{branch_info}**Progress: {stories_complete}/{stories_total} complete ({remaining} remaining)**
{branch_warning}
```json
{task_list_text.strip()}
```

---

## Progress So Far

{progress_notes.strip()}

---

## Technical Requirements

{requirements.strip()}

---

## Instructions

1. **Pick the highest priority user story where `passes: false`**
   - Lower `priority` number = implement first
   - Respect dependencies: foundation before features
   - Read the progress notes and each story's notes before choosing
2. **Implement ONLY that single user story** - no scope creep
3. **Verify your work** with the project's type checks and tests
4. **Commit** with a message like `feat: [ID] - [Title]`
5. **Update prd.json:** set `passes: true` for the completed story
6. **Append to progress.txt:** story id, key decisions, files changed, blockers
7. **Report your status** at the end of your reply:

```
{STATUS_BLOCK_START}
STATUS: IN_PROGRESS | COMPLETE | BLOCKED
TASKS_COMPLETED_THIS_LOOP: <number>
FILES_MODIFIED: <number>
TESTS_STATUS: PASSING | FAILING | NOT_RUN
WORK_TYPE: IMPLEMENTATION | TESTING | DOCUMENTATION | REFACTORING
EXIT_SIGNAL: false | true
RECOMMENDATION: <one line>
{STATUS_BLOCK_END}
```

8. **If ALL user stories now have `passes: true`**, reply with: {complete_token}
9. **STOP IMMEDIATELY after completing ONE story.** The loop will call you again for the next one.

Now implement the next incomplete story (lowest priority number with passes: false). STOP after completing it.
"""


class PromptBuilder:
    """Read the project's prompt inputs fresh on every call."""

    def __init__(
        self,
        prompt_file: Path,
        task_file: Path,
        progress_file: Path,
        requirements_file: Path,
        complete_token: str,
        max_context_size: int = 8000,
    ):
        """Initialize the prompt builder.

        Args:
            prompt_file: PROMPT.md template
            task_file: prd.json, embedded verbatim
            progress_file: progress.txt notes left by earlier iterations
            requirements_file: requirements.md
            complete_token: Literal the agent emits when no work remains
            max_context_size: Progress notes beyond this many characters keep only their tail
        """
        self.prompt_file = Path(prompt_file)
        self.task_file = Path(task_file)
        self.progress_file = Path(progress_file)
        self.requirements_file = Path(requirements_file)
        self.complete_token = complete_token
        self.max_context_size = max_context_size

    def _read(self, path: Path, default: str = "") -> str:
        if not path.exists():
            return default
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            logger.warning(f"Encoding error reading {path}: {e}")
            return default
        except PermissionError as e:
            logger.warning(f"Permission denied reading {path}: {e}")
            return default
        except OSError as e:
            logger.warning(f"OS error reading {path}: {e}")
            return default
        return content if content.strip() else default

    def _trim_progress(self, progress: str) -> str:
        if len(progress) <= self.max_context_size:
            return progress
        logger.info(f"Progress notes are {len(progress)} chars, keeping the last {self.max_context_size}")
        tail = progress[-self.max_context_size:]
        newline = tail.find("\n")
        if 0 <= newline < len(tail) - 1:
            tail = tail[newline + 1:]
        return f"{TRUNCATION_MARKER}\n{tail}"

    def get_prompt(self, task_list: TaskList) -> str:
        template = self._read(self.prompt_file)
        if not template:
            logger.warning(f"Prompt template {self.prompt_file} is empty or unreadable")

        return build_prompt(
            template=template,
            task_list_text=self._read(self.task_file, "[]"),
            progress_notes=self._trim_progress(self._read(self.progress_file, DEFAULT_PROGRESS)),
            requirements=self._read(self.requirements_file, DEFAULT_REQUIREMENTS),
            branch_name=task_list.branch_identifier,
            complete_token=self.complete_token,
            stories_complete=task_list.count_complete(),
            stories_total=task_list.count_total(),
        )
