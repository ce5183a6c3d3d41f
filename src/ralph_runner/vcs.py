# ABOUTME: Git branch guard run before the loop starts
# ABOUTME: Refuses to run when the checkout is not on the branch prd.json requires

"""Version-control checks. The loop only reads git state, it never pushes."""

import logging
import subprocess
from pathlib import Path
from typing import Optional

from .errors import SetupError

logger = logging.getLogger("ralph.vcs")


def current_branch(cwd: Optional[Path] = None) -> Optional[str]:
    """Name of the checked-out branch, or None outside git / on a detached HEAD."""
    try:
        result = subprocess.run(
            ["git", "branch", "--show-current"],
            capture_output=True,
            text=True,
            timeout=5,
            cwd=str(cwd) if cwd else None,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug(f"git unavailable: {e}")
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def validate_branch(expected_branch: Optional[str], cwd: Optional[Path] = None) -> None:
    """Raise SetupError when the working tree is on the wrong branch.

    Missing git, a detached HEAD, or no declared branch only log a warning.
    """
    if not expected_branch:
        logger.warning("No branchName specified in prd.json - skipping branch validation")
        return

    branch = current_branch(cwd)
    if branch is None:
        logger.warning("Not in a git repository or detached HEAD - skipping branch validation")
        return

    if branch != expected_branch:
        raise SetupError(
            f"Branch mismatch: on '{branch}' but prd.json requires '{expected_branch}'. "
            f"Run: git checkout {expected_branch}"
        )
    logger.info(f"Branch: {branch}")
