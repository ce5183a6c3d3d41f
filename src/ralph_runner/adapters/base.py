# ABOUTME: Abstract agent adapter interface and invocation result type
# ABOUTME: The loop controller only talks to agents through this port

"""Base adapter for coding agents."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class AgentResult:
    """Captured outcome of one agent process."""

    output: str
    exit_code: Optional[int]
    timed_out: bool = False
    duration: float = 0.0
    log_file: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class AgentAdapter(ABC):
    """An agent that takes a prompt on stdin and produces text."""

    def __init__(self, name: str):
        self.name = name
        self.available = self.check_availability()

    @abstractmethod
    def check_availability(self) -> bool:
        """Return True when the agent can be launched."""

    @abstractmethod
    async def aexecute(
        self,
        prompt: str,
        timeout: float,
        log_file: Optional[Path] = None,
    ) -> AgentResult:
        """Run the agent once with a hard wall-clock deadline."""

    def kill_subprocess_sync(self) -> None:
        """Terminate any running agent process. Must be safe in a signal handler."""

    def __str__(self) -> str:
        return self.name
