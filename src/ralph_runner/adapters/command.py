# ABOUTME: Subprocess adapter for command-line coding agents (opencode, claude, ...)
# ABOUTME: Pipes the prompt to stdin, captures merged output, enforces a hard timeout

"""Command-line agent adapter.

The agent runs as ``<command> [args...]`` with the prompt written to its
standard input. stdout and stderr are merged into a single capture which is
also written to a per-invocation log file.
"""

import asyncio
import logging
import os
import shlex
import shutil
import signal
import time
from pathlib import Path
from typing import Dict, List, Optional

from .base import AgentAdapter, AgentResult

logger = logging.getLogger("ralph.adapter")

DEFAULT_AGENT_COMMAND = "opencode run"


class CommandAdapter(AgentAdapter):
    """Run an external agent executable per invocation.

    Attributes:
        argv: Command line, split shell-style
        cwd: Working directory for the agent (the repository it edits)
        env: Extra environment variables
    """

    def __init__(
        self,
        command: str = DEFAULT_AGENT_COMMAND,
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        self.command = command
        self.argv: List[str] = shlex.split(command)
        if not self.argv:
            raise ValueError("Agent command must not be empty")
        self.cwd = Path(cwd) if cwd else None
        self.env = env or {}

        self._process: Optional[asyncio.subprocess.Process] = None

        super().__init__(Path(self.argv[0]).name)

    def check_availability(self) -> bool:
        return shutil.which(self.argv[0]) is not None

    async def aexecute(
        self,
        prompt: str,
        timeout: float,
        log_file: Optional[Path] = None,
    ) -> AgentResult:
        start = time.monotonic()
        chunks: List[bytes] = []
        timed_out = False

        env = {**os.environ, **self.env} if self.env else None
        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(self.cwd) if self.cwd else None,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start agent '{self.command}': {e}")
            output = f"Error: failed to start agent '{self.command}': {e}\n"
            self._write_log(log_file, output)
            return AgentResult(output=output, exit_code=127, duration=time.monotonic() - start, log_file=log_file)

        self._process = process

        async def feed_stdin() -> None:
            try:
                process.stdin.write(prompt.encode("utf-8"))
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                logger.debug("Agent closed stdin before reading the whole prompt")
            finally:
                process.stdin.close()

        async def drain_stdout() -> None:
            while True:
                chunk = await process.stdout.read(65536)
                if not chunk:
                    break
                chunks.append(chunk)

        reader = asyncio.ensure_future(drain_stdout())
        writer = asyncio.ensure_future(feed_stdin())
        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(f"Agent exceeded {timeout:.0f}s deadline, killing process {process.pid}")
                self._kill(process)
                await process.wait()
            try:
                await asyncio.wait_for(
                    asyncio.gather(reader, writer, return_exceptions=True), timeout=5
                )
            except asyncio.TimeoutError:
                logger.warning("Agent output stream still open after exit, dropping the rest")
        except asyncio.CancelledError:
            self._kill(process)
            reader.cancel()
            writer.cancel()
            raise
        finally:
            self._process = None

        output = b"".join(chunks).decode("utf-8", errors="replace")
        self._write_log(log_file, output)
        return AgentResult(
            output=output,
            exit_code=None if timed_out else process.returncode,
            timed_out=timed_out,
            duration=time.monotonic() - start,
            log_file=log_file,
        )

    def _write_log(self, log_file: Optional[Path], output: str) -> None:
        if log_file is None:
            return
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file.write_text(output, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not write agent log {log_file}: {e}")

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            try:
                process.kill()
            except ProcessLookupError:
                pass

    def kill_subprocess_sync(self) -> None:
        process = self._process
        if process is not None:
            logger.info(f"Killing agent process {process.pid}")
            self._kill(process)
