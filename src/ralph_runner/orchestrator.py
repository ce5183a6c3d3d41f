# ABOUTME: Core Ralph loop: invoke the agent until the task list is done or a guard trips
# ABOUTME: Wires rate limiting, timeout retries, response analysis and the circuit breaker

"""Loop controller for Ralph Runner."""

import asyncio
import json
import logging
import signal
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from .adapters.base import AgentAdapter, AgentResult
from .adapters.command import CommandAdapter
from .analyzer import AnalysisResult, ResponseAnalyzer, should_exit_gracefully
from .circuit_breaker import CircuitBreaker
from .context import PromptBuilder
from .errors import ParseError, RalphError, StagnationDetected, StorageError
from .invocation import (
    InvocationOutcome,
    classify_invocation,
    outcome_error,
    parse_usage_reset_time,
)
from .main import RalphConfig
from .metrics import Metrics
from .output import RalphConsole, format_duration
from .project import Project
from .rate_limit import RateLimiter
from .status import LoopStatus, StatusSnapshot, write_status
from .tasks import TaskList, TaskStore

logger = logging.getLogger("ralph.orchestrator")


class LoopState(str, Enum):
    INIT = "INIT"
    RUNNING = "RUNNING"
    WAITING_RATE_LIMIT = "WAITING_RATE_LIMIT"
    WAITING_USAGE_LIMIT = "WAITING_USAGE_LIMIT"
    COMPLETE = "COMPLETE"
    HALTED = "HALTED"
    MAX_ITERATIONS = "MAX_ITERATIONS"
    ERROR_EXIT = "ERROR_EXIT"
    STOPPED = "STOPPED"


TERMINAL_STATES = frozenset({
    LoopState.COMPLETE,
    LoopState.HALTED,
    LoopState.MAX_ITERATIONS,
    LoopState.ERROR_EXIT,
    LoopState.STOPPED,
})

_TERMINAL_STATUS = {
    LoopState.COMPLETE: LoopStatus.COMPLETE,
    LoopState.HALTED: LoopStatus.HALTED,
    LoopState.MAX_ITERATIONS: LoopStatus.MAX_ITERATIONS,
    LoopState.ERROR_EXIT: LoopStatus.ERROR_EXIT,
    LoopState.STOPPED: LoopStatus.STOPPED,
}


@dataclass
class IterationResult:
    """One logical iteration, however many timeout retries it took."""

    outcome: InvocationOutcome
    agent_result: AgentResult
    attempts: int = 1
    analysis: Optional[AnalysisResult] = None
    error: Optional[RalphError] = None


class RalphOrchestrator:
    """Drive the agent through the project's task list.

    Args:
        project: Project whose files the loop reads and writes
        config: Runtime configuration (defaults if omitted)
        adapter: Agent port; defaults to a CommandAdapter for ``config.agent_command``
        console: Console output
        clock: Local time source shared with the rate limiter
        sleep: Awaitable sleep used for every pause and backoff
        install_signal_handlers: Route SIGINT/SIGTERM to a graceful stop
    """

    def __init__(
        self,
        project: Project,
        config: Optional[RalphConfig] = None,
        adapter: Optional[AgentAdapter] = None,
        console: Optional[RalphConsole] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        install_signal_handlers: bool = True,
    ):
        self.project = project
        self.config = config or RalphConfig()
        self.console = console or RalphConsole()
        self._clock = clock
        self._sleep = sleep
        self.install_signal_handlers = install_signal_handlers

        self.task_store = TaskStore(project.task_file)
        self.rate_limiter = RateLimiter(
            project.rate_limit_file,
            max_calls_per_window=self.config.get_max_calls_per_hour(),
            clock=clock,
        )
        self.circuit_breaker = CircuitBreaker(
            project.circuit_breaker_file,
            no_progress_threshold=self.config.no_progress_threshold,
            same_error_threshold=self.config.same_error_threshold,
            output_decline_threshold=self.config.output_decline_threshold,
        )
        self.analyzer = ResponseAnalyzer(project.analysis_file)
        self.prompt_builder = PromptBuilder(
            prompt_file=project.prompt_file,
            task_file=project.task_file,
            progress_file=project.progress_file,
            requirements_file=project.requirements_file,
            complete_token=self.config.complete_token,
            max_context_size=self.config.max_context_size,
        )
        self.adapter = adapter or CommandAdapter(self.config.agent_command, cwd=self.config.workdir)

        self.metrics = Metrics()
        self.state = LoopState.INIT
        self.reason = ""
        self.loop_count = 0
        self.last_result: Optional[IterationResult] = None

        self.stop_requested = False
        self._running_task: Optional[asyncio.Task] = None
        self._signals_installed = False

    # ------------------------------------------------------------------
    # Entry points

    def run(self) -> LoopState:
        """Run the loop to a terminal state."""
        return asyncio.run(self.arun())

    async def arun(self) -> LoopState:
        """Run the loop asynchronously and return the terminal state."""
        self._running_task = asyncio.current_task()
        if self.install_signal_handlers:
            self._setup_async_signal_handlers()

        max_iterations = self.config.get_max_iterations()
        logger.info(f"Ralph starting for project: {self.project.name}")
        logger.info(
            f"Max calls/hour: {self.rate_limiter.max_calls_per_window} | "
            f"Timeout: {self.config.timeout_minutes}m | "
            f"Max iterations: {max_iterations if max_iterations > 0 else 'unlimited'}"
        )
        logger.info(f"Complete token: {self.config.complete_token}")

        try:
            self.project.ensure_logs_dir()
            self.circuit_breaker.initialize()
            self.rate_limiter.current()
            self.state = LoopState.RUNNING

            while self.state not in TERMINAL_STATES:
                if self.stop_requested:
                    self._finish(LoopState.STOPPED, "Stopped by signal")
                    break
                await self._run_iteration()
        except StagnationDetected as e:
            logger.error("Circuit breaker is OPEN - execution halted")
            logger.info(f"Run: ralph-runner run {self.project.name} --reset")
            self._finish(LoopState.HALTED, str(e))
        except asyncio.CancelledError:
            self._finish(LoopState.STOPPED, "Interrupted")
        except (ParseError, StorageError) as e:
            logger.error(f"Unrecoverable state error: {e}")
            self._finish(LoopState.ERROR_EXIT, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error in loop: {e}")
            self._finish(LoopState.ERROR_EXIT, f"{type(e).__name__}: {e}")
        finally:
            self._remove_signal_handlers()
            self._print_summary()

        logger.info("Ralph loop finished")
        return self.state

    # ------------------------------------------------------------------
    # Signals

    def _request_stop(self, signum: int) -> None:
        """Kill the agent first, then stop the loop."""
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.adapter.kill_subprocess_sync()
        self.stop_requested = True
        if self._running_task and not self._running_task.done():
            self._running_task.cancel()

    def _setup_async_signal_handlers(self) -> None:
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, lambda s=sig: self._request_stop(s))
            self._signals_installed = True
        except (NotImplementedError, RuntimeError):
            # Windows event loops, or not running in the main thread
            logger.debug("Async signal handlers unavailable")

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    # ------------------------------------------------------------------
    # Iteration

    async def _run_iteration(self) -> None:
        self.loop_count += 1
        self.state = LoopState.RUNNING
        max_iterations = self.config.get_max_iterations()
        self.console.print_iteration_header(self.loop_count, max_iterations)
        logger.info(f"Loop #{self.loop_count}")

        if max_iterations > 0 and self.loop_count > max_iterations:
            logger.warning(f"Max iterations reached ({max_iterations})")
            self._finish(LoopState.MAX_ITERATIONS, f"Max iterations reached ({max_iterations})")
            return

        if self.circuit_breaker.should_halt_execution():
            breaker = self.circuit_breaker.load()
            raise StagnationDetected(breaker.opened_reason or "unknown reason")

        while not self.rate_limiter.can_call():
            await self._wait_for_rate_limit_reset()
            if self.stop_requested:
                return

        task_list = self.task_store.load()
        incomplete = task_list.count_incomplete()
        if incomplete == 0:
            logger.info(f"All stories completed! ({task_list.count_total()} stories in {self.loop_count} loops)")
            self._finish(LoopState.COMPLETE, "All stories completed", task_list=task_list)
            return

        logger.info(f"Incomplete stories: {incomplete}")
        self.rate_limiter.record_call()
        self._update_status(LoopStatus.RUNNING, task_list=task_list)
        self.metrics.iterations += 1

        result = await self._execute_agent(task_list)
        self.last_result = result
        await self._handle_result(result)
        logger.info(f"End Loop #{self.loop_count}")

    async def _execute_agent(self, task_list: TaskList) -> IterationResult:
        """Invoke the agent, retrying timeouts up to ``max_timeout_retries`` times."""
        prompt = self.prompt_builder.get_prompt(task_list)
        timeout = self.config.timeout_seconds
        max_retries = self.config.max_timeout_retries
        attempt = 0

        while True:
            attempt += 1
            if attempt > 1:
                logger.info(f"Timeout retry {attempt - 1}/{max_retries} (timeout: {self.config.timeout_minutes}m)...")
            else:
                logger.info(f"Starting {self.adapter.name} (timeout: {self.config.timeout_minutes}m)...")

            log_file = self.project.agent_log_file(self._clock())
            agent_result = await self.adapter.aexecute(prompt, timeout, log_file)
            outcome = classify_invocation(agent_result, self.config.complete_token)

            if outcome == InvocationOutcome.TIMEOUT and attempt <= max_retries and not self.stop_requested:
                self.metrics.timeout_retries += 1
                logger.warning(
                    f"Agent timed out after {self.config.timeout_minutes} minutes "
                    f"(attempt {attempt}/{max_retries + 1}), retrying in "
                    f"{format_duration(self.config.timeout_retry_delay)}"
                )
                await self._pause(self.config.timeout_retry_delay)
                continue

            if outcome == InvocationOutcome.TIMEOUT:
                logger.error(
                    f"Agent timed out after {self.config.timeout_minutes} minutes "
                    f"(all {attempt} attempts exhausted)"
                )
            return IterationResult(outcome=outcome, agent_result=agent_result, attempts=attempt)

    async def _handle_result(self, result: IterationResult) -> None:
        outcome = result.outcome
        if outcome == InvocationOutcome.PROJECT_COMPLETE:
            self.metrics.successful_iterations += 1
            logger.info("Agent signaled PROJECT COMPLETE")
            self._finish(LoopState.COMPLETE, "Agent emitted the completion token")
            return

        if outcome == InvocationOutcome.SUCCESS:
            self.metrics.successful_iterations += 1
            logger.info("Agent execution completed")
            result.analysis = self.analyzer.analyze(result.agent_result.output)
            self.circuit_breaker.record_loop_result(
                self.loop_count,
                files_changed=result.analysis.files_modified,
                has_errors=result.analysis.has_errors,
                output_length=result.analysis.output_length,
                error_message=result.analysis.error_message,
            )

            exit_reason = should_exit_gracefully(result.analysis)
            if exit_reason == "exit_signal":
                logger.info("Agent signaled loop completion")
            elif exit_reason == "completion_signals":
                # phrases alone are a hint; the task list decides
                task_list = self.task_store.load()
                if task_list.count_incomplete() > 0:
                    logger.info(
                        f"Completion phrases detected but {task_list.count_incomplete()} "
                        "stories are still pending, continuing"
                    )
                    exit_reason = None
            if exit_reason and self.config.honor_exit_signal:
                self._finish(LoopState.COMPLETE, f"Graceful exit ({exit_reason})")
                return

            self._update_status(LoopStatus.SUCCESS)
            logger.info(f"Pausing {format_duration(self.config.success_pause)} before next loop...")
            await self._pause(self.config.success_pause)
            return

        self.metrics.failed_iterations += 1

        if outcome == InvocationOutcome.USAGE_LIMIT:
            await self._wait_for_usage_reset(result)
            return

        result.error = outcome_error(outcome, result.agent_result)
        if outcome == InvocationOutcome.API_LIMIT:
            self.metrics.api_limit_waits += 1
            self.state = LoopState.WAITING_USAGE_LIMIT
            logger.error(f"{result.error}. Waiting {format_duration(self.config.api_limit_wait)}...")
            self._update_status(LoopStatus.API_LIMIT, reason=str(result.error))
            await self._countdown(self.config.api_limit_wait, "Time until retry")
            self.state = LoopState.RUNNING
        elif outcome == InvocationOutcome.TIMEOUT:
            self.metrics.timeouts += 1
            self._update_status(LoopStatus.TIMEOUT, reason=f"{result.error} ({result.attempts} attempts)")
            logger.warning(
                f"All timeout retries exhausted, waiting {format_duration(self.config.timeout_backoff)} before next loop..."
            )
            await self._pause(self.config.timeout_backoff)
        else:
            logger.error(str(result.error))
            self._update_status(LoopStatus.ERROR, reason=str(result.error))
            logger.warning(f"Waiting {format_duration(self.config.error_backoff)} before retry...")
            await self._pause(self.config.error_backoff)

    # ------------------------------------------------------------------
    # Waiting

    async def _wait_for_rate_limit_reset(self) -> None:
        self.state = LoopState.WAITING_RATE_LIMIT
        self.metrics.rate_limit_waits += 1
        calls = self.rate_limiter.calls_this_window()
        limit = self.rate_limiter.max_calls_per_window
        wait = self.rate_limiter.seconds_until_next_window()
        logger.warning(f"Rate limit reached ({calls}/{limit}). Waiting for reset...")
        logger.info(f"Sleeping for {format_duration(wait)} until next hour...")
        self._update_status(LoopStatus.RATE_LIMITED, reason=f"Rate limit reached ({calls}/{limit})")
        await self._countdown(wait, "Time until reset")
        self.state = LoopState.RUNNING

    async def _wait_for_usage_reset(self, result: IterationResult) -> None:
        self.metrics.usage_limit_waits += 1
        self.state = LoopState.WAITING_USAGE_LIMIT
        logger.warning("Agent is out of usage - detected limit message")

        now = self._clock()
        if now.tzinfo is None:
            now = now.astimezone()
        reset_at = parse_usage_reset_time(result.agent_result.output, now)
        result.error = outcome_error(result.outcome, result.agent_result, reset_at)
        self._update_status(LoopStatus.USAGE_LIMIT, reason=str(result.error))
        if reset_at is not None and reset_at > now:
            wait = (reset_at - now).total_seconds()
            logger.info(f"Usage limit resets at {reset_at.isoformat()} (in {format_duration(wait)})")
        elif reset_at is not None:
            wait = self.config.usage_limit_wait
            logger.warning(
                f"Reset time {reset_at.isoformat()} is already past, waiting {format_duration(wait)}..."
            )
        else:
            wait = self.config.usage_limit_wait
            logger.warning(f"No reset time in output, waiting {format_duration(wait)}...")

        await self._countdown(wait, "Time until usage reset")
        self.state = LoopState.RUNNING
        logger.info("Limit reset! Resuming execution...")

    async def _pause(self, seconds: float) -> None:
        if seconds > 0 and not self.stop_requested:
            await self._sleep(seconds)

    async def _countdown(self, seconds: float, label: str) -> None:
        """Sleep in ``countdown_interval`` steps, showing the time left."""
        remaining = seconds
        with self.console.countdown(label, seconds) as update:
            while remaining > 0 and not self.stop_requested:
                step = min(self.config.countdown_interval, remaining)
                await self._sleep(step)
                remaining -= step
                update(remaining)

    # ------------------------------------------------------------------
    # Status

    def _current_story(self, task_list: Optional[TaskList]) -> str:
        if task_list is None:
            return ""
        pending = task_list.pending()
        return pending[0].id if pending else ""

    def _update_status(
        self,
        status: LoopStatus,
        reason: str = "",
        task_list: Optional[TaskList] = None,
    ) -> None:
        if task_list is None:
            try:
                task_list = self.task_store.load()
            except (ParseError, StorageError) as e:
                logger.warning(f"Status snapshot without task counts: {e}")
        try:
            calls = self.rate_limiter.calls_this_window()
        except (ParseError, StorageError) as e:
            logger.warning(f"Status snapshot without call count: {e}")
            calls = 0

        snapshot = StatusSnapshot(
            status=status.value,
            loop_count=self.loop_count,
            stories_complete=task_list.count_complete() if task_list else 0,
            stories_total=task_list.count_total() if task_list else 0,
            calls_this_hour=calls,
            max_calls_per_hour=self.rate_limiter.max_calls_per_window,
            current_story=self._current_story(task_list),
            reason=reason,
        )
        write_status(self.project.status_file, snapshot)

    def _finish(self, state: LoopState, reason: str, task_list: Optional[TaskList] = None) -> None:
        self.state = state
        self.reason = reason
        if state == LoopState.COMPLETE:
            self.console.print_success(reason)
        elif state in (LoopState.HALTED, LoopState.ERROR_EXIT):
            self.console.print_error(reason)
        else:
            self.console.print_warning(reason)
        try:
            self._update_status(_TERMINAL_STATUS[state], reason=reason, task_list=task_list)
        except StorageError as e:
            logger.error(f"Could not write final status: {e}")

    def _print_summary(self) -> None:
        metrics = self.metrics.to_dict()
        self.console.print_summary(self.state.value, self.reason, metrics)

        metrics_data = {
            "project": self.project.name,
            "final_state": self.state.value,
            "reason": self.reason,
            "loop_count": self.loop_count,
            "summary": metrics,
        }
        try:
            metrics_file = self.project.metrics_file(self._clock())
            metrics_file.parent.mkdir(parents=True, exist_ok=True)
            metrics_file.write_text(json.dumps(metrics_data, indent=2))
            logger.info(f"Metrics saved to {metrics_file}")
        except OSError as e:
            logger.warning(f"Could not save metrics: {e}")
