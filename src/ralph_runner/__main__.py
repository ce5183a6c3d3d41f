# ABOUTME: Command-line entry point for Ralph Runner
# ABOUTME: Parses arguments, builds configuration and runs, reports or resets a project

"""``ralph-runner run <project>``."""

import argparse
import logging
import sys
from datetime import datetime
from typing import List, Optional

from . import __version__
from .adapters.command import CommandAdapter
from .circuit_breaker import CircuitBreaker
from .errors import ParseError, SetupError, StorageError
from .logging_config import RalphLogger
from .main import RalphConfig
from .orchestrator import LoopState, RalphOrchestrator
from .output import RalphConsole
from .project import Project
from .status import read_status
from .tasks import TaskStore
from .vcs import validate_branch

logger = logging.getLogger(RalphLogger.CLI)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130

_EXIT_CODES = {
    LoopState.COMPLETE: EXIT_OK,
    LoopState.HALTED: EXIT_OK,
    LoopState.MAX_ITERATIONS: EXIT_OK,
    LoopState.ERROR_EXIT: EXIT_ERROR,
    LoopState.STOPPED: EXIT_INTERRUPTED,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ralph-runner",
        description="Run an AI coding agent in a loop until every story in prd.json passes",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    run = subparsers.add_parser("run", help="Run the loop for a project")
    run.add_argument("project", help="Project name under the projects directory, or a path")
    run.add_argument("-n", "--max-iterations", type=int, help="Stop after N loops (0 = unlimited)")
    run.add_argument("-c", "--calls", type=int, dest="max_calls_per_hour", help="Max agent calls per hour")
    run.add_argument("-t", "--timeout", type=float, dest="timeout_minutes", help="Per-call timeout in minutes")
    run.add_argument("--complete-token", help="Token the agent prints when every story passes")
    run.add_argument("-s", "--status", action="store_true", help="Show project status and exit")
    run.add_argument("-r", "--reset", action="store_true", help="Reset the circuit breaker and exit")
    run.add_argument("--config", help="YAML configuration file")
    run.add_argument("--projects-dir", help="Directory holding named projects")
    run.add_argument("--agent-command", help="Agent command line; the prompt is sent on stdin")
    run.add_argument("--workdir", help="Working directory for the agent")
    run.add_argument("--skip-branch-check", action="store_true", default=None,
                     help="Do not require the branch named in prd.json")
    run.add_argument("-v", "--verbose", action="store_true", default=None, help="Debug logging")
    return parser


def load_config(args: argparse.Namespace) -> RalphConfig:
    """Defaults, then YAML, then environment, then flags."""
    if args.config:
        try:
            config = RalphConfig.from_yaml(args.config)
        except FileNotFoundError as e:
            raise SetupError(str(e)) from e
    else:
        config = RalphConfig()
    config.apply_env()
    config.update(
        max_iterations=args.max_iterations,
        max_calls_per_hour=args.max_calls_per_hour,
        timeout_minutes=args.timeout_minutes,
        complete_token=args.complete_token,
        projects_dir=args.projects_dir,
        agent_command=args.agent_command,
        workdir=args.workdir,
        skip_branch_check=args.skip_branch_check,
        verbose=args.verbose,
    )
    return config


def show_status(project: Project, config: RalphConfig, console: RalphConsole) -> int:
    store = TaskStore(project.task_file)
    task_list = store.load()
    breaker = CircuitBreaker(
        project.circuit_breaker_file,
        no_progress_threshold=config.no_progress_threshold,
        same_error_threshold=config.same_error_threshold,
        output_decline_threshold=config.output_decline_threshold,
    )
    console.print_project_status(
        project.name,
        read_status(project.status_file),
        task_list.pending(),
        breaker.status_lines(),
    )
    return EXIT_OK


def reset_breaker(project: Project, config: RalphConfig, console: RalphConsole) -> int:
    breaker = CircuitBreaker(
        project.circuit_breaker_file,
        no_progress_threshold=config.no_progress_threshold,
        same_error_threshold=config.same_error_threshold,
        output_decline_threshold=config.output_decline_threshold,
    )
    breaker.reset("Manual reset via command line")
    console.print_success(f"Circuit breaker reset to CLOSED for {project.name}")
    return EXIT_OK


def run_loop(project: Project, config: RalphConfig, console: RalphConsole) -> int:
    adapter = CommandAdapter(config.agent_command, cwd=config.workdir)
    if not adapter.available:
        raise SetupError(f"Agent executable not found on PATH: {adapter.name}")

    if config.skip_branch_check:
        logger.warning("Branch check skipped")
    else:
        validate_branch(TaskStore(project.task_file).branch_identifier(), cwd=config.workdir)

    orchestrator = RalphOrchestrator(project, config, adapter=adapter, console=console)
    final_state = orchestrator.run()
    return _EXIT_CODES.get(final_state, EXIT_ERROR)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    console = RalphConsole()

    try:
        config = load_config(args)
        project = Project.open(args.project, config.projects_dir)

        project.ensure_logs_dir()
        RalphLogger.initialize(
            log_level="DEBUG" if config.verbose else None,
            log_file=str(project.run_log_file(datetime.now())),
        )

        if args.status:
            return show_status(project, config, console)
        if args.reset:
            return reset_breaker(project, config, console)
        return run_loop(project, config, console)
    except SetupError as e:
        console.print_error(str(e))
        return EXIT_ERROR
    except (ParseError, StorageError) as e:
        console.print_error(f"Cannot read project state: {e}")
        return EXIT_ERROR
    except KeyboardInterrupt:
        console.print_warning("Interrupted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
