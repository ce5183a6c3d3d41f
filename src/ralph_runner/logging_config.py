# ABOUTME: Logging configuration for Ralph Runner
# ABOUTME: Sets up the "ralph" logger hierarchy with console and rotating file handlers

"""Centralised logging setup for Ralph Runner.

Environment variables:
    RALPH_LOG_LEVEL: Root level for the "ralph" hierarchy (default INFO)
    RALPH_LOG_CONSOLE: "false" disables console output
    RALPH_LOG_DETAILED: "true" adds file/line/function to every record
    RALPH_LOG_FILE: Explicit log file path
    RALPH_LOG_DIR: Directory for the default log file
    RALPH_LOG_MAX_BYTES: Rotation size for file logs (default 10MB)
    RALPH_LOG_BACKUP_COUNT: Rotated files to keep (default 5)
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional


class RalphLogger:
    """Configure and hand out loggers in the ``ralph`` namespace."""

    ROOT = "ralph"
    ORCHESTRATOR = "ralph.orchestrator"
    CIRCUIT_BREAKER = "ralph.circuit_breaker"
    ANALYZER = "ralph.analyzer"
    RATE_LIMIT = "ralph.rate_limit"
    TASKS = "ralph.tasks"
    ADAPTER = "ralph.adapter"
    CLI = "ralph.cli"
    CONTEXT = "ralph.context"
    VCS = "ralph.vcs"

    DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    DETAILED_FORMAT = (
        "%(asctime)s - %(name)s - %(levelname)s - "
        "[%(filename)s:%(lineno)d - %(funcName)s] - %(message)s"
    )

    _initialized = False
    _log_dir: Optional[Path] = None

    @classmethod
    def initialize(
        cls,
        log_level: Optional[str] = None,
        log_file: Optional[str] = None,
        log_dir: Optional[str] = None,
        console_output: Optional[bool] = None,
        detailed_format: Optional[bool] = None,
    ) -> None:
        """Configure the ``ralph`` logger hierarchy once per process.

        Explicit arguments win over environment variables.
        """
        if cls._initialized:
            return

        log_level = log_level or os.environ.get("RALPH_LOG_LEVEL", "INFO")
        if console_output is None:
            console_output = os.environ.get("RALPH_LOG_CONSOLE", "true").lower() != "false"
        if detailed_format is None:
            detailed_format = os.environ.get("RALPH_LOG_DETAILED", "false").lower() == "true"
        log_file = log_file or os.environ.get("RALPH_LOG_FILE")
        log_dir = log_dir or os.environ.get("RALPH_LOG_DIR")

        root = logging.getLogger(cls.ROOT)
        root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
        root.propagate = False

        formatter = logging.Formatter(
            cls.DETAILED_FORMAT if detailed_format else cls.DEFAULT_FORMAT
        )

        if console_output:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(formatter)
            root.addHandler(console_handler)

        if log_file or log_dir:
            try:
                if log_file:
                    path = Path(log_file)
                    path.parent.mkdir(parents=True, exist_ok=True)
                    cls._log_dir = path.parent
                else:
                    cls._log_dir = Path(log_dir)
                    cls._log_dir.mkdir(parents=True, exist_ok=True)
                    path = cls._log_dir / "ralph.log"

                file_handler = logging.handlers.RotatingFileHandler(
                    path,
                    maxBytes=int(os.environ.get("RALPH_LOG_MAX_BYTES", 10 * 1024 * 1024)),
                    backupCount=int(os.environ.get("RALPH_LOG_BACKUP_COUNT", 5)),
                    encoding="utf-8",
                )
                file_handler.setFormatter(formatter)
                root.addHandler(file_handler)
            except OSError as e:
                root.warning(f"File logging disabled: {e}")

        cls._initialized = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Return a logger, initializing the hierarchy with defaults if needed."""
        if not cls._initialized:
            cls.initialize()
        return logging.getLogger(name)

    @classmethod
    def set_level(cls, level: str, logger_name: Optional[str] = None) -> None:
        """Change the level of the root ``ralph`` logger or a named child."""
        logging.getLogger(logger_name or cls.ROOT).setLevel(
            getattr(logging, level.upper(), logging.INFO)
        )

    @classmethod
    def reset(cls) -> None:
        """Drop all handlers so ``initialize`` can run again."""
        root = logging.getLogger(cls.ROOT)
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        root.propagate = True
        root.setLevel(logging.NOTSET)
        cls._initialized = False
        cls._log_dir = None


def get_logger(name: str) -> logging.Logger:
    """Convenience wrapper around ``logging.getLogger``."""
    return logging.getLogger(name)
