# ABOUTME: Configuration model for Ralph Runner
# ABOUTME: Defaults, YAML loading, environment overrides and validation

"""Runtime configuration.

Precedence, lowest to highest: dataclass defaults, YAML file, environment
variables, command-line flags.
"""

import os
import threading
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .adapters.command import DEFAULT_AGENT_COMMAND
from .errors import SetupError

DEFAULT_COMPLETE_TOKEN = "<promise>COMPLETE</promise>"

ENV_OVERRIDES = {
    "RALPH_MAX_ITERATIONS": ("max_iterations", int),
    "RALPH_MAX_CALLS_PER_HOUR": ("max_calls_per_hour", int),
    "RALPH_TIMEOUT_MINUTES": ("timeout_minutes", float),
    "RALPH_COMPLETE_TOKEN": ("complete_token", str),
    "RALPH_AGENT_COMMAND": ("agent_command", str),
    "RALPH_CB_NO_PROGRESS_THRESHOLD": ("no_progress_threshold", int),
    "RALPH_CB_SAME_ERROR_THRESHOLD": ("same_error_threshold", int),
    "RALPH_CB_OUTPUT_DECLINE_THRESHOLD": ("output_decline_threshold", int),
}


@dataclass
class RalphConfig:
    """Everything the loop controller and CLI need to know."""

    # Loop limits
    max_iterations: int = 0  # 0 = unlimited
    max_calls_per_hour: int = 100
    timeout_minutes: float = 20
    max_timeout_retries: int = 2
    complete_token: str = DEFAULT_COMPLETE_TOKEN
    honor_exit_signal: bool = True

    # Agent
    agent_command: str = DEFAULT_AGENT_COMMAND
    workdir: Optional[str] = None
    projects_dir: str = "ralph/projects"
    max_context_size: int = 8000

    # Circuit breaker
    no_progress_threshold: int = 3
    same_error_threshold: int = 5
    output_decline_threshold: int = 70

    # Delays, in seconds
    success_pause: float = 5
    timeout_retry_delay: float = 10
    timeout_backoff: float = 60
    error_backoff: float = 30
    api_limit_wait: float = 3600
    usage_limit_wait: float = 3600
    countdown_interval: float = 10

    verbose: bool = False
    skip_branch_check: bool = False

    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False, compare=False)

    @classmethod
    def option_names(cls) -> List[str]:
        return [f.name for f in fields(cls) if not f.name.startswith("_")]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RalphConfig":
        ConfigValidator.check_keys(data)
        config = cls(**dict(data))
        ConfigValidator.validate(config)
        return config

    @classmethod
    def from_yaml(cls, config_path: str) -> "RalphConfig":
        """Load configuration from a YAML file.

        Raises:
            FileNotFoundError: The file does not exist
            SetupError: The file is not a YAML mapping or holds invalid values
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise SetupError(f"Invalid YAML in {config_path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise SetupError(f"{config_path} must contain a mapping of options")
        return cls.from_dict(data)

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> "RalphConfig":
        """Overlay RALPH_* environment variables onto this config."""
        environ = os.environ if environ is None else environ
        with self._lock:
            for var, (name, cast) in ENV_OVERRIDES.items():
                raw = environ.get(var)
                if raw is None or raw == "":
                    continue
                try:
                    setattr(self, name, cast(raw))
                except ValueError:
                    raise SetupError(f"{var}={raw!r} is not a valid {cast.__name__}")
        ConfigValidator.validate(self)
        return self

    def update(self, **overrides: Any) -> "RalphConfig":
        """Apply explicit overrides, ignoring ``None`` values."""
        with self._lock:
            for name, value in overrides.items():
                if value is None:
                    continue
                if name not in self.option_names():
                    raise SetupError(f"Unknown configuration option: {name}")
                setattr(self, name, value)
        ConfigValidator.validate(self)
        return self

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60

    def get_max_iterations(self) -> int:
        with self._lock:
            return self.max_iterations

    def get_max_calls_per_hour(self) -> int:
        with self._lock:
            return self.max_calls_per_hour

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {name: getattr(self, name) for name in self.option_names()}


class ConfigValidator:
    """Reject unknown keys and out-of-range values with a SetupError."""

    NON_NEGATIVE = (
        "max_iterations",
        "max_timeout_retries",
        "success_pause",
        "timeout_retry_delay",
        "timeout_backoff",
        "error_backoff",
        "api_limit_wait",
        "usage_limit_wait",
    )
    AT_LEAST_ONE = (
        "max_calls_per_hour",
        "no_progress_threshold",
        "same_error_threshold",
        "max_context_size",
    )

    @staticmethod
    def check_keys(data: Mapping[str, Any]) -> None:
        known = set(RalphConfig.option_names())
        unknown = sorted(set(data) - known)
        if unknown:
            raise SetupError(f"Unknown configuration option(s): {', '.join(unknown)}")

    @classmethod
    def validate(cls, config: RalphConfig) -> None:
        errors: List[str] = []
        try:
            for name in cls.NON_NEGATIVE:
                if getattr(config, name) < 0:
                    errors.append(f"{name} must be >= 0")
            for name in cls.AT_LEAST_ONE:
                if getattr(config, name) < 1:
                    errors.append(f"{name} must be >= 1")
            if config.timeout_minutes <= 0:
                errors.append("timeout_minutes must be > 0")
            if config.countdown_interval <= 0:
                errors.append("countdown_interval must be > 0")
            if not 1 <= config.output_decline_threshold <= 100:
                errors.append("output_decline_threshold must be between 1 and 100")
            if not config.complete_token:
                errors.append("complete_token must not be empty")
            if not str(config.agent_command).strip():
                errors.append("agent_command must not be empty")
        except TypeError as e:
            raise SetupError(f"Invalid configuration value type: {e}") from e
        if errors:
            raise SetupError("Invalid configuration: " + "; ".join(errors))
