# ABOUTME: Run metrics for Ralph Runner
# ABOUTME: Counts iteration outcomes and limit waits for the end-of-run summary

"""Per-run counters."""

import time
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class Metrics:
    """Outcome counters for one ``run`` of the loop."""

    iterations: int = 0
    successful_iterations: int = 0
    failed_iterations: int = 0
    timeouts: int = 0
    timeout_retries: int = 0
    usage_limit_waits: int = 0
    api_limit_waits: int = 0
    rate_limit_waits: int = 0
    start_time: float = field(default_factory=time.time)

    def success_rate(self) -> float:
        total = self.successful_iterations + self.failed_iterations
        if total == 0:
            return 0.0
        return self.successful_iterations / total

    def elapsed_hours(self) -> float:
        return (time.time() - self.start_time) / 3600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iterations": self.iterations,
            "successful_iterations": self.successful_iterations,
            "failed_iterations": self.failed_iterations,
            "timeouts": self.timeouts,
            "timeout_retries": self.timeout_retries,
            "usage_limit_waits": self.usage_limit_waits,
            "api_limit_waits": self.api_limit_waits,
            "rate_limit_waits": self.rate_limit_waits,
            "success_rate": self.success_rate(),
            "elapsed_hours": self.elapsed_hours(),
        }
