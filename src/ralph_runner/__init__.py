# ABOUTME: Ralph Runner package
# ABOUTME: Loops an AI coding agent over a prd.json task list with rate limiting and a circuit breaker

"""Ralph Runner - autonomous agent loop with safety guards."""

__version__ = "0.1.0"

from .main import RalphConfig
from .orchestrator import LoopState, RalphOrchestrator
from .project import Project

__all__ = ["RalphConfig", "RalphOrchestrator", "LoopState", "Project", "__version__"]
