# ABOUTME: Output package for Ralph Runner
# ABOUTME: Re-exports the rich-based console helpers

"""Console output for Ralph Runner."""

from .console import RalphConsole, format_duration

__all__ = ["RalphConsole", "format_duration"]
