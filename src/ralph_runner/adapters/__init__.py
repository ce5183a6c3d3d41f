# ABOUTME: Agent adapters package
# ABOUTME: Exposes the adapter port and the command-line implementation

"""Adapters for running coding agents."""

from .base import AgentAdapter, AgentResult
from .command import CommandAdapter, DEFAULT_AGENT_COMMAND

__all__ = ["AgentAdapter", "AgentResult", "CommandAdapter", "DEFAULT_AGENT_COMMAND"]
