#!/usr/bin/env python3
"""
Agent Exception Definitions for Codeloop
"""

from codeloop.exceptions.base import CodeloopError


class AgentError(CodeloopError):
    """Base exception for orchestration failures."""

    code = "AGENT_6000"


class OrchestrationError(AgentError):
    """Raised when the agent loop cannot continue."""

    code = "AGENT_6001"


class UserCancellationError(AgentError):
    """Raised when the user interrupts a running operation."""

    code = "AGENT_6002"

    def __init__(self, message="Operation interrupted by user"):
        super().__init__(message, user_hint="Operation cancelled.")
