"""
Codeloop exception hierarchy.
"""

from codeloop.exceptions.base import CodeloopError

# Tool exceptions
from codeloop.exceptions.tools import (
    ToolError,
    ToolNotFoundError,
    ToolExecutionError,
    ToolInputValidationError,
    ToolPermissionError,
    ToolTimeoutError,
    ToolRegistrationError,
)

# Context exceptions
from codeloop.exceptions.context import (
    ContextError,
    ContextCompactionError,
    HistoryPersistenceError,
)

# Model exceptions
from codeloop.exceptions.model import (
    ModelError,
    ModelTimeoutError,
    ModelRateLimitError,
    ModelResponseParseError,
    EmptyResponseError,
)

# Agent exceptions
from codeloop.exceptions.agent import (
    AgentError,
    OrchestrationError,
    UserCancellationError,
)

from codeloop.exceptions.config import ConfigError

__all__ = [
    # Base
    "CodeloopError",
    # Tools
    "ToolError",
    "ToolNotFoundError",
    "ToolExecutionError",
    "ToolInputValidationError",
    "ToolPermissionError",
    "ToolTimeoutError",
    "ToolRegistrationError",
    # Context
    "ContextError",
    "ContextCompactionError",
    "HistoryPersistenceError",
    # Model
    "ModelError",
    "ModelTimeoutError",
    "ModelRateLimitError",
    "ModelResponseParseError",
    "EmptyResponseError",
    # Agent
    "AgentError",
    "OrchestrationError",
    "UserCancellationError",
    # Config
    "ConfigError",
]
