#!/usr/bin/env python3
"""
Tool Exception Definitions for Codeloop

All tool-related exceptions inherit from CodeloopError.
"""

from typing import Any, List, Optional

from codeloop.exceptions.base import CodeloopError


class ToolError(CodeloopError):
    """Base exception for all tool-related errors."""

    code = "TOOL_2000"

    def __init__(self, message, tool_name=None, user_hint=None, details=None):
        super().__init__(message, user_hint=user_hint or message, details=details)
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Raised when a requested tool is not registered."""

    code = "TOOL_2001"

    def __init__(self, message, tool_name=None, available_tools=None):
        super().__init__(message, tool_name=tool_name)
        self.available_tools = available_tools or []


class ToolExecutionError(ToolError):
    """Raised when a tool handler fails while running."""

    code = "TOOL_2002"


class ToolInputValidationError(ToolError):
    """Raised when a tool call carries missing or mistyped parameters."""

    code = "TOOL_2003"

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        declared: Optional[List[str]] = None,
        received: Optional[List[str]] = None,
        invalid_input: Any = None,
    ):
        super().__init__(
            message,
            tool_name=tool_name,
            details={"declared": declared or [], "received": received or []},
        )
        self.declared = declared or []
        self.received = received or []
        self.invalid_input = invalid_input


class ToolPermissionError(ToolError):
    """Raised when the permission gate refuses a tool call."""

    code = "TOOL_2004"

    def __init__(self, message, tool_name=None, reason=None):
        super().__init__(message, tool_name=tool_name)
        self.reason = reason


class ToolTimeoutError(ToolError):
    """Raised when a tool exceeds its execution budget."""

    code = "TOOL_2005"

    def __init__(self, message, tool_name=None, timeout_seconds=None):
        super().__init__(message, tool_name=tool_name)
        self.timeout_seconds = timeout_seconds


class ToolRegistrationError(ToolError):
    """Raised when a tool cannot be registered (e.g. duplicate name)."""

    code = "TOOL_2006"
