#!/usr/bin/env python3
"""
Context Exception Definitions for Codeloop
"""

from codeloop.exceptions.base import CodeloopError


class ContextError(CodeloopError):
    """Base exception for conversation context errors."""

    code = "CONTEXT_5000"


class ContextCompactionError(ContextError):
    """Raised when model-assisted compaction returns unusable output."""

    code = "CONTEXT_5001"

    def __init__(self, message, raw_output=None, original_error=None):
        super().__init__(
            message,
            original_error=original_error,
            user_hint="The conversation could not be summarized. It was left unchanged.",
        )
        self.raw_output = raw_output


class HistoryPersistenceError(ContextError):
    """Raised when the session history file cannot be read or written."""

    code = "CONTEXT_5002"

    def __init__(self, message, file_path=None, operation=None, original_error=None):
        super().__init__(message, original_error=original_error)
        self.file_path = file_path
        self.operation = operation
