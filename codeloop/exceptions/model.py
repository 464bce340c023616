#!/usr/bin/env python3
"""
Model Exception Definitions for Codeloop

All model-related exceptions inherit from CodeloopError.
"""

from codeloop.exceptions.base import CodeloopError


class ModelError(CodeloopError):
    """Base exception for model-related errors."""

    code = "MODEL_1000"


class ModelTimeoutError(ModelError):
    """Raised when model API request times out."""

    code = "MODEL_1001"

    def __init__(self, message, timeout_seconds=None, details=None):
        super().__init__(message, details=details)
        self.timeout_seconds = timeout_seconds


class ModelRateLimitError(ModelError):
    """Raised when the backend answers with HTTP 429."""

    code = "MODEL_1002"

    def __init__(self, message, retry_after=None, details=None):
        super().__init__(message, details=details)
        self.retry_after = retry_after or 60
        self.user_hint = f"Rate limit exceeded. Retry after {self.retry_after} seconds."


class ModelResponseParseError(ModelError):
    """Raised when model response cannot be parsed (e.g., invalid JSON)."""

    code = "MODEL_1003"

    def __init__(self, message, raw_response=None, original_error=None, details=None):
        super().__init__(message, original_error=original_error, details=details)
        self.raw_response = raw_response
        self.user_hint = "The model returned invalid data. Please try again."


class EmptyResponseError(ModelError):
    """Raised when model returns an empty response."""

    code = "MODEL_1004"
