#!/usr/bin/env python3
"""
Base Exception Contract for Codeloop

Provides the single source of truth for the Codeloop error contract.
All domain-specific exceptions must inherit from CodeloopError.
"""

from typing import Any, Dict, Optional


class CodeloopError(Exception):
    """
    The Base Contract for all Codeloop errors.
    """

    code = "CODELOOP_0000"

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        user_hint: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.user_hint = user_hint or "An internal error occurred."
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used for logging and event payloads."""
        data: Dict[str, Any] = {
            "code": self.code,
            "type": self.__class__.__name__,
            "message": self.message,
            "user_hint": self.user_hint,
        }
        if self.details:
            data["details"] = self.details
        if self.original_error is not None:
            data["original_error"] = repr(self.original_error)
        return data

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"
