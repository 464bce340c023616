#!/usr/bin/env python3
"""
Configuration Exception Definitions for Codeloop
"""

from codeloop.exceptions.base import CodeloopError


class ConfigError(CodeloopError):
    """Raised when settings are missing or inconsistent."""

    code = "CONFIG_7001"

    def __init__(self, message, field_name=None, invalid_value=None):
        super().__init__(message, user_hint=message)
        self.field_name = field_name
        self.invalid_value = invalid_value
