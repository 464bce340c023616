# Test suite for transient-error retries

import asyncio

import pytest

from codeloop.exceptions import ModelError, ModelRateLimitError, ModelTimeoutError
from codeloop.utils.retry import (
    RETRY_PRESETS,
    RetryConfig,
    async_retrying,
    is_transient_error,
    retry_on_transient_errors,
)

NO_WAIT = RetryConfig(max_attempts=3, initial_delay=0, max_delay=0)


class TestTransientClassification:
    """Test suite for deciding which errors are worth retrying"""

    def test_transient_types(self):
        """Timeouts and rate limits are transient"""
        assert is_transient_error(ModelTimeoutError("slow"))
        assert is_transient_error(ModelRateLimitError("429"))
        assert is_transient_error(asyncio.TimeoutError())

    def test_wrapped_transient_error(self):
        """A wrapped transient cause makes the error transient"""
        error = ModelError("request failed", original_error=asyncio.TimeoutError())
        assert is_transient_error(error)

    def test_message_markers(self):
        """Known network failure messages are transient"""
        assert is_transient_error(RuntimeError("Connection reset by peer"))
        assert is_transient_error(ModelError("HTTP 503 from model server"))

    def test_permanent_errors(self):
        """Other errors are not retried"""
        assert not is_transient_error(ValueError("bad input"))
        assert not is_transient_error(ModelError("HTTP 401 from model server"))

    def test_presets(self):
        """Presets exist for api, tool and network use"""
        assert set(RETRY_PRESETS) == {"api", "tool", "network"}
        assert RETRY_PRESETS["network"].max_attempts == 5


class TestRetryDecorator:
    """Test suite for the retry decorator"""

    def test_retries_until_success(self):
        """Transient failures are retried until the call succeeds"""
        attempts = []

        @retry_on_transient_errors(NO_WAIT)
        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ModelTimeoutError("slow")
            return "ok"

        assert flaky() == "ok"
        assert len(attempts) == 3

    def test_permanent_error_is_not_retried(self):
        """Non-transient errors are raised on the first attempt"""
        attempts = []

        @retry_on_transient_errors(NO_WAIT)
        def broken():
            attempts.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            broken()
        assert len(attempts) == 1

    def test_last_error_is_reraised(self):
        """Once attempts run out the last error propagates unchanged"""
        attempts = []

        @retry_on_transient_errors(NO_WAIT)
        def always_slow():
            attempts.append(1)
            raise ModelTimeoutError("slow")

        with pytest.raises(ModelTimeoutError):
            always_slow()
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_async_retrying(self):
        """The async iterator form retries coroutines"""
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 2:
                raise ModelRateLimitError("busy")
            return "ok"

        async for attempt in async_retrying(NO_WAIT):
            with attempt:
                result = await flaky()

        assert result == "ok"
        assert len(attempts) == 2


if __name__ == "__main__":
    pytest.main([__file__])
