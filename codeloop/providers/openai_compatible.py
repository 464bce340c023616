#!/usr/bin/env python3
"""
OpenAI-Compatible Chat Client
=============================

Model-chat collaborator for the agent loop. Talks to any server exposing
`/chat/completions` (OpenAI, OpenRouter, Ollama, vLLM, LM Studio) and
returns the assistant text of one non-streaming completion.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from codeloop.agent.context.message import Message
from codeloop.agent.core.cancellation import AbortSignal
from codeloop.config.settings import Settings
from codeloop.exceptions import (
    EmptyResponseError,
    ModelError,
    ModelRateLimitError,
    ModelResponseParseError,
    ModelTimeoutError,
    UserCancellationError,
)
from codeloop.utils.retry import RetryConfig, async_retrying, is_transient_error


class OpenAICompatibleChatClient:
    """
    Non-streaming chat client with retries on transient failures.
    """

    def __init__(
        self,
        base_url: str,
        model_name: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.chat_url = f"{self.base_url}/chat/completions"
        self.model_name = model_name
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.retry_config = retry_config or RetryConfig()
        self.logger = logging.getLogger("ChatClient")
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAICompatibleChatClient":
        return cls(
            base_url=settings.model_base_url,
            model_name=settings.model_name,
            api_key=settings.model_api_key,
            timeout=settings.model_timeout,
            temperature=settings.model_temperature,
            max_tokens=settings.model_max_tokens,
            retry_config=RetryConfig(
                max_attempts=settings.retry_max_attempts,
                initial_delay=settings.retry_initial_delay,
                max_delay=settings.retry_max_delay,
                multiplier=settings.retry_multiplier,
            ),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """
        Get or create the aiohttp session.
        """
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout), headers=headers
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "OpenAICompatibleChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _prepare_payload(
        self,
        messages: Sequence[Message],
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> Dict[str, Any]:
        return {
            "model": self.model_name,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
            "stream": False,
        }

    async def chat(
        self,
        messages: List[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        abort_signal: Optional[AbortSignal] = None,
    ) -> str:
        """
        Send the conversation and return the assistant's reply text.

        Raises:
            UserCancellationError: If `abort_signal` trips first.
            ModelError: (or a subclass) once retries are exhausted.
        """
        payload = self._prepare_payload(messages, temperature, max_tokens)
        request = asyncio.create_task(self._request_with_retry(payload))
        if abort_signal is None:
            return await request

        aborted = asyncio.create_task(abort_signal.wait())
        try:
            await asyncio.wait({request, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborted.cancel()

        if not request.done():
            request.cancel()
            raise UserCancellationError("Model request interrupted by user")
        return request.result()

    async def _request_with_retry(self, payload: Dict[str, Any]) -> str:
        async for attempt in async_retrying(self.retry_config, is_transient_error):
            with attempt:
                return await self._request(payload)
        raise ModelError("Retry loop exited without a result")  # pragma: no cover

    async def _request(self, payload: Dict[str, Any]) -> str:
        session = await self._get_session()
        details = {"model": self.model_name, "url": self.chat_url}

        try:
            async with session.post(self.chat_url, json=payload) as response:
                await self._check_error_status(response)
                data = await response.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise ModelTimeoutError(
                "Model request timed out",
                timeout_seconds=self.timeout,
                details=details,
            ) from exc
        except aiohttp.ClientError as exc:
            raise ModelError(
                f"Server communication error: {exc}",
                original_error=exc,
                details=details,
            ) from exc
        except json.JSONDecodeError as exc:
            raise ModelResponseParseError(
                "Model server returned invalid JSON", original_error=exc, details=details
            ) from exc

        return self._extract_content(data)

    async def _check_error_status(self, response: aiohttp.ClientResponse) -> None:
        """
        Raise the matching ModelError for a non-2xx response.
        """
        if response.status < 400:
            return

        body = await response.text()
        details = {"status": response.status, "body": body[:500]}
        if response.status == 429:
            retry_after = response.headers.get("Retry-After")
            raise ModelRateLimitError(
                f"HTTP 429 rate limited by {self.base_url}",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                details=details,
            )
        raise ModelError(f"HTTP {response.status} from model server: {body[:200]}", details=details)

    def _extract_content(self, data: Any) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ModelResponseParseError(
                "Unexpected response shape from model server",
                raw_response=data,
                original_error=exc,
            ) from exc

        if not content or not str(content).strip():
            raise EmptyResponseError(
                "Model returned an empty response", details={"model": self.model_name}
            )
        return str(content)
