import asyncio
import dataclasses
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from codeloop.agent.core.cancellation import (
    REASON_SIGINT,
    REASON_TIMEOUT,
    AbortSignal,
    TimeoutController,
)
from codeloop.agent.structs import ToolCall, ToolResult
from codeloop.exceptions import (
    ToolError,
    ToolExecutionError,
    ToolInputValidationError,
    ToolNotFoundError,
    ToolTimeoutError,
    UserCancellationError,
)
from codeloop.tools.base import ToolDefinition
from codeloop.tools.params import json_kind, matches_kind, missing_required, normalize_parameters
from codeloop.tools.registry import ToolRegistry
from codeloop.utils.truncation import MAX_BYTES, MAX_LINES, truncate_output

# How long an aborted handler gets to unwind before we stop waiting for it.
CANCEL_GRACE_SECONDS = 1.0


class ToolDispatcher:
    """
    The Safe Runner.
    Executes one tool call at a time, bounded by a timeout and the
    caller's abort signal. Every failure comes back as a ToolResult.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        default_timeout: float = 120.0,
        max_timeout: float = 600.0,
        max_output_lines: int = MAX_LINES,
        max_output_bytes: int = MAX_BYTES,
        output_dir: Optional[Path] = None,
    ):
        self._registry = registry
        self.default_timeout = default_timeout
        self.max_timeout = max_timeout
        self.max_output_lines = max_output_lines
        self.max_output_bytes = max_output_bytes
        self.output_dir = output_dir
        self._logger = logging.getLogger("ToolDispatcher")

    def effective_timeout(self, override: Optional[float] = None) -> float:
        requested = self.default_timeout if override is None else override
        return min(requested, self.max_timeout)

    async def execute(
        self,
        call: ToolCall,
        abort_signal: Optional[AbortSignal] = None,
        timeout: Optional[float] = None,
    ) -> ToolResult:
        """
        Executes a tool call atomically.
        """
        start_time = time.time()
        definition = self._registry.get_tool(call.tool)

        # 1. Validation Barrier
        if definition is None:
            return self._finish(
                ToolResult.fail(
                    f"Tool not found: {call.tool}. Available tools: {', '.join(self._registry.list_tools())}",
                    error_code=ToolNotFoundError.code,
                ),
                start_time,
            )

        try:
            arguments = self.validate_parameters(definition, call.parameters)
        except ToolInputValidationError as e:
            self._logger.warning("Rejected %s call: %s", definition.name, e.message)
            return self._finish(ToolResult.fail(e.message, error_code=e.code), start_time)

        if abort_signal is not None and abort_signal.aborted:
            return self._finish(
                ToolResult.fail(
                    "Tool execution interrupted by user",
                    signal=REASON_SIGINT,
                    error_code=UserCancellationError.code,
                ),
                start_time,
            )

        # 2. Execution bounded by timeout and caller interrupt
        seconds = self.effective_timeout(timeout)
        self._logger.info("Executing %s (ID: %s, timeout %ss)", definition.name, call.id, seconds)
        result = await self._run_bounded(definition, arguments, abort_signal, seconds)

        # 3. Output truncation
        if result.success and result.output and "truncated" not in result.metadata:
            result = await self._truncate(result)

        return self._finish(result, start_time)

    async def _run_bounded(
        self,
        definition: ToolDefinition,
        arguments: Dict[str, Any],
        abort_signal: Optional[AbortSignal],
        seconds: float,
    ) -> ToolResult:
        timer = TimeoutController(seconds)
        combined = AbortSignal.any([timer.signal, abort_signal])
        task = asyncio.create_task(definition.invoke(arguments, combined))
        aborted = asyncio.create_task(combined.wait())

        try:
            await asyncio.wait({task, aborted}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            timer.cancel()
            combined.detach()
            aborted.cancel()

        if not task.done():
            task.cancel()
            await asyncio.wait({task}, timeout=CANCEL_GRACE_SECONDS)
            return self._aborted_result(definition.name, combined.reason, seconds)

        if task.cancelled():
            return self._aborted_result(definition.name, combined.reason or REASON_SIGINT, seconds)

        try:
            return task.result()

        except ToolError as e:
            # Domain specific errors (safe)
            self._logger.warning("Tool %s failed: %s", definition.name, e.user_hint)
            return ToolResult.fail(e.user_hint, error_code=e.code)

        except Exception as e:  # pylint: disable=broad-exception-caught
            # Unexpected crashes (catch-all barrier)
            self._logger.exception("Unexpected error in tool %s", definition.name)
            return ToolResult.fail(f"System Error: {e}", error_code=ToolExecutionError.code)

    def _aborted_result(self, tool_name: str, reason: Optional[str], seconds: float) -> ToolResult:
        if reason == REASON_TIMEOUT:
            self._logger.error("Tool %s timed out after %ss", tool_name, seconds)
            return ToolResult.fail(
                f"Execution timed out after {seconds} seconds.",
                signal=REASON_TIMEOUT,
                error_code=ToolTimeoutError.code,
            )
        self._logger.warning("Tool %s interrupted by user", tool_name)
        return ToolResult.fail(
            "Tool execution interrupted by user",
            signal=REASON_SIGINT,
            error_code=UserCancellationError.code,
        )

    async def _truncate(self, result: ToolResult) -> ToolResult:
        try:
            truncation = await asyncio.to_thread(
                truncate_output,
                result.output,
                self.max_output_lines,
                self.max_output_bytes,
                self.output_dir,
            )
        except OSError as e:
            self._logger.warning("Output truncation skipped: %s", e)
            return result

        metadata = dict(result.metadata)
        metadata["truncated"] = truncation.truncated
        if truncation.truncated:
            metadata["truncation_file"] = str(truncation.output_path)
            metadata["truncation_stats"] = truncation.stats
        return dataclasses.replace(result, output=truncation.content, metadata=metadata)

    def _finish(self, result: ToolResult, start_time: float) -> ToolResult:
        end_time = time.time()
        metadata = dict(result.metadata)
        metadata.update(
            start_time=start_time,
            end_time=end_time,
            duration=end_time - start_time,
        )
        return dataclasses.replace(result, metadata=metadata)

    def validate_parameters(
        self, definition: ToolDefinition, parameters: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Rekey parameters to the declared names, check required ones and
        their JSON kinds, and fill in defaults.

        Raises:
            ToolInputValidationError: If a required parameter is missing or mistyped.
        """
        schema = definition.parameters
        arguments = normalize_parameters(parameters, schema.keys())
        # An explicit null for an optional parameter means "not given".
        arguments = {
            k: v
            for k, v in arguments.items()
            if not (v is None and k in schema and not schema[k].required)
        }

        missing = missing_required(definition.required_params, arguments)
        if missing:
            declared = list(schema.keys())
            received = list(parameters.keys())
            raise ToolInputValidationError(
                f"Missing required parameter(s) {missing} for tool '{definition.name}'. "
                f"Declared parameters: {declared}. Received: {received}",
                tool_name=definition.name,
                declared=declared,
                received=received,
            )

        for name, value in arguments.items():
            param = schema.get(name)
            if param is not None and not matches_kind(value, param.type):
                raise ToolInputValidationError(
                    f"Parameter '{name}' of tool '{definition.name}' must be {param.type}, "
                    f"got {json_kind(value)}",
                    tool_name=definition.name,
                    declared=list(schema.keys()),
                    received=list(parameters.keys()),
                    invalid_input=value,
                )

        for name, param in schema.items():
            if name not in arguments and param.default is not None:
                arguments[name] = param.default

        if not definition.accepts_extra_params:
            extra = [k for k in arguments if k not in schema]
            if extra:
                self._logger.debug("Dropping undeclared parameters for %s: %s", definition.name, extra)
                arguments = {k: v for k, v in arguments.items() if k in schema}

        return arguments
