import inspect
import logging
import re
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from codeloop.agent.context.compactor import CompactionConfig
from codeloop.agent.context.manager import ContextManager
from codeloop.agent.context.message import Role, create_message, create_text_part
from codeloop.agent.core.cancellation import REASON_SIGINT, AbortSignal
from codeloop.agent.core.execution import ToolDispatcher
from codeloop.agent.core.interrupt import InterruptCoordinator
from codeloop.agent.core.state_machine import SessionState, SessionStateMachine
from codeloop.agent.logic.parse_cache import ParseCache
from codeloop.agent.logic.parsers import ToolCallParser, strip_tool_calls
from codeloop.agent.permissions import (
    PermissionAction,
    PermissionCheckResult,
    PermissionManager,
    build_permission_manager,
    extract_path,
)
from codeloop.agent.profiles import AgentProfile, AgentProfiles
from codeloop.agent.prompts import CORRECTIVE_HINT, MAX_ITERATIONS_NOTICE, build_system_prompt
from codeloop.agent.structs import (
    AgentStatus,
    ExecutionResult,
    ToolCall,
    ToolEvent,
    ToolOutcome,
    ToolResult,
)
from codeloop.config.settings import Settings
from codeloop.exceptions import (
    CodeloopError,
    OrchestrationError,
    ToolPermissionError,
    UserCancellationError,
)
from codeloop.protocol.bus import EventBus
from codeloop.protocol.events import EventTypes
from codeloop.tools.registry import ToolRegistry

ChatFunction = Callable[..., Awaitable[str]]
ApprovalCallback = Callable[
    [ToolCall, PermissionCheckResult], Union[bool, Awaitable[bool]]
]


class FinishDetector:
    """
    Decides whether a model turn ends the task.

    A turn is final when it has no tool calls, or when it reads as a
    completion without asking the user for anything.
    """

    def __init__(self, completion_patterns: Sequence[str], pending_patterns: Sequence[str]):
        flags = re.IGNORECASE | re.MULTILINE
        self._completion = [re.compile(p, flags) for p in completion_patterns]
        self._pending = [re.compile(p, flags) for p in pending_patterns]

    def signals_completion(self, text: str) -> bool:
        return any(p.search(text) for p in self._completion)

    def awaits_user(self, text: str) -> bool:
        return any(p.search(text) for p in self._pending)

    def is_final(self, text: str, calls: Sequence[ToolCall]) -> bool:
        if not calls:
            return True
        return self.signals_completion(text) and not self.awaits_user(text)


class AgentOrchestrator:
    """
    The Main Agent Loop.

    Responsibility:
    1. Manage session state (Idle -> Busy -> Thinking -> Executing -> ...).
    2. Keep the conversation (via ContextManager).
    3. Ask the model for the next step.
    4. Recover tool calls, gate them, execute them and feed results back.
    """

    def __init__(
        self,
        chat: ChatFunction,
        registry: ToolRegistry,
        settings: Optional[Settings] = None,
        context: Optional[ContextManager] = None,
        permissions: Optional[PermissionManager] = None,
        dispatcher: Optional[ToolDispatcher] = None,
        parser: Optional[ToolCallParser] = None,
        state: Optional[SessionStateMachine] = None,
        interrupts: Optional[InterruptCoordinator] = None,
        bus: Optional[EventBus] = None,
        profile: Optional[AgentProfile] = None,
        on_tool_call: Optional[ApprovalCallback] = None,
    ):
        settings = settings or Settings()
        self._settings = settings
        self._chat = chat
        self._registry = registry
        self._bus = bus
        self._logger = logging.getLogger("AgentOrchestrator")

        self._context = context or ContextManager(
            CompactionConfig(
                max_tokens=settings.max_context_tokens,
                reserve_tokens=settings.reserve_tokens,
                prune_minimum=settings.prune_minimum,
                prune_protect=settings.prune_protect,
                protected_tools=list(settings.protected_tools),
            ),
            history_dir=settings.history_dir,
        )
        self._permissions = permissions or build_permission_manager(
            settings.permission_preset, settings.permission_default
        )
        self._dispatcher = dispatcher or ToolDispatcher(
            registry,
            default_timeout=settings.tool_timeout,
            max_timeout=settings.max_tool_timeout,
            max_output_lines=settings.truncation_max_lines,
            max_output_bytes=settings.truncation_max_bytes,
            output_dir=settings.tool_output_dir,
        )
        self._parser = parser or ToolCallParser(
            registry,
            max_calls=settings.max_tool_calls_per_response,
            time_budget=settings.parse_time_budget,
            cache=ParseCache(settings.parse_cache_size, settings.parse_cache_ttl),
        )
        self._state = state or SessionStateMachine()
        self._interrupts = interrupts or InterruptCoordinator()
        self._profile = profile or AgentProfiles().get(settings.agent_profile)
        self._finish = FinishDetector(
            settings.completion_keywords, settings.pending_question_keywords
        )
        self.on_tool_call = on_tool_call
        self.auto_approve = settings.auto_approve
        self.max_iterations = self._profile.max_iterations or settings.max_iterations

    # --- Accessors ---

    @property
    def context(self) -> ContextManager:
        return self._context

    @property
    def state(self) -> SessionStateMachine:
        return self._state

    @property
    def interrupts(self) -> InterruptCoordinator:
        return self._interrupts

    @property
    def permissions(self) -> PermissionManager:
        return self._permissions

    @property
    def profile(self) -> AgentProfile:
        return self._profile

    # --- Main loop ---

    async def execute(self, user_query: str) -> ExecutionResult:
        """
        Run the agent loop for one user request.

        Never raises for component or collaborator failures: those come
        back as ExecutionResult(success=False, error=...).
        """
        iterations = 0
        executed = 0
        outcomes: List[ToolOutcome] = []
        signal = self._interrupts.start_operation()

        try:
            await self._set_status(SessionState.BUSY, "Processing request...")
            await self._set_status(SessionState.THINKING, "Preparing context...")

            if not self._context.has_system_message():
                self._context.set_system_prompt(self.build_system_prompt())
                await self._emit(
                    EventTypes.INFO, {"message": f"System prompt installed ({self._profile.name})"}
                )
            self._context.add_user_message(user_query)

            while iterations < self.max_iterations:
                iterations += 1
                self._raise_if_interrupted(signal)

                await self._set_status(SessionState.BUSY, f"Iteration {iterations}")
                await self._compact_if_needed()

                await self._set_status(SessionState.THINKING, "Waiting for the model...")
                response = await self._ask_model(signal)

                calls = self._parser.parse(response)
                cleaned = strip_tool_calls(response)

                if self._finish.is_final(cleaned, calls):
                    self._context.add_assistant_message(cleaned or response, agent=self._profile.name)
                    await self._set_status(SessionState.COMPLETED, "Task complete")
                    await self._emit(EventTypes.TASK_COMPLETE, {"message": cleaned})
                    return ExecutionResult(
                        success=True,
                        iterations=iterations,
                        tool_calls_executed=executed,
                        final_answer=cleaned or response,
                        outcomes=outcomes,
                    )

                await self._set_status(
                    SessionState.EXECUTING, f"Executing {len(calls)} tool call(s)..."
                )
                turn = await self.execute_tool_calls(calls, signal)
                outcomes.extend(turn)
                executed += sum(1 for o in turn if o.result.metadata.get("dispatched"))

                # The model needs to see its own calls next to their results.
                self._context.add_tool_calls(calls, content=response)
                self._context.add_tool_results(turn)
                if any(not o.result.success for o in turn):
                    hint = create_message(Role.USER)
                    hint.parts.append(create_text_part(CORRECTIVE_HINT, synthetic=True))
                    self._context.append(hint)

            notice = MAX_ITERATIONS_NOTICE.format(iterations=iterations)
            self._logger.warning("Stopped after %d iterations", iterations)
            await self._emit(EventTypes.WARNING, {"message": notice})
            await self._set_status(SessionState.COMPLETED, "Max iterations reached")
            return ExecutionResult(
                success=True,
                iterations=iterations,
                tool_calls_executed=executed,
                final_answer=notice,
                outcomes=outcomes,
            )

        except Exception as e:  # pylint: disable=broad-exception-caught
            message = e.message if isinstance(e, CodeloopError) else str(e) or type(e).__name__
            self._logger.error("Error in agent loop: %s", message, exc_info=True)
            await self._set_status(SessionState.ERROR, f"Error: {message}")
            await self._emit(EventTypes.ERROR, {"message": message})
            return ExecutionResult(
                success=False,
                iterations=iterations,
                tool_calls_executed=executed,
                error=message,
                outcomes=outcomes,
            )

        finally:
            self._interrupts.set_thinking(False)
            self._interrupts.set_executing(False)
            self._interrupts.reset()
            await self._set_status(SessionState.IDLE, "Ready")

    async def _ask_model(self, signal: AbortSignal) -> str:
        messages = self._context.get_bounded_context(self._context.config.budget)
        self._interrupts.set_thinking(True)
        try:
            await self._emit(EventTypes.THINKING_STARTED, {"message_count": len(messages)})
            response = await self._chat(messages, abort_signal=signal)
        finally:
            self._interrupts.set_thinking(False)
        if response is not None and not isinstance(response, str):
            raise OrchestrationError(
                f"Model chat returned {type(response).__name__}, expected text"
            )
        await self._emit(EventTypes.RESPONSE_COMPLETE, {"length": len(response or "")})
        return response or ""

    @staticmethod
    def _raise_if_interrupted(signal: AbortSignal) -> None:
        if signal.aborted:
            raise UserCancellationError()

    async def _compact_if_needed(self) -> None:
        if not self._settings.auto_compact or not self._context.needs_compaction():
            return
        result = self._context.compact()
        await self._emit(
            EventTypes.CONTEXT_COMPACTED,
            {
                "message": f"Compacted context, saved {result.saved_tokens} tokens",
                "saved_tokens": result.saved_tokens,
                "pruned_parts": result.pruned_parts,
                "evicted_messages": result.evicted_messages,
            },
        )

    # --- Tool execution ---

    async def execute_tool_calls(
        self, calls: Sequence[ToolCall], signal: Optional[AbortSignal] = None
    ) -> List[ToolOutcome]:
        """
        Run calls strictly in order; call N+1 starts after call N is recorded.
        """
        outcomes: List[ToolOutcome] = []
        for call in calls:
            if signal is not None and signal.aborted:
                result = ToolResult.fail("Skipped: interrupted by user", signal=REASON_SIGINT)
                outcomes.append(ToolOutcome(call, result))
                continue

            refusal = await self._authorize(call)
            if refusal is not None:
                outcomes.append(ToolOutcome(call, refusal))
                continue

            await self._emit(
                EventTypes.TOOL_EXECUTION_START,
                ToolEvent(tool_name=call.tool, call_id=call.id, parameters=call.parameters),
            )
            self._interrupts.set_executing(True)
            try:
                result = await self._dispatcher.execute(call, abort_signal=signal)
            finally:
                self._interrupts.set_executing(False)

            result = ToolResult(
                success=result.success,
                output=result.output,
                error=result.error,
                metadata={**result.metadata, "dispatched": True},
            )
            outcomes.append(ToolOutcome(call, result))
            await self._emit(
                EventTypes.TOOL_EXECUTION_COMPLETE,
                ToolEvent(
                    tool_name=call.tool,
                    call_id=call.id,
                    parameters=call.parameters,
                    result=result,
                ),
            )
        return outcomes

    async def _authorize(self, call: ToolCall) -> Optional[ToolResult]:
        """
        Gate one call. Returns a failed ToolResult when it must not run.
        """
        if not self._profile.allows(call.tool):
            return ToolResult.fail(
                f"Permission denied: {call.tool} is not available in {self._profile.name} mode",
                error_code=ToolPermissionError.code,
            )

        check = self._permissions.check_permission(call.tool, extract_path(call.parameters))
        if check.action == PermissionAction.DENY:
            self._logger.warning("Denied %s: %s", call.tool, check.reason)
            await self._emit(EventTypes.WARNING, {"message": f"Denied {call.tool}: {check.reason}"})
            return ToolResult.fail(
                f"Permission denied: {check.reason}", error_code=ToolPermissionError.code
            )

        approved = self.auto_approve or check.action == PermissionAction.ALLOW
        if check.action == PermissionAction.ASK or not self.auto_approve:
            if self.on_tool_call is not None:
                await self._emit(
                    EventTypes.TOOL_CONFIRMATION_REQUESTED,
                    ToolEvent(tool_name=call.tool, call_id=call.id, parameters=call.parameters),
                )
                decision = self.on_tool_call(call, check)
                if inspect.isawaitable(decision):
                    decision = await decision
                approved = bool(decision)
            elif check.action == PermissionAction.ASK:
                approved = False

        if not approved:
            return ToolResult.fail("Tool call rejected by user", error_code=ToolPermissionError.code)
        return None

    # --- Helpers ---

    def build_system_prompt(self) -> str:
        names = self._profile.filter_tools(self._registry.list_tools())
        return build_system_prompt(
            tools_description=self._registry.describe_tools(names),
            working_dir=self._settings.working_dir,
            profile_prompt=self._profile.system_prompt,
        )

    def reset_conversation(self) -> None:
        """Drop the conversation, including the system prompt, and return to idle."""
        self._context.clear(keep_system=False)
        self._state.reset()
        self._interrupts.full_reset()

    async def _set_status(self, state: SessionState, message: str) -> None:
        """
        Helper to update internal state and emit event in one go.
        """
        previous = self._state.current
        if self._state.set_state(state, message):
            await self._emit(
                EventTypes.STATUS_CHANGED,
                AgentStatus(status=state.value, message=message, previous=previous.value),
            )

    async def _emit(self, event_type: EventTypes, data) -> None:
        if self._bus is not None:
            await self._bus.emit(event_type, data)
