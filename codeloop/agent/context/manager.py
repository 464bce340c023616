import asyncio
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from codeloop.agent.context.compactor import (
    ChatFunction,
    CompactionConfig,
    CompactionResult,
    ContextCompactor,
    count_tokens,
)
from codeloop.agent.context.message import (
    Message,
    Role,
    create_message,
    create_tool_call_part,
    create_tool_result_part,
)
from codeloop.exceptions.context import HistoryPersistenceError
from codeloop.utils.token_estimation import estimate_tokens

logger = logging.getLogger("ContextManager")

_SESSION_ID_PATTERN = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass
class ContextStats:
    total_tokens: int
    message_count: int
    has_system_prompt: bool
    budget: int

    @property
    def usage(self) -> float:
        return self.total_tokens / self.budget if self.budget else 0.0


class ContextManager:
    """
    Owns the conversation.

    The system message is held apart from the rest so that every read
    returns it first, whatever order messages were appended in.
    """

    def __init__(
        self,
        config: Optional[CompactionConfig] = None,
        history_dir: Optional[Path] = None,
        auto_compact: bool = False,
    ):
        self.config = config or CompactionConfig()
        self._compactor = ContextCompactor(self.config)
        self._system: Optional[Message] = None
        self._messages: List[Message] = []
        self._history_dir = Path(history_dir) if history_dir else None
        self._session_id: Optional[str] = None
        self._auto_compact = auto_compact

    # --- Reads ---

    @property
    def messages(self) -> List[Message]:
        """Full conversation, system message first."""
        head = [self._system] if self._system is not None else []
        return head + list(self._messages)

    @property
    def system_message(self) -> Optional[Message]:
        return self._system

    def has_system_message(self) -> bool:
        return self._system is not None

    def __len__(self) -> int:
        return len(self._messages) + (1 if self._system is not None else 0)

    def total_tokens(self) -> int:
        return count_tokens(self._system, self._messages)

    def get_bounded_context(self, token_limit: Optional[int] = None) -> List[Message]:
        """
        System message first, then the newest messages that fit `token_limit`.

        The returned messages never exceed the limit in estimated tokens.
        A system message larger than the whole limit is left out.
        """
        limit = self.config.max_tokens if token_limit is None else token_limit
        used = 0
        head: List[Message] = []

        if self._system is not None:
            system_tokens = self._system.estimate_tokens()
            if system_tokens <= limit:
                head.append(self._system)
                used = system_tokens
            else:
                logger.warning(
                    "System prompt (%d tokens) exceeds context limit %d; omitting it",
                    system_tokens,
                    limit,
                )

        tail: List[Message] = []
        for message in reversed(self._messages):
            cost = message.estimate_tokens()
            if used + cost > limit:
                break
            tail.append(message)
            used += cost

        tail.reverse()
        return head + tail

    def stats(self) -> ContextStats:
        return ContextStats(
            total_tokens=self.total_tokens(),
            message_count=len(self),
            has_system_prompt=self._system is not None,
            budget=self.config.budget,
        )

    # --- Writes ---

    def append(self, message: Message) -> None:
        """
        Append a message. A system message replaces the current one.
        """
        if message.role == Role.SYSTEM:
            self._system = message
            return

        self._messages.append(message)
        if self._auto_compact and self.needs_compaction():
            self.compact()

    def add_user_message(self, content: str) -> Message:
        message = create_message(Role.USER, content)
        self.append(message)
        return message

    def add_assistant_message(self, content: str, agent: Optional[str] = None) -> Message:
        message = create_message(Role.ASSISTANT, content, agent=agent)
        self.append(message)
        return message

    def add_tool_calls(self, calls: List[Any], content: str = "") -> Message:
        """Assistant message carrying the raw response plus one part per call."""
        message = create_message(Role.ASSISTANT, content)
        for call in calls:
            part = create_tool_call_part(call.tool, call.parameters, call.id)
            # The raw text already encodes the calls; keep parts for bookkeeping only.
            part.ignored = bool(content)
            message.parts.append(part)
        self.append(message)
        return message

    def add_tool_results(self, outcomes: List[Any]) -> Message:
        """
        User-role message with one tool_result part per (call, result) pair.
        """
        message = create_message(Role.USER)
        for call, result in outcomes:
            body = result.output if result.success else result.error
            message.parts.append(
                create_tool_result_part(
                    tool=call.tool,
                    success=result.success,
                    content=body or "",
                    call_id=call.id,
                    metadata={"truncated": True} if result.metadata.get("truncated") else None,
                )
            )
        self.append(message)
        return message

    def set_system_prompt(self, content: str) -> Message:
        message = create_message(Role.SYSTEM, content)
        self._system = message
        return message

    def clear(self, keep_system: bool = True) -> None:
        self._messages.clear()
        if not keep_system:
            self._system = None

    def replace(self, messages: List[Message]) -> None:
        """Swap in a new conversation (e.g. a model-written summary)."""
        new_system = next((m for m in messages if m.role == Role.SYSTEM), None)
        if new_system is not None:
            self._system = new_system
        self._messages = [m for m in messages if m.role != Role.SYSTEM]

    # --- Compaction ---

    def needs_compaction(self) -> bool:
        return self._compactor.needs_compaction(self._system, self._messages)

    def compact(self) -> CompactionResult:
        result = self._compactor.compact(self._system, self._messages)
        self._messages = list(result.messages)
        return result

    async def llm_compact(self, chat: ChatFunction) -> CompactionResult:
        """
        Replace the conversation with a model-written condensed version.
        Errors from the model or its output propagate unchanged.
        """
        original_tokens = self.total_tokens()
        condensed = await self._compactor.llm_compact(self._system, self._messages, chat)
        self.replace(condensed)
        return CompactionResult(
            compressed=True,
            messages=self.messages,
            original_tokens=original_tokens,
            compressed_tokens=self.total_tokens(),
        )

    # --- Persistence ---

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    def set_session_id(self, session_id: str) -> None:
        self._session_id = _SESSION_ID_PATTERN.sub("_", session_id)

    @property
    def history_file(self) -> Optional[Path]:
        if self._history_dir is None:
            return None
        suffix = f"-{self._session_id}" if self._session_id else ""
        return self._history_dir / f"history{suffix}.json"

    def _write_history(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = [m.to_dict() for m in self.messages]
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def _read_history(self, path: Path) -> List[Dict[str, Any]]:
        return json.loads(path.read_text(encoding="utf-8"))

    async def save_history(self) -> Optional[Path]:
        """Persist the flattened conversation as a JSON array of {role, content}."""
        path = self.history_file
        if path is None:
            return None
        try:
            await asyncio.to_thread(self._write_history, path)
        except OSError as e:
            raise HistoryPersistenceError(
                f"Could not save history to {path}: {e}",
                file_path=str(path),
                operation="save",
                original_error=e,
            ) from e
        logger.debug("Saved %d messages to %s", len(self), path)
        return path

    async def load_history(self) -> int:
        """Load the session history file if it exists. Returns messages loaded."""
        path = self.history_file
        if path is None or not path.exists():
            return 0
        try:
            data = await asyncio.to_thread(self._read_history, path)
        except (OSError, json.JSONDecodeError) as e:
            raise HistoryPersistenceError(
                f"Could not load history from {path}: {e}",
                file_path=str(path),
                operation="load",
                original_error=e,
            ) from e

        if not isinstance(data, list):
            raise HistoryPersistenceError(
                f"History file {path} does not contain a JSON array",
                file_path=str(path),
                operation="load",
            )

        loaded = [Message.from_dict(item) for item in data if isinstance(item, dict)]
        self.clear(keep_system=True)
        self.replace(loaded)
        logger.info("Loaded %d messages from %s", len(loaded), path)
        return len(loaded)

    # --- Helpers ---

    @staticmethod
    def estimate_text_tokens(text: str) -> int:
        return estimate_tokens(text)

