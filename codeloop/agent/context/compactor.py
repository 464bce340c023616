"""
Conversation compaction.

Two heuristic stages keep a conversation under its token ceiling:
prune (collapse old tool output in place) then evict (drop the oldest
messages). A separate model-assisted path summarizes the whole
conversation instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from codeloop.agent.context.message import Message, MessagePart, PartKind, Role
from codeloop.exceptions.context import ContextCompactionError
from codeloop.utils.json_parser import first_json_array
from codeloop.utils.token_estimation import estimate_tokens

logger = logging.getLogger("ContextCompactor")

# Messages newer than the Nth most recent user turn are never pruned.
PROTECTED_USER_TURNS = 2
PRUNED_KEEP_CHARS = 500
PRUNED_MARKER = "\n... (content compacted to save tokens)"

LLM_COMPACT_TEMPERATURE = 0.3
LLM_COMPACT_MAX_TOKENS = 4000
LLM_COMPACT_SEPARATOR = "\n\n---\n\n"

LLM_COMPACT_INSTRUCTION = """You compress coding-assistant conversations.
Rewrite the conversation you are given into a shorter conversation that keeps:
- the user's goals and any constraints they stated
- files that were read or changed, with the important details
- decisions taken and the reasons for them
- errors met and how they were resolved
- work that is still pending

Drop greetings, repeated tool output and anything that no longer matters.
Answer with a JSON array only, no prose and no code fence:
[{"role": "user" | "assistant" | "system", "content": "..."}]"""

ChatFunction = Callable[..., Awaitable[str]]


@dataclass
class CompactionConfig:
    max_tokens: int = 8000
    reserve_tokens: int = 2000
    prune_minimum: int = 2000
    prune_protect: int = 4000
    protected_tools: List[str] = field(default_factory=list)

    @property
    def budget(self) -> int:
        return self.max_tokens - self.reserve_tokens


@dataclass
class CompactionResult:
    compressed: bool
    messages: List[Message]
    original_tokens: int
    compressed_tokens: int
    pruned_parts: int = 0
    evicted_messages: int = 0

    @property
    def saved_tokens(self) -> int:
        return max(0, self.original_tokens - self.compressed_tokens)


def count_tokens(system: Optional[Message], messages: Sequence[Message]) -> int:
    total = sum(m.estimate_tokens() for m in messages)
    if system is not None:
        total += system.estimate_tokens()
    return total


def pruned_content(content: str) -> str:
    return content[:PRUNED_KEEP_CHARS] + PRUNED_MARKER


def _is_user_turn(message: Message) -> bool:
    """A user message typed by the user, not one carrying tool results or hints."""
    if message.role != Role.USER:
        return False
    return any(p.kind == PartKind.TEXT and not p.synthetic for p in message.parts)


class ContextCompactor:
    """
    Staged compaction over a conversation.

    The system message is passed separately and is never pruned or evicted.
    """

    def __init__(self, config: Optional[CompactionConfig] = None):
        self.config = config or CompactionConfig()
        self._protected = {t.lower() for t in self.config.protected_tools}

    def needs_compaction(
        self, system: Optional[Message], messages: Sequence[Message]
    ) -> bool:
        return count_tokens(system, messages) > self.config.budget

    def compact(
        self, system: Optional[Message], messages: List[Message]
    ) -> CompactionResult:
        original_tokens = count_tokens(system, messages)

        if original_tokens <= self.config.budget:
            return CompactionResult(
                compressed=False,
                messages=list(messages),
                original_tokens=original_tokens,
                compressed_tokens=original_tokens,
            )

        # Stage A: prune old tool output in place.
        pruned = self.prune(messages)
        result_messages = list(messages)

        # Stage B: evict oldest messages if pruning was not enough.
        evicted = 0
        if count_tokens(system, result_messages) > self.config.budget:
            result_messages, evicted = self.evict(system, result_messages)

        compressed_tokens = count_tokens(system, result_messages)
        result = CompactionResult(
            compressed=bool(pruned or evicted),
            messages=result_messages,
            original_tokens=original_tokens,
            compressed_tokens=compressed_tokens,
            pruned_parts=pruned,
            evicted_messages=evicted,
        )
        logger.info(
            "Compaction: %d -> %d tokens (pruned %d parts, evicted %d messages)",
            original_tokens,
            compressed_tokens,
            pruned,
            evicted,
        )
        return result

    def prune(self, messages: Sequence[Message]) -> int:
        """
        Collapse old tool-result parts. Returns how many parts were pruned.

        Walks newest to oldest. The most recent user turns are skipped, then
        untouched tool output is protected up to `prune_protect` tokens.
        Everything older is a candidate, and candidates are only rewritten
        when together they free more than `prune_minimum` tokens.
        """
        user_turns = 0
        protected_total = 0
        reclaimable_total = 0
        candidates: List[MessagePart] = []

        for message in reversed(messages):
            if user_turns >= PROTECTED_USER_TURNS:
                for part in reversed(message.parts):
                    if part.kind != PartKind.TOOL_RESULT or part.ignored:
                        continue
                    if part.compacted:
                        continue
                    if str(part.metadata.get("tool", "")).lower() in self._protected:
                        continue

                    cost = estimate_tokens(part.content)
                    protected_total += cost
                    if protected_total <= self.config.prune_protect:
                        continue

                    reclaimable = cost - estimate_tokens(pruned_content(part.content))
                    if reclaimable > 0:
                        candidates.append(part)
                        reclaimable_total += reclaimable

            if _is_user_turn(message):
                user_turns += 1

        if reclaimable_total <= self.config.prune_minimum:
            if candidates:
                logger.debug(
                    "Skipping prune: %d reclaimable tokens <= minimum %d",
                    reclaimable_total,
                    self.config.prune_minimum,
                )
            return 0

        for part in candidates:
            part.metadata["original_length"] = len(part.content)
            part.metadata["compacted"] = True
            part.content = pruned_content(part.content)

        return len(candidates)

    def evict(
        self, system: Optional[Message], messages: Sequence[Message]
    ) -> Tuple[List[Message], int]:
        """Keep the longest suffix that fits the budget next to the system message."""
        available = self.config.budget
        if system is not None:
            available -= system.estimate_tokens()

        kept: List[Message] = []
        used = 0
        for message in reversed(messages):
            cost = message.estimate_tokens()
            if used + cost > available:
                break
            kept.append(message)
            used += cost

        kept.reverse()
        return kept, len(messages) - len(kept)

    async def llm_compact(
        self,
        system: Optional[Message],
        messages: Sequence[Message],
        chat: ChatFunction,
    ) -> List[Message]:
        """
        Ask the model to rewrite the conversation as a shorter JSON message array.

        Raises ContextCompactionError if the reply is not a usable array.
        """
        transcript_source = ([system] if system is not None else []) + list(messages)
        transcript = LLM_COMPACT_SEPARATOR.join(
            f"[{m.role.value}]: {m.text}" for m in transcript_source
        )

        request = [
            Message.from_dict({"role": "system", "content": LLM_COMPACT_INSTRUCTION}),
            Message.from_dict(
                {
                    "role": "user",
                    "content": "Compress this conversation:\n\n" + transcript,
                }
            ),
        ]
        reply = await chat(
            request,
            temperature=LLM_COMPACT_TEMPERATURE,
            max_tokens=LLM_COMPACT_MAX_TOKENS,
        )
        return parse_compacted_messages(reply)


def parse_compacted_messages(reply: str) -> List[Message]:
    data = first_json_array(reply)
    if data is None:
        raise ContextCompactionError(
            "Compaction reply contains no JSON array", raw_output=reply
        )
    if not data:
        raise ContextCompactionError("Compaction reply is an empty JSON array", raw_output=reply)

    valid_roles = {r.value for r in Role}
    result = []
    for item in data:
        if (
            not isinstance(item, dict)
            or item.get("role") not in valid_roles
            or not isinstance(item.get("content"), str)
        ):
            raise ContextCompactionError(
                f"Compaction reply contains a malformed message: {item!r}",
                raw_output=reply,
            )
        result.append(Message.from_dict(item))
    return result
