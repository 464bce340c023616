import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from codeloop.utils.token_estimation import estimate_message_tokens, estimate_tool_call_tokens

# Tool results longer than this are flagged so views can render a preview.
TOOL_RESULT_TRUNCATE_CHARS = 2000


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class PartKind(str, Enum):
    TEXT = "text"
    FILE = "file"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    REASONING = "reasoning"
    SYSTEM = "system"


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass
class MessagePart:
    """
    One typed fragment of a message.

    `synthetic` parts are machine-generated and hidden from default views;
    `ignored` parts are excluded from token budgets and model context.
    """

    kind: PartKind
    content: str = ""
    id: str = field(default_factory=lambda: _new_id("part"))
    metadata: Dict[str, Any] = field(default_factory=dict)
    synthetic: bool = False
    ignored: bool = False

    def render(self) -> str:
        """Textual projection of this part as the model sees it."""
        if self.kind == PartKind.TOOL_CALL:
            tool = self.metadata.get("tool", "unknown")
            return f"[Tool call: {tool}]"
        if self.kind == PartKind.TOOL_RESULT:
            if self.metadata.get("success", True):
                return self.content
            return f"Error: {self.content}"
        if self.kind == PartKind.FILE:
            path = self.metadata.get("path", self.content)
            return f"[File: {path}]"
        if self.kind == PartKind.REASONING:
            return f"[Reasoning]\n{self.content}"
        return self.content

    @property
    def compacted(self) -> bool:
        return bool(self.metadata.get("compacted"))


@dataclass
class Message:
    """
    Represents a single message in the conversation.
    A message is an ordered list of parts; its effective text is the
    concatenation of the non-ignored parts' projections.
    """

    role: Role
    parts: List[MessagePart] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)
    agent: Optional[str] = None
    id: str = field(default_factory=lambda: _new_id("msg"))

    def __post_init__(self):
        self.role = Role(self.role)

    @property
    def is_system(self) -> bool:
        return self.role == Role.SYSTEM

    @property
    def text(self) -> str:
        """Effective text: non-ignored parts, rendered and joined in order."""
        rendered = [p.render() for p in self.parts if not p.ignored]
        return "\n".join(r for r in rendered if r)

    def visible_text(self) -> str:
        """Like `text` but also hides synthetic system parts (for display)."""
        rendered = [
            p.render()
            for p in filter_parts(self.parts, include_synthetic=False)
            if p.kind != PartKind.SYSTEM
        ]
        return "\n".join(r for r in rendered if r)

    def estimate_tokens(self) -> int:
        """Framing overhead plus effective text; visible tool calls add their own cost."""
        total = estimate_message_tokens(self.text)
        for part in self.parts:
            if part.kind == PartKind.TOOL_CALL and not part.ignored:
                total += estimate_tool_call_tokens(
                    str(part.metadata.get("tool", "")), part.metadata.get("parameters") or {}
                )
        return total

    def tool_results(self) -> List[MessagePart]:
        return [p for p in self.parts if p.kind == PartKind.TOOL_RESULT]

    def to_dict(self) -> Dict[str, str]:
        """
        Legacy flat form: {role, content}.
        Multi-part messages are flattened to their effective text.
        """
        return {"role": self.role.value, "content": self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        role = data.get("role", "user")
        content = data.get("content") or ""
        part_kind = PartKind.SYSTEM if role == Role.SYSTEM.value else PartKind.TEXT
        return cls(role=Role(role), parts=[MessagePart(kind=part_kind, content=content)])


# --- Part factories ---


def create_message(
    role: Role, content: Optional[str] = None, agent: Optional[str] = None
) -> Message:
    parts = [create_text_part(content)] if content else []
    return Message(role=Role(role), parts=parts, agent=agent)


def create_text_part(content: str, synthetic: bool = False) -> MessagePart:
    return MessagePart(kind=PartKind.TEXT, content=content, synthetic=synthetic)


def create_file_part(path: str, content: str = "") -> MessagePart:
    return MessagePart(kind=PartKind.FILE, content=content, metadata={"path": path})


def create_tool_call_part(
    tool: str, parameters: Dict[str, Any], call_id: Optional[str] = None
) -> MessagePart:
    return MessagePart(
        kind=PartKind.TOOL_CALL,
        content="",
        metadata={"tool": tool, "parameters": parameters, "call_id": call_id},
    )


def create_tool_result_part(
    tool: str,
    success: bool,
    content: str,
    call_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> MessagePart:
    meta = dict(metadata or {})
    meta.update({"tool": tool, "success": success, "call_id": call_id})
    if len(content) > TOOL_RESULT_TRUNCATE_CHARS:
        meta.setdefault("truncated", True)
    return MessagePart(kind=PartKind.TOOL_RESULT, content=content, metadata=meta)


def create_system_part(content: str, synthetic: bool = True) -> MessagePart:
    return MessagePart(kind=PartKind.SYSTEM, content=content, synthetic=synthetic)


def create_reasoning_part(content: str) -> MessagePart:
    return MessagePart(kind=PartKind.REASONING, content=content)


def filter_parts(
    parts: List[MessagePart],
    include_synthetic: bool = False,
    include_ignored: bool = False,
) -> List[MessagePart]:
    """Default view: drop synthetic and ignored parts unless asked for."""
    return [
        p
        for p in parts
        if (include_synthetic or not p.synthetic) and (include_ignored or not p.ignored)
    ]
