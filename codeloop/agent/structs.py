import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# --- 1. Tool Lifecycle ---


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


@dataclass
class ToolCall:
    """A structured (tool, parameters) pair recovered from model output."""

    tool: str
    parameters: Dict[str, Any]
    id: str = field(default_factory=new_call_id)

    def signature(self) -> str:
        """Dedupe key: lowercased tool name plus canonical parameter JSON."""
        return f"{self.tool.lower()}:{json.dumps(self.parameters, sort_keys=True, default=str)}"


@dataclass(frozen=True)
class ToolResult:
    """The outcome of an execution. Immutable once returned."""

    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, output: str = "", **metadata: Any) -> "ToolResult":
        return cls(success=True, output=output, metadata=dict(metadata))

    @classmethod
    def fail(cls, error: str, **metadata: Any) -> "ToolResult":
        return cls(success=False, error=error, metadata=dict(metadata))

    @property
    def signal(self) -> Optional[str]:
        return self.metadata.get("signal")


@dataclass
class ToolOutcome:
    """A call paired with its result, in execution order."""

    call: ToolCall
    result: ToolResult

    def __iter__(self):
        yield self.call
        yield self.result


# --- 2. Downstream Events (Agent -> UI) ---


@dataclass
class AgentStatus:
    """Payload for STATUS_CHANGED."""

    status: str
    message: str
    previous: Optional[str] = None


@dataclass
class ToolEvent:
    """Payload for TOOL_EXECUTION_START / TOOL_EXECUTION_COMPLETE."""

    tool_name: str
    call_id: str
    parameters: Dict[str, Any]
    result: Optional[ToolResult] = None


# --- 3. Agent Run ---


@dataclass
class ExecutionResult:
    """Return value of one orchestrator run."""

    success: bool
    iterations: int = 0
    tool_calls_executed: int = 0
    final_answer: Optional[str] = None
    error: Optional[str] = None
    outcomes: List[ToolOutcome] = field(default_factory=list)
