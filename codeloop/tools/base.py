"""
Base classes and interfaces for the tool system.

A tool is data: a name, a parameter schema and a handler. Handlers take
keyword arguments and return a ToolResult (a bare string is accepted as
successful output). They may be plain functions or coroutines, and they
receive the active abort signal when they declare an `abort_signal`
parameter.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from codeloop.agent.structs import ToolResult
from codeloop.exceptions.tools import ToolRegistrationError
from codeloop.tools.params import JSON_KINDS

ToolHandler = Callable[..., Union[ToolResult, str, Awaitable[Union[ToolResult, str]]]]


class ToolCategory(str, Enum):
    FILE = "file"
    SEARCH = "search"
    SHELL = "shell"
    NETWORK = "network"
    OTHER = "other"


class PermissionLevel(str, Enum):
    SAFE = "safe"
    WRITE = "write"
    DANGEROUS = "dangerous"


@dataclass
class ToolParameter:
    """One entry of a tool's parameter schema."""

    type: str = "string"
    required: bool = False
    description: str = ""
    default: Any = None

    def __post_init__(self):
        if self.type not in JSON_KINDS:
            raise ToolRegistrationError(
                f"Unsupported parameter type '{self.type}'. Expected one of {JSON_KINDS}"
            )


@dataclass
class ToolDefinition:
    """Describes a tool's interface and binds its handler."""

    name: str
    description: str
    handler: ToolHandler
    parameters: Dict[str, ToolParameter] = field(default_factory=dict)
    category: ToolCategory = ToolCategory.OTHER
    permission_level: PermissionLevel = PermissionLevel.SAFE

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ToolRegistrationError("Tool name must not be empty")
        self.category = ToolCategory(self.category)
        self.permission_level = PermissionLevel(self.permission_level)

    @property
    def required_params(self) -> List[str]:
        return [name for name, p in self.parameters.items() if p.required]

    def _signature_parameters(self):
        try:
            return inspect.signature(self.handler).parameters
        except (TypeError, ValueError):
            return {}

    @property
    def accepts_abort_signal(self) -> bool:
        return "abort_signal" in self._signature_parameters()

    @property
    def accepts_extra_params(self) -> bool:
        return any(
            p.kind == inspect.Parameter.VAR_KEYWORD
            for p in self._signature_parameters().values()
        )

    def describe(self) -> str:
        """Markdown block used in the system prompt."""
        lines = [f"## {self.name}", f"Description: {self.description}"]
        if self.parameters:
            lines.append("Parameters:")
            for name, param in self.parameters.items():
                need = "required" if param.required else "optional"
                line = f"- {name}: {param.type} ({need})"
                if param.description:
                    line += f" - {param.description}"
                if param.default is not None:
                    line += f" (default: {param.default!r})"
                lines.append(line)
        return "\n".join(lines)

    async def invoke(self, arguments: Dict[str, Any], abort_signal: Any = None) -> ToolResult:
        """Run the handler, off the event loop when it is synchronous."""
        kwargs = dict(arguments)
        if self.accepts_abort_signal:
            kwargs["abort_signal"] = abort_signal

        if inspect.iscoroutinefunction(self.handler):
            raw = await self.handler(**kwargs)
        else:
            raw = await asyncio.to_thread(self.handler, **kwargs)
            if inspect.isawaitable(raw):
                raw = await raw

        if isinstance(raw, ToolResult):
            return raw
        return ToolResult.ok("" if raw is None else str(raw))


def tool(
    name: str,
    description: str,
    parameters: Optional[Dict[str, ToolParameter]] = None,
    category: ToolCategory = ToolCategory.OTHER,
    permission_level: PermissionLevel = PermissionLevel.SAFE,
) -> Callable[[ToolHandler], ToolDefinition]:
    """Decorator turning a handler function into a ToolDefinition."""

    def decorator(handler: ToolHandler) -> ToolDefinition:
        return ToolDefinition(
            name=name,
            description=description,
            handler=handler,
            parameters=parameters or {},
            category=category,
            permission_level=permission_level,
        )

    return decorator
