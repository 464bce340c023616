"""
Tool Registry - registration and lookup of tools.
"""

import importlib
import logging
from typing import Dict, Iterable, List, Optional

from codeloop.exceptions.tools import ToolNotFoundError, ToolRegistrationError
from codeloop.tools.base import ToolCategory, ToolDefinition


class ToolRegistry:
    """
    Manages registered tools.

    Lookups are case-insensitive through a lowercase index that is rebuilt
    on every registration change. Registration is expected to finish before
    parsing and dispatch start.
    """

    def __init__(self, tools: Optional[Iterable[ToolDefinition]] = None):
        self.logger = logging.getLogger(__name__)
        self._tools: Dict[str, ToolDefinition] = {}
        self._lower_index: Dict[str, str] = {}
        self._version = 0
        for definition in tools or ():
            self.register(definition)

    @property
    def version(self) -> int:
        """Bumped on every mutation so caches keyed on the registry can expire."""
        return self._version

    def _rebuild_index(self) -> None:
        self._lower_index = {name.lower(): name for name in self._tools}
        self._version += 1

    def register(self, definition: ToolDefinition) -> None:
        """
        Register a tool.

        Raises:
            ToolRegistrationError: If a tool with the same name (any casing) exists.
        """
        existing = self._lower_index.get(definition.name.lower())
        if existing is not None:
            raise ToolRegistrationError(
                f"Tool '{definition.name}' is already registered as '{existing}'",
                tool_name=definition.name,
            )
        self._tools[definition.name] = definition
        self._rebuild_index()
        self.logger.debug("Registered tool: %s", definition.name)

    def register_many(self, definitions: Iterable[ToolDefinition]) -> None:
        for definition in definitions:
            self.register(definition)

    def load_modules(self, module_names: Iterable[str]) -> int:
        """
        Import each dotted module and register the ToolDefinition objects it
        exposes at module level. Returns how many tools were registered.

        Modules that fail to import are logged and skipped.
        """
        loaded = 0
        for module_name in module_names:
            try:
                module = importlib.import_module(module_name)
            except ImportError as e:
                self.logger.error("Failed to load tools from %s: %s", module_name, e)
                continue
            for value in vars(module).values():
                if isinstance(value, ToolDefinition):
                    self.register(value)
                    loaded += 1
        return loaded

    def unregister(self, name: str) -> bool:
        canonical = self.resolve_name(name)
        if canonical is None:
            return False
        del self._tools[canonical]
        self._rebuild_index()
        return True

    def clear(self) -> None:
        self._tools.clear()
        self._rebuild_index()

    # --- Lookup ---

    def resolve_name(self, name: str) -> Optional[str]:
        """Canonical registered name for `name`, or None."""
        if not name:
            return None
        return self._lower_index.get(name.lower())

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        canonical = self.resolve_name(name)
        return self._tools.get(canonical) if canonical else None

    def require_tool(self, name: str) -> ToolDefinition:
        """
        Like get_tool but raises.

        Raises:
            ToolNotFoundError: If the tool name is not registered.
        """
        definition = self.get_tool(name)
        if definition is None:
            available = self.list_tools()
            raise ToolNotFoundError(
                f"Tool '{name}' not found. Available: {available}",
                tool_name=name,
                available_tools=available,
            )
        return definition

    def has_tool(self, name: str) -> bool:
        return self.resolve_name(name) is not None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has_tool(name)

    def __len__(self) -> int:
        return len(self._tools)

    # --- Helper Methods ---

    def list_tools(self) -> List[str]:
        return list(self._tools.keys())

    def all_tools(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    def tools_by_category(self, category: ToolCategory) -> List[ToolDefinition]:
        category = ToolCategory(category)
        return [t for t in self._tools.values() if t.category == category]

    def describe_tools(self, names: Optional[Iterable[str]] = None) -> str:
        """
        Markdown description of the tools, for the system prompt.

        Args:
            names: Restrict to these tools (case-insensitive). All tools when None.
        """
        if names is None:
            selected = self.all_tools()
        else:
            wanted = {n.lower() for n in names}
            selected = [t for t in self._tools.values() if t.name.lower() in wanted]

        if not selected:
            return "No tools available."
        return "\n\n".join(t.describe() for t in selected)
