# Test suite for tool definitions and the tool registry

import pytest

from codeloop.agent.structs import ToolResult
from codeloop.exceptions import ToolNotFoundError, ToolRegistrationError
from codeloop.tools.base import (
    PermissionLevel,
    ToolCategory,
    ToolDefinition,
    ToolParameter,
    tool,
)
from codeloop.tools.registry import ToolRegistry


@tool(
    name="Read",
    description="Read a file from disk",
    parameters={
        "filePath": ToolParameter("string", required=True, description="Path to read"),
        "limit": ToolParameter("integer", default=100),
    },
    category=ToolCategory.FILE,
)
def read_tool(filePath, limit=100):
    return f"{filePath}:{limit}"


def make_tool(name, category=ToolCategory.OTHER):
    return ToolDefinition(
        name=name, description=f"{name} tool", handler=lambda: "ok", category=category
    )


class TestToolDefinition:
    """Test suite for tool definitions"""

    def test_decorator_builds_definition(self):
        """@tool turns a function into a ToolDefinition"""
        assert isinstance(read_tool, ToolDefinition)
        assert read_tool.name == "Read"
        assert read_tool.required_params == ["filePath"]
        assert read_tool.permission_level == PermissionLevel.SAFE

    def test_describe(self):
        """describe() renders a markdown block for the system prompt"""
        text = read_tool.describe()
        assert text.startswith("## Read\nDescription: Read a file from disk")
        assert "- filePath: string (required) - Path to read" in text
        assert "- limit: integer (optional) (default: 100)" in text

    def test_invalid_parameter_type(self):
        """Unknown schema types are rejected"""
        with pytest.raises(ToolRegistrationError):
            ToolParameter("float")

    def test_empty_name(self):
        """Tools need a name"""
        with pytest.raises(ToolRegistrationError):
            make_tool("  ")

    def test_handler_signature_introspection(self):
        """Abort-signal and **kwargs support are read from the handler"""

        def handler(path, abort_signal=None, **extra):
            return "ok"

        definition = ToolDefinition(name="x", description="", handler=handler)
        assert definition.accepts_abort_signal
        assert definition.accepts_extra_params
        assert not read_tool.accepts_abort_signal

    @pytest.mark.asyncio
    async def test_invoke_wraps_plain_strings(self):
        """String returns become successful ToolResults"""
        result = await read_tool.invoke({"filePath": "a.txt", "limit": 5})
        assert result == ToolResult.ok("a.txt:5")

    @pytest.mark.asyncio
    async def test_invoke_passes_abort_signal(self):
        """Handlers that declare abort_signal receive it"""
        seen = []

        async def handler(abort_signal=None):
            seen.append(abort_signal)
            return ToolResult.ok("done")

        definition = ToolDefinition(name="x", description="", handler=handler)
        marker = object()
        result = await definition.invoke({}, marker)

        assert result.output == "done"
        assert seen == [marker]


class TestToolRegistry:
    """Test suite for registration and lookup"""

    @pytest.fixture
    def registry(self):
        """Create a registry with one tool"""
        return ToolRegistry([read_tool])

    def test_lookup_is_case_insensitive(self, registry):
        """Any casing resolves to the registered tool"""
        assert registry.get_tool("read") is read_tool
        assert registry.get_tool("READ") is read_tool
        assert registry.resolve_name("rEaD") == "Read"
        assert "read" in registry
        assert registry.get_tool("write") is None

    def test_duplicate_registration_raises(self, registry):
        """A second tool with the same name in any casing is rejected"""
        with pytest.raises(ToolRegistrationError):
            registry.register(make_tool("READ"))

    def test_require_tool(self, registry):
        """require_tool raises ToolNotFoundError listing the available tools"""
        with pytest.raises(ToolNotFoundError) as exc_info:
            registry.require_tool("write")
        assert exc_info.value.available_tools == ["Read"]

    def test_version_bumps_on_mutation(self, registry):
        """Every registration change bumps the version"""
        before = registry.version
        registry.register(make_tool("bash"))
        assert registry.version > before

        after_register = registry.version
        assert registry.unregister("BASH")
        assert registry.version > after_register
        assert not registry.unregister("bash")

    def test_listing_and_categories(self, registry):
        """Tools list in registration order and filter by category"""
        registry.register_many([make_tool("grep", ToolCategory.SEARCH), make_tool("bash")])

        assert registry.list_tools() == ["Read", "grep", "bash"]
        assert len(registry) == 3
        assert [t.name for t in registry.tools_by_category("search")] == ["grep"]

    def test_describe_tools(self, registry):
        """describe_tools renders all or a subset of tools"""
        registry.register(make_tool("bash"))

        assert "## Read" in registry.describe_tools()
        subset = registry.describe_tools(["BASH"])
        assert "## bash" in subset
        assert "## Read" not in subset
        assert registry.describe_tools([]) == "No tools available."

    def test_clear(self, registry):
        """clear() empties the registry"""
        registry.clear()
        assert len(registry) == 0
        assert registry.describe_tools() == "No tools available."

    def test_load_modules(self, registry, tmp_path, monkeypatch):
        """Module-level tool definitions are registered; missing modules are skipped"""
        (tmp_path / "codeloop_registry_tools.py").write_text(
            "from codeloop.tools.base import ToolDefinition\n"
            "GREP = ToolDefinition(name='grep', description='Search', handler=lambda: 'ok')\n",
            encoding="utf-8",
        )
        monkeypatch.syspath_prepend(str(tmp_path))

        loaded = registry.load_modules(["codeloop_registry_tools", "codeloop_missing_tools"])

        assert loaded == 1
        assert "grep" in registry
        assert registry.list_tools() == ["Read", "grep"]


if __name__ == "__main__":
    pytest.main([__file__])
