# Test suite for tool-call recovery from model text

import time

import pytest

from codeloop.agent.logic.parse_cache import ParseCache, make_cache_key
from codeloop.agent.logic.parsers import (
    TOOL_CALL_MARKER,
    ParseBudget,
    ToolCallParser,
    calls_from_json,
    parse_fenced_blocks,
    parse_tagged_body,
    strip_tool_calls,
)
from codeloop.tools.base import ToolDefinition, ToolParameter
from codeloop.tools.registry import ToolRegistry


def _noop(**kwargs):
    return "ok"


@pytest.fixture
def registry():
    """Registry with read, write and bash tools"""
    return ToolRegistry(
        [
            ToolDefinition(
                name="read",
                description="Read a file",
                handler=_noop,
                parameters={"filePath": ToolParameter("string", required=True)},
            ),
            ToolDefinition(
                name="write",
                description="Write a file",
                handler=_noop,
                parameters={
                    "filePath": ToolParameter("string", required=True),
                    "content": ToolParameter("string", required=True),
                },
            ),
            ToolDefinition(
                name="bash",
                description="Run a command",
                handler=_noop,
                parameters={"command": ToolParameter("string", required=True)},
            ),
        ]
    )


@pytest.fixture
def parser(registry):
    """Create a ToolCallParser over the test registry"""
    return ToolCallParser(registry)


class TestEncodings:
    """Test suite for each supported tool-call encoding"""

    def test_fenced_json_block(self, parser):
        """A fenced JSON object yields one call"""
        text = (
            "I'll create the file.\n"
            "```json\n"
            '{"tool": "write", "parameters": {"filePath": "a.txt", "content": "hi"}}\n'
            "```"
        )
        calls = parser.parse(text)

        assert len(calls) == 1
        assert calls[0].tool == "write"
        assert calls[0].parameters == {"filePath": "a.txt", "content": "hi"}

    def test_fenced_json_array(self, parser):
        """A fenced array yields its calls in order"""
        text = (
            "```json\n"
            '[{"tool": "read", "parameters": {"filePath": "a.txt"}},\n'
            ' {"tool": "bash", "parameters": {"command": "ls"}}]\n'
            "```"
        )
        calls = parser.parse(text)
        assert [c.tool for c in calls] == ["read", "bash"]

    def test_bracket_tagged_name_and_params(self, parser):
        """[TOOL_CALL] Name{params} [/TOOL_CALL]"""
        text = 'Reading.\n[TOOL_CALL] read{"filePath": "a.txt"} [/TOOL_CALL]'
        calls = parser.parse(text)

        assert len(calls) == 1
        assert calls[0].tool == "read"
        assert calls[0].parameters == {"filePath": "a.txt"}

    def test_xml_tagged_name_arrow_params(self, parser):
        """<tool_call>Name>{params}</tool_call>"""
        text = '<tool_call>write>{"filePath": "b.txt", "content": "x"}</tool_call>'
        calls = parser.parse(text)

        assert len(calls) == 1
        assert calls[0].parameters == {"filePath": "b.txt", "content": "x"}

    def test_tagged_adjacent_objects_are_merged(self, parser):
        """Adjacent objects in one tagged block form one parameter set"""
        text = '<tool_call>{"tool": "write"} {"filePath": "c.txt"} {"content": "z"}</tool_call>'
        calls = parser.parse(text)

        assert len(calls) == 1
        assert calls[0].tool == "write"
        assert calls[0].parameters == {"filePath": "c.txt", "content": "z"}

    def test_tagged_tool_object(self, parser):
        """A tagged block may hold a plain {tool, parameters} object"""
        body = '{"tool": "bash", "parameters": {"command": "pwd"}}'
        assert parse_tagged_body(body) == [("bash", {"command": "pwd"})]

    def test_inline_call_in_prose(self, parser):
        """Name{params} written inline is recovered for registered tools"""
        text = 'Let me look: read{"filePath": "notes.md"} and then decide.'
        calls = parser.parse(text)

        assert len(calls) == 1
        assert calls[0].parameters == {"filePath": "notes.md"}

    def test_inline_call_with_parentheses_is_rejected(self, parser):
        """Fragments containing parentheses are treated as prose"""
        text = 'Maybe read{"filePath": "notes (old).md"} would help.'
        assert parser.parse(text) == []

    def test_bare_object_in_prose(self, parser):
        """A standalone {tool, parameters} object anywhere in the text"""
        text = 'Sure. {"tool": "bash", "parameters": {"command": "ls"}} Running now.'
        calls = parser.parse(text)

        assert len(calls) == 1
        assert calls[0].tool == "bash"

    def test_name_and_arguments_spelling(self):
        """name/arguments are accepted, including stringified arguments"""
        value = {"name": "read", "arguments": '{"filePath": "a"}'}
        assert calls_from_json(value) == [("read", {"filePath": "a"})]


class TestParserDriver:
    """Test suite for merging, filtering and bounding"""

    def test_same_call_twice_is_deduplicated(self, parser):
        """The same call in a fence and as a bare object yields one call"""
        text = (
            "```json\n"
            '{"tool": "read", "parameters": {"filePath": "a.txt"}}\n'
            "```\n"
            'Again: {"tool": "read", "parameters": {"filePath": "a.txt"}}'
        )
        assert len(parser.parse(text)) == 1

    def test_unknown_tool_is_dropped(self, parser):
        """Calls to unregistered tools are dropped without raising"""
        text = '{"tool": "launch_rockets", "parameters": {"count": 3}}'
        assert parser.parse(text) == []

    def test_names_and_keys_are_normalized(self, parser):
        """Tool names resolve case-insensitively and keys go through the alias table"""
        text = '{"tool": "READ", "parameters": {"file_path": "a.txt"}}'
        calls = parser.parse(text)

        assert calls[0].tool == "read"
        assert calls[0].parameters == {"filePath": "a.txt"}

    def test_max_calls_per_response(self, registry):
        """Extraction stops at the per-response limit"""
        parser = ToolCallParser(registry, max_calls=3)
        items = ", ".join(
            f'{{"tool": "read", "parameters": {{"filePath": "f{i}.txt"}}}}' for i in range(5)
        )
        calls = parser.parse(f"```json\n[{items}]\n```")

        assert [c.parameters["filePath"] for c in calls] == ["f0.txt", "f1.txt", "f2.txt"]

    def test_calls_come_back_in_text_order(self, parser):
        """Calls found by different strategies are ordered by position"""
        text = (
            'First {"tool": "bash", "parameters": {"command": "ls"}}\n'
            "```json\n"
            '{"tool": "read", "parameters": {"filePath": "a.txt"}}\n'
            "```"
        )
        assert [c.tool for c in parser.parse(text)] == ["bash", "read"]

    def test_empty_text(self, parser):
        """Empty responses have no calls"""
        assert parser.parse("") == []
        assert parser.parse("   \n") == []

    def test_exhausted_budget_stops_strategies(self):
        """A strategy given an exhausted budget finds nothing"""
        budget = ParseBudget(deadline=time.monotonic() - 1)
        text = '```json\n{"tool": "read", "parameters": {"filePath": "a"}}\n```'
        assert budget.exhausted()
        assert parse_fenced_blocks(text, budget, lambda name: True) is None


class TestParseCaching:
    """Test suite for cached parsing"""

    def test_parsing_twice_returns_equal_calls(self, parser):
        """A cache hit returns a call list equal to the first parse"""
        text = '{"tool": "read", "parameters": {"filePath": "a.txt"}}'
        first = parser.parse(text)
        second = parser.parse(text)

        assert first == second
        assert parser.cache.stats().hits == 1

    def test_cached_calls_are_copies(self, parser):
        """Mutating a returned call does not change the cache"""
        text = '{"tool": "read", "parameters": {"filePath": "a.txt"}}'
        parser.parse(text)[0].parameters["filePath"] = "changed"
        assert parser.parse(text)[0].parameters["filePath"] == "a.txt"

    def test_registry_change_invalidates_cache(self, registry, parser):
        """Registering a tool makes earlier parses of its calls stale"""
        text = '{"tool": "grep", "parameters": {"pattern": "TODO"}}'
        assert parser.parse(text) == []

        registry.register(
            ToolDefinition(
                name="grep",
                description="Search",
                handler=_noop,
                parameters={"pattern": ToolParameter("string", required=True)},
            )
        )
        assert [c.tool for c in parser.parse(text)] == ["grep"]


class TestParseCache:
    """Test suite for the LRU parse cache"""

    def test_key_normalizes_whitespace(self):
        """Texts differing only in whitespace share a key"""
        assert make_cache_key("a  b\n c") == make_cache_key("a b c")
        assert make_cache_key("a b") != make_cache_key("a b c")

    def test_lru_eviction(self):
        """The least recently used entry is evicted first"""
        cache = ParseCache(max_entries=2)
        cache.put("a", [])
        cache.put("b", [])
        cache.get("a")
        cache.put("c", [])

        assert len(cache) == 2
        assert cache.get("b") is None
        assert cache.get("a") == []

    def test_entries_expire(self):
        """Entries older than max_age are misses"""
        now = [100.0]
        cache = ParseCache(max_age=10, clock=lambda: now[0])
        cache.put("a", [])
        now[0] += 11

        assert cache.get("a") is None
        assert cache.stats().misses == 1
        assert cache.stats().hit_rate == 0.0


class TestStripToolCalls:
    """Test suite for removing call encodings from assistant text"""

    def test_fenced_call_becomes_marker(self):
        """Fenced calls are replaced and blank-line runs collapsed"""
        text = (
            "Creating file.\n"
            "```json\n"
            '{"tool": "write", "parameters": {"filePath": "a.txt", "content": "hi"}}\n'
            "```\n\n\n\n"
            "Done soon."
        )
        cleaned = strip_tool_calls(text)

        assert TOOL_CALL_MARKER in cleaned
        assert "```" not in cleaned
        assert "\n\n\n" not in cleaned
        assert cleaned.startswith("Creating file.")
        assert cleaned.endswith("Done soon.")

    def test_other_code_blocks_are_kept(self):
        """Fences that do not hold calls are left alone"""
        text = 'Example:\n```json\n{"a": 1}\n```'
        assert strip_tool_calls(text) == text

    def test_tagged_and_bare_calls(self):
        """Tagged blocks and bare call objects are replaced"""
        text = 'A <tool_call>read{"filePath": "x"}</tool_call> B {"tool": "bash", "parameters": {}}'
        cleaned = strip_tool_calls(text)
        assert cleaned == f"A {TOOL_CALL_MARKER} B {TOOL_CALL_MARKER}"


if __name__ == "__main__":
    pytest.main([__file__])
