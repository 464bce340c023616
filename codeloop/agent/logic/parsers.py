"""
Tool-Call Protocol Parser
=========================
Recovers structured tool calls from raw model text.

Each supported encoding is an isolated strategy returning the candidates it
found (or None). A single driver merges them, suppresses duplicates, drops
unknown tools and normalizes parameter names. Parsing is bounded by a
wall-clock budget and a per-response call limit.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from codeloop.agent.logic.parse_cache import ParseCache, make_cache_key
from codeloop.agent.structs import ToolCall
from codeloop.tools.params import normalize_parameters
from codeloop.tools.registry import ToolRegistry
from codeloop.utils.json_parser import find_balanced_end, loads_or_none, scan_json_values

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(
    r"```[ \t]*(?:json|tool|tool_call|tool_code)?[ \t]*\n?([\s\S]*?)```", re.IGNORECASE
)
_TAGGED_PATTERNS = (
    re.compile(r"\[TOOL_CALL\]([\s\S]*?)\[/TOOL_CALL\]", re.IGNORECASE),
    re.compile(r"<tool_call>([\s\S]*?)</tool_call>", re.IGNORECASE),
)
_TAGGED_NAME_PATTERN = re.compile(r"^\s*([A-Za-z_][\w.-]*)[ \t]*>?[ \t]*(?=\{)")
_INLINE_PATTERN = re.compile(r"(?<![\w\"'.-])([A-Za-z_][\w-]*)[ \t]*\{")
_BLANK_LINES_PATTERN = re.compile(r"\n{3,}")

TOOL_CALL_MARKER = "[tool call]"

# (position in text, tool name, raw parameters)
Candidate = Tuple[Tuple[int, int], str, Dict[str, Any]]


@dataclass
class ParseBudget:
    """Wall-clock deadline shared by every strategy of one parse."""

    deadline: float

    @classmethod
    def start(cls, seconds: float) -> "ParseBudget":
        return cls(deadline=time.monotonic() + seconds)

    def exhausted(self) -> bool:
        return time.monotonic() > self.deadline


# --- JSON value -> candidates ---


def _coerce_parameters(value: Any) -> Optional[Dict[str, Any]]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        parsed = loads_or_none(value)
        return parsed if isinstance(parsed, dict) else None
    return None


def calls_from_json(
    value: Any, require_parameters: bool = False
) -> List[Tuple[str, Dict[str, Any]]]:
    """
    `{tool, parameters}` objects (or a list of them) as (tool, parameters) pairs.
    `name`/`arguments` are accepted as spellings of `tool`/`parameters`.
    """
    items = value if isinstance(value, list) else [value]
    found = []
    for item in items:
        if not isinstance(item, dict):
            continue
        tool = item.get("tool", item.get("name"))
        if not isinstance(tool, str) or not tool.strip():
            continue
        if require_parameters and "parameters" not in item and "arguments" not in item:
            continue
        params = _coerce_parameters(item.get("parameters", item.get("arguments")))
        if params is None:
            continue
        found.append((tool.strip(), params))
    return found


# --- Strategies ---


def parse_fenced_blocks(
    text: str, budget: ParseBudget, is_known: Callable[[str], bool]
) -> Optional[List[Candidate]]:
    """```json fenced blocks holding a call object or an array of them."""
    if "```" not in text:
        return None

    found: List[Candidate] = []
    for match in _FENCE_PATTERN.finditer(text):
        if budget.exhausted():
            break
        value = loads_or_none(match.group(1).strip())
        for index, (tool, params) in enumerate(calls_from_json(value)):
            found.append(((match.start(), index), tool, params))
    return found or None


def parse_tagged_body(body: str) -> List[Tuple[str, Dict[str, Any]]]:
    """
    Contents of one tagged block. Accepts `Name{...}`, `Name>{...}`,
    a `{tool, parameters}` object, or adjacent objects merged into one
    parameter set.
    """
    stripped = body.strip()
    whole = loads_or_none(stripped)
    if whole is not None:
        direct = calls_from_json(whole)
        if direct:
            return direct

    name = None
    rest = stripped
    name_match = _TAGGED_NAME_PATTERN.match(stripped)
    if name_match:
        name = name_match.group(1)
        rest = stripped[name_match.end():]

    objects = [span.value for span in scan_json_values(rest) if isinstance(span.value, dict)]
    if not objects:
        return []

    if name is None and len(objects) > 1 and all("tool" in o for o in objects):
        return [pair for o in objects for pair in calls_from_json(o)]

    merged: Dict[str, Any] = {}
    for obj in objects:
        merged.update(obj)

    if name is not None:
        if set(merged) == {"parameters"} and isinstance(merged["parameters"], dict):
            merged = merged["parameters"]
        return [(name, merged)]

    tool = merged.pop("tool", None)
    if not isinstance(tool, str) or not tool.strip():
        return []
    params = _coerce_parameters(merged.pop("parameters", None))
    if params is None:
        return []
    params = {**params, **merged}
    return [(tool.strip(), params)]


def parse_tagged_blocks(
    text: str, budget: ParseBudget, is_known: Callable[[str], bool]
) -> Optional[List[Candidate]]:
    """[TOOL_CALL]...[/TOOL_CALL] and <tool_call>...</tool_call> blocks."""
    found: List[Candidate] = []
    for pattern in _TAGGED_PATTERNS:
        for match in pattern.finditer(text):
            if budget.exhausted():
                return found or None
            for index, (tool, params) in enumerate(parse_tagged_body(match.group(1))):
                found.append(((match.start(), index), tool, params))
    return found or None


def parse_inline_calls(
    text: str, budget: ParseBudget, is_known: Callable[[str], bool]
) -> Optional[List[Candidate]]:
    """
    `Name{...}` written inline in prose. Only registered names are
    considered, and fragments containing parentheses are rejected as
    function-call-style prose.
    """
    found: List[Candidate] = []
    for match in _INLINE_PATTERN.finditer(text):
        if budget.exhausted():
            break
        name = match.group(1)
        if not is_known(name):
            continue

        brace = match.end() - 1
        end = find_balanced_end(text, brace)
        if end < 0:
            continue
        if "(" in text[match.start():end] or ")" in text[match.start():end]:
            continue

        params = loads_or_none(text[brace:end])
        if isinstance(params, dict):
            found.append(((match.start(), 0), name, params))
    return found or None


def parse_bare_objects(
    text: str, budget: ParseBudget, is_known: Callable[[str], bool]
) -> Optional[List[Candidate]]:
    """Standalone `{"tool": ..., "parameters": {...}}` objects anywhere in the text."""
    if '"tool"' not in text and '"name"' not in text:
        return None

    found: List[Candidate] = []
    for span in scan_json_values(text, deadline=budget.deadline):
        pairs = calls_from_json(span.value, require_parameters=True)
        for index, (tool, params) in enumerate(pairs):
            found.append(((span.start, index), tool, params))
    return found or None


DEFAULT_STRATEGIES = (
    parse_fenced_blocks,
    parse_tagged_blocks,
    parse_inline_calls,
    parse_bare_objects,
)


class ToolCallParser:
    """
    Runs every strategy and merges their results.

    Duplicate calls (same tool name and parameters) collapse to the first
    occurrence in the text; results come back in text order.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        max_calls: int = 10,
        time_budget: float = 1.0,
        cache: Optional[ParseCache] = None,
        strategies=DEFAULT_STRATEGIES,
    ):
        self._registry = registry
        self.max_calls = max_calls
        self.time_budget = time_budget
        self._cache = cache if cache is not None else ParseCache()
        self._cache_version = registry.version
        self._strategies = tuple(strategies)

    @property
    def cache(self) -> ParseCache:
        return self._cache

    def parse(self, text: str) -> List[ToolCall]:
        if not text or not text.strip():
            return []

        if self._registry.version != self._cache_version:
            # Unknown-tool filtering depends on the registry contents.
            self._cache.clear()
            self._cache_version = self._registry.version

        key = make_cache_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        calls = self._extract(text)
        self._cache.put(key, calls)
        return calls

    def _extract(self, text: str) -> List[ToolCall]:
        budget = ParseBudget.start(self.time_budget)
        by_signature: Dict[str, Tuple[Tuple[int, int], ToolCall]] = {}

        for strategy in self._strategies:
            if len(by_signature) >= self.max_calls:
                break
            if budget.exhausted():
                logger.warning("Tool-call parsing stopped: time budget exceeded")
                break

            for position, tool, params in strategy(text, budget, self._registry.has_tool) or []:
                call = self._build_call(tool, params)
                if call is None:
                    continue
                signature = call.signature()
                existing = by_signature.get(signature)
                if existing is not None:
                    if position < existing[0]:
                        by_signature[signature] = (position, existing[1])
                    continue
                if len(by_signature) >= self.max_calls:
                    logger.warning("Tool-call limit of %d reached; ignoring the rest", self.max_calls)
                    break
                by_signature[signature] = (position, call)

        ordered = sorted(by_signature.values(), key=lambda entry: entry[0])
        return [call for _, call in ordered]

    def _build_call(self, tool: str, params: Dict[str, Any]) -> Optional[ToolCall]:
        definition = self._registry.get_tool(tool)
        if definition is None:
            logger.debug("Dropping call to unknown tool: %s", tool)
            return None
        parameters = normalize_parameters(params, definition.parameters.keys())
        return ToolCall(tool=definition.name, parameters=parameters)


def strip_tool_calls(text: str) -> str:
    """
    Assistant text with tool-call encodings replaced by a marker and runs
    of blank lines collapsed.
    """
    if not text:
        return ""

    def _fence(match: "re.Match[str]") -> str:
        value = loads_or_none(match.group(1).strip())
        return TOOL_CALL_MARKER if calls_from_json(value) else match.group(0)

    cleaned = _FENCE_PATTERN.sub(_fence, text)
    for pattern in _TAGGED_PATTERNS:
        cleaned = pattern.sub(TOOL_CALL_MARKER, cleaned)

    spans = [s for s in scan_json_values(cleaned) if calls_from_json(s.value)]
    for span in reversed(spans):
        cleaned = cleaned[: span.start] + TOOL_CALL_MARKER + cleaned[span.end :]

    return _BLANK_LINES_PATTERN.sub("\n\n", cleaned).strip()

