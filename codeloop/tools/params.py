"""
Parameter normalization for tool calls.

Models emit parameter names in whatever casing they were trained on.
Names a tool declares win, matched case-insensitively. The alias table maps
known snake_case spellings onto camelCase for keys the tool does not declare.
"""

from typing import Any, Dict, Iterable, List, Optional

PARAM_ALIASES: Dict[str, str] = {
    "file_path": "filePath",
    "old_string": "oldString",
    "new_string": "newString",
    "replace_all": "replaceAll",
    "tool_calls": "toolCalls",
    "dir_path": "dirPath",
    "max_results": "maxResults",
    "case_sensitive": "caseSensitive",
}

_LOWER_ALIASES = {k.lower(): v for k, v in PARAM_ALIASES.items()}
_LOWER_REVERSE = {v.lower(): k for k, v in PARAM_ALIASES.items()}

# JSON value kinds accepted in a parameter schema.
JSON_KINDS = ("string", "number", "integer", "boolean", "array", "object", "any")


def _resolve_name(key: str, by_lower: Dict[str, str]) -> str:
    lower = key.lower()
    if lower in by_lower:
        return by_lower[lower]
    alias = _LOWER_ALIASES.get(lower)
    if alias is not None:
        return by_lower.get(alias.lower(), alias)
    # A tool may declare the snake_case spelling of a canonical name.
    reverse = _LOWER_REVERSE.get(lower)
    if reverse is not None and reverse.lower() in by_lower:
        return by_lower[reverse.lower()]
    return key


def normalize_parameters(
    parameters: Dict[str, Any], canonical: Optional[Iterable[str]] = None
) -> Dict[str, Any]:
    """
    Rename keys onto `canonical` names when they differ only by case.
    Keys the tool does not declare go through the alias table.
    """
    by_lower = {name.lower(): name for name in canonical or ()}
    normalized: Dict[str, Any] = {}
    for key, value in parameters.items():
        name = _resolve_name(key, by_lower)
        # An exact canonical key wins over an alias that maps onto it.
        if name in normalized and key != name:
            continue
        normalized[name] = value
    return normalized


def json_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    if value is None:
        return "null"
    return type(value).__name__


def matches_kind(value: Any, kind: str) -> bool:
    if kind == "any":
        return True
    actual = json_kind(value)
    if kind == "number":
        return actual in ("number", "integer")
    return actual == kind


def missing_required(required: Iterable[str], parameters: Dict[str, Any]) -> List[str]:
    return [name for name in required if name not in parameters]
