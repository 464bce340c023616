"""
JSON Parsing Utilities.

Locates JSON objects and arrays embedded in free text by bracket counting
with string/escape tracking, so braces inside string literals do not
confuse the scan.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

# How many characters to scan between wall-clock checks.
_DEADLINE_CHECK_INTERVAL = 2048


@dataclass
class JsonSpan:
    start: int
    end: int
    value: Any


def find_balanced_end(text: str, start: int) -> int:
    """
    Index just past the bracket that closes the one at `start`, or -1.
    """
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        char = text[i]
        if escape:
            escape = False
            continue
        if in_string:
            if char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


class _BracketParser:
    """
    Stateful bracket counter over a whole text.
    Collects every top-level JSON object or array that parses.
    """

    # pylint: disable=too-few-public-methods

    def __init__(self, text: str, deadline: Optional[float] = None):
        self.text = text
        self.deadline = deadline
        self.spans: List[JsonSpan] = []
        self._stack: List[str] = []
        self._start = -1
        self._in_string = False
        self._escape = False

    def parse(self) -> List[JsonSpan]:
        """Run the parsing logic."""
        if "{" not in self.text and "[" not in self.text:
            return []

        for i, char in enumerate(self.text):
            if (
                self.deadline is not None
                and i % _DEADLINE_CHECK_INTERVAL == 0
                and time.monotonic() > self.deadline
            ):
                logger.debug("JSON scan stopped at %d: time budget exceeded", i)
                break
            self._process_char(i, char)

        return self.spans

    def _process_char(self, i: int, char: str):
        """Process a single character and update state."""
        # Quotes only matter inside a bracketed region; prose may contain stray ones.
        if self._stack:
            if self._escape:
                self._escape = False
                return
            if self._in_string:
                if char == "\\":
                    self._escape = True
                elif char == '"':
                    self._in_string = False
                return
            if char == '"':
                self._in_string = True
                return

        if char in "{[":
            if not self._stack:
                self._start = i
            self._stack.append(char)

        elif char in "}]" and self._stack:
            self._handle_closing(char, i)

    def _handle_closing(self, char: str, current_index: int):
        """Handle closing brackets and attempt JSON parsing."""
        expected_open = "{" if char == "}" else "["

        if self._stack[-1] != expected_open:
            # Mismatched bracket: abandon this region.
            self._stack.clear()
            self._in_string = False
            return

        self._stack.pop()
        if not self._stack:
            self._attempt_parse(self._start, current_index)

    def _attempt_parse(self, start_index: int, current_index: int):
        """Attempt to parse the substring as JSON."""
        candidate = self.text[start_index : current_index + 1]
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.debug("Skipping JSON candidate at %d: %s", start_index, e)
            return
        self.spans.append(JsonSpan(start_index, current_index + 1, value))


def scan_json_values(text: str, deadline: Optional[float] = None) -> List[JsonSpan]:
    """Every top-level JSON object or array in `text`, in order of appearance."""
    return _BracketParser(text, deadline).parse()


def loads_or_none(text: str) -> Any:
    """json.loads that maps malformed input to None."""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None


def first_json_array(text: str) -> Optional[list]:
    """The first top-level JSON array in `text` that parses, or None."""
    for span in scan_json_values(text or ""):
        if isinstance(span.value, list):
            return span.value
    return None
