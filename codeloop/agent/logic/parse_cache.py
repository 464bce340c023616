"""
Bounded cache of parse results so retried or duplicated model turns
are not parsed twice.
"""

import copy
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from codeloop.agent.structs import ToolCall

CACHE_KEY_PREFIX_CHARS = 2000


def make_cache_key(text: str) -> str:
    """Whitespace-normalized prefix of the text, qualified by its full length."""
    normalized = " ".join(text.split())
    return f"{len(normalized)}:{normalized[:CACHE_KEY_PREFIX_CHARS]}"


@dataclass
class CacheStats:
    size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ParseCache:
    """LRU with a maximum entry age. Stored and returned lists are copies."""

    def __init__(
        self,
        max_entries: int = 100,
        max_age: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.max_age = max_age
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, List[ToolCall]]]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[List[ToolCall]]:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        stored_at, calls = entry
        if self._clock() - stored_at > self.max_age:
            del self._entries[key]
            self._misses += 1
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return copy.deepcopy(calls)

    def put(self, key: str, calls: List[ToolCall]) -> None:
        self._entries[key] = (self._clock(), copy.deepcopy(calls))
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> CacheStats:
        return CacheStats(size=len(self._entries), hits=self._hits, misses=self._misses)
