#!/usr/bin/env python3
"""
Token Estimation for Codeloop

Cheap, dependency-free approximation of tokenizer output. CJK ideographs
tokenize far denser than Latin text, so they are weighted separately.
"""

import json
import math
import re
from typing import Any, Dict, Iterable, Optional

# Pre-compiled at module level; estimation runs on every context read.
_CJK_CHARS_PATTERN = re.compile(r"[\u4e00-\u9fff]")

CJK_TOKENS_PER_CHAR = 0.6
OTHER_CHARS_PER_TOKEN = 4

MESSAGE_ROLE_OVERHEAD = 5
MESSAGE_FRAMING_OVERHEAD = 10
TOOL_CALL_OVERHEAD = 20


def estimate_tokens(text: Optional[str]) -> int:
    """
    Approximate the token count of a piece of text.

    CJK characters cost 0.6 tokens each; every other character costs a
    quarter token. The sum is rounded up.
    """
    if not text:
        return 0

    cjk = len(_CJK_CHARS_PATTERN.findall(text))
    other = len(text) - cjk
    return math.ceil(cjk * CJK_TOKENS_PER_CHAR + other / OTHER_CHARS_PER_TOKEN)


def estimate_message_tokens(content: Optional[str]) -> int:
    """Tokens for one chat message, including role and framing overhead."""
    return MESSAGE_ROLE_OVERHEAD + estimate_tokens(content) + MESSAGE_FRAMING_OVERHEAD


def estimate_tool_call_tokens(tool: str, parameters: Dict[str, Any]) -> int:
    serialized = json.dumps(parameters, ensure_ascii=False, default=str)
    return estimate_tokens(tool) + estimate_tokens(serialized) + TOOL_CALL_OVERHEAD


def estimate_total(texts: Iterable[Optional[str]]) -> int:
    return sum(estimate_tokens(t) for t in texts)
