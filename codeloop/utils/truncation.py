"""
Output truncation for tool results.

Keeps the head of oversized output within a line and byte limit. The full
text is written to a side file and the preview points at it.
"""

import logging
import secrets
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MAX_LINES = 2000
MAX_BYTES = 50 * 1024
RETENTION_DAYS = 7
OUTPUT_FILE_PREFIX = "tool_"

DEFAULT_OUTPUT_DIR = Path.home() / ".codeloop" / "tool-output"


@dataclass
class TruncationResult:
    content: str
    truncated: bool
    output_path: Optional[Path] = None
    stats: Dict[str, Any] = field(default_factory=dict)


def _write_side_file(text: str, output_dir: Optional[Path]) -> Path:
    name = f"{OUTPUT_FILE_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(4)}"
    fallback = Path(tempfile.gettempdir()) / "codeloop-tool-output"
    for directory in (Path(output_dir or DEFAULT_OUTPUT_DIR), fallback):
        try:
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / name
            path.write_text(text, encoding="utf-8")
            return path
        except OSError as e:
            logger.warning("Could not write truncated output to %s: %s", directory, e)
    raise OSError("No writable directory for truncated tool output")


def truncate_output(
    text: str,
    max_lines: int = MAX_LINES,
    max_bytes: int = MAX_BYTES,
    output_dir: Optional[Path] = None,
) -> TruncationResult:
    """
    Keep whole lines from the start until either limit would be exceeded.
    """
    lines = text.split("\n")
    total_bytes = len(text.encode("utf-8"))

    if len(lines) <= max_lines and total_bytes <= max_bytes:
        return TruncationResult(content=text, truncated=False)

    kept = []
    used = 0
    hit_bytes = False
    for index, line in enumerate(lines):
        if index >= max_lines:
            break
        size = len(line.encode("utf-8")) + (1 if index else 0)
        if used + size > max_bytes:
            hit_bytes = True
            break
        kept.append(line)
        used += size

    preview = "\n".join(kept)
    if hit_bytes:
        removed = f"{total_bytes - used} bytes"
    else:
        removed = f"{len(lines) - len(kept)} lines"

    path = _write_side_file(text, output_dir)
    content = (
        f"{preview}\n\n... {removed} truncated ...\n\n"
        f"The tool call succeeded but the output was truncated. "
        f"Full output saved to: {path}\n"
        f"Read that file in parts or search it instead of requesting the whole output again."
    )
    return TruncationResult(
        content=content,
        truncated=True,
        output_path=path,
        stats={
            "original_lines": len(lines),
            "original_bytes": total_bytes,
            "kept_lines": len(kept),
            "kept_bytes": used,
        },
    )


def cleanup_old_truncation_files(
    output_dir: Optional[Path] = None, retention_days: int = RETENTION_DAYS
) -> int:
    """Delete side files older than the retention period. Returns the count removed."""
    directory = Path(output_dir or DEFAULT_OUTPUT_DIR)
    if not directory.is_dir():
        return 0

    cutoff = time.time() - retention_days * 86400
    removed = 0
    for path in directory.glob(f"{OUTPUT_FILE_PREFIX}*"):
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
    if removed:
        logger.info("Removed %d expired tool output files from %s", removed, directory)
    return removed
