"""
System prompt construction.
"""

import platform
from datetime import date
from pathlib import Path
from typing import Optional

TOOL_FORMAT_INSTRUCTIONS = """When you need a tool, answer with a fenced JSON block:

```json
{"tool": "tool_name", "parameters": {"param": "value"}}
```

To run several tools in one turn, put a JSON array of such objects in the block.
Tools run in the order given and you will see every result in the next message.
When the task is finished, reply with a short summary and no tool calls."""

CORRECTIVE_HINT = (
    "Some tool calls failed. Read the errors above, fix the parameters or try a "
    "different approach, and continue. Do not repeat a call that failed the same way."
)

MAX_ITERATIONS_NOTICE = (
    "Reached the maximum number of iterations ({iterations}) before the task was "
    "finished. Send another message to continue."
)


def build_system_prompt(
    tools_description: str,
    working_dir: Path,
    profile_prompt: Optional[str] = None,
    today: Optional[date] = None,
) -> str:
    environment = "\n".join(
        [
            f"Working directory: {working_dir}",
            f"Platform: {platform.system().lower()}",
            f"Date: {(today or date.today()).isoformat()}",
        ]
    )
    intro = profile_prompt or (
        "You are a coding assistant working inside the user's project. "
        "Use the tools below to inspect and change files and run commands."
    )
    return (
        f"{intro}\n\n"
        f"## Environment\n\n{environment}\n\n"
        f"## Available tools\n\n{tools_description}\n\n"
        f"## Tool call format\n\n{TOOL_FORMAT_INSTRUCTIONS}"
    )
