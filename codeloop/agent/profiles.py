"""
Agent profiles.

A profile names a working mode: the tools it may use and an optional
prompt of its own. Read-only modes keep to read/glob/grep.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from codeloop.exceptions.config import ConfigError

READ_ONLY_TOOLS = ("read", "glob", "grep")


@dataclass(frozen=True)
class AgentProfile:
    name: str
    description: str
    allowed_tools: Optional[Tuple[str, ...]] = None
    system_prompt: Optional[str] = None
    max_iterations: Optional[int] = None
    hidden: bool = False

    def allows(self, tool: str) -> bool:
        if self.allowed_tools is None:
            return True
        return tool.lower() in {t.lower() for t in self.allowed_tools}

    def filter_tools(self, names: Iterable[str]) -> List[str]:
        return [n for n in names if self.allows(n)]


DEFAULT_PROFILES = (
    AgentProfile(
        name="default",
        description="General coding assistant with access to every tool.",
    ),
    AgentProfile(
        name="explore",
        description="Code exploration. Read-only.",
        allowed_tools=READ_ONLY_TOOLS,
    ),
    AgentProfile(
        name="build",
        description="Build and deployment work.",
    ),
    AgentProfile(
        name="plan",
        description="Analysis and planning only. Does not modify code.",
        allowed_tools=READ_ONLY_TOOLS,
        system_prompt=(
            "You are in planning mode. Investigate the code with the read-only "
            "tools below and produce a plan. Do not attempt to modify anything."
        ),
    ),
)


class AgentProfiles:
    """Registry of named profiles."""

    def __init__(self, profiles: Iterable[AgentProfile] = DEFAULT_PROFILES):
        self._profiles: Dict[str, AgentProfile] = {p.name: p for p in profiles}

    def get(self, name: str) -> AgentProfile:
        try:
            return self._profiles[name]
        except KeyError:
            raise ConfigError(
                f"Unknown agent profile: {name}. Known: {', '.join(self._profiles)}",
                field_name="agent_profile",
                invalid_value=name,
            ) from None

    def add(self, profile: AgentProfile) -> None:
        self._profiles[profile.name] = profile

    def all(self) -> List[AgentProfile]:
        return list(self._profiles.values())

    def visible(self) -> List[AgentProfile]:
        return [p for p in self._profiles.values() if not p.hidden]

    @property
    def default(self) -> AgentProfile:
        return self._profiles["default"]
