"""
Permission Gate.

Rule-based policy over (tool, path) pairs. Rules are checked in insertion
order and the first match decides; no match falls back to the default action.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from codeloop.exceptions.config import ConfigError

logger = logging.getLogger("PermissionManager")

WILDCARD = "*"

# Parameter names that carry the path-like subject of a tool call, in priority order.
PATH_PARAMETER_KEYS = ("file_path", "path", "filePath", "pattern", "glob", "command")


class PermissionAction(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"


@dataclass(frozen=True)
class PermissionRule:
    tool: str
    pattern: str = WILDCARD
    action: PermissionAction = PermissionAction.ALLOW

    def matches_tool(self, tool: str) -> bool:
        return self.tool == WILDCARD or self.tool.lower() == tool.lower()

    def to_dict(self) -> Dict[str, str]:
        return {"tool": self.tool, "pattern": self.pattern, "action": self.action.value}


@dataclass
class PermissionCheckResult:
    action: PermissionAction
    reason: str
    matched_rule: Optional[PermissionRule] = None

    @property
    def allowed(self) -> bool:
        return self.action == PermissionAction.ALLOW


def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """
    Translate a glob to an anchored, case-insensitive regex.
    `*` matches any run of characters, `?` exactly one; all else is literal.
    """
    escaped = re.escape(pattern)
    translated = escaped.replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(f"^{translated}$", re.IGNORECASE | re.DOTALL)


def extract_path(parameters: Dict[str, Any]) -> Optional[str]:
    for key in PATH_PARAMETER_KEYS:
        value = parameters.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class PermissionManager:
    """Evaluates tool requests against an ordered rule list."""

    def __init__(
        self,
        rules: Optional[Iterable[PermissionRule]] = None,
        default_action: PermissionAction = PermissionAction.ALLOW,
    ):
        self._rules: List[PermissionRule] = list(rules or [])
        self.default_action = PermissionAction(default_action)
        self._compiled: Dict[str, "re.Pattern[str]"] = {}

    @property
    def rules(self) -> List[PermissionRule]:
        return list(self._rules)

    def add_rule(self, rule: PermissionRule) -> None:
        self._rules.append(rule)

    def add_rules(self, rules: Iterable[PermissionRule]) -> None:
        self._rules.extend(rules)

    def clear_rules(self) -> None:
        self._rules.clear()

    def _pattern(self, pattern: str) -> "re.Pattern[str]":
        compiled = self._compiled.get(pattern)
        if compiled is None:
            compiled = glob_to_regex(pattern)
            self._compiled[pattern] = compiled
        return compiled

    def _rule_matches(self, rule: PermissionRule, tool: str, path: Optional[str]) -> bool:
        if not rule.matches_tool(tool):
            return False
        if rule.pattern == WILDCARD:
            return True
        # A path-specific rule never matches a request without a path.
        if not path:
            return False
        return bool(self._pattern(rule.pattern).match(path))

    def check_permission(self, tool: str, path: Optional[str] = None) -> PermissionCheckResult:
        for rule in self._rules:
            if self._rule_matches(rule, tool, path):
                return PermissionCheckResult(
                    action=rule.action,
                    reason=_reason_for(rule.action, tool, path, rule),
                    matched_rule=rule,
                )

        return PermissionCheckResult(
            action=self.default_action,
            reason=f"No rule matched {tool}; default action is {self.default_action.value}",
        )

    def is_allowed(self, tool: str, path: Optional[str] = None) -> bool:
        return self.check_permission(tool, path).action == PermissionAction.ALLOW

    def requires_ask(self, tool: str, path: Optional[str] = None) -> bool:
        return self.check_permission(tool, path).action == PermissionAction.ASK

    # --- Config round trip ---

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PermissionManager":
        manager = cls()
        manager.load_from_config(config)
        return manager

    def load_from_config(self, config: Dict[str, Any]) -> None:
        """
        Load `{"default": action, "rules": [{"tool", "pattern", "action"}]}`.
        Replaces the current rule list.
        """
        try:
            default = config.get("default")
            if default is not None:
                self.default_action = PermissionAction(str(default).lower())

            rules = []
            for raw in config.get("rules", []):
                rules.append(
                    PermissionRule(
                        tool=raw.get("tool", WILDCARD),
                        pattern=raw.get("pattern", WILDCARD),
                        action=PermissionAction(str(raw["action"]).lower()),
                    )
                )
        except (KeyError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid permission config: {e}", field_name="permissions") from e

        self._rules = rules
        logger.debug("Loaded %d permission rules", len(rules))

    def export_to_config(self) -> Dict[str, Any]:
        return {
            "default": self.default_action.value,
            "rules": [r.to_dict() for r in self._rules],
        }


def _reason_for(
    action: PermissionAction, tool: str, path: Optional[str], rule: PermissionRule
) -> str:
    subject = f"{tool} on {path}" if path else tool
    if action == PermissionAction.DENY:
        return f"{subject} is blocked by rule {rule.tool}:{rule.pattern}"
    if action == PermissionAction.ASK:
        return f"{subject} requires confirmation (rule {rule.tool}:{rule.pattern})"
    return f"{subject} is allowed by rule {rule.tool}:{rule.pattern}"


class PermissionPresets:
    """Ready-made rule sets."""

    READ_TOOLS = ("read", "glob", "grep")

    @classmethod
    def read_only(cls) -> List[PermissionRule]:
        rules = [PermissionRule(tool=t, action=PermissionAction.ALLOW) for t in cls.READ_TOOLS]
        rules.append(PermissionRule(tool=WILDCARD, action=PermissionAction.DENY))
        return rules

    @classmethod
    def explore(cls) -> List[PermissionRule]:
        rules = [PermissionRule(tool=t, action=PermissionAction.ALLOW) for t in cls.READ_TOOLS]
        rules.append(PermissionRule(tool=WILDCARD, action=PermissionAction.ASK))
        return rules

    @staticmethod
    def safe() -> List[PermissionRule]:
        return [
            PermissionRule(tool="bash", pattern="rm *", action=PermissionAction.DENY),
            PermissionRule(tool="bash", pattern="* rm *", action=PermissionAction.DENY),
            PermissionRule(tool="bash", pattern="git reset --hard*", action=PermissionAction.DENY),
            PermissionRule(tool="write", pattern="*.json", action=PermissionAction.ASK),
            PermissionRule(tool=WILDCARD, action=PermissionAction.ALLOW),
        ]

    @staticmethod
    def allow_all() -> List[PermissionRule]:
        return [PermissionRule(tool=WILDCARD, action=PermissionAction.ALLOW)]

    @staticmethod
    def ask_all() -> List[PermissionRule]:
        return [PermissionRule(tool=WILDCARD, action=PermissionAction.ASK)]

    @classmethod
    def by_name(cls, name: str) -> List[PermissionRule]:
        presets = {
            "read_only": cls.read_only,
            "explore": cls.explore,
            "safe": cls.safe,
            "allow_all": cls.allow_all,
            "ask_all": cls.ask_all,
        }
        try:
            return presets[name]()
        except KeyError:
            raise ConfigError(
                f"Unknown permission preset: {name}", field_name="permission_preset", invalid_value=name
            ) from None


def build_permission_manager(
    preset: Optional[str] = None, default_action: str = "allow"
) -> PermissionManager:
    rules = PermissionPresets.by_name(preset) if preset else []
    return PermissionManager(rules, default_action=PermissionAction(default_action))
