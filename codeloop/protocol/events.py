from enum import Enum


class EventTypes(str, Enum):
    """
    Canonical event names published by the agent.
    Using an Enum prevents typo bugs (e.g. 'tool_start' vs 'tool_execution_start').
    """

    # 1. System Events
    INFO = "info"
    STATUS_CHANGED = "status_changed"
    WARNING = "warning"
    ERROR = "error"

    # 2. Conversation Events
    THINKING_STARTED = "thinking_started"
    RESPONSE_COMPLETE = "response_complete"

    # 3. Tool Execution Events
    TOOL_EXECUTION_START = "tool_execution_start"
    TOOL_CONFIRMATION_REQUESTED = "tool_confirmation_requested"
    TOOL_EXECUTION_COMPLETE = "tool_execution_complete"

    # 4. Context Events
    CONTEXT_COMPACTED = "context_compacted"
    TASK_COMPLETE = "task_complete"
