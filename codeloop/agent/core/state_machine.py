import logging
import time
from collections import Counter, deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional


class SessionState(str, Enum):
    IDLE = "idle"
    BUSY = "busy"
    THINKING = "thinking"
    EXECUTING = "executing"
    ERROR = "error"
    COMPLETED = "completed"


@dataclass(frozen=True)
class StateChange:
    previous: SessionState
    current: SessionState
    timestamp: float
    message: Optional[str] = None


StateListener = Callable[[StateChange], None]

HISTORY_LIMIT = 100


class SessionStateMachine:
    """
    Tracks the session's state and notifies subscribers on change.
    Setting the current state again is a no-op and emits nothing.
    """

    def __init__(self, history_limit: int = HISTORY_LIMIT):
        self._current_state = SessionState.IDLE
        self._previous_state: Optional[SessionState] = None
        self._history: Deque[StateChange] = deque(maxlen=history_limit)
        self._listeners: List[StateListener] = []
        self._logger = logging.getLogger("SessionState")

    @property
    def current(self) -> SessionState:
        return self._current_state

    @property
    def previous(self) -> Optional[SessionState]:
        return self._previous_state

    def set_state(self, new_state: SessionState, message: Optional[str] = None) -> bool:
        """
        Move to `new_state`. Returns False when already there.
        """
        new_state = SessionState(new_state)
        if new_state == self._current_state:
            return False

        change = StateChange(
            previous=self._current_state,
            current=new_state,
            timestamp=time.time(),
            message=message,
        )
        self._previous_state = self._current_state
        self._current_state = new_state
        self._history.append(change)
        self._logger.debug("%s -> %s %s", change.previous.value, new_state.value, message or "")

        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._logger.error("State listener failed: %s", e, exc_info=True)
        return True

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def is_busy(self) -> bool:
        return self._current_state in (
            SessionState.BUSY,
            SessionState.THINKING,
            SessionState.EXECUTING,
        )

    def is_interactive(self) -> bool:
        """True when the session can take new user input."""
        return self._current_state in (
            SessionState.IDLE,
            SessionState.COMPLETED,
            SessionState.ERROR,
        )

    def reset(self) -> None:
        self.set_state(SessionState.IDLE, "reset")
        self._history.clear()
        self._previous_state = None

    def get_history(self, limit: Optional[int] = None) -> List[StateChange]:
        history = list(self._history)
        if limit is not None:
            return history[-limit:] if limit > 0 else []
        return history

    def statistics(self) -> Dict[str, object]:
        distribution = Counter(change.current.value for change in self._history)
        last = self._history[-1] if self._history else None
        return {
            "total_transitions": len(self._history),
            "distribution": dict(distribution),
            "last_change": last.timestamp if last else None,
            "current": self._current_state.value,
        }
