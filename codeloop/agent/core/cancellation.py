"""
Cooperative cancellation tokens.

An AbortController owns an AbortSignal. Long-running work observes the
signal (poll `aborted`, await `wait()`, or register a listener). Signals
compose: `AbortSignal.any()` trips as soon as any source trips and
remembers which reason tripped it.
"""

import asyncio
import logging
from typing import Callable, Iterable, List, Optional

logger = logging.getLogger("Cancellation")

REASON_TIMEOUT = "TIMEOUT"
REASON_SIGINT = "SIGINT"

AbortListener = Callable[["AbortSignal"], None]


class AbortSignal:
    def __init__(self):
        self._aborted = False
        self._reason: Optional[str] = None
        self._event = asyncio.Event()
        self._listeners: List[AbortListener] = []
        self._detachers: List[Callable[[], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def add_listener(self, listener: AbortListener) -> Callable[[], None]:
        """Call `listener` on abort (immediately if already aborted). Returns a remover."""
        if self._aborted:
            listener(self)
            return lambda: None

        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def wait(self) -> Optional[str]:
        await self._event.wait()
        return self._reason

    def _trip(self, reason: Optional[str]) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason
        self._event.set()
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Abort listener failed: %s", e, exc_info=True)
        self._listeners.clear()

    @classmethod
    def any(cls, signals: Iterable[Optional["AbortSignal"]]) -> "AbortSignal":
        """A signal that aborts when the first of `signals` aborts, with its reason."""
        combined = cls()
        for source in signals:
            if source is None:
                continue
            if source.aborted:
                combined._trip(source.reason)
                break
            combined._detachers.append(
                source.add_listener(lambda s: combined._trip(s.reason))
            )
        return combined

    def detach(self) -> None:
        """Unhook a composed signal from its sources once it is no longer needed."""
        for remove in self._detachers:
            remove()
        self._detachers.clear()


class AbortController:
    def __init__(self):
        self.signal = AbortSignal()

    def abort(self, reason: Optional[str] = None) -> None:
        self.signal._trip(reason)  # pylint: disable=protected-access

    @property
    def aborted(self) -> bool:
        return self.signal.aborted


class TimeoutController(AbortController):
    """Aborts itself with reason TIMEOUT after `seconds` on the running loop."""

    def __init__(self, seconds: float):
        super().__init__()
        self.seconds = seconds
        self._handle = asyncio.get_running_loop().call_later(
            seconds, self.abort, REASON_TIMEOUT
        )

    def cancel(self) -> None:
        """Stop the timer without aborting."""
        self._handle.cancel()
