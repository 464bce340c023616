"""
Interrupt Coordinator.

Bridges user interrupts (Ctrl-C) to whatever operation is in flight.
Each operation gets a fresh abort token from `start_operation()`; an
interrupt trips it with reason SIGINT.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Callable, Optional

from codeloop.agent.core.cancellation import REASON_SIGINT, AbortController, AbortSignal

logger = logging.getLogger("InterruptCoordinator")

InterruptCallback = Callable[[], None]


@dataclass
class InterruptState:
    is_interrupted: bool = False
    is_ai_thinking: bool = False
    is_executing_tool: bool = False
    is_handling_interrupt: bool = False


class InterruptCoordinator:
    def __init__(self, on_interrupt: Optional[InterruptCallback] = None):
        self.state = InterruptState()
        self._controller = AbortController()
        self._on_interrupt = on_interrupt
        self._sigint_loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous_handler = None

    # --- Activity flags ---

    def set_thinking(self, thinking: bool) -> None:
        self.state.is_ai_thinking = thinking
        if thinking:
            # A new model turn starts from a clean interrupt state.
            self.reset()

    def set_executing(self, executing: bool) -> None:
        self.state.is_executing_tool = executing

    @property
    def is_busy(self) -> bool:
        return self.state.is_ai_thinking or self.state.is_executing_tool

    # --- Operation lifecycle ---

    @property
    def signal(self) -> AbortSignal:
        return self._controller.signal

    def start_operation(self) -> AbortSignal:
        """Abort the previous token and hand out a fresh one."""
        self._controller.abort(REASON_SIGINT)
        self._controller = AbortController()
        self.state.is_interrupted = False
        self.state.is_handling_interrupt = False
        return self._controller.signal

    def request_interrupt(self) -> bool:
        """
        Interrupt the current operation. Returns False (and does nothing)
        while a previous interrupt is still being handled.
        """
        if self.state.is_handling_interrupt:
            logger.debug("Interrupt already being handled; ignoring")
            return False

        self.state.is_interrupted = True
        self.state.is_handling_interrupt = True
        self._controller.abort(REASON_SIGINT)
        logger.info("Interrupt requested")

        if self._on_interrupt is not None:
            self._on_interrupt()
        return True

    def is_aborted(self) -> bool:
        return self._controller.aborted

    def should_interrupt(self) -> bool:
        return self.state.is_interrupted or self._controller.aborted

    def reset(self) -> None:
        """Clear the interrupted flag; the handling flag waits until nothing is active."""
        self.state.is_interrupted = False
        if not self.is_busy:
            self.state.is_handling_interrupt = False

    def full_reset(self) -> None:
        self.state = InterruptState()
        self._controller = AbortController()

    # --- SIGINT binding ---

    def setup_sigint(
        self,
        on_interrupt: Optional[InterruptCallback] = None,
        on_exit: Optional[Callable[[], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """
        Route Ctrl-C here: while busy it interrupts the operation, while
        idle it calls `on_exit`. Signals during interrupt handling are ignored.
        """

        def handle_sigint(*_args) -> None:
            if self.state.is_handling_interrupt:
                return
            if self.is_busy:
                if self.request_interrupt() and on_interrupt is not None:
                    on_interrupt()
            elif on_exit is not None:
                on_exit()

        try:
            self._sigint_loop = loop or asyncio.get_running_loop()
            self._sigint_loop.add_signal_handler(signal.SIGINT, handle_sigint)
        except (RuntimeError, NotImplementedError):
            # No running loop, or a platform without loop signal support.
            self._sigint_loop = None
            self._previous_handler = signal.signal(signal.SIGINT, handle_sigint)

    def remove_sigint(self) -> None:
        if self._sigint_loop is not None:
            self._sigint_loop.remove_signal_handler(signal.SIGINT)
            self._sigint_loop = None
        elif self._previous_handler is not None:
            signal.signal(signal.SIGINT, self._previous_handler)
            self._previous_handler = None

    def cleanup(self) -> None:
        self.remove_sigint()
        self._controller.abort(REASON_SIGINT)
        self.state = InterruptState()


_coordinator: Optional[InterruptCoordinator] = None


def get_interrupt_coordinator() -> InterruptCoordinator:
    """Process-wide coordinator, used where the OS signal handler needs one."""
    global _coordinator  # pylint: disable=global-statement
    if _coordinator is None:
        _coordinator = InterruptCoordinator()
    return _coordinator


def reset_interrupt_coordinator() -> None:
    global _coordinator  # pylint: disable=global-statement
    if _coordinator is not None:
        _coordinator.cleanup()
    _coordinator = None
