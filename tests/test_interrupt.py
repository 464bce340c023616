# Test suite for cancellation tokens and the interrupt coordinator

import asyncio
import os
import signal

import pytest

from codeloop.agent.core.cancellation import (
    REASON_SIGINT,
    REASON_TIMEOUT,
    AbortController,
    AbortSignal,
    TimeoutController,
)
from codeloop.agent.core.interrupt import (
    InterruptCoordinator,
    get_interrupt_coordinator,
    reset_interrupt_coordinator,
)


class TestAbortSignal:
    """Test suite for abort signals and their composition"""

    def test_abort_sets_reason_and_notifies(self):
        """Listeners run once with the aborted signal"""
        controller = AbortController()
        seen = []
        controller.signal.add_listener(lambda s: seen.append(s.reason))

        controller.abort(REASON_SIGINT)
        controller.abort(REASON_TIMEOUT)

        assert controller.aborted
        assert controller.signal.reason == REASON_SIGINT
        assert seen == [REASON_SIGINT]

    def test_listener_on_aborted_signal_runs_immediately(self):
        """Late listeners are called straight away"""
        controller = AbortController()
        controller.abort("done")
        seen = []
        controller.signal.add_listener(lambda s: seen.append(s.reason))
        assert seen == ["done"]

    def test_removed_listener_is_not_called(self):
        """The remover returned by add_listener unhooks the listener"""
        controller = AbortController()
        seen = []
        remove = controller.signal.add_listener(lambda s: seen.append(s))
        remove()
        controller.abort()
        assert seen == []

    def test_any_takes_first_reason(self):
        """A composed signal trips with the reason of the first source"""
        first = AbortController()
        second = AbortController()
        combined = AbortSignal.any([first.signal, None, second.signal])

        second.abort(REASON_TIMEOUT)
        first.abort(REASON_SIGINT)

        assert combined.aborted
        assert combined.reason == REASON_TIMEOUT

    def test_any_with_already_aborted_source(self):
        """Composing an aborted source gives an aborted signal"""
        source = AbortController()
        source.abort(REASON_SIGINT)
        assert AbortSignal.any([source.signal]).reason == REASON_SIGINT

    def test_detach(self):
        """A detached composed signal no longer follows its sources"""
        source = AbortController()
        combined = AbortSignal.any([source.signal])
        combined.detach()

        source.abort(REASON_SIGINT)
        assert not combined.aborted

    @pytest.mark.asyncio
    async def test_timeout_controller(self):
        """TimeoutController aborts with TIMEOUT after its delay"""
        timer = TimeoutController(0.01)
        reason = await asyncio.wait_for(timer.signal.wait(), timeout=1)
        assert reason == REASON_TIMEOUT

    @pytest.mark.asyncio
    async def test_cancelled_timeout_never_fires(self):
        """A cancelled timer leaves its signal untouched"""
        timer = TimeoutController(0.01)
        timer.cancel()
        await asyncio.sleep(0.03)
        assert not timer.signal.aborted


class TestInterruptCoordinator:
    """Test suite for interrupt handling"""

    def test_interrupt_callback_runs_once_while_handling(self):
        """A second interrupt during handling does not call back again"""
        calls = []
        coordinator = InterruptCoordinator(on_interrupt=lambda: calls.append(1))
        coordinator.set_thinking(True)

        assert coordinator.request_interrupt()
        assert not coordinator.request_interrupt()

        assert calls == [1]
        assert coordinator.state.is_handling_interrupt

    def test_interrupt_aborts_current_operation(self):
        """An interrupt trips the current operation's signal with SIGINT"""
        coordinator = InterruptCoordinator()
        signal = coordinator.start_operation()

        coordinator.request_interrupt()

        assert signal.aborted
        assert signal.reason == REASON_SIGINT
        assert coordinator.should_interrupt()
        assert coordinator.is_aborted()

    def test_start_operation_replaces_token(self):
        """Each operation gets a fresh token; the previous one is aborted"""
        coordinator = InterruptCoordinator()
        first = coordinator.start_operation()
        second = coordinator.start_operation()

        assert first.aborted
        assert not second.aborted
        assert coordinator.signal is second
        assert not coordinator.should_interrupt()

    def test_reset_waits_until_idle(self):
        """The handling flag clears only once nothing is active"""
        coordinator = InterruptCoordinator()
        coordinator.set_executing(True)
        coordinator.request_interrupt()

        coordinator.reset()
        assert not coordinator.state.is_interrupted
        assert coordinator.state.is_handling_interrupt

        coordinator.set_executing(False)
        coordinator.reset()
        assert not coordinator.state.is_handling_interrupt

    def test_full_reset(self):
        """full_reset clears every flag and issues a clean token"""
        coordinator = InterruptCoordinator()
        coordinator.set_thinking(True)
        coordinator.request_interrupt()

        coordinator.full_reset()

        assert not coordinator.is_busy
        assert not coordinator.state.is_handling_interrupt
        assert not coordinator.is_aborted()

    @pytest.mark.asyncio
    async def test_sigint_while_idle_calls_exit(self):
        """Ctrl-C with nothing running goes to on_exit; cleanup unbinds it"""
        coordinator = InterruptCoordinator()
        exits = []
        coordinator.setup_sigint(on_exit=lambda: exits.append(True))
        try:
            os.kill(os.getpid(), signal.SIGINT)
            await asyncio.sleep(0.05)
        finally:
            coordinator.cleanup()

        assert exits == [True]
        assert coordinator.is_aborted()

    def test_process_wide_instance(self):
        """get_interrupt_coordinator returns one shared instance until reset"""
        reset_interrupt_coordinator()
        first = get_interrupt_coordinator()
        assert get_interrupt_coordinator() is first

        reset_interrupt_coordinator()
        assert get_interrupt_coordinator() is not first
        reset_interrupt_coordinator()


if __name__ == "__main__":
    pytest.main([__file__])
