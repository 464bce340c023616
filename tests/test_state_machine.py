# Test suite for the session state machine

import pytest

from codeloop.agent.core.state_machine import SessionState, SessionStateMachine


class TestSessionStateMachine:
    """Test suite for state transitions and notifications"""

    @pytest.fixture
    def machine(self):
        """Create a fresh state machine"""
        return SessionStateMachine()

    def test_starts_idle(self, machine):
        """New machines start idle and interactive"""
        assert machine.current == SessionState.IDLE
        assert machine.previous is None
        assert machine.is_interactive()
        assert not machine.is_busy()

    def test_transition_notifies_listeners(self, machine):
        """A real transition notifies every listener once"""
        changes = []
        machine.subscribe(changes.append)

        assert machine.set_state(SessionState.THINKING, "asking the model")

        assert len(changes) == 1
        assert changes[0].previous == SessionState.IDLE
        assert changes[0].current == SessionState.THINKING
        assert changes[0].message == "asking the model"
        assert machine.previous == SessionState.IDLE
        assert machine.is_busy()

    def test_same_state_is_a_noop(self, machine):
        """Setting the current state again emits nothing"""
        changes = []
        machine.subscribe(changes.append)

        machine.set_state(SessionState.BUSY)
        assert not machine.set_state(SessionState.BUSY)

        assert len(changes) == 1
        assert len(machine.get_history()) == 1

    def test_accepts_string_states(self, machine):
        """State values may be given as strings"""
        machine.set_state("executing")
        assert machine.current == SessionState.EXECUTING

    def test_unsubscribe(self, machine):
        """Unsubscribed listeners are no longer called"""
        changes = []
        unsubscribe = machine.subscribe(changes.append)
        unsubscribe()

        machine.set_state(SessionState.BUSY)
        assert changes == []

    def test_failing_listener_does_not_block_others(self, machine):
        """A listener that raises does not stop the transition or other listeners"""
        changes = []

        def broken(change):
            raise RuntimeError("listener bug")

        machine.subscribe(broken)
        machine.subscribe(changes.append)

        assert machine.set_state(SessionState.ERROR)
        assert machine.current == SessionState.ERROR
        assert len(changes) == 1

    def test_history_is_bounded(self):
        """Only the most recent transitions are retained"""
        machine = SessionStateMachine(history_limit=3)
        for state in (
            SessionState.BUSY,
            SessionState.THINKING,
            SessionState.EXECUTING,
            SessionState.COMPLETED,
            SessionState.IDLE,
        ):
            machine.set_state(state)

        history = machine.get_history()
        assert [c.current for c in history] == [
            SessionState.EXECUTING,
            SessionState.COMPLETED,
            SessionState.IDLE,
        ]
        assert [c.current for c in machine.get_history(limit=1)] == [SessionState.IDLE]
        assert machine.get_history(limit=0) == []

    def test_statistics(self, machine):
        """statistics() summarizes the retained transitions"""
        machine.set_state(SessionState.BUSY)
        machine.set_state(SessionState.THINKING)
        machine.set_state(SessionState.BUSY)

        stats = machine.statistics()
        assert stats["total_transitions"] == 3
        assert stats["distribution"] == {"busy": 2, "thinking": 1}
        assert stats["current"] == "busy"

    def test_reset(self, machine):
        """reset() returns to idle and clears history"""
        machine.set_state(SessionState.ERROR)
        machine.reset()

        assert machine.current == SessionState.IDLE
        assert machine.previous is None
        assert machine.get_history() == []


if __name__ == "__main__":
    pytest.main([__file__])
