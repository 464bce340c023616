# Test suite for the event bus and event logging

import logging

import pytest

from codeloop.agent.structs import AgentStatus, ToolEvent, ToolResult
from codeloop.protocol.bus import EventBus
from codeloop.protocol.events import EventTypes
from codeloop.utils.logger import EventLogger, setup_logging


class TestEventBus:
    """Test suite for subscribe/emit semantics"""

    @pytest.mark.asyncio
    async def test_handlers_run_in_subscription_order(self):
        """Every subscriber receives the payload, in order"""
        bus = EventBus()
        seen = []

        async def first(data):
            seen.append(("first", data))

        async def second(data):
            seen.append(("second", data))

        await bus.subscribe(EventTypes.INFO, first)
        await bus.subscribe(EventTypes.INFO, second)
        await bus.emit(EventTypes.INFO, {"message": "hi"})

        assert seen == [("first", {"message": "hi"}), ("second", {"message": "hi"})]

    @pytest.mark.asyncio
    async def test_emit_without_subscribers(self):
        """Emitting an event nobody listens to is a no-op"""
        await EventBus().emit(EventTypes.WARNING, "ignored")

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_delivery(self):
        """A handler that raises is logged and later handlers still run"""
        bus = EventBus()
        seen = []

        async def broken(data):
            raise RuntimeError("handler bug")

        async def working(data):
            seen.append(data)

        await bus.subscribe(EventTypes.ERROR, broken)
        await bus.subscribe(EventTypes.ERROR, working)
        await bus.emit(EventTypes.ERROR, "payload")

        assert seen == ["payload"]

    @pytest.mark.asyncio
    async def test_unsubscribe_during_delivery(self):
        """A handler removed by an earlier handler is skipped"""
        bus = EventBus()
        seen = []

        async def late(data):
            seen.append("late")

        async def remover(data):
            await bus.unsubscribe(EventTypes.INFO, late)

        await bus.subscribe(EventTypes.INFO, remover)
        await bus.subscribe(EventTypes.INFO, late)
        await bus.emit(EventTypes.INFO, None)

        assert seen == []


class TestEventLogger:
    """Test suite for writing bus events to the log"""

    @pytest.mark.asyncio
    async def test_status_and_tool_events_are_logged(self, caplog):
        """Status changes and tool results appear in the log"""
        bus = EventBus()
        await EventLogger(bus, logging.getLogger("codeloop.test")).start()

        with caplog.at_level(logging.INFO, logger="codeloop.test"):
            await bus.emit(
                EventTypes.STATUS_CHANGED, AgentStatus(status="thinking", message="Waiting")
            )
            await bus.emit(
                EventTypes.TOOL_EXECUTION_COMPLETE,
                ToolEvent(
                    tool_name="read",
                    call_id="call_1",
                    parameters={},
                    result=ToolResult.fail("missing file", duration=0.5),
                ),
            )

        assert "[THINKING] Waiting" in caplog.text
        assert "Tool read failed in 0.50s: missing file" in caplog.text

    def test_setup_logging_writes_file(self, tmp_path):
        """setup_logging adds a file handler when a path is given"""
        log_file = tmp_path / "logs" / "codeloop.log"
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))
        try:
            setup_logging("debug", log_file)
            logging.getLogger("codeloop.test").debug("hello file")
            for handler in root.handlers:
                handler.flush()

            assert root.level == logging.DEBUG
            assert "hello file" in log_file.read_text(encoding="utf-8")
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
            root.setLevel(saved[0])
            for handler in saved[1]:
                root.addHandler(handler)


if __name__ == "__main__":
    pytest.main([__file__])
