import logging
import sys
from pathlib import Path
from typing import Any, Optional

from codeloop.agent.structs import AgentStatus, ToolEvent
from codeloop.protocol.bus import EventBus
from codeloop.protocol.events import EventTypes

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Configure the root logger: stderr always, plus a file when given.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)

    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)


class EventLogger:
    """
    Writes every orchestration event on the bus to the "Codeloop" logger.
    """

    def __init__(self, bus: EventBus, logger: Optional[logging.Logger] = None):
        self._bus = bus
        self._logger = logger or logging.getLogger("Codeloop")

    async def start(self):
        """Subscribe to the event bus."""
        await self._bus.subscribe(EventTypes.INFO, self._log_info)
        await self._bus.subscribe(EventTypes.WARNING, self._log_warning)
        await self._bus.subscribe(EventTypes.ERROR, self._log_error)
        await self._bus.subscribe(EventTypes.STATUS_CHANGED, self._log_status)
        await self._bus.subscribe(EventTypes.TOOL_EXECUTION_START, self._log_tool_start)
        await self._bus.subscribe(EventTypes.TOOL_EXECUTION_COMPLETE, self._log_tool)
        await self._bus.subscribe(EventTypes.CONTEXT_COMPACTED, self._log_context_event)

    # --- Handlers ---

    @staticmethod
    def _message(data: Any) -> str:
        if isinstance(data, dict):
            return str(data.get("message", data))
        return str(data)

    async def _log_info(self, data: Any):
        self._logger.info(self._message(data))

    async def _log_warning(self, data: Any):
        self._logger.warning(self._message(data))

    async def _log_error(self, data: Any):
        self._logger.error("ERROR: %s", self._message(data))

    async def _log_status(self, data: AgentStatus):
        self._logger.info("[%s] %s", data.status.upper(), data.message)

    async def _log_tool_start(self, data: ToolEvent):
        self._logger.info("Tool %s started (%s)", data.tool_name, data.call_id)

    async def _log_tool(self, data: ToolEvent):
        result = data.result
        if result is None:
            return
        duration = result.metadata.get("duration", 0.0)
        if result.success:
            self._logger.info("Tool %s succeeded in %.2fs", data.tool_name, duration)
        else:
            self._logger.warning("Tool %s failed in %.2fs: %s", data.tool_name, duration, result.error)

    async def _log_context_event(self, data: Any):
        self._logger.info("Context: %s", self._message(data))
