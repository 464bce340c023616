#!/usr/bin/env python3
"""
Codeloop REPL
=============

Reads free-text turns and hands them to the agent loop.
`exit` / `quit` leave, `clear` starts a fresh conversation.
Ctrl-C while the agent works interrupts it; Ctrl-C at the prompt exits.
"""

import asyncio
import logging
import sys
import uuid
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from codeloop.agent.core.interrupt import get_interrupt_coordinator
from codeloop.agent.core.service import AgentOrchestrator
from codeloop.agent.permissions import PermissionCheckResult
from codeloop.agent.structs import AgentStatus, ToolCall, ToolEvent
from codeloop.config.settings import Settings
from codeloop.exceptions import CodeloopError
from codeloop.protocol.bus import EventBus
from codeloop.protocol.events import EventTypes
from codeloop.providers.openai_compatible import OpenAICompatibleChatClient
from codeloop.tools.registry import ToolRegistry
from codeloop.utils.logger import EventLogger, setup_logging
from codeloop.utils.truncation import cleanup_old_truncation_files

logger = logging.getLogger("CodeloopCLI")

EXIT_COMMANDS = {"exit", "quit"}
CLEAR_COMMANDS = {"clear"}


class CodeloopCLI:
    """
    prompt_toolkit input, rich output.
    """

    def __init__(self, settings: Settings, registry: Optional[ToolRegistry] = None):
        self._settings = settings
        self._console = Console()
        self._session = PromptSession(multiline=False)
        self._bus = EventBus()
        self._client = OpenAICompatibleChatClient.from_settings(settings)
        self._interrupts = get_interrupt_coordinator()
        registry = registry if registry is not None else ToolRegistry()
        if settings.tool_modules:
            registry.load_modules(settings.tool_modules)
        if not registry.list_tools():
            logger.warning("No tools registered; every turn will be answered without tool calls")
        self._agent = AgentOrchestrator(
            chat=self._client.chat,
            registry=registry,
            settings=settings,
            interrupts=self._interrupts,
            bus=self._bus,
            on_tool_call=self._confirm_tool_call,
        )
        self._running = False

    async def start(self) -> None:
        """Subscribe the console to agent events."""
        await self._bus.subscribe(EventTypes.STATUS_CHANGED, self._handle_status_changed)
        await self._bus.subscribe(EventTypes.TOOL_EXECUTION_START, self._handle_tool_start)
        await self._bus.subscribe(EventTypes.TOOL_EXECUTION_COMPLETE, self._handle_tool_complete)
        await self._bus.subscribe(EventTypes.CONTEXT_COMPACTED, self._handle_info)
        await EventLogger(self._bus).start()

        session_id = self._settings.session_id or uuid.uuid4().hex[:8]
        self._agent.context.set_session_id(session_id)
        loaded = await self._agent.context.load_history()
        logger.info("Session %s started with %d restored messages", session_id, loaded)
        if loaded:
            self._console.print(f"[dim]Resumed session {session_id} ({loaded} messages)[/]")

    async def run(self) -> None:
        """Main REPL loop."""
        self._running = True
        self._console.print(
            Panel.fit(
                f"Codeloop  [dim]{self._settings.model_name} | profile {self._agent.profile.name}[/]\n"
                "Type 'exit' or 'quit' to stop, 'clear' to start over.",
                border_style="cyan",
            )
        )
        self._bind_sigint()

        try:
            while self._running:
                try:
                    user_text = await self._prompt("> ")
                except (KeyboardInterrupt, EOFError):
                    break

                text = user_text.strip()
                if not text:
                    continue
                if text.lower() in EXIT_COMMANDS:
                    break
                if text.lower() in CLEAR_COMMANDS:
                    self._agent.reset_conversation()
                    self._console.print("[dim]Conversation cleared.[/]")
                    continue

                result = await self._agent.execute(text)
                if result.success:
                    self._console.print(Markdown(result.final_answer or ""))
                else:
                    self._console.print(f"[bold red]Error:[/] {result.error}")
                await self._save_history()
        finally:
            logger.info("REPL stopped")
            self._interrupts.cleanup()
            await self._client.close()

    def stop(self) -> None:
        """Leave the REPL, closing the prompt that is waiting for input."""
        self._running = False
        app = self._session.app
        if app.is_running:
            app.exit(exception=EOFError())

    async def _save_history(self) -> None:
        try:
            await self._agent.context.save_history()
        except CodeloopError as e:
            self._console.print(f"[yellow]{e.user_hint}[/] [dim]{e.message}[/]")

    async def _confirm_tool_call(self, call: ToolCall, check: PermissionCheckResult) -> bool:
        self._console.print(
            Panel(
                f"[bold]{call.tool}[/] {call.parameters}\n[dim]{check.reason}[/]",
                title="Tool confirmation",
                border_style="yellow",
            )
        )
        try:
            answer = await self._prompt("Allow? [y/N] ")
        except (KeyboardInterrupt, EOFError):
            return False
        return answer.strip().lower() in ("y", "yes")

    async def _prompt(self, message: str) -> str:
        # prompt_toolkit owns SIGINT while a prompt is open; Ctrl-C there raises
        # KeyboardInterrupt. Afterwards the coordinator takes it back.
        try:
            with patch_stdout():
                return await self._session.prompt_async(message)
        finally:
            self._bind_sigint()

    def _bind_sigint(self) -> None:
        self._interrupts.setup_sigint(on_interrupt=self._on_interrupt, on_exit=self.stop)

    def _on_interrupt(self) -> None:
        self._console.print("\n[yellow]Interrupting...[/]")

    # --- Event handlers ---

    async def _handle_status_changed(self, status: AgentStatus) -> None:
        if status.status in ("thinking", "executing"):
            self._console.print(f"[dim]{status.message}[/]")

    async def _handle_tool_start(self, event: ToolEvent) -> None:
        self._console.print(f"[cyan]-> {event.tool_name}[/] [dim]{event.parameters}[/]")

    async def _handle_tool_complete(self, event: ToolEvent) -> None:
        if event.result is None:
            return
        if event.result.success:
            self._console.print(f"[green]   {event.tool_name} ok[/]")
        else:
            self._console.print(f"[red]   {event.tool_name} failed:[/] {event.result.error}")

    async def _handle_info(self, data) -> None:
        message = data.get("message", data) if isinstance(data, dict) else data
        self._console.print(f"[dim]{message}[/]")


async def main(registry: Optional[ToolRegistry] = None) -> None:
    settings = Settings()
    setup_logging(settings.log_level, settings.log_file)
    cleanup_old_truncation_files(settings.tool_output_dir, settings.tool_output_retention_days)

    cli = CodeloopCLI(settings, registry)
    await cli.start()
    await cli.run()


def run(registry: Optional[ToolRegistry] = None) -> None:
    """Console script entry point. Embedders pass their own tool registry."""
    try:
        asyncio.run(main(registry))
    except CodeloopError as e:
        print(f"[Codeloop] {e.user_hint} ({e.message})", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n[Codeloop] Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
