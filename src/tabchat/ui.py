# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Terminal chat panel built on rich.

Shows the active tab, the conversation, and saved threads.  Plain input
lines are questions about the page; lines starting with ``/`` are commands.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import urlparse

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import ROLE_USER
from .browser_session import BrowserSession
from .chat import Attachment, ChatSession, compose_user_content, format_file_size, read_attachment
from .errors import HostInvalidatedError, TabChatError, user_message
from .markdown import TypingAnimation, message_text
from .messaging import Action, MessageRouter
from .threads import format_relative_date

logger = logging.getLogger(__name__)

URL_DISPLAY_LENGTH = 40

HELP_TEXT = """\
/new            start a new chat
/chats          list saved chats
/load ID        open a saved chat
/delete ID      delete a saved chat
/refresh        re-read the current tab
/open URL       navigate the browser tab
/attach PATH    attach a file to the next message
/detach         drop the attached file
/selection      show the text selected on the page
/settings       show current settings
/quit           leave"""

SUGGESTIONS = ("Summarize this page", "What are the main points?", "Find specific information...")


def truncate_url(url: str, limit: int = URL_DISPLAY_LENGTH) -> str:
    """Host + path, cut to *limit* chars with an ellipsis."""
    if not url:
        return ""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return url[:limit]
    display = (parsed.hostname or "") + parsed.path
    if len(display) > limit:
        display = display[: limit - 3] + "..."
    return display


def tab_header(data: dict[str, Any]) -> Panel:
    if not data or data.get("tabId") is None:
        return Panel("[dim]No tab selected[/dim]\n-", title="Active tab", border_style="dim")
    title = escape(data.get("title") or "Untitled")
    url = escape(truncate_url(data.get("url", "")) or "-")
    status = "" if data.get("hasContent") else "\n[yellow]little or no readable content[/yellow]"
    return Panel(f"[bold]{title}[/bold]\n[dim]{url}[/dim]{status}", title="Active tab", border_style="green")


def reload_panel() -> Panel:
    return Panel(
        "[bold]Browser connection lost[/bold]\n\nPlease reload to continue: restart [bold]tabchat chat[/bold].",
        title="Disconnected",
        border_style="red",
    )


def _raise_if_invalidated(result: dict[str, Any]) -> None:
    if result.get("invalidated"):
        raise HostInvalidatedError()


class ChatApp:
    """Interactive loop: read a line, run a command or ask the model."""

    def __init__(
        self,
        *,
        session: ChatSession,
        router: MessageRouter,
        browser: BrowserSession | None = None,
        console: Console | None = None,
        input_func: Callable[[str], str] | None = None,
        animate: bool | None = None,
    ) -> None:
        self.session = session
        self.router = router
        self.browser = browser
        self.console = console or Console()
        self._input = input_func or self.console.input
        self.animate = self.console.is_terminal if animate is None else animate
        self.attachment: Attachment | None = None
        self.has_api_key = False
        self.running = False
        self.invalidated = False
        router.subscribe(self._on_broadcast)

    # ── Rendering ────────────────────────────────────────────────

    def render_message(self, kind: str, content: str, file_name: str | None = None) -> None:
        if kind == "user":
            body = Text.assemble((f"file: {file_name}\n", "dim"), content) if file_name else Text(content)
            self.console.print(Panel(body, title="You", title_align="left", border_style="blue"))
        elif kind == "error":
            self.console.print(Panel(message_text(content), title="Error", title_align="left", border_style="red"))
        else:
            self.console.print(Panel(message_text(content), title="Assistant", title_align="left"))

    def render_welcome(self) -> None:
        if not self.has_api_key:
            self.console.print(
                Panel(
                    "[yellow]OpenAI API key not configured[/yellow]\n"
                    "Set it with [bold]tabchat settings set --api-key sk-...[/bold]",
                    border_style="yellow",
                )
            )
            return
        lines = "\n".join(f"  • {s}" for s in SUGGESTIONS)
        self.console.print(
            Panel(
                f"[bold]Ask about this page[/bold]\nI can see everything on your current tab.\n\n{lines}\n\n"
                "[dim]/help for commands[/dim]",
                border_style="magenta",
            )
        )

    def render_history(self) -> None:
        for turn in self.session.history:
            self.render_message("user" if turn.role == ROLE_USER else "assistant", turn.content)

    def _host_lost(self) -> None:
        self.invalidated = True
        self.running = False
        self.console.print(reload_panel())

    async def on_navigation(self, _url: str) -> None:
        """Browser navigation hook: re-read the tab, stop the loop if the host is gone."""
        try:
            await self.router.dispatcher.update_active_tab()
        except HostInvalidatedError:
            self._host_lost()

    async def _on_broadcast(self, message: dict[str, Any]) -> None:
        action = message.get("action")
        if action == Action.TAB_UPDATED.value:
            self.console.print(tab_header(message.get("data") or {}))
        elif action == Action.TEXT_SELECTED.value:
            text = message.get("text", "")
            self.console.print(f"[dim]Selected on page ({len(text)} chars). /selection to view.[/dim]")

    # ── Commands ─────────────────────────────────────────────────

    async def _cmd_chats(self, _arg: str) -> None:
        chats = await self.session.threads.list_threads()
        if not chats:
            self.console.print("[dim]No saved chats yet[/dim]")
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("ID")
        table.add_column("Title")
        table.add_column("Updated", justify="right")
        for chat in chats:
            marker = " *" if chat.id == self.session.current_chat_id else ""
            table.add_row(chat.id + marker, escape(chat.title), format_relative_date(chat.updated_at))
        self.console.print(table)

    async def _cmd_load(self, arg: str) -> None:
        if not await self.session.load_thread(arg):
            self.console.print(f"[red]No saved chat with id {escape(arg)}[/red]")
            return
        self.console.clear()
        self.render_history()

    async def _cmd_delete(self, arg: str) -> None:
        was_current = arg == self.session.current_chat_id
        if not await self.session.delete_thread(arg):
            self.console.print(f"[red]No saved chat with id {escape(arg)}[/red]")
            return
        self.console.print(f"[dim]Deleted {escape(arg)}[/dim]")
        if was_current:
            self.render_welcome()

    async def _cmd_new(self, _arg: str) -> None:
        self.session.new_chat()
        self.console.clear()
        self.render_welcome()

    async def _cmd_refresh(self, _arg: str) -> None:
        with self.console.status("Refreshing..."):
            result = await self.router.handle({"action": Action.REFRESH_TAB.value})
        _raise_if_invalidated(result)
        if not result.get("success"):
            self.render_message("error", result.get("error") or "Refresh failed")

    async def _cmd_open(self, arg: str) -> None:
        if self.browser is None:
            self.render_message("error", "No browser attached (started with --html?)")
            return
        if not arg:
            self.console.print("[red]Usage: /open URL[/red]")
            return
        url = arg if "://" in arg else f"https://{arg}"
        with self.console.status(f"Opening {escape(url)}..."):
            await self.browser.navigate(url)

    async def _cmd_attach(self, arg: str) -> None:
        if not arg:
            self.console.print("[red]Usage: /attach PATH[/red]")
            return
        self.attachment = await asyncio.to_thread(read_attachment, arg)
        self.console.print(
            f"[dim]Attached {escape(self.attachment.name)} ({format_file_size(self.attachment.size)})[/dim]"
        )

    async def _cmd_detach(self, _arg: str) -> None:
        self.attachment = None
        self.console.print("[dim]Attachment removed[/dim]")

    async def _cmd_selection(self, _arg: str) -> None:
        result = await self.router.handle({"action": Action.GET_SELECTED_TEXT.value})
        _raise_if_invalidated(result)
        if result.get("success") is False:
            self.render_message("error", result.get("error", ""))
            return
        text = result.get("selectedText") or ""
        self.console.print(Panel(escape(text) if text else "[dim]Nothing selected[/dim]", title="Selection"))

    async def _cmd_settings(self, _arg: str) -> None:
        settings = await self.router.settings.load()
        data = settings.masked()
        body = "\n".join(
            f"[bold]{k}[/bold]: {escape(str(v))}" for k, v in data.items() if k != "systemPrompt"
        )
        body += f"\n[bold]systemPrompt[/bold]: {len(settings.system_prompt)} chars"
        self.console.print(Panel(body, title="Settings", subtitle="tabchat settings set --help"))
        await self.router.handle({"action": Action.OPEN_SETTINGS.value})

    async def _cmd_help(self, _arg: str) -> None:
        self.console.print(Panel(HELP_TEXT, title="Commands", border_style="magenta"))

    async def _cmd_quit(self, _arg: str) -> None:
        self.running = False

    def _commands(self) -> dict[str, Callable[[str], Any]]:
        return {
            "new": self._cmd_new,
            "chats": self._cmd_chats,
            "load": self._cmd_load,
            "delete": self._cmd_delete,
            "refresh": self._cmd_refresh,
            "open": self._cmd_open,
            "attach": self._cmd_attach,
            "detach": self._cmd_detach,
            "selection": self._cmd_selection,
            "settings": self._cmd_settings,
            "help": self._cmd_help,
            "quit": self._cmd_quit,
            "exit": self._cmd_quit,
        }

    # ── Chat ─────────────────────────────────────────────────────

    async def _reveal(self, reply: str) -> None:
        if not self.animate:
            self.render_message("assistant", reply)
            return
        with Live(console=self.console, refresh_per_second=30, transient=True) as live:
            animation = TypingAnimation(
                lambda frame: live.update(Panel(Text.from_markup(frame, emoji=False), title="Assistant"))
            )
            await animation.play(reply)
        self.render_message("assistant", reply)

    async def send(self, message: str) -> None:
        if not self.has_api_key:
            settings = await self.router.handle({"action": Action.GET_SETTINGS.value})
            self.has_api_key = bool(settings.get("apiKey"))
            if not self.has_api_key:
                self.render_message("error", "Please configure your OpenAI API key in settings first.")
                return

        attachment = self.attachment
        display, _api_text = compose_user_content(message, attachment)
        if not display:
            return
        self.render_message("user", display, attachment.name if attachment else None)
        self.attachment = None

        with self.console.status("Thinking..."):
            reply = await self.session.send(message, attachment)
        if reply is not None:
            await self._reveal(reply)

    async def handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        try:
            if line.startswith("/"):
                name, _, arg = line[1:].partition(" ")
                command = self._commands().get(name.lower())
                if command is None:
                    self.console.print(f"[red]Unknown command /{escape(name)}. Type /help.[/red]")
                    return
                await command(arg.strip())
            else:
                await self.send(line)
        except HostInvalidatedError:
            self._host_lost()
        except TabChatError as e:
            self.render_message("error", user_message(e))
        except Exception as e:
            logger.warning("Command failed: %s", line[:50], exc_info=True)
            self.render_message("error", user_message(e))

    async def run(self) -> int:
        settings = await self.router.handle({"action": Action.GET_SETTINGS.value})
        self.has_api_key = bool(settings.get("apiKey"))
        tab = await self.router.handle({"action": Action.GET_TAB_DATA.value})
        self.console.print(tab_header(tab))
        self.render_welcome()

        self.running = True
        while self.running:
            try:
                line = await asyncio.to_thread(self._input, "[bold cyan]> [/bold cyan]")
            except (EOFError, KeyboardInterrupt):
                break
            await self.handle_line(line)
        return 1 if self.invalidated else 0
