# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""tabchat CLI: context, ask, chat, settings, models, chats commands.

Usage:
    tabchat context (--url URL | --html FILE [--url URL]) [--format text|json]
    tabchat ask QUESTION (--url URL | --html FILE [--url URL])
    tabchat chat [--url URL | --html FILE] [--headed]
    tabchat settings show [--json]
    tabchat settings set [--api-key KEY] [--model MODEL] [--max-tokens N] [--system-prompt TEXT | --reset-prompt]
    tabchat models [--refresh] [--json]
    tabchat chats list | show ID | delete ID
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import logging_config
from ._progress import print_step, status_spinner
from .browser_session import BrowserSession
from .chat import ChatSession
from .config import AppConfig, from_args
from .dispatch import ContextDispatcher
from .errors import TabChatError, user_message
from .formatter import count_tokens
from .llm_client import ChatClient
from .markdown import message_text
from .messaging import MessageRouter
from .page_source import BrowserPageSource, PageSource, StaticPageSource
from .settings import DEFAULT_SYSTEM_PROMPT, SettingsManager, group_models
from .storage import SqliteStore
from .threads import ThreadStore, format_relative_date
from .ui import ChatApp

_OFFLINE_URL_BASE = "http://localhost/"


def _console() -> Console:
    return Console()


@asynccontextmanager
async def _open_store(cfg: AppConfig) -> AsyncGenerator[SqliteStore, None]:
    store = await SqliteStore.create(cfg.db_path)
    try:
        yield store
    finally:
        await store.close()


@asynccontextmanager
async def _page_source(
    args: argparse.Namespace, cfg: AppConfig, *, require: bool = True
) -> AsyncGenerator[tuple[PageSource, BrowserSession | None], None]:
    """Static source for --html, a live browser tab for --url (or for chat with neither)."""
    html_path = getattr(args, "html", None)
    url = getattr(args, "url", None)
    if html_path:
        # file:// URLs count as internal pages, so offline documents get an http URL
        if html_path == "-":
            source = StaticPageSource(sys.stdin.read(), url or _OFFLINE_URL_BASE + "stdin.html")
        else:
            path = Path(html_path).expanduser()
            source = StaticPageSource.from_file(path, url or _OFFLINE_URL_BASE + path.name)
        yield source, None
        return
    if not url and require:
        raise SystemExit("Error: --url or --html is required for this command.")

    session = BrowserSession(cfg.browser)
    await session.start()
    try:
        if url:
            with status_spinner(f"Loading {url}...", done=f"Loaded {url}"):
                await session.navigate(url)
        yield BrowserPageSource(session), session
    finally:
        await session.stop()


# ── context ──────────────────────────────────────────────────────────


async def _context(args: argparse.Namespace, cfg: AppConfig) -> None:
    async with _page_source(args, cfg) as (source, _browser):
        dispatcher = ContextDispatcher(source, retry_delay=cfg.retry_delay)
        with status_spinner("Extracting page content..."):
            ctx = await dispatcher.update_active_tab()

    if args.format == "json":
        payload = {
            **ctx.summary(),
            "content": ctx.content,
            "page": dataclasses.asdict(ctx.raw) if ctx.raw is not None else None,
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        print(ctx.content)
    print_step(f"{len(ctx.content)} chars, {count_tokens(ctx.content)} tokens")


def cmd_context(args: argparse.Namespace, cfg: AppConfig) -> None:
    """Print the formatted context blob for a page."""
    asyncio.run(_context(args, cfg))


# ── ask ──────────────────────────────────────────────────────────────


async def _ask(args: argparse.Namespace, cfg: AppConfig) -> None:
    async with _open_store(cfg) as store, ChatClient(cfg.api_base) as client:
        settings = SettingsManager(store, client)
        async with _page_source(args, cfg) as (source, _browser):
            dispatcher = ContextDispatcher(source, settings=settings, client=client, retry_delay=cfg.retry_delay)
            with status_spinner("Extracting page content..."):
                await dispatcher.update_active_tab()
            with status_spinner("Thinking..."):
                reply = await dispatcher.handle_chat(args.question, [])

    if args.raw:
        print(reply)
    else:
        _console().print(message_text(reply))


def cmd_ask(args: argparse.Namespace, cfg: AppConfig) -> None:
    """Ask one question about a page."""
    asyncio.run(_ask(args, cfg))


# ── chat ─────────────────────────────────────────────────────────────


async def _chat(args: argparse.Namespace, cfg: AppConfig) -> int:
    async with _open_store(cfg) as store, ChatClient(cfg.api_base) as client:
        settings = SettingsManager(store, client)
        async with _page_source(args, cfg, require=False) as (source, browser):
            dispatcher = ContextDispatcher(source, settings=settings, client=client, retry_delay=cfg.retry_delay)
            router = MessageRouter(
                dispatcher,
                settings,
                selection_reader=browser.selected_text if browser else None,
            )
            session = ChatSession(dispatcher, ThreadStore(store))
            app = ChatApp(session=session, router=router, browser=browser)
            if browser is not None:
                browser.on_navigation(app.on_navigation)
                browser.on_selection(router.text_selected)
            with status_spinner("Reading the current tab..."):
                await dispatcher.update_active_tab()
            return await app.run()


def cmd_chat(args: argparse.Namespace, cfg: AppConfig) -> None:
    """Interactive chat about the active tab."""
    sys.exit(asyncio.run(_chat(args, cfg)))


# ── settings ─────────────────────────────────────────────────────────


async def _settings(args: argparse.Namespace, cfg: AppConfig) -> None:
    async with _open_store(cfg) as store:
        manager = SettingsManager(store)
        current = await manager.load()

        if args.settings_command == "set":
            if args.system_prompt is not None and args.reset_prompt:
                raise SystemExit("Error: --system-prompt and --reset-prompt are mutually exclusive.")
            prompt = current.system_prompt
            if args.reset_prompt:
                prompt = DEFAULT_SYSTEM_PROMPT
            elif args.system_prompt is not None:
                prompt = args.system_prompt
            current = await manager.save(
                api_key=args.api_key if args.api_key is not None else current.api_key,
                model=args.model if args.model is not None else current.model,
                max_tokens=args.max_tokens if args.max_tokens is not None else current.max_tokens,
                system_prompt=prompt,
            )
            print("Settings saved successfully!", file=sys.stderr)

    data = current.masked()
    if getattr(args, "json", False):
        print(json.dumps(data, ensure_ascii=False, indent=2))
        return
    console = _console()
    table = Table(show_header=False, box=None)
    for key, value in data.items():
        table.add_row(f"[bold]{key}[/bold]", escape(str(value) or "-"))
    console.print(table)


def cmd_settings(args: argparse.Namespace, cfg: AppConfig) -> None:
    """Show or change settings."""
    asyncio.run(_settings(args, cfg))


# ── models ───────────────────────────────────────────────────────────


async def _models(args: argparse.Namespace, cfg: AppConfig) -> None:
    async with _open_store(cfg) as store, ChatClient(cfg.api_base) as client:
        manager = SettingsManager(store, client)
        models = [] if args.refresh else await manager.cached_models()
        if not models:
            with status_spinner("Fetching models..."):
                models = await manager.fetch_models()
        selected = (await manager.reconcile_model(models)).model

    if args.json:
        print(json.dumps([m.model_dump() for m in models], indent=2))
        return
    console = _console()
    for group, items in group_models(models).items():
        console.print(f"[bold]{group}[/bold]")
        for m in items:
            marker = "[green]*[/green] " if m.id == selected else "  "
            console.print(f"{marker}{escape(m.id)} [dim]{escape(m.owned_by)}[/dim]")
    print_step(f"Found {len(models)} chat models")


def cmd_models(args: argparse.Namespace, cfg: AppConfig) -> None:
    """List chat-capable models."""
    asyncio.run(_models(args, cfg))


# ── chats ────────────────────────────────────────────────────────────


async def _chats(args: argparse.Namespace, cfg: AppConfig) -> None:
    async with _open_store(cfg) as store:
        threads = ThreadStore(store)
        console = _console()

        if args.chats_command == "delete":
            if not await threads.delete(args.id):
                raise SystemExit(f"Error: no saved chat with id {args.id}")
            print(f"Deleted {args.id}", file=sys.stderr)
            return

        if args.chats_command == "show":
            if args.json:
                exported = await threads.export(args.id)
                if exported is None:
                    raise SystemExit(f"Error: no saved chat with id {args.id}")
                print(json.dumps(exported, ensure_ascii=False, indent=2))
                return
            chat = await threads.get(args.id)
            if chat is None:
                raise SystemExit(f"Error: no saved chat with id {args.id}")
            console.print(f"[bold]{escape(chat.title)}[/bold] [dim]{format_relative_date(chat.updated_at)}[/dim]")
            for turn in chat.messages:
                if turn.role == "user":
                    console.print(Panel(Text(turn.content), title="You", title_align="left", border_style="blue"))
                else:
                    console.print(Panel(message_text(turn.content), title="Assistant", title_align="left"))
            return

        chats = await threads.list_threads()
        if args.json:
            print(json.dumps([c.to_dict() for c in chats], ensure_ascii=False, indent=2))
            return
        if not chats:
            console.print("[dim]No saved chats yet[/dim]")
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("ID")
        table.add_column("Title")
        table.add_column("Messages", justify="right")
        table.add_column("Updated", justify="right")
        for chat in chats:
            table.add_row(chat.id, escape(chat.title), str(len(chat.messages)), format_relative_date(chat.updated_at))
        console.print(table)


def cmd_chats(args: argparse.Namespace, cfg: AppConfig) -> None:
    """List, show or delete saved chats."""
    asyncio.run(_chats(args, cfg))


# ── main ─────────────────────────────────────────────────────────────


def _add_page_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--url", type=str, metavar="URL", help="Page URL (opened in Chromium unless --html is given)")
    p.add_argument("--html", type=str, metavar="FILE", help="Read page HTML from FILE ('-' for stdin) instead")
    p.add_argument("--headed", action="store_true", help="Show the browser window")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat with an LLM about a web page", prog="tabchat")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging and tracebacks")
    parser.add_argument("--db-path", type=str, metavar="PATH", help="SQLite database (default: ~/.tabchat/tabchat.db)")
    parser.add_argument("--json-logs", action="store_true", help="Log as JSON lines")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_context = subparsers.add_parser("context", help="Print the context blob extracted from a page")
    _add_page_args(p_context)
    p_context.add_argument("--format", choices=["text", "json"], default="text", help="Output format (default: text)")

    p_ask = subparsers.add_parser("ask", help="Ask one question about a page")
    p_ask.add_argument("question", type=str)
    _add_page_args(p_ask)
    p_ask.add_argument("--raw", action="store_true", help="Print the reply without formatting")

    p_chat = subparsers.add_parser("chat", help="Interactive chat about the active browser tab")
    _add_page_args(p_chat)

    p_settings = subparsers.add_parser("settings", help="Show or change settings")
    settings_sub = p_settings.add_subparsers(dest="settings_command", required=True)
    p_show = settings_sub.add_parser("show", help="Show settings (API key masked)")
    p_show.add_argument("--json", action="store_true")
    p_set = settings_sub.add_parser("set", help="Change settings")
    p_set.add_argument("--api-key", type=str, help="OpenAI API key (sk-...)")
    p_set.add_argument("--model", type=str, help="Chat model id")
    p_set.add_argument("--max-tokens", type=int, help="Reply token limit (100-16000)")
    p_set.add_argument("--system-prompt", type=str, help="Custom system prompt")
    p_set.add_argument("--reset-prompt", action="store_true", help="Restore the default system prompt")
    p_set.add_argument("--json", action="store_true")

    p_models = subparsers.add_parser("models", help="List chat models")
    p_models.add_argument("--refresh", action="store_true", help="Fetch from the API even if cached")
    p_models.add_argument("--json", action="store_true")

    p_chats = subparsers.add_parser("chats", help="Saved chats")
    chats_sub = p_chats.add_subparsers(dest="chats_command", required=True)
    p_list = chats_sub.add_parser("list", help="List saved chats, most recent first")
    p_list.add_argument("--json", action="store_true")
    p_cshow = chats_sub.add_parser("show", help="Print one saved chat")
    p_cshow.add_argument("id")
    p_cshow.add_argument("--json", action="store_true")
    p_delete = chats_sub.add_parser("delete", help="Delete a saved chat")
    p_delete.add_argument("id")

    return parser


COMMANDS = {
    "context": cmd_context,
    "ask": cmd_ask,
    "chat": cmd_chat,
    "settings": cmd_settings,
    "models": cmd_models,
    "chats": cmd_chats,
}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    cfg = from_args(args)
    logging_config.configure(json_output=cfg.json_logs, level=cfg.log_level)

    try:
        COMMANDS[args.command](args, cfg)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        print(f"Error: {user_message(e)}", file=sys.stderr)
        if args.verbose and not isinstance(e, TabChatError):
            import traceback

            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
