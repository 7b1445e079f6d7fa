# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""CLI tests: in-process ``main()`` calls against a temporary database.

Pages come from ``--html`` files, so no browser or network is involved.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import subprocess
import sys

import httpx
import pytest
import structlog

from tabchat import Turn, cli
from tabchat.llm_client import ChatClient
from tabchat.storage import SqliteStore
from tabchat.threads import ThreadStore
from tests._helpers import ARTICLE_HTML, VALID_KEY


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    """Offline token counts and a restored logging setup."""
    monkeypatch.setattr(cli, "count_tokens", lambda text: len(text) // 4)
    for name in ("TABCHAT_DB_PATH", "TABCHAT_API_BASE", "TABCHAT_LOG_LEVEL", "TABCHAT_LOG_JSON"):
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.reset_defaults()


@pytest.fixture
def db(tmp_path):
    return tmp_path / "tabchat.db"


@pytest.fixture
def page_file(tmp_path):
    path = tmp_path / "report.html"
    path.write_text(ARTICLE_HTML, encoding="utf-8")
    return path


def _run(db, *argv: str) -> None:
    cli.main(["--db-path", str(db), *argv])


def _seed(db, values: dict) -> None:
    async def _write():
        store = await SqliteStore.create(db)
        try:
            await store.set(values)
        finally:
            await store.close()

    asyncio.run(_write())


class TestParser:
    def test_subcommand_required(self):
        with pytest.raises(SystemExit) as exc:
            cli.build_parser().parse_args([])
        assert exc.value.code == 2

    def test_every_subcommand_has_a_handler(self):
        parser = cli.build_parser()
        choices = next(a for a in parser._actions if isinstance(a, argparse._SubParsersAction)).choices
        assert set(choices) == set(cli.COMMANDS)

    def test_page_args(self):
        args = cli.build_parser().parse_args(["ask", "why?", "--html", "x.html", "--raw"])
        assert args.question == "why?"
        assert args.html == "x.html"
        assert args.raw is True


class TestContext:
    def test_text(self, db, page_file, capsys):
        _run(db, "context", "--html", str(page_file))
        out = capsys.readouterr().out
        assert "ROW 1: Widget | $10" in out
        assert "Revenue grew strongly" in out

    def test_json(self, db, page_file, capsys):
        _run(db, "context", "--html", str(page_file), "--format", "json")
        data = json.loads(capsys.readouterr().out)
        assert data["title"] == "Quarterly Report"
        assert data["url"] == "http://localhost/report.html"
        assert data["hasContent"] is True
        assert data["page"]["tables"][0]["rows"] == [["Widget", "$10"]]

    def test_explicit_url(self, db, page_file, capsys):
        _run(db, "context", "--html", str(page_file), "--url", "https://example.com/q3", "--format", "json")
        assert json.loads(capsys.readouterr().out)["url"] == "https://example.com/q3"

    def test_missing_page(self, db):
        with pytest.raises(SystemExit) as exc:
            _run(db, "context")
        assert "--url or --html" in str(exc.value.code)

    def test_unreadable_file(self, db, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc:
            _run(db, "context", "--html", str(tmp_path / "missing.html"))
        assert exc.value.code == 1
        assert capsys.readouterr().err.startswith("Error: FileNotFoundError")


class TestAsk:
    def test_reply(self, db, page_file, capsys, monkeypatch):
        _seed(db, {"apiKey": VALID_KEY, "model": "gpt-4o-mini", "maxTokens": 500})
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"choices": [{"message": {"content": "It costs **$10**."}}]})

        monkeypatch.setattr(cli, "ChatClient", lambda base: ChatClient(base, transport=httpx.MockTransport(handler)))
        _run(db, "ask", "What does a widget cost?", "--html", str(page_file), "--raw")
        assert capsys.readouterr().out.strip() == "It costs **$10**."
        assert seen[0]["model"] == "gpt-4o-mini"
        assert seen[0]["max_tokens"] == 500
        assert "ROW 1: Widget | $10" in seen[0]["messages"][0]["content"]

    def test_without_key(self, db, page_file, capsys):
        with pytest.raises(SystemExit) as exc:
            _run(db, "ask", "hi", "--html", str(page_file))
        assert exc.value.code == 1
        assert "API key not configured" in capsys.readouterr().err


class TestSettings:
    def test_set_then_show(self, db, capsys):
        _run(db, "settings", "set", "--api-key", VALID_KEY, "--model", "gpt-4o", "--max-tokens", "4000")
        captured = capsys.readouterr()
        assert "Settings saved successfully!" in captured.err
        _run(db, "settings", "show", "--json")
        data = json.loads(capsys.readouterr().out)
        assert data["apiKey"] == "sk-tes...cdef"
        assert data["model"] == "gpt-4o"
        assert data["maxTokens"] == 4000

    def test_show_defaults(self, db, capsys):
        _run(db, "settings", "show", "--json")
        data = json.loads(capsys.readouterr().out)
        assert data["apiKey"] == ""
        assert data["model"] == "gpt-4o-mini"

    def test_invalid_max_tokens(self, db, capsys):
        with pytest.raises(SystemExit) as exc:
            _run(db, "settings", "set", "--api-key", VALID_KEY, "--max-tokens", "50")
        assert exc.value.code == 1
        assert "between 100 and 16000" in capsys.readouterr().err

    def test_prompt_flags_exclusive(self, db):
        with pytest.raises(SystemExit) as exc:
            _run(db, "settings", "set", "--system-prompt", "x", "--reset-prompt")
        assert "mutually exclusive" in str(exc.value.code)


class TestModels:
    def test_cached_list(self, db, capsys):
        _seed(
            db,
            {
                "model": "gpt-4o",
                "cachedModels": [
                    {"id": "gpt-4o", "created": 2, "owned_by": "openai"},
                    {"id": "gpt-3.5-turbo", "created": 1, "owned_by": "openai"},
                ],
            },
        )
        _run(db, "models")
        out = capsys.readouterr().out
        assert "GPT-4o" in out
        assert "* gpt-4o" in out

    def test_unavailable_model_falls_back_to_default(self, db, capsys):
        _seed(
            db,
            {
                "apiKey": VALID_KEY,
                "model": "gpt-4-retired",
                "cachedModels": [
                    {"id": "gpt-4o", "created": 2, "owned_by": "openai"},
                    {"id": "gpt-4o-mini", "created": 3, "owned_by": "openai"},
                ],
            },
        )
        _run(db, "models")
        assert "* gpt-4o-mini" in capsys.readouterr().out

        async def _read():
            store = await SqliteStore.create(db)
            try:
                return await store.get({"model": ""})
            finally:
                await store.close()

        assert asyncio.run(_read()) == {"model": "gpt-4o-mini"}

    def test_json(self, db, capsys):
        _seed(db, {"cachedModels": [{"id": "gpt-4o", "created": 2, "owned_by": "openai"}]})
        _run(db, "models", "--json")
        assert json.loads(capsys.readouterr().out) == [{"id": "gpt-4o", "created": 2, "owned_by": "openai"}]


class TestChats:
    def _save_thread(self, db) -> str:
        async def _write():
            store = await SqliteStore.create(db)
            try:
                return await ThreadStore(store).save([Turn("user", "What is the price?"), Turn("assistant", "$10")])
            finally:
                await store.close()

        return asyncio.run(_write())

    def test_empty_list(self, db, capsys):
        _run(db, "chats", "list")
        assert "No saved chats yet" in capsys.readouterr().out

    def test_list_show_delete(self, db, capsys):
        chat_id = self._save_thread(db)
        _run(db, "chats", "list", "--json")
        listed = json.loads(capsys.readouterr().out)
        assert [c["id"] for c in listed] == [chat_id]
        assert listed[0]["title"] == "What is the price?"

        _run(db, "chats", "show", chat_id)
        out = capsys.readouterr().out
        assert "What is the price?" in out
        assert "$10" in out

        _run(db, "chats", "delete", chat_id)
        assert f"Deleted {chat_id}" in capsys.readouterr().err
        _run(db, "chats", "list", "--json")
        assert json.loads(capsys.readouterr().out) == []

    def test_delete_missing(self, db):
        with pytest.raises(SystemExit) as exc:
            _run(db, "chats", "delete", "chat-1")
        assert "no saved chat with id chat-1" in str(exc.value.code)


class TestSubprocess:
    def test_help(self):
        result = subprocess.run(
            [sys.executable, "-m", "tabchat", "--help"],
            capture_output=True,
            text=True,
            timeout=30,
        )
        assert result.returncode == 0
        assert "context" in result.stdout
        assert "Traceback" not in result.stderr
