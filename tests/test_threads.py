# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for saved chat threads."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from tabchat import SavedChat, Turn
from tabchat.storage import InMemoryStore
from tabchat.threads import DEFAULT_TITLE, SAVED_CHATS_KEY, ThreadStore, format_relative_date, make_title

T0 = 1_700_000_000_000
MINUTE = 60_000
HOUR = 60 * MINUTE
DAY = 24 * HOUR


class _Clock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now


def _history(*texts: str) -> list[Turn]:
    turns = []
    for i, text in enumerate(texts):
        turns.append(Turn("user" if i % 2 == 0 else "assistant", text))
    return turns


class TestMakeTitle:
    def test_first_user_turn(self):
        assert make_title(_history("What is on this page?", "A report.")) == "What is on this page?"

    def test_truncated_to_fifty(self):
        assert make_title(_history("x" * 80)) == "x" * 50

    def test_attachment_marker_removed(self):
        assert make_title(_history("[ATTACHED FILE: a.csv] sum it")) == "sum it"

    def test_fallback(self):
        assert make_title([]) == DEFAULT_TITLE
        assert make_title([Turn("assistant", "hello")]) == DEFAULT_TITLE


class TestFormatRelativeDate:
    @pytest.mark.parametrize(
        ("age", "expected"),
        [
            (0, "Just now"),
            (59_000, "Just now"),
            (5 * MINUTE, "5m ago"),
            (3 * HOUR, "3h ago"),
            (2 * DAY, "2d ago"),
            (6 * DAY + 23 * HOUR, "6d ago"),
        ],
    )
    def test_recent(self, age, expected):
        assert format_relative_date(T0 - age, now=T0) == expected

    def test_older_than_a_week_is_a_date(self):
        ts = T0 - 10 * DAY
        assert format_relative_date(ts, now=T0) == datetime.fromtimestamp(ts / 1000).date().isoformat()


class TestThreadStore:
    async def test_save_creates_thread(self, store):
        threads = ThreadStore(store, clock=_Clock())
        chat_id = await threads.save(_history("hi", "hello"))
        assert chat_id == f"chat-{T0}"
        chat = await threads.get(chat_id)
        assert chat.title == "hi"
        assert chat.created_at == chat.updated_at == T0
        assert [t.content for t in chat.messages] == ["hi", "hello"]

    async def test_save_empty_history_is_noop(self, store):
        threads = ThreadStore(store)
        assert await threads.save([], None) is None
        assert await threads.save([], "chat-1") == "chat-1"
        assert store.data == {}

    async def test_update_keeps_created_and_title(self, store):
        clock = _Clock()
        threads = ThreadStore(store, clock=clock)
        chat_id = await threads.save(_history("first question", "answer"))
        clock.now += HOUR
        same_id = await threads.save(_history("first question", "answer", "follow-up", "more"), chat_id)
        assert same_id == chat_id
        chat = await threads.get(chat_id)
        assert chat.created_at == T0
        assert chat.updated_at == T0 + HOUR
        assert chat.title == "first question"
        assert len(chat.messages) == 4
        assert len(await threads.load()) == 1

    async def test_vanished_id_creates_new_thread(self, store):
        threads = ThreadStore(store, clock=_Clock())
        new_id = await threads.save(_history("q", "a"), "chat-deleted")
        assert new_id != "chat-deleted"
        assert [c.id for c in await threads.load()] == [new_id]

    async def test_id_collision_bumps(self, store):
        threads = ThreadStore(store, clock=_Clock())
        first = await threads.save(_history("one"))
        second = await threads.save(_history("two"))
        assert first == f"chat-{T0}"
        assert second == f"chat-{T0 + 1}"

    async def test_list_most_recent_first(self, store):
        clock = _Clock()
        threads = ThreadStore(store, clock=clock)
        old = await threads.save(_history("old"))
        clock.now += MINUTE
        new = await threads.save(_history("new"))
        clock.now += MINUTE
        await threads.save(_history("old", "again"), old)
        assert [c.id for c in await threads.list_threads()] == [old, new]

    async def test_delete(self, store):
        threads = ThreadStore(store, clock=_Clock())
        chat_id = await threads.save(_history("q"))
        assert await threads.delete(chat_id) is True
        assert await threads.delete(chat_id) is False
        assert await threads.get(chat_id) is None

    async def test_storage_format(self, store):
        threads = ThreadStore(store, clock=_Clock())
        chat_id = await threads.save(_history("q", "a"))
        assert store.data[SAVED_CHATS_KEY] == [
            {
                "id": chat_id,
                "title": "q",
                "messages": [{"role": "user", "content": "q"}, {"role": "assistant", "content": "a"}],
                "createdAt": T0,
                "updatedAt": T0,
            }
        ]
        assert await threads.export(chat_id) == store.data[SAVED_CHATS_KEY][0]
        assert await threads.export("missing") is None

    async def test_malformed_records_skipped(self):
        good = SavedChat("chat-1", "ok", [Turn("user", "q")], T0, T0).to_dict()
        store = InMemoryStore({SAVED_CHATS_KEY: [{"title": "no id"}, good]})
        chats = await ThreadStore(store).load()
        assert [c.id for c in chats] == ["chat-1"]

    async def test_saved_history_is_a_copy(self, store):
        threads = ThreadStore(store, clock=_Clock())
        history = _history("q", "a")
        chat_id = await threads.save(history)
        history[0].content = "mutated"
        assert (await threads.get(chat_id)).messages[0].content == "q"


class TestThreadOrderingProperty:
    @settings(max_examples=40, deadline=None)
    @given(st.lists(st.integers(min_value=0, max_value=4), min_size=1, max_size=15))
    def test_list_order_follows_last_update(self, touches):
        """Whatever the update sequence, threads come back most recently updated first."""

        async def _run() -> tuple[list[str], list[str]]:
            clock = _Clock()
            threads = ThreadStore(InMemoryStore(), clock=clock)
            ids: list[str] = []
            for n in range(5):
                clock.now += MINUTE
                ids.append(await threads.save(_history(f"thread {n}")))
            last_touch = {chat_id: i for i, chat_id in enumerate(ids)}
            for step, index in enumerate(touches, start=len(ids)):
                clock.now += MINUTE
                await threads.save(_history(f"thread {index}", f"touch {step}"), ids[index])
                last_touch[ids[index]] = step
            listed = [c.id for c in await threads.list_threads()]
            expected = sorted(ids, key=lambda i: last_touch[i], reverse=True)
            return listed, expected

        listed, expected = asyncio.run(_run())
        assert listed == expected
