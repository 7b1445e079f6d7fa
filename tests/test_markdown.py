# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for reply formatting and the typing reveal."""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st
from rich.text import Text

from tabchat.markdown import (
    STYLE_CODE,
    STYLE_CODE_BLOCK,
    TypingAnimation,
    format_message,
    format_message_incremental,
    message_text,
    reveal_delay,
    reveal_frames,
)

# Markdown-ish alphabet so generated replies hit fences, emphasis and headings.
_REPLY_TEXT = st.text(alphabet=st.sampled_from(list("ab `*#-\n[]\\/:@")), max_size=60)
_NO_FENCE_TEXT = _REPLY_TEXT.filter(lambda s: "```" not in s)
# No markdown syntax at all: rendering must give back exactly the input.
_LITERAL_TEXT = st.text(alphabet=st.sampled_from(list("ab /@:[]\\\n")), max_size=60)


class TestFormatMessage:
    def test_inline_code(self):
        assert format_message("use `pip`") == f"use [{STYLE_CODE}]pip[/{STYLE_CODE}]"

    def test_bold_and_italic(self):
        assert format_message("**big** and *slanted*") == "[bold]big[/bold] and [italic]slanted[/italic]"

    def test_headings(self):
        out = format_message("# One\n## Two\n### Three")
        assert out == "[bold underline]One[/bold underline]\n[bold]Two[/bold]\n[bold italic]Three[/bold italic]"

    def test_bullets(self):
        assert format_message("- a\n* b") == "• a\n• b"

    def test_code_block(self):
        out = format_message("Run:\n```python\nprint(1)\n```\nDone")
        assert out == f"Run:\n[{STYLE_CODE_BLOCK}]print(1)[/{STYLE_CODE_BLOCK}]\nDone"

    def test_markup_in_reply_is_escaped(self):
        out = format_message("[red]not a style[/red]")
        assert Text.from_markup(out).plain == "[red]not a style[/red]"

    def test_code_block_content_is_literal(self):
        out = format_message("```\n**not bold** [b]x[/b]\n```")
        assert Text.from_markup(out).plain == "**not bold** [b]x[/b]"

    def test_bracket_closed_on_a_later_line_stays_literal(self):
        text = "see [/a\nb] here"
        assert Text.from_markup(format_message(text)).plain == text

    def test_backslashes_before_emphasis(self):
        text = "a\\\\\\**b**"
        assert Text.from_markup(format_message(text)).plain == "a\\\\\\b"

    def test_trailing_backslash(self):
        assert Text.from_markup(format_message("path\\")).plain == "path\\"

    def test_backslash_before_plain_bracket(self):
        text = "The area is \\[ A = \\pi r^2 \\] for a circle."
        assert message_text(text).plain == text

    def test_lone_escaped_bracket(self):
        assert message_text("\\[").plain == "\\["
        assert message_text("a \\\\[b").plain == "a \\\\[b"

    def test_emoji_codes_stay_literal(self):
        assert message_text("Great job :100: :smile:").plain == "Great job :100: :smile:"

    @given(_LITERAL_TEXT)
    @settings(max_examples=300)
    def test_text_without_markdown_renders_verbatim(self, text):
        assert message_text(text).plain == text


class TestIncremental:
    def test_open_fence_renders_as_code(self):
        out = format_message_incremental("Try this:\n```js\nconst x")
        assert out == f"Try this:\n[{STYLE_CODE_BLOCK}]const x[/{STYLE_CODE_BLOCK}]"

    def test_open_fence_without_newline_yet(self):
        assert format_message_incremental("```") == f"[{STYLE_CODE_BLOCK}][/{STYLE_CODE_BLOCK}]"

    def test_partial_emphasis_stays_literal(self):
        assert Text.from_markup(format_message_incremental("**bo")).plain == "**bo"

    @given(_NO_FENCE_TEXT)
    @settings(max_examples=200)
    def test_equals_full_format_without_open_fence(self, text):
        assert format_message_incremental(text) == format_message(text)


class TestRevealFrames:
    @given(_REPLY_TEXT)
    @settings(max_examples=200)
    def test_final_frame_is_full_format(self, text):
        frames = list(reveal_frames(text))
        assert len(frames) == len(text) + 1
        assert frames[-1] == format_message(text)

    @given(_REPLY_TEXT)
    @settings(max_examples=100)
    def test_frames_are_valid_markup(self, text):
        for frame in reveal_frames(text):
            Text.from_markup(frame)

    def test_delays(self):
        assert reveal_delay("a") == 6
        assert reveal_delay(" ") == 3
        assert reveal_delay(".") == 18
        assert reveal_delay(",") == 12
        assert reveal_delay("\n") == 12
        assert reveal_delay("a", base=10) == 10


class TestTypingAnimation:
    async def test_plays_every_frame_then_final(self):
        shown: list[str] = []
        delays: list[float] = []

        async def _sleep(seconds):
            delays.append(seconds)

        text = "Hi. `x`"
        await TypingAnimation(shown.append, sleep=_sleep).play(text)

        assert len(shown) == len(text) + 1
        assert shown[-1] == format_message(text)
        assert len(delays) == len(text)
        assert delays[2] == 18 / 1000

    async def test_async_render_callback(self):
        shown: list[str] = []

        async def _render(frame):
            shown.append(frame)

        async def _sleep(seconds):
            return None

        await TypingAnimation(_render, sleep=_sleep).play("```\ncode")
        assert shown[-1] == format_message("```\ncode")

    async def test_empty_reply(self):
        shown: list[str] = []

        async def _sleep(seconds):
            return None

        await TypingAnimation(shown.append, sleep=_sleep).play("")
        assert shown == [""]
