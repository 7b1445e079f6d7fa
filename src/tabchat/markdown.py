# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Assistant-reply markdown -> Rich console markup, plus the typing reveal.

Only the small markdown subset chat replies actually use is handled: fenced
code, inline code, bold, italic, ``#``-``###`` headings, ``-``/``*`` bullets
and numbered lists.  Every literal piece of text goes through
``rich.markup.escape`` on its own, so reply text can never inject markup.
"""

from __future__ import annotations

import asyncio
import inspect
import re
from collections.abc import Awaitable, Callable, Iterator

from rich.markup import escape
from rich.text import Text

FENCE = "```"

_FENCE_RE = re.compile(r"```(\w*)\n?([\s\S]*?)```")
_OPEN_FENCE_RE = re.compile(r"```(\w*)\n?")
_INLINE_RE = re.compile(r"`(?P<code>[^`]+)`|\*\*(?P<bold>[^*]+)\*\*|(?<!\*)\*(?P<italic>[^*]+)\*(?!\*)")
_HEADING_RE = re.compile(r"^(#{1,3}) (.+)$")
_BULLET_RE = re.compile(r"^[-*] (.+)$")
# A tag-like "[x" left open at the end of a rendered line
_OPEN_TAG_TAIL_RE = re.compile(r"(\\*)\[[a-z#/@][^\[\]]*$")
_BRACKET_RE = re.compile(r"[\[\]]")
# Backslashes right before a "[" that Rich will not read as a tag; rendering drops one
_LITERAL_BRACKET_SLASHES_RE = re.compile(r"(\\+)(?=\[(?![a-z#/@][^\[\]]*\]))")

STYLE_CODE = "bold cyan"
STYLE_CODE_BLOCK = "cyan"
HEADING_STYLES = {1: "bold underline", 2: "bold", 3: "bold italic"}


def _plain(text: str, before_tag: bool = False) -> str:
    """Escape literal text.  Trailing backslashes are doubled when a tag follows."""
    stripped = text.rstrip("\\")
    trailing = len(text) - len(stripped)
    return escape(stripped) + "\\" * (trailing * 2 if before_tag else trailing)


def _code_block(code: str) -> str:
    return f"[{STYLE_CODE_BLOCK}]{_plain(code, before_tag=True)}[/{STYLE_CODE_BLOCK}]"


def _inline(text: str, before_tag: bool = False) -> str:
    out: list[str] = []
    pos = 0
    for m in _INLINE_RE.finditer(text):
        out.append(_plain(text[pos : m.start()], before_tag=True))
        if m.group("code") is not None:
            out.append(f"[{STYLE_CODE}]{_plain(m.group('code'), True)}[/{STYLE_CODE}]")
        elif m.group("bold") is not None:
            out.append(f"[bold]{_plain(m.group('bold'), True)}[/bold]")
        else:
            out.append(f"[italic]{_plain(m.group('italic'), True)}[/italic]")
        pos = m.end()
    out.append(_plain(text[pos:], before_tag))
    return "".join(out)


def _line(line: str, before_tag: bool = False) -> str:
    heading = _HEADING_RE.match(line)
    if heading:
        style = HEADING_STYLES[len(heading.group(1))]
        return f"[{style}]{_inline(heading.group(2), True)}[/{style}]"
    bullet = _BULLET_RE.match(line)
    if bullet:
        return "• " + _inline(bullet.group(1), before_tag)
    return _inline(line, before_tag)


def _close_cross_line_tags(lines: list[str]) -> None:
    """Escape a line's trailing ``[x`` when a later line would close it into a tag."""
    for i in range(len(lines) - 1):
        m = _OPEN_TAG_TAIL_RE.search(lines[i])
        if m is None:
            continue
        following = _BRACKET_RE.search("\n".join(lines[i + 1 :]))
        if following is not None and following.group() == "]":
            slashes = len(m.group(1))
            lines[i] = lines[i][: m.start()] + "\\" * (slashes * 2 + 1) + lines[i][m.start() + slashes :]


def _prose(text: str, before_tag: bool = False) -> str:
    raw = text.split("\n")
    lines = [_line(line, before_tag and i == len(raw) - 1) for i, line in enumerate(raw)]
    _close_cross_line_tags(lines)
    return "\n".join(lines)


def _keep_literal_backslashes(markup: str) -> str:
    return _LITERAL_BRACKET_SLASHES_RE.sub(lambda m: m.group(1) + "\\", markup)


def _format(text: str, *, open_fence: bool) -> str:
    return _keep_literal_backslashes(_render(text, open_fence=open_fence))


def _render(text: str, *, open_fence: bool) -> str:
    out: list[str] = []
    pos = 0
    for m in _FENCE_RE.finditer(text):
        out.append(_prose(text[pos : m.start()], before_tag=True))
        out.append(_code_block(m.group(2).strip()))
        pos = m.end()
    tail = text[pos:]
    if open_fence:
        idx = tail.find(FENCE)
        if idx != -1:
            out.append(_prose(tail[:idx], before_tag=True))
            opener = _OPEN_FENCE_RE.match(tail, idx)
            code = tail[opener.end() :] if opener else tail[idx + len(FENCE) :]
            out.append(_code_block(code))
            return "".join(out)
    out.append(_prose(tail))
    return "".join(out)


def format_message(text: str) -> str:
    """Full markdown pass over a complete reply."""
    return _format(text, open_fence=False)


def message_text(text: str) -> Text:
    """A complete reply as renderable text.  Emoji codes such as ``:100:`` stay literal."""
    return Text.from_markup(format_message(text), emoji=False)


def format_message_incremental(text: str) -> str:
    """Format a reply prefix.

    An unterminated trailing code fence renders as an open code block; every
    other incomplete construct stays literal.  Without an open fence the
    result equals ``format_message(text)``.
    """
    return _format(text, open_fence=True)


def reveal_delay(char: str, base: float = 6) -> float:
    """Milliseconds to pause after revealing *char*."""
    if char == " ":
        return base / 2
    if char in ".!?":
        return base * 3
    if char in ",;:" or char == "\n":
        return base * 2
    return base


def reveal_frames(text: str) -> Iterator[str]:
    """One incrementally formatted frame per character, then the full format."""
    for i in range(1, len(text) + 1):
        yield format_message_incremental(text[:i])
    yield format_message(text)


class TypingAnimation:
    """Drive ``reveal_frames`` through a render callback with per-character delays."""

    def __init__(
        self,
        render: Callable[[str], Awaitable[None] | None],
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        base_delay: float = 6,
    ) -> None:
        self._render = render
        self._sleep = sleep
        self.base_delay = base_delay

    async def _show(self, frame: str) -> None:
        result = self._render(frame)
        if inspect.isawaitable(result):
            await result

    async def play(self, text: str) -> None:
        frames = reveal_frames(text)
        for char, frame in zip(text, frames):
            await self._show(frame)
            await self._sleep(reveal_delay(char, self.base_delay) / 1000)
        await self._show(next(frames, format_message(text)))
