# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Chat session state: history, current thread, attachments, busy flag."""

from __future__ import annotations

import base64
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from . import ROLE_ASSISTANT, ROLE_USER, Turn
from .dispatch import MAX_HISTORY, ContextDispatcher
from .errors import AttachmentError, ChatBusyError
from .threads import ThreadStore

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024
MAX_ATTACHMENT_CHARS = 50_000

TEXT_EXTENSIONS = frozenset(
    {
        ".txt", ".md", ".json", ".csv", ".xml", ".html", ".js", ".ts", ".py", ".java",
        ".cpp", ".c", ".h", ".css", ".scss", ".yaml", ".yml", ".log",
    }
)  # fmt: skip


@dataclass(frozen=True)
class Attachment:
    name: str
    size: int
    mime_type: str
    content: str  # text, or a base64 data URL for binary files


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def read_attachment(path: str | Path) -> Attachment:
    """Read a file for attaching: text as-is, anything else as a data URL."""
    path = Path(path).expanduser()
    try:
        size = path.stat().st_size
    except OSError as e:
        raise AttachmentError(f"Failed to read file: {e.strerror or e}") from e
    if size > MAX_ATTACHMENT_BYTES:
        raise AttachmentError("File too large. Maximum size is 10MB.")

    mime_type = mimetypes.guess_type(path.name)[0] or ""
    try:
        if mime_type.startswith("text/") or path.suffix.lower() in TEXT_EXTENSIONS:
            content = path.read_text(encoding="utf-8", errors="replace")
        else:
            encoded = base64.b64encode(path.read_bytes()).decode("ascii")
            content = f"data:{mime_type or 'application/octet-stream'};base64,{encoded}"
    except OSError as e:
        raise AttachmentError(f"Failed to read file: {e.strerror or e}") from e
    return Attachment(name=path.name, size=size, mime_type=mime_type, content=content)


def compose_user_content(message: str, attachment: Attachment | None = None) -> tuple[str, str]:
    """Return ``(display_text, api_text)`` for one user turn."""
    message = message.strip()
    if attachment is None:
        return message, message
    display = message or f"Analyze this file: {attachment.name}"
    prefix = f"{message}\n\n" if message else ""
    api_text = f"{prefix}[ATTACHED FILE: {attachment.name}]\n```\n{attachment.content[:MAX_ATTACHMENT_CHARS]}\n```"
    return display, api_text


class ChatSession:
    """One conversation at a time, auto-saved after every exchange."""

    def __init__(self, dispatcher: ContextDispatcher, threads: ThreadStore) -> None:
        self.dispatcher = dispatcher
        self.threads = threads
        self.history: list[Turn] = []
        self.current_chat_id: str | None = None
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def send(self, message: str, attachment: Attachment | None = None) -> str | None:
        """Ask about the current page. Returns the reply, or None when there is nothing to send.

        Raises ``ChatBusyError`` while a previous reply is outstanding; API
        errors propagate and leave history untouched.
        """
        if not message.strip() and attachment is None:
            return None
        if self._busy:
            raise ChatBusyError()

        _display, api_text = compose_user_content(message, attachment)
        self._busy = True
        try:
            reply = await self.dispatcher.handle_chat(api_text, self.history)
        finally:
            self._busy = False

        self.history.append(Turn(ROLE_USER, api_text))
        self.history.append(Turn(ROLE_ASSISTANT, reply))
        if len(self.history) > MAX_HISTORY:
            self.history = self.history[-MAX_HISTORY:]

        try:
            self.current_chat_id = await self.threads.save(self.history, self.current_chat_id)
        except Exception:
            logger.warning("Failed to save chat", exc_info=True)
        return reply

    def new_chat(self) -> None:
        self.current_chat_id = None
        self.history = []

    async def load_thread(self, chat_id: str) -> bool:
        chat = await self.threads.get(chat_id)
        if chat is None:
            return False
        self.current_chat_id = chat.id
        self.history = list(chat.messages)
        return True

    async def delete_thread(self, chat_id: str) -> bool:
        """Delete a saved thread; deleting the active one starts a new chat."""
        deleted = await self.threads.delete(chat_id)
        if self.current_chat_id == chat_id:
            self.new_chat()
        return deleted
