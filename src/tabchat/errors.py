# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""tabchat exception hierarchy and user-facing error text.

All tabchat-specific errors inherit from TabChatError, allowing callers
to catch the base class for any failure or specific subclasses
for targeted handling.  None of them is fatal: the UI renders
``str(exc)`` inline and carries on.
"""

from __future__ import annotations

import re


class TabChatError(Exception):
    """Base exception for all tabchat errors."""


class HostInvalidatedError(TabChatError):
    """The browser host went away (crash, disconnect, closed window)."""

    def __init__(self, message: str = "Browser connection lost. Please reload to continue.") -> None:
        super().__init__(message)


class ChatApiError(TabChatError):
    """Chat-completion or model-listing call failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ApiKeyError(ChatApiError):
    """API key missing or malformed. Raised before any network call."""


class BrowserError(TabChatError):
    """Browser could not be launched or driven."""


class ExtractionError(TabChatError):
    """A page could not be extracted at all."""


class SettingsError(TabChatError):
    """Settings failed validation."""


class ChatBusyError(TabChatError):
    """A chat request is already in flight."""

    def __init__(self, message: str = "A reply is still on its way. Please wait.") -> None:
        super().__init__(message)


class AttachmentError(TabChatError):
    """File attachment could not be read or is too large."""


# ── Secret redaction ─────────────────────────────────────────────────

MAX_DETAIL_LENGTH = 300

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"sk-[a-zA-Z0-9_-]{8,}"), "<redacted>"),
    (re.compile(r"Bearer\s+\S+"), "Bearer <redacted>"),
    (
        re.compile(
            r"(?:API_KEY|SECRET|TOKEN|PASSWORD|CREDENTIAL)\s*[=:]\s*\S+",
            re.IGNORECASE,
        ),
        "<redacted>",
    ),
    (re.compile(r"://[^@\s/]+@"), "://<redacted>@"),
]


def sanitize_detail(message: str, max_len: int = MAX_DETAIL_LENGTH) -> str:
    """Scrub credentials from an error message before showing or logging it."""
    if not message:
        return message
    for pattern, replacement in _SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    if len(message) > max_len:
        message = message[: max_len - 3] + "..."
    return message


def user_message(exc: BaseException) -> str:
    """Human-readable one-liner for any exception."""
    if isinstance(exc, TabChatError):
        return sanitize_detail(str(exc)) or type(exc).__name__
    return sanitize_detail(f"{type(exc).__name__}: {exc}")
