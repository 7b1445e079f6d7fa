# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tagged-record interface over the dispatcher and settings.

``MessageRouter.handle({"action": ..., ...})`` returns a response record.
A lost browser host comes back as a failure record flagged ``"invalidated"``.
Used by the chat UI for everything that crosses the page/chat boundary,
and by ``tabchat`` integrations that speak JSON.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from .dispatch import ContextDispatcher
from .errors import HostInvalidatedError, user_message
from .settings import SettingsManager

logger = logging.getLogger(__name__)

MIN_SELECTION_LENGTH = 10
MAX_SELECTION_LENGTH = 500

Broadcast = Callable[[dict[str, Any]], Awaitable[None] | None]


class Action(str, Enum):
    GET_TAB_DATA = "getTabData"
    REFRESH_TAB = "refreshTab"
    CHAT = "chat"
    GET_SETTINGS = "getSettings"
    OPEN_SETTINGS = "openSettings"
    TAB_UPDATED = "tabUpdated"
    GET_SELECTED_TEXT = "getSelectedText"
    TEXT_SELECTED = "textSelected"


def tab_record(ctx) -> dict[str, Any]:
    """Full tab record including the context blob."""
    return {**ctx.summary(), "content": ctx.content}


class MessageRouter:
    """Maps action records to dispatcher/settings calls."""

    def __init__(
        self,
        dispatcher: ContextDispatcher,
        settings: SettingsManager,
        *,
        selection_reader: Callable[[], Awaitable[str]] | None = None,
        open_settings: Callable[[], Awaitable[None] | None] | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.settings = settings
        self._selection_reader = selection_reader
        self._open_settings = open_settings
        self._subscribers: list[Broadcast] = []
        dispatcher.add_listener(self._on_tab_updated)

    def subscribe(self, callback: Broadcast) -> None:
        """Receive ``tabUpdated`` and ``textSelected`` records."""
        self._subscribers.append(callback)

    async def broadcast(self, message: dict[str, Any]) -> None:
        for cb in list(self._subscribers):
            try:
                result = cb(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Subscriber failed for %s", message.get("action"), exc_info=True)

    async def _on_tab_updated(self, summary: dict[str, Any]) -> None:
        await self.broadcast({"action": Action.TAB_UPDATED.value, "data": summary})

    async def text_selected(self, text: str) -> None:
        """Broadcast a selection when it is longer than 10 chars (truncated to 500)."""
        text = (text or "").strip()
        if len(text) > MIN_SELECTION_LENGTH:
            await self.broadcast({"action": Action.TEXT_SELECTED.value, "text": text[:MAX_SELECTION_LENGTH]})

    async def handle(self, message: dict[str, Any]) -> dict[str, Any]:
        raw_action = message.get("action")
        try:
            action = Action(raw_action)
        except ValueError:
            return {"success": False, "error": f"Unknown action: {raw_action}"}

        if action is Action.GET_TAB_DATA:
            return tab_record(self.dispatcher.current)

        if action is Action.REFRESH_TAB:
            try:
                ok, result = await self.dispatcher.refresh()
            except HostInvalidatedError as e:
                return {"success": False, "error": str(e), "invalidated": True}
            if ok:
                return {"success": True, "data": tab_record(result)}
            return {"success": False, "error": result}

        if action is Action.CHAT:
            try:
                response = await self.dispatcher.handle_chat(message.get("userMessage", ""), message.get("history") or [])
            except Exception as e:  # noqa: BLE001
                logger.info("Chat request failed: %s", type(e).__name__)
                return {"success": False, "error": user_message(e)}
            return {"success": True, "response": response}

        if action is Action.GET_SETTINGS:
            return (await self.settings.load()).to_storage()

        if action is Action.OPEN_SETTINGS:
            if self._open_settings is not None:
                result = self._open_settings()
                if inspect.isawaitable(result):
                    await result
            return {"success": True}

        if action is Action.GET_SELECTED_TEXT:
            text = ""
            if self._selection_reader is not None:
                try:
                    text = await self._selection_reader()
                except HostInvalidatedError as e:
                    return {"success": False, "error": str(e), "invalidated": True}
            return {"selectedText": text}

        if action is Action.TEXT_SELECTED:
            await self.text_selected(message.get("text", ""))
            return {"success": True}

        # TAB_UPDATED flows outward only
        return {"success": False, "error": f"Unsupported action: {action.value}"}
