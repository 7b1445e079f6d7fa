# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Chat-completion API client (OpenAI-compatible) on httpx.

Key checks happen before any request is built, so a missing or malformed
key never reaches the network.  All failures surface as ``ChatApiError``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .errors import ApiKeyError, ChatApiError, sanitize_detail

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.openai.com/v1"
DEFAULT_TEMPERATURE = 0.7
NO_RESPONSE = "No response generated."

API_KEY_MISSING = "API key not configured. Run `tabchat settings set --api-key sk-...` to add your OpenAI API key."
API_KEY_INVALID = 'Invalid API key format. Should start with "sk-"'


def check_api_key(api_key: str | None) -> str:
    """Return the stripped key or raise ``ApiKeyError``."""
    key = (api_key or "").strip()
    if not key:
        raise ApiKeyError(API_KEY_MISSING)
    if not key.startswith("sk-"):
        raise ApiKeyError(API_KEY_INVALID)
    return key


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message")
    return sanitize_detail(message or f"API error: {response.status_code}")


class ChatClient:
    """Thin async wrapper over ``/chat/completions`` and ``/models``."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, api_key: str, **kwargs: Any) -> Any:
        headers = {"Authorization": f"Bearer {api_key}"}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("API request %s %s failed: %s", method, path, type(e).__name__)
            raise ChatApiError(sanitize_detail(f"Network error: {e}") or "Network error") from e

        if not response.is_success:
            message = _error_message(response)
            logger.warning("API %s %s returned %d: %s", method, path, response.status_code, message)
            raise ChatApiError(message, status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ChatApiError("Malformed API response (not JSON)", status=response.status_code) from e

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        api_key: str | None,
        model: str,
        max_tokens: int,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> str:
        """Send *messages* and return the first choice's text."""
        key = check_api_key(api_key)
        payload = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        logger.debug("Chat completion: model=%s messages=%d", model, len(messages))
        data = await self._request("POST", "/chat/completions", key, json=payload)

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list):
            raise ChatApiError("Malformed API response (no choices)")
        if not choices:
            return NO_RESPONSE
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        return content or NO_RESPONSE

    async def list_models(self, api_key: str | None) -> list[dict[str, Any]]:
        """Raw model records (``id``, ``created``, ``owned_by``)."""
        key = check_api_key(api_key)
        data = await self._request("GET", "/models", key)
        records = data.get("data") if isinstance(data, dict) else None
        if not isinstance(records, list):
            raise ChatApiError("Malformed API response (no model list)")
        return [r for r in records if isinstance(r, dict) and r.get("id")]
