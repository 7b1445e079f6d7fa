# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""User settings: API key, model, token limit, system prompt.

Stored under camelCase keys (``apiKey``, ``model``, ``maxTokens``,
``systemPrompt``) in the key-value store, plus ``cachedModels`` for the
last fetched model list.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import SettingsError
from .llm_client import ChatClient, check_api_key
from .storage import KeyValueStoreProtocol

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 2000
MIN_MAX_TOKENS = 100
MAX_MAX_TOKENS = 16000

DEFAULT_SYSTEM_PROMPT = """\
You are a highly capable AI assistant analyzing the user's current browser tab. \
You have COMPLETE access to all page content provided below - this includes ALL text, \
data, tables, numbers, and information visible on the page.

CRITICAL INSTRUCTIONS:
1. ALWAYS analyze the ACTUAL DATA provided in the page content - never give generic advice
2. Reference SPECIFIC numbers, keywords, metrics, and data points from the page
3. If you see tables, extract and analyze the actual values
4. Quote specific text from the page when relevant
5. If asked about data that IS in the page content, provide detailed analysis WITH the actual data
6. Only say "information not available" if you genuinely cannot find it in the provided content

You are seeing the SAME content the user sees. Analyze it thoroughly."""

# Preferred models in order (prefix match, for sorting)
MODEL_PRIORITY = (
    "gpt-4o",
    "gpt-4o-mini",
    "gpt-4-turbo",
    "gpt-4",
    "gpt-3.5-turbo",
    "o1",
    "o1-mini",
    "o1-preview",
)

_EXCLUDED_MODEL_MARKERS = (
    "instruct",
    "vision",
    "realtime",
    "audio",
    "embedding",
    "whisper",
    "tts",
    "dall-e",
    "davinci",
    "babbage",
    "curie",
    "ada",
)

MODEL_GROUPS = ("GPT-4o", "GPT-4 Turbo", "GPT-4", "GPT-3.5", "O1 (Reasoning)", "Other")

SETTINGS_DEFAULTS: dict[str, Any] = {
    "apiKey": "",
    "model": DEFAULT_MODEL,
    "maxTokens": DEFAULT_MAX_TOKENS,
    "systemPrompt": DEFAULT_SYSTEM_PROMPT,
}
CACHED_MODELS_KEY = "cachedModels"


class Settings(BaseModel):
    """Chat settings as persisted."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field("", alias="apiKey", description="OpenAI API key (sk-...)")
    model: str = Field(DEFAULT_MODEL, description="Chat model id")
    max_tokens: int = Field(
        DEFAULT_MAX_TOKENS,
        alias="maxTokens",
        ge=MIN_MAX_TOKENS,
        le=MAX_MAX_TOKENS,
        description="Reply token limit",
    )
    system_prompt: str = Field(DEFAULT_SYSTEM_PROMPT, alias="systemPrompt", description="System prompt")

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def masked(self) -> dict[str, Any]:
        """Storage form with the key shortened for display."""
        data = self.to_storage()
        key = data["apiKey"]
        data["apiKey"] = f"{key[:6]}...{key[-4:]}" if len(key) > 12 else ("***" if key else "")
        return data


class ModelInfo(BaseModel):
    """One chat-capable model from the listing endpoint."""

    id: str
    created: int = 0
    owned_by: str = ""


def validate_api_key(api_key: str | None) -> str:
    """Reject empty or non-``sk-`` keys with ``ApiKeyError``; return the stripped key."""
    return check_api_key(api_key)


def _is_chat_model(model_id: str) -> bool:
    mid = model_id.lower()
    if not ("gpt-4" in mid or "gpt-3.5" in mid or mid.startswith("o1")):
        return False
    return not any(marker in mid for marker in _EXCLUDED_MODEL_MARKERS)


def _priority(model_id: str) -> int:
    for i, prefix in enumerate(MODEL_PRIORITY):
        if model_id.startswith(prefix):
            return i
    return -1


def _sort_key(model: ModelInfo) -> tuple[int, int, int]:
    p = _priority(model.id)
    if p != -1:
        return (0, p, 0)
    return (1, 0, -model.created)


def filter_chat_models(records: list[dict[str, Any]]) -> list[ModelInfo]:
    """Keep chat-capable models; prioritized prefixes first, the rest newest first."""
    models = [
        ModelInfo(id=str(r["id"]), created=int(r.get("created") or 0), owned_by=str(r.get("owned_by") or ""))
        for r in records
        if r.get("id") and _is_chat_model(str(r["id"]))
    ]
    return sorted(models, key=_sort_key)


def model_group(model_id: str) -> str:
    if model_id.startswith("gpt-4o"):
        return "GPT-4o"
    if "gpt-4-turbo" in model_id or "gpt-4-1106" in model_id or "gpt-4-0125" in model_id:
        return "GPT-4 Turbo"
    if model_id.startswith("gpt-4"):
        return "GPT-4"
    if model_id.startswith("gpt-3.5"):
        return "GPT-3.5"
    if model_id.startswith("o1"):
        return "O1 (Reasoning)"
    return "Other"


def group_models(models: list[ModelInfo]) -> dict[str, list[ModelInfo]]:
    """Group by family in display order; empty groups omitted."""
    groups: dict[str, list[ModelInfo]] = {name: [] for name in MODEL_GROUPS}
    for m in models:
        groups[model_group(m.id)].append(m)
    return {name: items for name, items in groups.items() if items}


def default_model(models: list[ModelInfo]) -> str:
    """``gpt-4o-mini`` when available, else the first model, else the built-in default."""
    for m in models:
        if m.id == DEFAULT_MODEL:
            return m.id
    return models[0].id if models else DEFAULT_MODEL


class SettingsManager:
    """Load/save settings and the cached model list."""

    def __init__(self, store: KeyValueStoreProtocol, client: ChatClient | None = None) -> None:
        self._store = store
        self._client = client

    async def load(self) -> Settings:
        raw = await self._store.get(SETTINGS_DEFAULTS)
        if not str(raw.get("model") or "").strip():
            raw["model"] = DEFAULT_MODEL
        if not str(raw.get("systemPrompt") or "").strip():
            raw["systemPrompt"] = DEFAULT_SYSTEM_PROMPT
        try:
            return Settings.model_validate(raw)
        except ValidationError as e:
            logger.warning("Stored settings invalid, using defaults for bad fields: %s", e.error_count())
            return Settings(
                api_key=str(raw.get("apiKey") or ""),
                model=str(raw["model"]),
                system_prompt=str(raw["systemPrompt"]),
            )

    async def save(
        self,
        *,
        api_key: str,
        model: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        system_prompt: str = "",
    ) -> Settings:
        """Validate and persist all four fields in one write."""
        key = validate_api_key(api_key)
        if not (model or "").strip():
            raise SettingsError("Please select a model (run `tabchat models` first)")
        if not MIN_MAX_TOKENS <= max_tokens <= MAX_MAX_TOKENS:
            raise SettingsError(f"Max tokens must be between {MIN_MAX_TOKENS} and {MAX_MAX_TOKENS}")
        settings = Settings(
            api_key=key,
            model=model.strip(),
            max_tokens=max_tokens,
            system_prompt=(system_prompt or "").strip() or DEFAULT_SYSTEM_PROMPT,
        )
        await self._store.set(settings.to_storage())
        logger.info("Settings saved (model=%s, max_tokens=%d)", settings.model, settings.max_tokens)
        return settings

    async def fetch_models(self, api_key: str | None = None) -> list[ModelInfo]:
        """List chat models from the API and cache them. Key is validated first."""
        if api_key is None:
            api_key = (await self.load()).api_key
        key = validate_api_key(api_key)
        if self._client is None:
            raise SettingsError("No API client configured")
        models = filter_chat_models(await self._client.list_models(key))
        await self._store.set({CACHED_MODELS_KEY: [m.model_dump() for m in models]})
        logger.info("Fetched %d chat models", len(models))
        return models

    async def cached_models(self) -> list[ModelInfo]:
        raw = (await self._store.get({CACHED_MODELS_KEY: []}))[CACHED_MODELS_KEY]
        models: list[ModelInfo] = []
        for item in raw or []:
            try:
                models.append(ModelInfo.model_validate(item))
            except ValidationError:
                logger.debug("Skipping malformed cached model record: %r", item)
        return models

    async def reconcile_model(self, models: list[ModelInfo]) -> Settings:
        """Switch to ``default_model(models)`` when the saved model is not on offer.

        The choice is persisted only when an API key is already stored.
        """
        current = await self.load()
        if not models or any(m.id == current.model for m in models):
            return current
        chosen = default_model(models)
        logger.info("Model %s not available, using %s", current.model, chosen)
        if not current.api_key.strip():
            return current.model_copy(update={"model": chosen})
        return await self.save(
            api_key=current.api_key,
            model=chosen,
            max_tokens=current.max_tokens,
            system_prompt=current.system_prompt,
        )
