# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Run every extractor over a page snapshot.

Each extractor is wrapped separately: an exception is logged and its
section stays empty, so a single bad heuristic never loses the page.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from .. import PageSnapshot, now_ms
from . import ExtractedPage
from .dom import normalize_space, parse_document, select_first, tag_of
from .extractors import (
    extract_all_visible_text,
    extract_charts,
    extract_data_attributes,
    extract_forms,
    extract_headings,
    extract_links,
    extract_lists,
    extract_main_content,
    extract_metrics,
    extract_tables,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MEANINGFUL_TEXT_LENGTH = 50


def _safe(page: ExtractedPage, name: str, fn: Callable[[], T], default: T) -> T:
    try:
        return fn()
    except Exception as e:  # noqa: BLE001
        logger.warning("Extractor %s failed: %s: %s", name, type(e).__name__, e)
        page.failed_extractors.append(name)
        return default


def _meta_description(doc) -> str:
    head = doc.find("head")
    scope = head if head is not None else doc
    for meta in scope.iter("meta"):
        if (meta.get("name") or "").lower() == "description":
            return (meta.get("content") or "").strip()
    return ""


def _document_title(doc) -> str:
    title = doc.find(".//title")
    if title is None:
        title = select_first(doc, lambda el: tag_of(el) == "title")
    return normalize_space(title.text_content()) if title is not None else ""


def extract_page(snapshot: PageSnapshot) -> ExtractedPage:
    """Parse the snapshot HTML and fill every section of an ``ExtractedPage``."""
    doc = parse_document(snapshot.html)
    page = ExtractedPage(
        url=snapshot.url,
        title=snapshot.title or _document_title(doc),
        timestamp=now_ms(),
        selected_text=snapshot.selected_text,
    )
    url = snapshot.url

    page.meta_description = _safe(page, "meta", lambda: _meta_description(doc), "")
    page.headings = _safe(page, "headings", lambda: extract_headings(doc), [])
    page.tables = _safe(page, "tables", lambda: extract_tables(doc, url), [])
    page.metrics = _safe(page, "metrics", lambda: extract_metrics(doc), [])
    page.charts = _safe(page, "charts", lambda: extract_charts(doc), [])
    page.forms = _safe(page, "forms", lambda: extract_forms(doc), [])
    page.links = _safe(page, "links", lambda: extract_links(doc, url), [])
    page.lists = _safe(page, "lists", lambda: extract_lists(doc), [])
    page.data_attributes = _safe(page, "data_attributes", lambda: extract_data_attributes(doc), [])
    page.main_content = _safe(page, "main_content", lambda: extract_main_content(doc), "")
    page.all_visible_text = _safe(
        page, "all_visible_text", lambda: extract_all_visible_text(doc, snapshot.visible_text), ""
    )

    logger.debug(
        "Extracted %s: %d sections, %d tables, %d chars main content",
        url,
        page.section_count,
        len(page.tables),
        len(page.main_content),
    )
    return page


def has_meaningful_content(page: ExtractedPage | None) -> bool:
    """Enough text or at least one table to be worth formatting."""
    if page is None:
        return False
    return (
        len(page.main_content) > MEANINGFUL_TEXT_LENGTH
        or len(page.all_visible_text) > MEANINGFUL_TEXT_LENGTH
        or bool(page.tables)
    )
