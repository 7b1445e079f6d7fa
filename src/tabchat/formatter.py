# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""ExtractedPage -> section-delimited context blob for the system prompt.

Section order is fixed (selection first, links last) and empty sections are
omitted, except MAIN PAGE CONTENT which always appears.  The result is
never empty.
"""

from __future__ import annotations

import functools

import tiktoken

from .extraction import ExtractedPage

UNABLE_TO_EXTRACT = "Unable to extract page content."
NO_CONTENT = "No content extracted"

BANNER_WIDTH = 64
MAX_MAIN_CONTENT = 60_000
MAX_VISIBLE_TEXT = 40_000
MIN_VISIBLE_TEXT = 100
MAX_CHART_POINTS = 50
MAX_LINKS_SHOWN = 50
TABLE_RULE = "-" * 50

_RULE = "═" * BANNER_WIDTH


def banner(title: str) -> str:
    """Three-line banner with *title* centred between double rules."""
    return f"{_RULE}\n{title.center(BANNER_WIDTH).rstrip()}\n{_RULE}"


def _section(title: str) -> str:
    return f"{'═' * 16} {title} {'═' * 16}\n"


def _tables(page: ExtractedPage) -> str:
    out = _section("TABLES & DATA GRIDS")
    for i, table in enumerate(page.tables, 1):
        caption = f"({table.caption})" if table.caption else ""
        out += f"\n--- TABLE {i} {caption} ---\n"
        if table.headers:
            out += f"HEADERS: {' | '.join(table.headers)}\n"
            out += TABLE_RULE + "\n"
        for n, row in enumerate(table.rows, 1):
            out += f"ROW {n}: {' | '.join(row)}\n"
    return out + "\n"


def _charts(page: ExtractedPage) -> str:
    out = _section("CHART DATA")
    for i, chart in enumerate(page.charts, 1):
        out += f"Chart {i}: {chart.title or 'Untitled'}\n"
        if chart.data:
            out += f"  Data: {', '.join(chart.data[:MAX_CHART_POINTS])}\n"
    return out + "\n"


def _forms(page: ExtractedPage) -> str:
    out = _section("FORMS")
    for i, form in enumerate(page.forms, 1):
        out += f"Form {i}:\n"
        for f in form.fields:
            out += f"  • [{f.type}] {f.label}: {f.value}\n"
    return out + "\n"


def _lists(page: ExtractedPage) -> str:
    out = _section("LISTS")
    for i, lst in enumerate(page.lists, 1):
        out += f"List {i}:\n"
        for j, item in enumerate(lst.items, 1):
            out += f"  {j}. {item}\n"
    return out + "\n"


def format_context(page: ExtractedPage | None) -> str:
    """Render every non-empty section of *page*; ``None`` yields a placeholder."""
    if page is None:
        return UNABLE_TO_EXTRACT

    context = (
        f"{banner('COMPLETE PAGE DATA EXTRACTION')}\n\n"
        f"URL: {page.url}\n"
        f"TITLE: {page.title}\n"
        f"DESCRIPTION: {page.meta_description or 'N/A'}\n\n"
    )

    if page.selected_text:
        context += f"{_section('SELECTED TEXT')}{page.selected_text}\n\n"

    if page.headings:
        context += _section("PAGE STRUCTURE") + "\n".join(page.headings) + "\n\n"

    if page.tables:
        context += _tables(page)

    if page.metrics:
        context += _section("METRICS & KPIs")
        context += "".join(f"• {m.label or 'Metric'}: {m.value}\n" for m in page.metrics)
        context += "\n"

    if page.charts:
        context += _charts(page)

    if page.data_attributes:
        context += _section("DATA ATTRIBUTES")
        for d in page.data_attributes:
            attrs = ", ".join(f'{k}="{v}"' for k, v in d.attributes.items())
            context += f"• {d.text or 'Element'}: {attrs}\n"
        context += "\n"

    if page.forms:
        context += _forms(page)

    if page.lists:
        context += _lists(page)

    context += f"{_section('MAIN PAGE CONTENT')}{page.main_content[:MAX_MAIN_CONTENT] or NO_CONTENT}\n\n"

    if len(page.all_visible_text) > MIN_VISIBLE_TEXT:
        context += f"{_section('ALL VISIBLE TEXT (BACKUP)')}{page.all_visible_text[:MAX_VISIBLE_TEXT]}\n\n"

    if page.links:
        context += _section(f"LINKS ({len(page.links)} total)")
        context += "\n".join(f'• "{link.text}" → {link.href}' for link in page.links[:MAX_LINKS_SHOWN]) + "\n"

    return context


# ── Token counting ───────────────────────────────────────────────────


@functools.lru_cache(maxsize=1)
def _get_encoder() -> tiktoken.Encoding:
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Count tokens using cl100k_base (GPT-4 family tokenizer)."""
    return len(_get_encoder().encode(text, disallowed_special=()))
