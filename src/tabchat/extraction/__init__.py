# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page content extraction: types shared by dom, extractors and pipeline.

Every extractor is best-effort. The pipeline guards each one separately,
so a failing heuristic leaves its section empty and the rest still run.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class TableData:
    """A table-like structure: real <table>, ARIA grid, or class-name grid."""

    source: str  # table, shadow-dom, grid-<class>, gsc-table, gsc-custom
    caption: str = ""
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)


@dataclass
class Metric:
    label: str
    value: str


@dataclass
class ChartData:
    index: int
    title: str
    data: list[str] = field(default_factory=list)
    kind: str = "svg"  # svg | canvas


@dataclass
class FormField:
    type: str
    label: str
    value: str


@dataclass
class FormData:
    index: int
    action: str
    fields: list[FormField] = field(default_factory=list)


@dataclass
class Link:
    text: str
    href: str


@dataclass
class ListData:
    index: int
    items: list[str] = field(default_factory=list)


@dataclass
class DataAttribute:
    text: str
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class ExtractedPage:
    """Everything the extractors found on one page, section by section."""

    url: str
    title: str
    meta_description: str = ""
    timestamp: int = 0  # epoch ms
    headings: list[str] = field(default_factory=list)
    tables: list[TableData] = field(default_factory=list)
    metrics: list[Metric] = field(default_factory=list)
    charts: list[ChartData] = field(default_factory=list)
    forms: list[FormData] = field(default_factory=list)
    links: list[Link] = field(default_factory=list)
    lists: list[ListData] = field(default_factory=list)
    data_attributes: list[DataAttribute] = field(default_factory=list)
    main_content: str = ""
    all_visible_text: str = ""
    selected_text: str = ""
    failed_extractors: list[str] = field(default_factory=list)

    @property
    def section_count(self) -> int:
        """Number of non-empty sections (header fields excluded)."""
        sections = [
            self.selected_text,
            self.headings,
            self.tables,
            self.metrics,
            self.charts,
            self.data_attributes,
            self.forms,
            self.lists,
            self.main_content,
            self.all_visible_text,
            self.links,
        ]
        return sum(1 for s in sections if s)


# Re-exported after the types above, which dom/extractors import back.
from .dom import element_text, is_visible, iter_shadow_roots, parse_document  # noqa: E402
from .pipeline import extract_page, has_meaningful_content  # noqa: E402

__all__ = [
    "ChartData",
    "DataAttribute",
    "ExtractedPage",
    "FormData",
    "FormField",
    "Link",
    "ListData",
    "Metric",
    "TableData",
    "element_text",
    "extract_page",
    "has_meaningful_content",
    "is_visible",
    "iter_shadow_roots",
    "parse_document",
]
