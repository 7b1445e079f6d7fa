# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Heuristic section extractors over an lxml document.

Each ``extract_*`` takes the parsed document (and page URL where needed)
and returns one section of ``ExtractedPage``.  Selectors are expressed as
predicates over ``dom.iter_scope`` so that light DOM and shadow roots can be
searched separately.
"""

from __future__ import annotations

import copy
import logging
import re
from urllib.parse import urljoin, urlparse

from . import ChartData, DataAttribute, FormData, FormField, Link, ListData, Metric, TableData
from .dom import (
    body_of,
    class_attr,
    class_tokens,
    closest,
    direct_text,
    element_text,
    has_shadow_root,
    inner_text,
    is_shadow_root,
    is_visible,
    iter_scope,
    iter_shadow_roots,
    normalize_space,
    role_of,
    select,
    select_first,
    selected_option_text,
    tag_of,
)

logger = logging.getLogger(__name__)

# ---- Section limits ----
MAX_HEADINGS = 50
MAX_HEADING_LEN = 300
MAX_LINKS = 150
MAX_LINK_TEXT = 200
MAX_LISTS = 20
MAX_LIST_ITEMS = 50
MAX_ITEM_LEN = 500
MAX_DATA_ATTRIBUTES = 100
MAX_ATTR_VALUE = 200
MAX_LABEL_LEN = 100
MAX_METRIC_VALUE = 200
MAX_FIELD_VALUE = 500
MAX_GSC_CELL = 500

_HEADING_TAG_RE = re.compile(r"^h([1-6])$")
_DIGIT_RE = re.compile(r"\d")

# ---- Table / grid heuristics ----
_TABLE_ROLES = frozenset({"table", "grid"})
_GRID_ROLES = frozenset({"grid", "table", "treegrid"})
_GRID_CLASS_TOKENS = frozenset({"mat-table", "mdc-data-table", "ag-root", "data-table"})
_GRID_CLASS_SUBSTRINGS = ("table", "grid", "DataTable")
_CELL_DATA_CLASS_TOKENS = frozenset({"value", "cell-value"})

# ---- Metric heuristics ----
_METRIC_CLASS_SUBSTRINGS = ("metric", "kpi", "stat", "score", "value", "count", "total", "number")
_METRIC_DATA_ATTRS = ("data-metric", "data-value", "data-stat")
_METRIC_CLASS_TOKENS = frozenset({"card-value", "summary-value", "dashboard-metric"})

# ---- Chart heuristics ----
_CHART_DATA_ATTRS = ("data-value", "data-x", "data-y")
_AXIS_CONTAINER_CLASSES = frozenset({"tick", "axis", "legend"})

_DATA_ATTR_KEYS = ("data-value", "data-text", "data-content", "data-metric", "data-label")

_MAIN_CONTENT_STRIP_TAGS = frozenset({"script", "style", "noscript", "iframe"})


# ── Headings ─────────────────────────────────────────────────────────


def _is_heading(el) -> bool:
    return bool(_HEADING_TAG_RE.match(tag_of(el))) or role_of(el) == "heading"


def extract_headings(doc) -> list[str]:
    """``H<level>: text`` for visible h1-h6 and role=heading elements."""
    headings: list[str] = []
    for h in select(body_of(doc), _is_heading):
        if not is_visible(h):
            continue
        m = _HEADING_TAG_RE.match(tag_of(h))
        level = m.group(1) if m else (h.get("aria-level") or "?")
        text = element_text(h)
        if text and len(text) < MAX_HEADING_LEN:
            headings.append(f"H{level}: {text}")
    return headings[:MAX_HEADINGS]


# ── Tables ───────────────────────────────────────────────────────────


def _is_header_cell(el, table) -> bool:
    tag = tag_of(el)
    if tag == "th" or role_of(el) == "columnheader":
        return True
    if tag == "td":
        thead = closest(el, lambda n: tag_of(n) == "thead")
        return thead is not None and closest(thead, lambda n: n is table) is not None
    return False


def _is_table_row(el) -> bool:
    return tag_of(el) == "tr" or role_of(el) == "row"


def _is_table_cell(el) -> bool:
    return tag_of(el) in ("td", "th") or role_of(el) in ("cell", "gridcell", "columnheader")


def _is_cell_data_element(el) -> bool:
    return (
        el.get("data-value") is not None
        or el.get("data-text") is not None
        or bool(class_tokens(el) & _CELL_DATA_CLASS_TOKENS)
    )


def _cell_text(cell) -> str:
    text = element_text(cell)
    data_el = select_first(cell, _is_cell_data_element)
    if data_el is not None:
        text = element_text(data_el) or data_el.get("data-value") or text
    return text


def process_table(table, source: str = "table") -> TableData:
    """Caption, de-duplicated headers and non-empty rows of one table-like element."""
    data = TableData(source=source)
    try:
        caption = select_first(table, lambda el: tag_of(el) == "caption")
        data.caption = (element_text(caption) if caption is not None else "") or (table.get("aria-label") or "")

        for th in select(table, lambda el: _is_header_cell(el, table)):
            text = element_text(th)
            if text and text not in data.headers:
                data.headers.append(text)

        for row in select(table, _is_table_row):
            cells = select(row, _is_table_cell)
            if cells and all(tag_of(c) == "th" or role_of(c) == "columnheader" for c in cells):
                continue  # header row, already in headers
            row_data = [_cell_text(c) for c in cells]
            if any(row_data):
                data.rows.append(row_data)
    except Exception:
        logger.debug("Table processing failed (source=%s)", source, exc_info=True)
    return data


def _is_grid_candidate(el) -> bool:
    if role_of(el) in _GRID_ROLES:
        return True
    if class_tokens(el) & _GRID_CLASS_TOKENS:
        return True
    cls = class_attr(el)
    return any(s in cls for s in _GRID_CLASS_SUBSTRINGS)


def _is_first_element_child(el) -> bool:
    parent = el.getparent()
    if parent is None:
        return False
    for child in parent:
        if isinstance(child.tag, str):
            return child is el
    return False


def _is_grid_header_row(el) -> bool:
    if role_of(el) == "row" and _is_first_element_child(el):
        return True
    tokens = class_tokens(el)
    if tokens & {"header-row", "table-header"} or tag_of(el) == "thead":
        return True
    return "header" in class_attr(el)


def _is_grid_header_cell(el) -> bool:
    return (
        role_of(el) in ("columnheader", "gridcell")
        or "header-cell" in class_tokens(el)
        or tag_of(el) in ("th", "td")
        or "column" in class_attr(el)
    )


def _is_grid_row(el) -> bool:
    return (
        role_of(el) == "row"
        or bool(class_tokens(el) & {"data-row", "table-row"})
        or tag_of(el) == "tr"
        or "row" in class_attr(el)
    )


def _is_grid_cell(el) -> bool:
    return (
        role_of(el) in ("gridcell", "cell")
        or "cell" in class_tokens(el)
        or tag_of(el) == "td"
        or "cell" in class_attr(el)
    )


def process_grid(grid) -> TableData:
    """Table-like structure built from div/span grids (Material, AG Grid, ARIA)."""
    data = TableData(source="grid-" + (class_attr(grid) or tag_of(grid)))
    header_row = select_first(grid, _is_grid_header_row)
    if header_row is not None:
        for h in select(header_row, _is_grid_header_cell):
            text = element_text(h)
            if text:
                data.headers.append(text)

    for row in select(grid, _is_grid_row):
        if row is header_row:
            continue
        if select_first(row, lambda el: role_of(el) == "columnheader") is not None:
            continue
        row_data = [element_text(c) for c in select(row, _is_grid_cell)]
        if any(row_data):
            data.rows.append(row_data)
    return data


def _extract_gsc_tables(doc) -> list[TableData]:
    """Search Console renders data through custom elements and jsname-tagged rows."""
    tables: list[TableData] = []
    body = body_of(doc)

    def _in_gsc_container(el) -> bool:
        return closest(el.getparent(), lambda n: tag_of(n) == "c-wiz" or n.get("jsname") is not None) is not None

    for table in select(body, lambda el: tag_of(el) == "table" and el.getparent() is not None and _in_gsc_container(el)):
        data = process_table(table, "gsc-table")
        if data.rows:
            tables.append(data)

    def _is_gsc_row(el) -> bool:
        if role_of(el) != "row" or el.getparent() is None:
            return False
        return closest(el.getparent(), lambda n: n.get("jsname") is not None or n.get("jscontroller") is not None) is not None

    gsc = TableData(source="gsc-custom")
    for idx, row in enumerate(select(body, _is_gsc_row)):
        seen: set[str] = set()
        row_data: list[str] = []
        for cell in select(row, lambda el: role_of(el) in ("cell", "gridcell") or tag_of(el) in ("span", "div")):
            text = element_text(cell)
            if text and text not in seen and len(text) < MAX_GSC_CELL:
                seen.add(text)
                row_data.append(text)
        if row_data:
            if idx == 0 and not gsc.headers:
                gsc.headers = row_data
            else:
                gsc.rows.append(row_data)
    if gsc.rows:
        tables.append(gsc)
    return tables


def extract_tables(doc, url: str = "") -> list[TableData]:
    """Real tables, shadow-DOM tables, class/role grids, and Search Console structures."""
    tables: list[TableData] = []
    body = body_of(doc)

    # 1. Regular HTML tables
    for table in select(body, lambda el: tag_of(el) == "table"):
        data = process_table(table, "table")
        if data.rows or data.headers:
            tables.append(data)

    # 2. Tables inside shadow roots
    for root in iter_shadow_roots(body):
        for table in select(root, lambda el: tag_of(el) == "table" or role_of(el) in _TABLE_ROLES):
            data = process_table(table, "shadow-dom")
            if data.rows or data.headers:
                tables.append(data)

    # 3. Grid/list structures acting like tables
    for grid in select(body, _is_grid_candidate):
        if tag_of(grid) == "table":
            continue
        try:
            data = process_grid(grid)
        except Exception:
            logger.debug("Grid processing failed", exc_info=True)
            continue
        if data.rows:
            tables.append(data)

    # 4. Google Search Console
    if "search.google.com" in (urlparse(url).hostname or ""):
        try:
            tables.extend(_extract_gsc_tables(doc))
        except Exception:
            logger.debug("Search Console extraction failed", exc_info=True)

    return tables


# ── Metrics ──────────────────────────────────────────────────────────


def _is_metric(el) -> bool:
    cls = class_attr(el)
    if any(s in cls for s in _METRIC_CLASS_SUBSTRINGS):
        return True
    if any(el.get(a) is not None for a in _METRIC_DATA_ATTRS):
        return True
    return bool(class_tokens(el) & _METRIC_CLASS_TOKENS)


def _is_label_like(el) -> bool:
    cls = class_attr(el)
    return tag_of(el) == "label" or "label" in class_tokens(el) or "label" in cls or "title" in cls


def _previous_element(el):
    prev = el.getprevious()
    while prev is not None and not isinstance(prev.tag, str):
        prev = prev.getprevious()
    return prev


def _metric_label(el) -> str:
    label = el.get("aria-label") or el.get("data-label")
    if label:
        return label
    labelled = closest(el, lambda n: n.get("aria-label") is not None)
    if labelled is not None and labelled.get("aria-label"):
        return labelled.get("aria-label")
    prev = _previous_element(el)
    if prev is not None:
        text = normalize_space(prev.text_content())
        if text:
            return text
    parent = el.getparent()
    if parent is not None:
        lbl = select_first(parent, _is_label_like)
        if lbl is not None:
            return normalize_space(lbl.text_content())
    return ""


def extract_metrics(doc) -> list[Metric]:
    """Dashboard numbers/KPIs found by class-name and data-attribute heuristics."""
    metrics: list[Metric] = []
    seen: set[tuple[str, str]] = set()
    for el in select(body_of(doc), _is_metric):
        if not is_visible(el):
            continue
        text = element_text(el)
        if not text or not (_DIGIT_RE.search(text) or len(text) < 100):
            continue
        metric = Metric(label=_metric_label(el)[:MAX_LABEL_LEN], value=text[:MAX_METRIC_VALUE])
        key = (metric.label, metric.value)
        if key in seen:
            continue
        seen.add(key)
        metrics.append(metric)
    return metrics


# ── Charts ───────────────────────────────────────────────────────────


def _is_axis_label(el) -> bool:
    if "label" in class_tokens(el):
        return True
    if tag_of(el) != "text":
        return False
    return closest(el.getparent(), lambda n: bool(class_tokens(n) & _AXIS_CONTAINER_CLASSES)) is not None


def extract_charts(doc) -> list[ChartData]:
    """Labels and data points from SVG charts; aria labels from canvas charts."""
    charts: list[ChartData] = []
    body = body_of(doc)

    for idx, svg in enumerate(select(body, lambda el: tag_of(el) == "svg")):
        if not is_visible(svg):
            continue
        title_el = select_first(svg, lambda el: tag_of(el) == "title")
        chart = ChartData(
            index=idx,
            title=svg.get("aria-label") or (normalize_space(title_el.text_content()) if title_el is not None else ""),
        )
        for el in iter_scope(svg):
            if not (any(el.get(a) is not None for a in _CHART_DATA_ATTRS) or tag_of(el) in ("title", "text")):
                continue
            text = normalize_space(el.text_content())
            value = el.get("data-value") or el.get("data-x") or el.get("data-y")
            if text or value:
                chart.data.append(value or text)
        for el in select(svg, _is_axis_label):
            text = normalize_space(el.text_content())
            if text:
                chart.data.append(text)
        if chart.data:
            charts.append(chart)

    for idx, canvas in enumerate(select(body, lambda el: tag_of(el) == "canvas")):
        labelled = closest(canvas, lambda n: bool(n.get("aria-label")))
        label = labelled.get("aria-label") if labelled is not None else ""
        if label:
            charts.append(ChartData(index=idx, title=label, kind="canvas"))

    return charts


# ── Forms ────────────────────────────────────────────────────────────


def _field_type(field) -> str:
    tag = tag_of(field)
    if tag == "input":
        return (field.get("type") or "text").lower()
    if tag == "select":
        return "select-multiple" if field.get("multiple") is not None else "select-one"
    return tag


def _field_label(field, doc) -> str:
    label = field.get("aria-label") or field.get("placeholder") or field.get("name")
    if label:
        return label
    field_id = field.get("id")
    if field_id:
        for lbl in select(body_of(doc), lambda el: tag_of(el) == "label" and el.get("for") == field_id):
            text = normalize_space(lbl.text_content())
            if text:
                return text
    wrapping = closest(field, lambda n: tag_of(n) == "label")
    if wrapping is not None:
        text = normalize_space(wrapping.text_content())
        value = field.get("value") or ""
        if value:
            text = text.replace(value, "", 1).strip()
        return text
    return ""


def _field_value(field, field_type: str) -> str:
    if field_type == "password":
        return "[hidden]"
    if field_type in ("checkbox", "radio"):
        return "checked" if field.get("checked") is not None else "unchecked"
    tag = tag_of(field)
    if tag == "select":
        return selected_option_text(field)
    if tag == "textarea":
        return field.text or ""
    return field.get("value") or ""


def extract_forms(doc) -> list[FormData]:
    """Visible forms with field labels and current values (passwords masked)."""
    forms: list[FormData] = []
    body = body_of(doc)
    for idx, form in enumerate(select(body, lambda el: tag_of(el) == "form" or role_of(el) == "form")):
        if not is_visible(form):
            continue
        data = FormData(index=idx, action=form.get("action") or "")
        for field in select(form, lambda el: tag_of(el) in ("input", "select", "textarea")):
            field_type = _field_type(field)
            data.fields.append(
                FormField(
                    type=field_type,
                    label=_field_label(field, doc)[:MAX_LABEL_LEN],
                    value=_field_value(field, field_type)[:MAX_FIELD_VALUE],
                )
            )
        if data.fields:
            forms.append(data)
    return forms


# ── Links & lists ────────────────────────────────────────────────────


def extract_links(doc, base_url: str = "") -> list[Link]:
    """Visible anchors with text; hrefs resolved against the page URL."""
    links: list[Link] = []
    for a in select(body_of(doc), lambda el: tag_of(el) == "a" and el.get("href") is not None):
        if not is_visible(a):
            continue
        text = element_text(a)[:MAX_LINK_TEXT]
        raw_href = (a.get("href") or "").strip()
        if not text or not raw_href or raw_href.lower().startswith("javascript:"):
            continue
        href = urljoin(base_url, raw_href) if base_url else raw_href
        links.append(Link(text=text, href=href))
        if len(links) >= MAX_LINKS:
            break
    return links


def extract_lists(doc) -> list[ListData]:
    lists: list[ListData] = []
    body = body_of(doc)
    for idx, lst in enumerate(select(body, lambda el: tag_of(el) in ("ul", "ol") or role_of(el) == "list")):
        if not is_visible(lst):
            continue
        items: list[str] = []
        for item in select(lst, lambda el: tag_of(el) == "li" or role_of(el) == "listitem"):
            text = element_text(item)
            if text and len(text) < MAX_ITEM_LEN:
                items.append(text)
        if items:
            lists.append(ListData(index=idx, items=items[:MAX_LIST_ITEMS]))
    return lists[:MAX_LISTS]


def extract_data_attributes(doc) -> list[DataAttribute]:
    found: list[DataAttribute] = []
    for el in select(body_of(doc), lambda n: any(n.get(k) is not None for k in _DATA_ATTR_KEYS)):
        if not is_visible(el):
            continue
        attrs = {name: value[:MAX_ATTR_VALUE] for name, value in el.attrib.items() if name.startswith("data-") and value}
        if attrs:
            found.append(DataAttribute(text=element_text(el)[:100], attributes=attrs))
        if len(found) >= MAX_DATA_ATTRIBUTES:
            break
    return found


# ── Full text ────────────────────────────────────────────────────────


def shadow_root_text(root) -> str:
    """Space-joined text nodes of one shadow root (nested roots excluded)."""
    parts: list[str] = []
    if root.text and root.text.strip():
        parts.append(root.text.strip())
    for el in iter_scope(root):
        if tag_of(el) in ("script", "style"):
            continue
        text = direct_text(el)
        if text:
            parts.append(text)
    return " ".join(parts)


def clean_text(text: str) -> str:
    """Tabs to spaces, collapse space runs, cap blank-line runs at three newlines."""
    text = re.sub(r"\t+", " ", text)
    text = re.sub(r" +", " ", text)
    text = re.sub(r"\n{4,}", "\n\n\n", text)
    return text.strip()


def _strip_for_main_content(el) -> bool:
    return (
        tag_of(el) in _MAIN_CONTENT_STRIP_TAGS
        or is_shadow_root(el)
        or (el.get("aria-hidden") or "").lower() == "true"
        or el.get("hidden") is not None
    )


def extract_main_content(doc) -> str:
    """Light-DOM body text, then every shadow root's text, then canvas fallbacks."""
    body = body_of(doc)
    clone = copy.deepcopy(body)
    for el in [el for el in clone.iter() if isinstance(el.tag, str) and el is not clone and _strip_for_main_content(el)]:
        if el.getparent() is not None:
            el.drop_tree()
    text = inner_text(clone, skip_hidden=False)

    for root in iter_shadow_roots(body):
        text += "\n" + shadow_root_text(root)

    for canvas in select(body, lambda el: tag_of(el) == "canvas"):
        fallback = normalize_space(canvas.text_content())
        if fallback:
            text += "\n" + fallback

    return clean_text(text)


def extract_all_visible_text(doc, selection_snapshot: str | None = None) -> str:
    """Two redundant captures: the selection snapshot and per-element text harvesting."""
    parts: list[str] = []
    body = body_of(doc)

    # Strategy 1: selection snapshot (live source), else rendered-text approximation
    snapshot = selection_snapshot if selection_snapshot is not None else inner_text(body)
    if snapshot.strip():
        parts.append("[VISIBLE TEXT VIA SELECTION]")
        parts.append(snapshot)

    # Strategy 2: direct text of each visible element
    seen: dict[str, None] = {}
    for el in iter_scope(body):
        if tag_of(el) in ("script", "style", "noscript") or not is_visible(el):
            continue
        text = direct_text(el)
        if text:
            seen.setdefault(text, None)
        if tag_of(el) in ("input", "textarea"):
            value = (el.get("value") if tag_of(el) == "input" else el.text) or ""
            if value.strip() and (el.get("type") or "").lower() != "password":
                seen.setdefault(f"[INPUT: {value.strip()}]", None)
        shadow = has_shadow_root(el)
        if shadow is not None:
            shadow_text = shadow_root_text(shadow).strip()
            if shadow_text:
                seen.setdefault(shadow_text, None)
    if seen:
        parts.append("[ELEMENT TEXT]")
        parts.append("\n".join(seen))

    return "\n\n".join(parts)
