# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""lxml DOM helpers: parsing, shadow-root scoping, visibility, element text.

Shadow roots arrive as declarative shadow DOM, i.e. a
``<template shadowrootmode="open">`` as the first child of its host (the
live page source serializes open roots that way).  A scope never crosses
into a nested shadow root, matching ``querySelectorAll`` semantics; use
``iter_shadow_roots`` to reach them.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator

import lxml.html
from lxml import etree

from ..errors import ExtractionError

SHADOW_MAX_DEPTH = 10

_EMPTY_DOCUMENT = "<html><head></head><body></body></html>"

# Pre-compiled patterns for inline style checks
_DISPLAY_NONE_RE = re.compile(r"display\s*:\s*none", re.IGNORECASE)
_VISIBILITY_HIDDEN_RE = re.compile(r"visibility\s*:\s*hidden", re.IGNORECASE)
_OPACITY_ZERO_RE = re.compile(r"opacity\s*:\s*0(?:\.0+)?(?:\s*[;!]|\s*$)", re.IGNORECASE)

# Content never rendered as text
_NON_TEXT_TAGS = frozenset({"script", "style", "noscript", "template", "head", "title", "meta", "link"})

# Block-level tags get line breaks around them in inner_text()
_BLOCK_TAGS = frozenset(
    {
        "address", "article", "aside", "blockquote", "dd", "details", "dialog", "div",
        "dl", "dt", "fieldset", "figcaption", "figure", "footer", "form", "h1", "h2",
        "h3", "h4", "h5", "h6", "header", "hr", "li", "main", "nav", "ol", "p", "pre",
        "section", "summary", "table", "tr", "ul", "caption", "thead", "tbody", "tfoot",
    }
)  # fmt: skip
_CELL_TAGS = frozenset({"td", "th"})

_WS_RE = re.compile(r"[ \t\r\f\v]+")

Element = lxml.html.HtmlElement


def parse_document(html: str) -> Element:
    """Parse HTML into an lxml document root. Empty input yields an empty document."""
    if not html or not html.strip():
        html = _EMPTY_DOCUMENT
    try:
        return lxml.html.document_fromstring(html)
    except (etree.ParserError, ValueError):
        pass
    # lxml rejects str input carrying an XML encoding declaration
    try:
        return lxml.html.document_fromstring(html.encode("utf-8", errors="replace"))
    except (etree.ParserError, ValueError) as e:
        raise ExtractionError(f"Could not parse page HTML: {e}") from e


def body_of(doc: Element) -> Element:
    body = doc.find("body")
    return body if body is not None else doc


def tag_of(el) -> str:
    """Lowercase tag name; empty for comments and processing instructions."""
    return el.tag.lower() if isinstance(el.tag, str) else ""


def is_shadow_root(el) -> bool:
    """Declarative shadow root template (``shadowrootmode`` or legacy ``shadowroot``)."""
    return tag_of(el) == "template" and (el.get("shadowrootmode") is not None or el.get("shadowroot") is not None)


def role_of(el) -> str:
    return (el.get("role") or "").strip().lower()


def class_attr(el) -> str:
    return el.get("class") or ""


def class_tokens(el) -> set[str]:
    return set(class_attr(el).split())


def iter_scope(scope) -> Iterator[Element]:
    """Descendant elements of *scope* in document order, not entering shadow roots."""
    stack = [iter(scope)]
    while stack:
        for child in stack[-1]:
            if not isinstance(child.tag, str) or is_shadow_root(child):
                continue
            yield child
            stack.append(iter(child))
            break
        else:
            stack.pop()


def select(scope, predicate: Callable[[Element], bool]) -> list[Element]:
    """``querySelectorAll`` analogue: descendants of *scope* matching *predicate*."""
    return [el for el in iter_scope(scope) if predicate(el)]


def select_first(scope, predicate: Callable[[Element], bool]) -> Element | None:
    for el in iter_scope(scope):
        if predicate(el):
            return el
    return None


def closest(el, predicate: Callable[[Element], bool]) -> Element | None:
    """Nearest inclusive ancestor matching *predicate*."""
    node = el
    while node is not None:
        if isinstance(node.tag, str) and predicate(node):
            return node
        node = node.getparent()
    return None


def iter_shadow_roots(scope, depth: int = 0) -> Iterator[Element]:
    """Every shadow root under *scope*, nested roots included, depth-capped."""
    if depth > SHADOW_MAX_DEPTH:
        return
    for el in (scope, *iter_scope(scope)):
        for child in el:
            if is_shadow_root(child):
                yield child
                yield from iter_shadow_roots(child, depth + 1)


def has_shadow_root(el) -> Element | None:
    for child in el:
        if is_shadow_root(child):
            return child
    return None


# ── Visibility ───────────────────────────────────────────────────────


def _hidden_self(el) -> bool:
    if el.get("hidden") is not None:
        return True
    if (el.get("aria-hidden") or "").lower() == "true":
        return True
    style = el.get("style")
    if style and (
        _DISPLAY_NONE_RE.search(style) or _VISIBILITY_HIDDEN_RE.search(style) or _OPACITY_ZERO_RE.search(style)
    ):
        return True
    return False


def is_visible(el) -> bool:
    """False when the element or any ancestor is hidden by attribute or inline style."""
    if el is None:
        return False
    node = el
    while node is not None:
        if isinstance(node.tag, str) and _hidden_self(node):
            return False
        node = node.getparent()
    return True


# ── Text ─────────────────────────────────────────────────────────────


def normalize_space(text: str) -> str:
    return " ".join(text.split())


def _source_text(text: str, pre: bool) -> str:
    """Source line breaks are plain whitespace outside ``<pre>``."""
    return text if pre else text.replace("\n", " ")


def _walk_text(el, parts: list[str], skip_hidden: bool, pre: bool = False) -> None:
    tag = tag_of(el)
    if tag in _NON_TEXT_TAGS or (skip_hidden and _hidden_self(el)):
        return
    if tag == "br":
        parts.append("\n")
        return
    pre = pre or tag == "pre"
    block = tag in _BLOCK_TAGS
    if block:
        parts.append("\n")
    if el.text:
        parts.append(_source_text(el.text, pre))
    for child in el:
        if isinstance(child.tag, str):
            _walk_text(child, parts, skip_hidden, pre)
        if child.tail:
            parts.append(_source_text(child.tail, pre))
    if tag in _CELL_TAGS:
        parts.append("\t")
    if block:
        parts.append("\n")


def inner_text(el, *, skip_hidden: bool = True) -> str:
    """Approximate ``innerText``: block-aware line breaks, hidden and non-text content skipped.

    Shadow-root content is not included (same as the browser).
    """
    parts: list[str] = []
    pre = tag_of(el) == "pre"
    if el.text and tag_of(el) not in _NON_TEXT_TAGS:
        parts.append(_source_text(el.text, pre))
    for child in el:
        if isinstance(child.tag, str):
            _walk_text(child, parts, skip_hidden, pre)
        if child.tail:
            parts.append(_source_text(child.tail, pre))
    lines = (_WS_RE.sub(" ", line).strip() for line in "".join(parts).split("\n"))
    return "\n".join(line for line in lines if line)


def direct_text(el) -> str:
    """Text of the element's own text nodes (children excluded)."""
    pieces = [el.text.strip()] if el.text and el.text.strip() else []
    for child in el:
        if child.tail and child.tail.strip():
            pieces.append(child.tail.strip())
    return " ".join(pieces)


def _selected_option(select_el) -> Element | None:
    options = [o for o in select_el.iter("option")]
    for opt in options:
        if opt.get("selected") is not None:
            return opt
    if options and select_el.get("multiple") is None:
        return options[0]
    return None


def element_text(el) -> str:
    """Form-aware element text: input value/placeholder, selected option, or inner text."""
    try:
        tag = tag_of(el)
        if tag == "input":
            return (el.get("value") or el.get("placeholder") or "").strip()
        if tag == "textarea":
            return ((el.text or "") or el.get("placeholder") or "").strip()
        if tag == "select":
            opt = _selected_option(el)
            return normalize_space(opt.text_content()) if opt is not None else ""
        return normalize_space(inner_text(el, skip_hidden=False))
    except Exception:
        return ""


def selected_option_text(select_el) -> str:
    opt = _selected_option(select_el)
    return normalize_space(opt.text_content()) if opt is not None else ""
