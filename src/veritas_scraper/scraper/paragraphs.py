"""Paragraph collection, noise filtering and reconstruction.

Body text is handled at paragraph granularity everywhere: a matched
container is walked for its ``<p>`` descendants, each paragraph is rendered
to text with ``<br>`` kept as a soft break, the noise filter drops
non-prose paragraphs, and the survivors are joined with
:data:`~veritas_scraper.scraper.config.PARAGRAPH_SEPARATOR`.  Rendered
paragraphs never contain the separator, so ``split_paragraphs`` recovers
exactly the list that ``join_paragraphs`` was given.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from bs4 import NavigableString, Tag
from bs4.element import PreformattedString

from veritas_scraper.scraper.config import (
    CAPTION_TAGS,
    PARAGRAPH_SEPARATOR,
    SOFT_BREAK,
    NoiseFilterConfig,
)

_WHITESPACE_RE = re.compile(r"\s+")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

#: Tags treated as block-level when looking for a paragraph's container.
BLOCK_TAGS: frozenset[str] = frozenset(
    {
        "address",
        "article",
        "aside",
        "blockquote",
        "dd",
        "div",
        "dl",
        "figcaption",
        "figure",
        "footer",
        "header",
        "li",
        "main",
        "ol",
        "section",
        "td",
        "ul",
    }
)


@dataclass
class Paragraph:
    """A body paragraph candidate.

    ``element`` is the source ``<p>`` (or container) when the text came from
    HTML; paragraphs from a JSON-LD ``articleBody`` have none, so the
    structural noise rules do not apply to them.
    """

    text: str
    element: Tag | None = None


@dataclass
class FilterOutcome:
    """Result of running the noise filter over a paragraph list."""

    kept: list[str] = field(default_factory=list)
    dropped: Counter = field(default_factory=Counter)


# ---------------------------------------------------------------------------
# Text rendering
# ---------------------------------------------------------------------------


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space and strip."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def element_text(element: Tag) -> str:
    """Render an element to paragraph text.

    Whitespace is collapsed; each ``<br>`` becomes a soft break.  Empty
    segments between consecutive breaks are dropped, so the result never
    contains more than two consecutive newlines.
    """
    segments: list[list[str]] = [[]]
    for node in element.descendants:
        if isinstance(node, Tag):
            if node.name == "br":
                segments.append([])
        elif isinstance(node, NavigableString) and not isinstance(
            node, PreformattedString
        ):
            segments[-1].append(str(node))
    rendered = [normalize_whitespace("".join(seg)) for seg in segments]
    return SOFT_BREAK.join(seg for seg in rendered if seg)


def clean_plain_text(text: str) -> list[str]:
    """Split a plain-text body (e.g. JSON-LD ``articleBody``) into paragraphs."""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    blocks = re.split(r"\n\s*\n|\n", normalized)
    return [p for p in (normalize_whitespace(b) for b in blocks) if p]


def collect_paragraphs(containers: Iterable[Tag]) -> list[Paragraph]:
    """Walk matched containers and return their paragraphs in document order.

    Containers nested inside another matched container are skipped, and a
    ``<p>`` reachable from two containers is emitted once.  A container with
    no ``<p>`` descendants contributes its whole text as one block.
    """
    containers = list(containers)
    container_ids = {id(c) for c in containers}
    seen: set[int] = set()
    paragraphs: list[Paragraph] = []

    for container in containers:
        if any(id(parent) in container_ids for parent in container.parents):
            continue
        p_tags = container.find_all("p")
        if not p_tags:
            text = element_text(container)
            if text and id(container) not in seen:
                seen.add(id(container))
                paragraphs.append(Paragraph(text, container))
            continue
        for p in p_tags:
            # Nested <p> (invalid but seen in the wild) is rendered by its parent.
            if id(p) in seen or p.find_parent("p") is not None:
                continue
            seen.add(id(p))
            text = element_text(p)
            if text:
                paragraphs.append(Paragraph(text, p))
    return paragraphs


# ---------------------------------------------------------------------------
# Noise rules
# ---------------------------------------------------------------------------


def _has_caption_marker(tag: Tag, markers: tuple[str, ...]) -> bool:
    if tag.name in CAPTION_TAGS:
        return True
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    for cls in classes:
        lowered = cls.lower()
        if any(marker in lowered for marker in markers):
            return True
    return False


def is_caption(element: Tag, markers: tuple[str, ...]) -> bool:
    """Return ``True`` when *element* sits in a caption/figure container.

    Checks the element itself, its nearest block ancestor, and any
    ``figure``/``figcaption`` ancestor.
    """
    if _has_caption_marker(element, markers):
        return True
    block = element.find_parent(lambda t: t.name in BLOCK_TAGS)
    if block is not None and _has_caption_marker(block, markers):
        return True
    return element.find_parent(list(CAPTION_TAGS)) is not None


def is_uppercase_link(text: str, element: Tag) -> bool:
    """Return ``True`` for ALL-CAPS paragraphs equal to a hyperlink's text.

    Matches "RELATED: SEE ALSO ..." promo blocks without touching short
    legitimate headings, which are not wrapped in a link.
    """
    if text != text.upper() or text == text.lower():
        return False
    links = element.find_all("a")
    enclosing = element.find_parent("a")
    if enclosing is not None:
        links.append(enclosing)
    flat = normalize_whitespace(text)
    return any(normalize_whitespace(element_text(a)) == flat for a in links)


def is_boilerplate(text: str, config: NoiseFilterConfig) -> bool:
    return any(pattern.search(text) for pattern in config.boilerplate_patterns)


def filter_paragraphs(
    paragraphs: list[Paragraph],
    config: NoiseFilterConfig,
) -> FilterOutcome:
    """Drop non-prose paragraphs.

    Rules, in order: ALL-CAPS link text, caption ancestry, boilerplate
    patterns, then minimum length.  The length rule spares a paragraph that
    is the only one left after the other rules.

    Args:
        paragraphs: Candidates in document order.
        config: Thresholds and markers.

    Returns:
        A :class:`FilterOutcome` with the surviving texts and drop counts
        keyed by rule name.
    """
    outcome = FilterOutcome()
    survivors: list[str] = []

    for para in paragraphs:
        text = para.text
        if para.element is not None:
            if config.drop_uppercase_links and is_uppercase_link(text, para.element):
                outcome.dropped["uppercase_link"] += 1
                continue
            if is_caption(para.element, config.caption_class_markers):
                outcome.dropped["caption"] += 1
                continue
        if is_boilerplate(text, config):
            outcome.dropped["boilerplate"] += 1
            continue
        survivors.append(text)

    if len(survivors) == 1:
        outcome.kept = survivors
        return outcome

    for text in survivors:
        if len(text) < config.min_length:
            outcome.dropped["too_short"] += 1
            continue
        outcome.kept.append(text)
    return outcome


# ---------------------------------------------------------------------------
# Reconstruction
# ---------------------------------------------------------------------------


def sanitize_paragraph(text: str) -> str:
    """Strip a paragraph and cap newline runs at a soft break."""
    return _EXCESS_NEWLINES_RE.sub(SOFT_BREAK, text.replace("\x00", "")).strip()


def join_paragraphs(paragraphs: Iterable[str]) -> str:
    """Join paragraphs with the paragraph separator, dropping empty ones."""
    cleaned = (sanitize_paragraph(p) for p in paragraphs)
    return PARAGRAPH_SEPARATOR.join(p for p in cleaned if p)


def split_paragraphs(body: str) -> list[str]:
    """Inverse of :func:`join_paragraphs`."""
    if not body:
        return []
    return body.split(PARAGRAPH_SEPARATOR)
