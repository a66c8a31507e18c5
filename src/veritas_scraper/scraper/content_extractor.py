"""Article field extraction from raw HTML.

Fields (title, author, date, body) are resolved independently through a
three-tier cascade, first success per field wins:

1. **Structured data** — ``application/ld+json`` blocks with an article
   ``@type`` (lists and ``@graph`` containers are searched).
2. **Selector cascade** — the ordered rule tables in
   :mod:`veritas_scraper.scraper.extraction_rules`.  Body rules match
   containers that are walked paragraph by paragraph.
3. **Fallback** — the element with the most direct ``<p>`` children, then
   every ``<p>`` in the document, then the meta description.

Feed hints fill a title or date the page did not yield.  Every resolved
field appends an :class:`ExtractionTrace`.  :func:`extract` never raises:
malformed HTML produces a result with empty fields and a zero score.
"""

from __future__ import annotations

import email.utils
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from bs4 import BeautifulSoup, Tag

from veritas_scraper.scraper.config import (
    MAX_CONTENT_CHARS,
    PARAGRAPH_SEPARATOR,
    STRUCTURAL_NOISE_SELECTORS,
    TRACE_VALUE_PREFIX_CHARS,
    NoiseFilterConfig,
)
from veritas_scraper.scraper.extraction_rules import (
    ARTICLE_SCHEMA_TYPES,
    DENSITY_CANDIDATES,
    FALLBACK_RULES,
    MIN_SELECTOR_BODY_CHARS,
    SELECTOR_RULES,
    ExtractionRule,
)
from veritas_scraper.scraper.language import detect_language
from veritas_scraper.scraper.paragraphs import (
    FilterOutcome,
    Paragraph,
    clean_plain_text,
    collect_paragraphs,
    element_text,
    filter_paragraphs,
    join_paragraphs,
    normalize_whitespace,
    sanitize_paragraph,
)
from veritas_scraper.scraper.quality import quality_score

logger = logging.getLogger(__name__)

STRATEGY_STRUCTURED = "structured-data"
STRATEGY_SELECTOR = "selector"
STRATEGY_FALLBACK = "fallback"
STRATEGY_FEED_HINT = "feed-hint"

_DEFAULT_NOISE_CONFIG = NoiseFilterConfig()

# ---------------------------------------------------------------------------
# Output dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ExtractionTrace:
    """Which strategy and rule produced one field.

    Attributes:
        field: ``"title"``, ``"author"``, ``"date"`` or ``"body"``.
        strategy: ``structured-data``, ``selector``, ``fallback`` or
            ``feed-hint``.
        rule: The concrete rule, e.g. a CSS selector or a JSON-LD key.
        matched_value: Prefix of the raw matched value.
    """

    field: str
    strategy: str
    rule: str
    matched_value: str

    def to_dict(self) -> dict[str, str]:
        return {
            "field": self.field,
            "strategy": self.strategy,
            "rule": self.rule,
            "matched_value": self.matched_value,
        }


@dataclass
class ExtractionResult:
    """Best-effort structured result of extracting one article page.

    Attributes:
        url: URL the HTML was fetched from.
        title: Article headline, or ``None``.
        author: Author name(s), or ``None``.
        publication_date: Timezone-aware publication datetime, or ``None``.
        paragraphs: Filtered body paragraphs in document order.
        language: ISO 639-1 code detected from the body.
        quality_score: Heuristic 0-100 completeness rating.
        traces: One entry per resolved field; never ``None``.
        dropped_paragraphs: Counts of paragraphs removed by each noise rule.
    """

    url: str
    title: str | None = None
    author: str | None = None
    publication_date: datetime | None = None
    paragraphs: list[str] = field(default_factory=list)
    language: str | None = None
    quality_score: int = 0
    traces: list[ExtractionTrace] = field(default_factory=list)
    dropped_paragraphs: dict[str, int] = field(default_factory=dict)

    @property
    def body(self) -> str:
        """Paragraphs joined with the paragraph separator."""
        return join_paragraphs(self.paragraphs)

    @property
    def body_strategy(self) -> str | None:
        """Strategy that produced the body, or ``None`` when empty."""
        for trace in self.traces:
            if trace.field == "body":
                return trace.strategy
        return None

    def trace_payload(self) -> list[dict[str, str]]:
        return [t.to_dict() for t in self.traces]


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _prefix(value: Any) -> str:
    return str(value)[:TRACE_VALUE_PREFIX_CHARS]


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 or RFC 2822 date string into an aware datetime."""
    if not value:
        return None
    value = value.strip()
    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _rule_value(soup: BeautifulSoup, rule: ExtractionRule) -> str | None:
    """Return the first non-empty value the rule yields, or ``None``."""
    for element in soup.select(rule.selector):
        if rule.attribute:
            raw = element.get(rule.attribute)
            if isinstance(raw, list):
                raw = " ".join(raw)
        else:
            raw = element.get_text(" ")
        text = normalize_whitespace(raw or "")
        if text:
            return text
    return None


def _truncate_paragraphs(paragraphs: list[str], limit: int) -> list[str]:
    """Keep whole paragraphs while the joined body fits in *limit* chars.

    A first paragraph that alone exceeds *limit* is cut, not dropped.
    """
    kept: list[str] = []
    total = 0
    for para in paragraphs:
        cost = len(para) + (len(PARAGRAPH_SEPARATOR) if kept else 0)
        if total + cost > limit:
            break
        kept.append(para)
        total += cost
    if not kept and paragraphs:
        kept = [paragraphs[0][:limit].rstrip()]
    return kept


# ---------------------------------------------------------------------------
# Tier 1: structured data
# ---------------------------------------------------------------------------


def _iter_ld_objects(data: Any):
    """Yield every dict in a JSON-LD document, descending into lists and @graph."""
    if isinstance(data, list):
        for item in data:
            yield from _iter_ld_objects(item)
    elif isinstance(data, dict):
        yield data
        graph = data.get("@graph")
        if graph is not None:
            yield from _iter_ld_objects(graph)


def _is_article(obj: dict[str, Any]) -> bool:
    types = obj.get("@type")
    if isinstance(types, str):
        types = [types]
    if not isinstance(types, list):
        return False
    return any(isinstance(t, str) and t in ARTICLE_SCHEMA_TYPES for t in types)


def _ld_author(value: Any) -> str | None:
    if isinstance(value, str):
        return normalize_whitespace(value) or None
    if isinstance(value, dict):
        name = value.get("name")
        return normalize_whitespace(name) if isinstance(name, str) and name.strip() else None
    if isinstance(value, list):
        names = [n for n in (_ld_author(v) for v in value) if n]
        return ", ".join(names) or None
    return None


def _structured_articles(soup: BeautifulSoup) -> list[dict[str, Any]]:
    articles: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug("extractor: skipping malformed JSON-LD block")
            continue
        articles.extend(obj for obj in _iter_ld_objects(data) if _is_article(obj))
    return articles


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class _Extraction:
    """Mutable state of one extraction run."""

    def __init__(
        self,
        html: str,
        url: str,
        noise: NoiseFilterConfig,
    ) -> None:
        self.soup = BeautifulSoup(html or "", "html.parser")
        self.noise = noise
        self.result = ExtractionResult(url=url)
        self.body_paragraphs: list[str] | None = None
        self.body_filter: FilterOutcome | None = None

    def trace(self, field_name: str, strategy: str, rule: str, value: Any) -> None:
        self.result.traces.append(
            ExtractionTrace(field_name, strategy, rule, _prefix(value))
        )

    def missing(self) -> set[str]:
        missing = set()
        r = self.result
        if r.title is None:
            missing.add("title")
        if r.author is None:
            missing.add("author")
        if r.publication_date is None:
            missing.add("date")
        if self.body_paragraphs is None:
            missing.add("body")
        return missing

    def assign(self, field_name: str, value: Any, strategy: str, rule: str) -> bool:
        """Set a scalar field if *value* is usable; return whether it was."""
        if field_name == "date":
            parsed = parse_datetime(value) if isinstance(value, str) else None
            if parsed is None:
                return False
            self.result.publication_date = parsed
        elif field_name == "title":
            self.result.title = value
        elif field_name == "author":
            self.result.author = value
        self.trace(field_name, strategy, rule, value)
        return True

    def assign_body(
        self, paragraphs: list[Paragraph], strategy: str, rule: str
    ) -> bool:
        if not paragraphs:
            return False
        outcome = filter_paragraphs(paragraphs, self.noise)
        if not outcome.kept:
            return False
        self.body_paragraphs = outcome.kept
        self.body_filter = outcome
        self.trace("body", strategy, rule, outcome.kept[0])
        return True

    # --- tiers -----------------------------------------------------------

    def structured_tier(self) -> None:
        for article in _structured_articles(self.soup):
            missing = self.missing()
            if not missing:
                return
            headline = article.get("headline") or article.get("name")
            if "title" in missing and isinstance(headline, str) and headline.strip():
                self.assign("title", normalize_whitespace(headline), STRATEGY_STRUCTURED, "json-ld:headline")
            if "author" in missing:
                author = _ld_author(article.get("author"))
                if author:
                    self.assign("author", author, STRATEGY_STRUCTURED, "json-ld:author")
            if "date" in missing:
                self.assign("date", article.get("datePublished"), STRATEGY_STRUCTURED, "json-ld:datePublished")
            body = article.get("articleBody")
            if "body" in missing and isinstance(body, str) and body.strip():
                self.assign_body(self._plain_body(body), STRATEGY_STRUCTURED, "json-ld:articleBody")

    def _plain_body(self, body: str) -> list[Paragraph]:
        if "<" in body:
            fragment = BeautifulSoup(body, "html.parser")
            paragraphs = collect_paragraphs([fragment])
            if paragraphs:
                return paragraphs
            body = fragment.get_text("\n")
        return [Paragraph(text) for text in clean_plain_text(body)]

    def strip_structural_noise(self) -> None:
        for selector in STRUCTURAL_NOISE_SELECTORS:
            for element in self.soup.select(selector):
                if element.name in ("html", "body") or element.decomposed:
                    continue
                element.decompose()

    def selector_tier(self) -> None:
        for field_name in ("title", "author", "date"):
            self._scalar_cascade(field_name, SELECTOR_RULES[field_name], STRATEGY_SELECTOR)
        if self.body_paragraphs is None:
            for rule in SELECTOR_RULES["body"]:
                containers = self.soup.select(rule.selector)
                if not containers:
                    continue
                paragraphs = collect_paragraphs(containers)
                if sum(len(p.text) for p in paragraphs) < MIN_SELECTOR_BODY_CHARS:
                    continue
                if self.assign_body(paragraphs, STRATEGY_SELECTOR, rule.label):
                    return

    def _scalar_cascade(
        self, field_name: str, rules: tuple[ExtractionRule, ...], strategy: str
    ) -> None:
        if field_name not in self.missing():
            return
        for rule in rules:
            value = _rule_value(self.soup, rule)
            if value and self.assign(field_name, value, strategy, rule.label):
                return

    def fallback_tier(self) -> None:
        for field_name in ("title", "author", "date"):
            self._scalar_cascade(field_name, FALLBACK_RULES[field_name], STRATEGY_FALLBACK)
        if self.body_paragraphs is not None:
            return

        best = self._densest_block()
        if best is not None and self.assign_body(
            collect_paragraphs([best]), STRATEGY_FALLBACK, f"p-density:{best.name}"
        ):
            return

        all_p = self.soup.find_all("p")
        if all_p and self.assign_body(
            [Paragraph(t, p) for p in all_p if (t := element_text(p))],
            STRATEGY_FALLBACK,
            "p",
        ):
            return

        for rule in FALLBACK_RULES["body"]:
            value = _rule_value(self.soup, rule)
            if value and self.assign_body([Paragraph(value)], STRATEGY_FALLBACK, rule.label):
                return

    def _densest_block(self) -> Tag | None:
        best: Tag | None = None
        best_key = (0, 0)
        for selector in DENSITY_CANDIDATES:
            for element in self.soup.select(selector):
                direct = element.find_all("p", recursive=False)
                if not direct:
                    continue
                key = (len(direct), len(element.get_text(strip=True)))
                if key > best_key:
                    best, best_key = element, key
        return best

    def feed_hints(self, title_hint: str | None, date_hint: datetime | None) -> None:
        if self.result.title is None and title_hint:
            self.result.title = title_hint
            self.trace("title", STRATEGY_FEED_HINT, "feed:title", title_hint)
        if self.result.publication_date is None and date_hint is not None:
            self.result.publication_date = date_hint
            self.trace("date", STRATEGY_FEED_HINT, "feed:published", date_hint.isoformat())

    def finish(self) -> ExtractionResult:
        result = self.result
        cleaned = (sanitize_paragraph(p) for p in self.body_paragraphs or [])
        paragraphs = [p for p in cleaned if p]
        body = join_paragraphs(paragraphs)
        if len(body) > MAX_CONTENT_CHARS:
            logger.debug("extractor: truncating body to %d chars for %s", MAX_CONTENT_CHARS, result.url)
            paragraphs = _truncate_paragraphs(paragraphs, MAX_CONTENT_CHARS)
            body = join_paragraphs(paragraphs)
        result.paragraphs = paragraphs
        if self.body_filter is not None:
            result.dropped_paragraphs = dict(self.body_filter.dropped)
        result.language = detect_language(body or result.title)
        result.quality_score = quality_score(
            body,
            len(paragraphs),
            has_title=bool(result.title),
            has_date=result.publication_date is not None,
            has_author=bool(result.author),
        )
        return result


# ---------------------------------------------------------------------------
# Public extraction function
# ---------------------------------------------------------------------------


def extract(
    html: str,
    url: str,
    *,
    title_hint: str | None = None,
    date_hint: datetime | None = None,
    noise_config: NoiseFilterConfig | None = None,
) -> ExtractionResult:
    """Extract title, author, date and body from raw HTML.

    Args:
        html: Raw HTML string (may be partial or malformed).
        url: URL of the page, recorded on the result.
        title_hint: Feed-supplied title used when the page has none.
        date_hint: Feed-supplied publication date used when the page has none.
        noise_config: Body noise-filter thresholds; defaults apply when omitted.

    Returns:
        An :class:`ExtractionResult`.  Fields may be empty; ``traces`` is
        always a list.
    """
    try:
        run = _Extraction(html, url, noise_config or _DEFAULT_NOISE_CONFIG)
        run.structured_tier()
        run.strip_structural_noise()
        run.selector_tier()
        run.fallback_tier()
        run.feed_hints(title_hint, date_hint)
        return run.finish()
    except Exception as exc:  # noqa: BLE001
        logger.warning("extractor: extraction failed for %s: %s", url, exc)
        result = ExtractionResult(url=url)
        if title_hint:
            result.title = title_hint
            result.traces.append(
                ExtractionTrace("title", STRATEGY_FEED_HINT, "feed:title", _prefix(title_hint))
            )
        return result
