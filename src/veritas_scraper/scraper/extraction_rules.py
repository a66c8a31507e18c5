"""Declarative selector tables for field extraction.

Each field has an ordered tuple of :class:`ExtractionRule` values that a
single generic cascade walks until one rule yields a usable value.  Rules
in ``SELECTOR_RULES`` form the selector tier; rules in ``FALLBACK_RULES``
are consulted only after the selector tier (and, for the body, the
paragraph-density heuristic) came up empty.
"""

from __future__ import annotations

from dataclasses import dataclass

#: schema.org ``@type`` values accepted as article JSON-LD.
ARTICLE_SCHEMA_TYPES: frozenset[str] = frozenset(
    {
        "Article",
        "NewsArticle",
        "ReportageNewsArticle",
        "AnalysisNewsArticle",
        "OpinionNewsArticle",
        "BackgroundNewsArticle",
        "ReviewNewsArticle",
        "BlogPosting",
        "LiveBlogPosting",
        "Report",
    }
)


@dataclass(frozen=True)
class ExtractionRule:
    """One CSS selector candidate for one field.

    Attributes:
        field: ``"title"``, ``"author"``, ``"date"`` or ``"body"``.
        selector: CSS selector evaluated with ``soup.select``.
        attribute: Attribute to read instead of the element text
            (``"content"`` for ``<meta>``, ``"datetime"`` for ``<time>``).
    """

    field: str
    selector: str
    attribute: str | None = None

    @property
    def label(self) -> str:
        """Rule identifier stored in extraction traces."""
        if self.attribute:
            return f"{self.selector}@{self.attribute}"
        return self.selector


def _rules(field: str, *specs: str | tuple[str, str]) -> tuple[ExtractionRule, ...]:
    rules = []
    for spec in specs:
        if isinstance(spec, tuple):
            rules.append(ExtractionRule(field, spec[0], spec[1]))
        else:
            rules.append(ExtractionRule(field, spec))
    return tuple(rules)


# ---------------------------------------------------------------------------
# Selector tier
# ---------------------------------------------------------------------------

SELECTOR_RULES: dict[str, tuple[ExtractionRule, ...]] = {
    "title": _rules(
        "title",
        "h1",
        ('meta[property="og:title"]', "content"),
        '[class*="headline"]',
    ),
    "author": _rules(
        "author",
        '[rel="author"]',
        ".author",
        ".by-author",
        ".article-author",
        '[itemprop="author"]',
        ('meta[name="author"]', "content"),
    ),
    "date": _rules(
        "date",
        ("time[datetime]", "datetime"),
        ('meta[property="article:published_time"]', "content"),
        ('[itemprop="datePublished"]', "content"),
        ".date",
        ".published",
    ),
    # Body rules match containers; their paragraphs are walked individually.
    "body": _rules(
        "body",
        '[itemprop="articleBody"]',
        'article [class*="body"]:not([class*="meta"])',
        'article [class*="content"]:not([class*="header"])',
        'main [class*="story-body"]',
        ".article-text",
        ".story-content",
        '[data-component="text-block"]',
        '[data-testid="article-body"]',
        'div[class*="Text-sc"]',
        'article div[class*="Paragraph"]',
        'section[name="articleBody"]',
        ".content__article-body",
        ".article-content",
        ".story-body",
        ".entry-content",
        ".post-content",
    ),
}

# ---------------------------------------------------------------------------
# Fallback tier
# ---------------------------------------------------------------------------

#: Top-level block candidates for the paragraph-density body heuristic.
DENSITY_CANDIDATES: tuple[str, ...] = (
    "article",
    "main",
    '[role="main"]',
    "section",
    "div",
)

FALLBACK_RULES: dict[str, tuple[ExtractionRule, ...]] = {
    "title": _rules(
        "title",
        ('meta[name="twitter:title"]', "content"),
        "title",
    ),
    "author": (),
    "date": _rules(
        "date",
        ('meta[name="date"]', "content"),
        ('meta[property="og:updated_time"]', "content"),
    ),
    "body": _rules(
        "body",
        ('meta[property="og:description"]', "content"),
        ('meta[name="description"]', "content"),
    ),
}

#: Minimum paragraph text (characters) a body container must carry to win
#: the selector tier; smaller matches fall through to the next rule.
MIN_SELECTOR_BODY_CHARS: int = 100
