"""Constants and tuning parameters for the news scraper."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Paragraph structure
# ---------------------------------------------------------------------------

#: Separator between body paragraphs, in storage and for every consumer.
#: A double newline is reserved for soft breaks inside one paragraph.
PARAGRAPH_SEPARATOR: str = "\n\n\n"

#: Soft break inside a paragraph (rendered from ``<br>``).
SOFT_BREAK: str = "\n\n"

# ---------------------------------------------------------------------------
# Content size guards
# ---------------------------------------------------------------------------

#: Maximum stored body size (characters).
MAX_CONTENT_CHARS: int = 900 * 1024

#: Characters of the normalised body that enter the content hash.
CONTENT_HASH_SAMPLE_CHARS: int = 2000

#: Length of the matched-value prefix stored in an extraction trace.
TRACE_VALUE_PREFIX_CHARS: int = 120

# ---------------------------------------------------------------------------
# Quality scoring
# ---------------------------------------------------------------------------

#: Body length (characters) that earns the full length component.
QUALITY_FULL_LENGTH_CHARS: int = 2000

#: Paragraph count that earns the full paragraph component.
QUALITY_FULL_PARAGRAPHS: int = 6

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

#: Content-Type prefixes that indicate binary/non-text resources that should
#: be skipped without attempting extraction.
BINARY_CONTENT_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "application/zip",
        "application/octet-stream",
        "application/x-executable",
        "application/vnd.",
        "image/",
        "video/",
        "audio/",
        "font/",
    }
)

#: robots.txt user-agent token to check against.
ROBOTS_USER_AGENT: str = "VeritasScraper"

#: Fallback user-agent token if a site has no entry for ``ROBOTS_USER_AGENT``.
ROBOTS_USER_AGENT_FALLBACK: str = "*"

#: Timeout (seconds) for robots.txt requests.
ROBOTS_TIMEOUT_SECONDS: float = 5.0

# ---------------------------------------------------------------------------
# URL normalisation
# ---------------------------------------------------------------------------

#: Query parameters stripped before URLs are compared for deduplication.
TRACKING_PARAMS: frozenset[str] = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "ref",
        "_ga",
        "at_medium",
        "at_campaign",
        "cmpid",
    }
)

# ---------------------------------------------------------------------------
# Noise filtering
# ---------------------------------------------------------------------------

#: Paragraphs matching any of these are boilerplate, not body prose.
BOILERPLATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\d+\s+(minute|hour|day)s?\s+ago$", re.IGNORECASE),
    re.compile(r"^(image source|getty images)", re.IGNORECASE),
    re.compile(r"^©\s*\d{4}", re.IGNORECASE),
    re.compile(r"^\[.*\]$"),
)

#: Elements removed from the document before any body selector runs.
STRUCTURAL_NOISE_SELECTORS: tuple[str, ...] = (
    "script",
    "style",
    "noscript",
    "template",
    "nav",
    "footer",
    "aside",
    ".navigation",
    ".nav-menu",
    ".social-share",
    ".share-buttons",
    ".sharing",
    ".newsletter-signup",
    ".newsletter",
    ".subscribe",
    ".advertisement",
    ".ad-container",
    ".ads",
    ".related-articles",
    ".recommended",
    ".more-on",
    ".comments",
    ".comment-section",
    '[class*="promo"]',
    '[class*="banner"]',
)

#: Tags that are caption containers regardless of their class.
CAPTION_TAGS: frozenset[str] = frozenset({"figcaption", "figure"})


@dataclass(frozen=True)
class NoiseFilterConfig:
    """Tunable thresholds for the body paragraph noise filter.

    Attributes:
        min_length: Paragraphs shorter than this are dropped unless they are
            the only paragraph left.
        caption_class_markers: Class-name substrings that mark an ancestor
            as a caption container (case-insensitive).
        drop_uppercase_links: Drop paragraphs that are entirely upper-case
            and equal to a hyperlink's text ("RELATED: SEE ALSO" promos).
        boilerplate_patterns: Regexes identifying boilerplate paragraphs.
    """

    min_length: int = 30
    caption_class_markers: tuple[str, ...] = (
        "caption",
        "video-caption",
        "featured-video",
        "media-credit",
        "image-credit",
    )
    drop_uppercase_links: bool = True
    boilerplate_patterns: tuple[re.Pattern[str], ...] = field(
        default=BOILERPLATE_PATTERNS
    )

    @classmethod
    def from_settings(cls, settings: object) -> NoiseFilterConfig:
        """Build the filter configuration from application settings."""
        return cls(
            min_length=settings.scraper_min_paragraph_length,
            caption_class_markers=tuple(
                marker.lower() for marker in settings.scraper_caption_class_markers
            ),
        )
