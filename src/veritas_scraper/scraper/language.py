"""Language detection for extracted article bodies.

Uses langdetect's probabilistic detector with a fixed seed so repeated runs
over the same text agree.  Texts that are too short, carry no linguistic
features, or whose top candidate is not confident enough are reported as
``DEFAULT_LANGUAGE``.  Region-qualified codes (``zh-cn``, ``zh-tw``) are
reduced to their ISO 639-1 prefix so the value fits the ``language`` column.
"""

from __future__ import annotations

import structlog
from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException

logger = structlog.get_logger(__name__)

# Make detection deterministic across runs.
DetectorFactory.seed = 0

DEFAULT_LANGUAGE = "en"

#: Texts shorter than this are not analysed.
MIN_TEXT_LENGTH = 20

#: Probability the top candidate needs before it is trusted.
MIN_CONFIDENCE = 0.5

#: Characters of body text passed to the detector.
MAX_SAMPLE_CHARS = 5000


def detect_language(text: str | None) -> str:
    """Return an ISO 639-1 code for *text*, defaulting to ``"en"``."""
    if not text or len(text.strip()) < MIN_TEXT_LENGTH:
        return DEFAULT_LANGUAGE

    try:
        candidates = detect_langs(text[:MAX_SAMPLE_CHARS])
    except LangDetectException as exc:
        logger.debug("language_detection_failed", error=str(exc))
        return DEFAULT_LANGUAGE

    if not candidates or candidates[0].prob < MIN_CONFIDENCE:
        return DEFAULT_LANGUAGE
    return candidates[0].lang.split("-")[0]
