"""Unit tests for language detection and the extraction quality score."""

from __future__ import annotations

import pytest

from veritas_scraper.scraper.language import detect_language
from veritas_scraper.scraper.quality import (
    SCRAPED_STATUSES,
    ProcessingStatus,
    processing_status,
    quality_score,
)


class TestDetectLanguage:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("The minister said that the plan was ready and that it would be published on Monday.", "en"),
            ("Le ministre a dit que le plan est prêt et que la publication est pour lundi dans la semaine.", "fr"),
            ("Der Minister sagte, dass der Plan fertig ist und die Veröffentlichung mit dem Bericht auf Montag fällt.", "de"),
            ("Министр заявил, что план уже готов и будет опубликован в понедельник вместе с новым бюджетом города.", "ru"),
            ("部长表示计划已经准备就绪并将在星期一正式对外发布。", "zh"),
            ("השר אמר שהתוכנית מוכנה ותפורסם ביום שני הקרוב יחד עם התקציב החדש של העירייה.", "he"),
            ("وقال الوزير إن الخطة جاهزة وسيتم نشرها يوم الاثنين المقبل مع الميزانية الجديدة للمدينة.", "ar"),
        ],
    )
    def test_detects_language(self, text: str, expected: str) -> None:
        assert detect_language(text) == expected

    def test_short_text_defaults_to_english(self) -> None:
        assert detect_language("Hola") == "en"

    def test_empty_defaults_to_english(self) -> None:
        assert detect_language(None) == "en"
        assert detect_language("") == "en"

    def test_text_without_letters_defaults_to_english(self) -> None:
        assert detect_language("2024-05-14 08:30 1234 5678 9012 3456") == "en"

    def test_region_suffix_is_dropped(self) -> None:
        assert detect_language("部长表示计划已经准备就绪并将在星期一正式对外发布。") == "zh"


class TestQualityScore:
    def test_empty_body_scores_zero(self) -> None:
        assert quality_score("", 0, has_title=True, has_date=True, has_author=True) == 0

    def test_complete_article_scores_100(self) -> None:
        body = "x" * 2500
        assert quality_score(body, 8, has_title=True, has_date=True, has_author=True) == 100

    def test_fields_add_ten_each(self) -> None:
        body = "x" * 2000
        base = quality_score(body, 6, has_title=False, has_date=False, has_author=False)
        assert base == 70
        assert quality_score(body, 6, has_title=True, has_date=False, has_author=False) == 80
        assert quality_score(body, 6, has_title=True, has_date=True, has_author=False) == 90

    def test_partial_length_and_paragraphs(self) -> None:
        # 1000/2000 * 40 = 20, 3/6 * 30 = 15
        assert quality_score("x" * 1000, 3, has_title=False, has_date=False, has_author=False) == 35

    def test_score_is_bounded(self) -> None:
        score = quality_score("x" * 10**6, 500, has_title=True, has_date=True, has_author=True)
        assert 0 <= score <= 100


class TestProcessingStatus:
    def test_empty_body_fails(self) -> None:
        assert processing_status("", 0, 50) is ProcessingStatus.FAILED

    def test_threshold_is_inclusive(self) -> None:
        assert processing_status("body", 50, 50) is ProcessingStatus.COMPLETED

    def test_below_threshold_is_low_quality(self) -> None:
        assert processing_status("body", 49, 50) is ProcessingStatus.COMPLETED_LOW_QUALITY

    def test_scraped_statuses(self) -> None:
        assert ProcessingStatus.COMPLETED in SCRAPED_STATUSES
        assert ProcessingStatus.COMPLETED_LOW_QUALITY in SCRAPED_STATUSES
        assert ProcessingStatus.FAILED not in SCRAPED_STATUSES
        assert ProcessingStatus.PENDING not in SCRAPED_STATUSES
