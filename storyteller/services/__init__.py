"""Service layer helpers for story and chapter generation."""

from __future__ import annotations

from .chapter_length import (  # noqa: F401
    CHAPTER_LENGTH_CATEGORIES,
    CHAPTER_LENGTH_SPECS,
    ChapterLengthCategory,
    ChapterLengthSpec,
    InvalidChapterLengthCategory,
    count_paragraphs,
    count_sentences,
    count_words,
    truncate_to_spec,
    validate_chapter_length,
)

__all__ = [
    "CHAPTER_LENGTH_CATEGORIES",
    "CHAPTER_LENGTH_SPECS",
    "ChapterLengthCategory",
    "ChapterLengthSpec",
    "InvalidChapterLengthCategory",
    "count_paragraphs",
    "count_sentences",
    "count_words",
    "truncate_to_spec",
    "validate_chapter_length",
]
