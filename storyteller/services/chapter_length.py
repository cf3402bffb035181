"""Chapter length categories and the helpers that measure, validate and trim text.

Each category label maps to inclusive ``(min, max)`` bounds for sentences and
words, plus paragraphs for the multi-paragraph category. Generated chapters
are checked with :func:`validate_chapter_length` and, when they overshoot,
shortened with :func:`truncate_to_spec`.

Segmentation is purely lexical:

* a sentence is a run of characters closed by one or more of ``.``, ``!`` or
  ``?``. Abbreviations such as ``Mr.`` and ellipses end a sentence too.
* a word is a run of Unicode word characters (letters, digits, underscore),
  so ``don't`` counts as two words and ``naïve`` as one.
* paragraphs are separated by a blank line (newline, optional whitespace,
  newline).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

SENTENCE_TERMINATORS = ".!?"

_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]+")
_WORD_PATTERN = re.compile(r"\b\w+\b")
_PARAGRAPH_SEPARATOR = re.compile(r"\n\s*\n")

Bounds = Tuple[int, int]


class InvalidChapterLengthCategory(ValueError):
    """Raised when a chapter length label is not a known category."""


class ChapterLengthCategory(str, Enum):
    SENTENCE = "A sentence"
    FEW_SENTENCES = "A few sentences"
    SMALL_PARAGRAPH = "A small paragraph"
    FULL_PARAGRAPH = "A full paragraph"
    FEW_PARAGRAPHS = "A few paragraphs"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ChapterLengthSpec:
    sentences: Bounds
    words: Bounds
    paragraphs: Optional[Bounds] = None

    def __post_init__(self) -> None:
        for name in ("sentences", "words", "paragraphs"):
            bounds = getattr(self, name)
            if bounds is None:
                continue
            low, high = bounds
            if not 0 <= low <= high:
                raise ValueError(f"Invalid {name} bounds {bounds!r}: expected 0 <= min <= max.")

    def as_dict(self) -> dict:
        payload = {"sentences": list(self.sentences), "words": list(self.words)}
        if self.paragraphs is not None:
            payload["paragraphs"] = list(self.paragraphs)
        return payload


@dataclass(frozen=True)
class ChapterMeasurement:
    sentences: int
    words: int
    paragraphs: int


CategoryLike = Union[ChapterLengthCategory, str]

CHAPTER_LENGTH_CATEGORIES: Tuple[ChapterLengthCategory, ...] = tuple(ChapterLengthCategory)

CHAPTER_LENGTH_SPECS: Mapping[ChapterLengthCategory, ChapterLengthSpec] = MappingProxyType(
    {
        ChapterLengthCategory.SENTENCE: ChapterLengthSpec(sentences=(1, 1), words=(10, 20)),
        ChapterLengthCategory.FEW_SENTENCES: ChapterLengthSpec(sentences=(2, 4), words=(20, 60)),
        ChapterLengthCategory.SMALL_PARAGRAPH: ChapterLengthSpec(sentences=(4, 6), words=(60, 100)),
        ChapterLengthCategory.FULL_PARAGRAPH: ChapterLengthSpec(sentences=(6, 10), words=(100, 150)),
        ChapterLengthCategory.FEW_PARAGRAPHS: ChapterLengthSpec(
            sentences=(12, 20),
            words=(150, 300),
            paragraphs=(2, 3),
        ),
    }
)


def count_sentences(text: str) -> int:
    return len(_SENTENCE_PATTERN.findall(text or ""))


def count_words(text: str) -> int:
    return len(_WORD_PATTERN.findall(text or ""))


def count_paragraphs(text: str) -> int:
    return len(_split_paragraphs(text or ""))


def measure_chapter(text: str) -> ChapterMeasurement:
    """Return sentence, word and paragraph counts for ``text``."""

    return ChapterMeasurement(
        sentences=count_sentences(text),
        words=count_words(text),
        paragraphs=count_paragraphs(text),
    )


def is_chapter_length(value: object) -> bool:
    """Return whether ``value`` is a recognised chapter length label."""

    if not isinstance(value, str):
        return False
    try:
        resolve_category(value)
    except InvalidChapterLengthCategory:
        return False
    return True


def resolve_category(category: CategoryLike) -> ChapterLengthCategory:
    try:
        return ChapterLengthCategory(category)
    except ValueError as exc:
        raise InvalidChapterLengthCategory(f"Unknown chapter length category: {category!r}") from exc


def get_length_spec(category: CategoryLike) -> ChapterLengthSpec:
    return CHAPTER_LENGTH_SPECS[resolve_category(category)]


def validate_chapter_length(text: str, category: CategoryLike) -> bool:
    """Return ``True`` when ``text`` falls inside every bound of ``category``.

    Sentence, word and (when the category defines one) paragraph counts are
    checked independently and must all be in range.
    """

    spec = get_length_spec(category)
    text = text or ""

    sentences_ok = _within(count_sentences(text), spec.sentences)
    words_ok = _within(count_words(text), spec.words)
    paragraphs_ok = True
    if spec.paragraphs is not None:
        paragraphs_ok = _within(count_paragraphs(text), spec.paragraphs)

    return sentences_ok and words_ok and paragraphs_ok


def truncate_to_spec(text: str, category: CategoryLike) -> str:
    """Shrink ``text`` until it fits under the upper bounds of ``category``.

    Paragraphs are cut first, then sentences, then words, each step working on
    the output of the previous one. Only upper bounds are enforced; text that
    is already short enough comes back unchanged apart from stripping.

    A word cut can leave a dangling fragment, so a period is appended when the
    result no longer ends with terminal punctuation. That period can close an
    unterminated trailing fragment as an extra sentence.
    """

    spec = get_length_spec(category)
    result = text or ""

    if spec.paragraphs is not None:
        max_paragraphs = spec.paragraphs[1]
        paragraphs = _split_paragraphs(result)
        if len(paragraphs) > max_paragraphs:
            result = "\n\n".join(paragraphs[:max_paragraphs])

    max_sentences = spec.sentences[1]
    sentences = _SENTENCE_PATTERN.findall(result)
    if len(sentences) > max_sentences:
        # Newlines stay so paragraph breaks inside the kept runs survive.
        result = " ".join(sentence.lstrip(" \t") for sentence in sentences[:max_sentences]).strip()

    max_words = spec.words[1]
    if count_words(result) > max_words:
        result = _take_words(result, max_words)
        if not result.endswith(tuple(SENTENCE_TERMINATORS)):
            result += "."

    return result.strip()


def _take_words(text: str, max_words: int) -> str:
    """Keep leading whitespace-delimited chunks holding at most ``max_words`` words.

    A plain word is one chunk; a chunk such as ``don't`` spends two words of
    the budget. An opening chunk that alone exceeds the budget is cut right
    after its ``max_words``-th word, so something is always kept.
    """

    kept: list[str] = []
    budget = max_words
    for chunk in text.split():
        cost = count_words(chunk)
        if budget == 0:
            break
        if cost > budget:
            if not kept:
                words = list(_WORD_PATTERN.finditer(chunk))
                kept.append(chunk[: words[budget - 1].end()])
            break
        kept.append(chunk)
        budget -= cost
    return " ".join(kept)


def _split_paragraphs(text: str) -> list[str]:
    return [segment for segment in _PARAGRAPH_SEPARATOR.split(text) if segment.strip()]


def _within(value: int, bounds: Bounds) -> bool:
    low, high = bounds
    return low <= value <= high


__all__ = [
    "CHAPTER_LENGTH_CATEGORIES",
    "CHAPTER_LENGTH_SPECS",
    "ChapterLengthCategory",
    "ChapterLengthSpec",
    "ChapterMeasurement",
    "InvalidChapterLengthCategory",
    "count_paragraphs",
    "count_sentences",
    "count_words",
    "get_length_spec",
    "is_chapter_length",
    "measure_chapter",
    "resolve_category",
    "truncate_to_spec",
    "validate_chapter_length",
]
