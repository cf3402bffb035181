"""Render a story and its chapters as plain text or PDF.

Both renderers work from the persisted models and return the document in
memory; the stories blueprint streams the result as a download.
"""
from __future__ import annotations

import textwrap
import unicodedata
from typing import List, Optional

from fpdf import FPDF

from .prompting import reading_level_label

EXPORT_FORMATS = ("txt", "pdf")


class StoryExportError(RuntimeError):
    """Raised when a story cannot be exported."""


_PDF_LATIN1_REPLACEMENTS = {
    ord("‐"): "-",  # hyphen
    ord("‑"): "-",  # non-breaking hyphen
    ord("–"): "-",  # en dash
    ord("—"): "-",  # em dash
    ord("−"): "-",  # minus sign
    ord("‘"): "'",
    ord("’"): "'",
    ord("“"): '"',
    ord("”"): '"',
    ord("«"): '"',
    ord("»"): '"',
    ord("…"): "...",  # ellipsis
    ord(" "): " ",  # non-breaking space
    ord(" "): " ",  # narrow no-break space
    ord("​"): "",  # zero-width space
    ord("﻿"): "",  # BOM
}


def _clean(value: Optional[str]) -> str:
    if not value:
        return ""
    return str(value).strip()


def _story_details(story: object) -> List[str]:
    details = [f"Reading level: {reading_level_label(getattr(story, 'reading_level', None))}"]
    chapter_length = _clean(getattr(story, "chapter_length", None))
    if chapter_length:
        details.append(f"Chapter length: {chapter_length}")
    story_length = getattr(story, "story_length", None)
    if story_length:
        details.append(f"Planned chapters: {story_length}")
    return details


def _chapter_heading(chapter: object) -> str:
    heading = f"Chapter {getattr(chapter, 'chapter_number', '?')}"
    arc_step = getattr(chapter, "arc_step", None) or {}
    step_title = _clean(arc_step.get("title")) if isinstance(arc_step, dict) else ""
    return f"{heading}: {step_title}" if step_title else heading


def export_story_to_txt(story: object) -> str:
    """Return ``story`` with its chapters as a plain-text document."""

    lines: List[str] = [_clean(getattr(story, "title", "")) or "Untitled Story"]
    lines.extend(_story_details(story))

    premise = _clean(getattr(story, "initial_prompt", ""))
    if premise:
        lines.extend(["", "Premise:", premise])

    chapters = list(getattr(story, "chapters", []) or [])
    for chapter in chapters:
        lines.extend(["", _chapter_heading(chapter)])
        content = _clean(getattr(chapter, "content", ""))
        lines.extend(["", content or "(No chapter text available.)"])

    if not chapters:
        lines.extend(["", "(This story has no chapters yet.)"])

    return "\n".join(lines).rstrip() + "\n"


def _pdf_safe_text(text: str) -> str:
    """Return ``text`` normalised for the Latin-1 core PDF fonts."""

    normalized = unicodedata.normalize("NFKC", text or "").replace("\t", " ")
    replaced = normalized.translate(_PDF_LATIN1_REPLACEMENTS)
    return replaced.encode("latin-1", "replace").decode("latin-1")


def _pdf_wrapped_text(text: str, *, width: int = 100) -> str:
    safe_text = _pdf_safe_text(text)
    if not safe_text:
        return ""

    wrapped_lines: List[str] = []
    for raw_line in safe_text.splitlines():
        if not raw_line:
            wrapped_lines.append("")
            continue
        chunks = textwrap.wrap(raw_line, width=width, break_long_words=True, break_on_hyphens=False)
        wrapped_lines.extend(chunks or [""])
    return "\n".join(wrapped_lines)


def _write_block(pdf: FPDF, width: float, height: float, text: str) -> None:
    sanitized = _pdf_wrapped_text(text)
    if not sanitized:
        return
    # multi_cell leaves the cursor at the right edge; every block restarts at the margin.
    pdf.set_x(pdf.l_margin)
    pdf.multi_cell(width, height, sanitized)


def export_story_to_pdf(story: object) -> bytes:
    """Return ``story`` rendered as a PDF document."""

    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.set_left_margin(15)
    pdf.set_right_margin(15)
    effective_width = pdf.w - pdf.l_margin - pdf.r_margin

    title = _clean(getattr(story, "title", "")) or "Untitled Story"
    pdf.set_title(_pdf_safe_text(title))

    pdf.add_page()
    pdf.set_font("Times", "B", 18)
    _write_block(pdf, effective_width, 10, title)
    pdf.ln(4)

    pdf.set_font("Times", "I", 11)
    for detail in _story_details(story):
        _write_block(pdf, effective_width, 6, detail)

    premise = _clean(getattr(story, "initial_prompt", ""))
    if premise:
        pdf.ln(2)
        pdf.set_font("Times", "", 12)
        _write_block(pdf, effective_width, 6, f"Premise: {premise}")

    for chapter in getattr(story, "chapters", []) or []:
        pdf.add_page()
        pdf.set_font("Times", "B", 14)
        _write_block(pdf, effective_width, 10, _chapter_heading(chapter))
        pdf.ln(2)

        pdf.set_font("Times", "", 12)
        content = _clean(getattr(chapter, "content", "")) or "(No chapter text available.)"
        for paragraph in content.split("\n\n"):
            if paragraph.strip():
                _write_block(pdf, effective_width, 6.5, paragraph.strip())
                pdf.ln(1.5)

    try:
        return bytes(pdf.output())
    except Exception as exc:  # pragma: no cover - renderer failure
        raise StoryExportError(f"Unable to export PDF: {exc}") from exc


__all__ = ["EXPORT_FORMATS", "StoryExportError", "export_story_to_pdf", "export_story_to_txt"]
