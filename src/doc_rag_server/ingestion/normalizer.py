"""
Text Normalizer

Guarantees that extracted document text carries reliable `[Page N]` markers
before chunking.

Extraction output arrives in one of two shapes:

- Text that already marks its pages (either as `[Page N]` markers or as
  stand-alone "Page N" header lines). This is only cleaned up.
- Text with few or no page boundaries (pasted text, PDFs whose extractor lost
  the page breaks). Markers are synthesized by cutting the text into
  `total_pages` segments of equal character length.

Everything here is a pure function of its input.
"""

from __future__ import annotations

import re
from typing import List

from .models import PageMarker

PAGE_MARKER_RE = re.compile(r"\[Page (\d+)\]")

# A line holding nothing but a page header, e.g. "Page 4" or "Page 4 of 12"
PAGE_HEADER_RE = re.compile(
    r"^[ \t]*Page[ \t]+(\d+)(?:[ \t]+of[ \t]+\d+)?[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)

# Fraction of the expected page count that existing markers must cover
MARKER_COVERAGE = 0.5


def find_page_markers(text: str) -> List[PageMarker]:
    """Return all `[Page N]` markers in `text`, sorted by position."""
    markers = [
        PageMarker(page_number=int(m.group(1)), position=m.start())
        for m in PAGE_MARKER_RE.finditer(text)
    ]
    markers.sort(key=lambda marker: marker.position)
    return markers


def count_page_markers(text: str) -> int:
    return len(PAGE_MARKER_RE.findall(text))


def clean_text(text: str) -> str:
    """
    Whitespace cleanup shared by both normalization paths.

    Page header lines become `[Page N]` markers, every line is trimmed and
    empty lines are dropped (which also collapses runs of blank lines).
    """
    converted = PAGE_HEADER_RE.sub(lambda m: f"[Page {int(m.group(1))}]", text)
    lines = (line.strip() for line in converted.splitlines())
    return "\n".join(line for line in lines if line)


def synthesize_page_markers(text: str, total_pages: int) -> str:
    """
    Insert `[Page k]` before each of `total_pages` equal-length segments.

    Segment length is `len(text) // total_pages`; the last page takes the
    remainder. When the text is shorter than the page count, pages past the
    end of the text get no marker.
    """
    total_chars = len(text)
    per_page = max(1, total_chars // total_pages)

    parts: List[str] = []
    position = 0
    page = 1
    while position < total_chars and page <= total_pages:
        end = total_chars if page == total_pages else min(position + per_page, total_chars)
        parts.append(f"[Page {page}]\n{text[position:end]}")
        position = end
        page += 1

    return "\n".join(parts)


def normalize_text(text: str, total_pages: int) -> str:
    """
    Return `text` with reliable page markers.

    Parameters
    ----------
    text : str
        Raw extracted text.

    total_pages : int
        Page count reported by the extractor.

    Returns
    -------
    str
        Cleaned text, passed through when existing markers cover at least
        half of `total_pages`, otherwise re-marked with synthesized
        boundaries. Empty text or a non-positive page count returns the input
        unchanged.
    """
    if not text or not text.strip() or total_pages <= 0:
        return text

    cleaned = clean_text(text)

    if count_page_markers(cleaned) >= total_pages * MARKER_COVERAGE:
        return cleaned

    # Partial markers would contradict the synthesized ones
    unmarked = clean_text(PAGE_MARKER_RE.sub("", cleaned))
    if not unmarked:
        return cleaned

    return clean_text(synthesize_page_markers(unmarked, total_pages))
