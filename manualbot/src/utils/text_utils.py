"""
manualbot - Text Utilities
===========================
Stateless helpers for cleaning manual extracts before embedding and
for trimming model-supplied quotes.
"""

from __future__ import annotations

import re
import unicodedata


# ── Non-printable character pattern ────────────────────────────────────
# Control characters (except \n, \r, \t), BOM, zero-width chars and
# soft hyphens left behind by PDF text extraction.
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")


def clean_text(text: str) -> str:
    """
    Sanitise a manual extract for embedding.

    Steps:
        1. Unicode NFC normalisation.
        2. Strip non-printable / zero-width characters.
        3. Collapse runs of horizontal whitespace into a single space,
           *preserving* newlines.
        4. Strip every line.
        5. Collapse 3+ consecutive blank lines to 2.
    """
    text = unicodedata.normalize("NFC", text)
    text = _NON_PRINTABLE_RE.sub("", text)
    text = re.sub(r"[^\S\n]+", " ", text)
    lines = [line.strip() for line in text.splitlines()]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def truncate_words(text: str, max_words: int) -> str:
    """Keep the first *max_words* whitespace-separated words of *text*."""
    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words])
