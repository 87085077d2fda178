"""Text helpers: front-matter splitting, titles, previews and tokenisation."""

from __future__ import annotations

import re
from collections import Counter

PREVIEW_CHARS = 200

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_HEADING_RE = re.compile(r"^#+\s*")

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "from",
        "has", "have", "if", "in", "into", "is", "it", "its", "of", "on", "or",
        "so", "than", "that", "the", "their", "then", "these", "this", "to",
        "was", "were", "when", "which", "with", "you", "your",
    }
)


def split_front_matter(text: str) -> tuple[str | None, str]:
    """Split a document into its raw front-matter block and body.

    Returns ``(None, text)`` when the document does not open with a ``---``
    line or the block is never closed.
    """
    text = text.lstrip("\ufeff").replace("\r\n", "\n")
    if not text.startswith("---\n"):
        return None, text
    end = text.find("\n---\n", 3)
    if end == -1:
        if text.endswith("\n---"):
            return text[4 : len(text) - 4], ""
        return None, text
    return text[4:end], text[end + 5 :]


def extract_title(body: str) -> str | None:
    """Return the first markdown heading in ``body``, if any."""
    for line in body.splitlines():
        stripped = line.strip()
        if stripped.startswith("#"):
            title = _HEADING_RE.sub("", stripped).strip()
            if title:
                return title
    return None


def content_preview(body: str, *, max_chars: int = PREVIEW_CHARS) -> str:
    """Collect leading prose (no headings) and trim it to a word boundary."""
    preview = ""
    for line in body.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        preview += stripped + " "
        if len(preview) >= max_chars:
            break

    preview = preview.strip()
    if len(preview) > max_chars:
        preview = preview[:max_chars]
        last_space = preview.rfind(" ")
        if last_space > 0:
            preview = preview[:last_space]
        preview += "..."
    return preview


def tokenize(text: str) -> list[str]:
    """Lowercase ``text`` and split it into search tokens, dropping stop words."""
    return [
        token
        for token in _TOKEN_RE.findall(text.lower())
        if len(token) > 1 and token not in STOP_WORDS
    ]


def term_frequencies(text: str) -> dict[str, int]:
    return dict(Counter(tokenize(text)))
