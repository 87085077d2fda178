"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, Iterator

DOCUMENT_SUFFIX = ".md"

# Navigation pages generated alongside the documents, not documents themselves
INDEX_FILENAMES = frozenset({"index.md", "glance.md", "00-index.md"})


def iter_document_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield markdown document paths from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_document_paths(sorted(child for child in item.rglob(f"*{DOCUMENT_SUFFIX}")))
        elif (
            item.is_file()
            and item.suffix.lower() == DOCUMENT_SUFFIX
            and item.name.lower() not in INDEX_FILENAMES
        ):
            yield item


def compute_digest(data: bytes) -> str:
    """Compute the SHA256 hex digest used as a content address."""
    return hashlib.sha256(data).hexdigest()
