"""Shared fixtures: small on-disk document corpora."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest


def write_document(
    root: Path,
    relative: str,
    doc_id: str | None,
    *,
    title: str | None = None,
    description: str | None = None,
    body: str = "Body text.\n",
    extra: str = "",
) -> Path:
    """Write a markdown document with YAML front-matter under ``root``."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    header = []
    if doc_id is not None:
        header.append(f"id: {doc_id}")
    if title is not None:
        header.append(f"title: {title}")
    if description is not None:
        header.append(f"description: {description}")
    header.append("last_modified: '2025-01-15'")
    if extra:
        header.append(extra)
    path.write_text("---\n" + "\n".join(header) + "\n---\n" + body, encoding="utf-8")
    return path


@pytest.fixture
def make_document() -> Callable[..., Path]:
    return write_document


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    """Three go bindings, two rust bindings and one malformed document."""
    root = tmp_path / "docs"
    go = "bindings/categories/go"
    rust = "bindings/categories/rust"
    write_document(
        root,
        f"{go}/error-wrapping.md",
        "error-wrapping",
        title="Error Wrapping",
        body="# Error Wrapping\n\nWrap errors with context before returning them.\n",
    )
    write_document(
        root,
        f"{go}/interface-design.md",
        "interface-design",
        title="Interface Design",
        body="# Interface Design\n\nKeep interfaces small. Accept interfaces, return structs.\n",
    )
    write_document(
        root,
        f"{go}/package-layout.md",
        "package-layout",
        title="Package Layout",
        body="# Package Layout\n\nGroup code by feature. Errors belong near their callers.\n",
    )
    write_document(
        root,
        f"{rust}/ownership-patterns.md",
        "ownership-patterns",
        title="Ownership Patterns",
        body="# Ownership Patterns\n\nPrefer borrowing over cloning.\n",
    )
    write_document(
        root,
        f"{rust}/result-handling.md",
        "result-handling",
        title="Result Handling",
        body="# Result Handling\n\nPropagate errors with the question mark operator.\n",
    )
    broken = root / go / "broken.md"
    broken.write_text("---\nid: broken\ntitle: [unclosed\n---\nBody\n", encoding="utf-8")
    return root
