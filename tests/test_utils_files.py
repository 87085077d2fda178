"""Tests for file utility helpers."""

from __future__ import annotations

import hashlib
from pathlib import Path

from leyline.utils.files import compute_digest, iter_document_paths


class TestIterDocumentPaths:
    """Test iter_document_paths function."""

    def test_single_markdown_file(self, tmp_path: Path) -> None:
        doc = tmp_path / "note.md"
        doc.write_text("x")

        assert list(iter_document_paths([doc])) == [doc]

    def test_ignores_other_suffixes(self, tmp_path: Path) -> None:
        txt = tmp_path / "note.txt"
        txt.write_text("x")

        assert list(iter_document_paths([txt])) == []

    def test_directory_is_recursive_and_sorted(self, tmp_path: Path) -> None:
        (tmp_path / "b").mkdir()
        (tmp_path / "a" / "nested").mkdir(parents=True)
        (tmp_path / "b" / "two.md").write_text("x")
        (tmp_path / "a" / "nested" / "one.md").write_text("x")
        (tmp_path / "a" / "zero.md").write_text("x")

        result = list(iter_document_paths([tmp_path]))

        assert result == sorted(result)
        assert len(result) == 3

    def test_skips_index_pages(self, tmp_path: Path) -> None:
        for name in ("index.md", "glance.md", "00-index.md", "real.md"):
            (tmp_path / name).write_text("x")

        result = list(iter_document_paths([tmp_path]))

        assert [path.name for path in result] == ["real.md"]

    def test_missing_path(self, tmp_path: Path) -> None:
        assert list(iter_document_paths([tmp_path / "missing"])) == []


class TestComputeDigest:
    def test_matches_sha256(self) -> None:
        assert compute_digest(b"hello") == hashlib.sha256(b"hello").hexdigest()

    def test_length(self) -> None:
        assert len(compute_digest(b"")) == 64
