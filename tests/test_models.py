"""Tests for data models."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from leyline.models import Category, DocumentRecord, ScanWarning


def _record(**overrides) -> DocumentRecord:
    values = dict(
        id="error-wrapping",
        category=Category.GO,
        title="Error Wrapping",
        description="Wrap errors with context.",
        path=Path("/docs/bindings/categories/go/error-wrapping.md"),
        content_digest="a" * 64,
        last_modified="2025-01-15",
    )
    values.update(overrides)
    return DocumentRecord(**values)


class TestCategory:
    """Test the Category enum."""

    def test_fixed_set_in_display_order(self) -> None:
        assert Category.values() == [
            "api",
            "browser-extensions",
            "cli",
            "core",
            "csharp",
            "database",
            "git",
            "go",
            "python",
            "react",
            "ruby",
            "rust",
            "security",
            "tenets",
            "typescript",
            "web",
        ]

    def test_lookup_by_value(self) -> None:
        assert Category("browser-extensions") is Category.BROWSER_EXTENSIONS

    def test_str_is_value(self) -> None:
        assert str(Category.GO) == "go"

    def test_unknown_value_raises(self) -> None:
        with pytest.raises(ValueError):
            Category("cobol")


class TestDocumentRecord:
    """Test DocumentRecord dataclass."""

    def test_defaults(self) -> None:
        record = _record()

        assert record.kind == "document"
        assert record.size == 0

    def test_is_frozen(self) -> None:
        record = _record()

        with pytest.raises(dataclasses.FrozenInstanceError):
            record.title = "Changed"  # type: ignore[misc]

    def test_to_dict_is_json_ready(self) -> None:
        data = _record(kind="binding", size=42).to_dict()

        assert data["category"] == "go"
        assert data["path"] == "/docs/bindings/categories/go/error-wrapping.md"
        assert data["kind"] == "binding"
        assert data["size"] == 42

    def test_equality_by_value(self) -> None:
        assert _record() == _record()


class TestScanWarning:
    def test_to_dict(self) -> None:
        warning = ScanWarning(path=Path("docs/x.md"), kind="parse_failure", message="bad yaml")

        assert warning.to_dict() == {
            "path": "docs/x.md",
            "kind": "parse_failure",
            "message": "bad yaml",
        }
