"""Core Leyline data models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict


class Category(str, Enum):
    """Recognised document categories, in display order."""

    API = "api"
    BROWSER_EXTENSIONS = "browser-extensions"
    CLI = "cli"
    CORE = "core"
    CSHARP = "csharp"
    DATABASE = "database"
    GIT = "git"
    GO = "go"
    PYTHON = "python"
    REACT = "react"
    RUBY = "ruby"
    RUST = "rust"
    SECURITY = "security"
    TENETS = "tenets"
    TYPESCRIPT = "typescript"
    WEB = "web"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


@dataclass(frozen=True, slots=True)
class DocumentRecord:
    """Metadata describing one indexed document."""

    id: str
    category: Category
    title: str
    description: str
    path: Path
    content_digest: str
    last_modified: str
    kind: str = "document"
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "title": self.title,
            "description": self.description,
            "path": str(self.path),
            "content_digest": self.content_digest,
            "last_modified": self.last_modified,
            "kind": self.kind,
            "size": self.size,
        }


@dataclass(frozen=True, slots=True)
class ScanWarning:
    """A document skipped during a scan, and why."""

    path: Path
    kind: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": str(self.path), "kind": self.kind, "message": self.message}
