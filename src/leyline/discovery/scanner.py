"""Document scanning and index construction."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path

import yaml

from leyline.config import DEFAULT_SCAN_WORKERS
from leyline.discovery.index import DocumentTerms, Index
from leyline.discovery.term_cache import TermCache
from leyline.errors import DocumentError, DuplicateDocument, ParseFailure, UnknownCategory
from leyline.models import Category, DocumentRecord, ScanWarning
from leyline.utils.files import compute_digest, iter_document_paths
from leyline.utils.text import (
    content_preview,
    extract_title,
    split_front_matter,
    term_frequencies,
)

LOGGER = logging.getLogger(__name__)

MAX_FRONT_MATTER_SIZE = 8 * 1024


@dataclass(slots=True)
class ScanStats:
    files_scanned: int = 0
    documents_indexed: int = 0
    parse_errors: int = 0
    bytes_processed: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "files_scanned": self.files_scanned,
            "documents_indexed": self.documents_indexed,
            "parse_errors": self.parse_errors,
            "bytes_processed": self.bytes_processed,
            "duration_ms": round(self.duration_ms, 3),
        }


@dataclass(slots=True)
class ScanResult:
    index: Index
    warnings: list[ScanWarning] = field(default_factory=list)
    stats: ScanStats = field(default_factory=ScanStats)


@dataclass(slots=True)
class _Loaded:
    record: DocumentRecord
    terms: DocumentTerms
    size: int


def category_for_path(relative: Path) -> str | None:
    """Derive the category segment from a document path relative to the root.

    ``bindings/categories/go/x.md`` -> ``go``; anything under ``core`` or
    ``tenets`` maps to that name; otherwise the containing directory.
    """
    parts = relative.parts[:-1]
    if "categories" in parts:
        position = parts.index("categories")
        if position + 1 < len(parts):
            return parts[position + 1]
        return None
    if "core" in parts:
        return "core"
    if "tenets" in parts:
        return "tenets"
    return parts[-1] if parts else None


def kind_for_path(relative: Path) -> str:
    parts = relative.parts
    if "tenets" in parts:
        return "tenet"
    if "bindings" in parts:
        return "binding"
    return "document"


def _as_text(value) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return " ".join(str(value).split())


class DocumentIndexBuilder:
    """Scans a document tree into an immutable Index."""

    def __init__(
        self,
        *,
        term_cache: TermCache | None = None,
        max_workers: int = DEFAULT_SCAN_WORKERS,
    ) -> None:
        self.term_cache = term_cache
        self.max_workers = max_workers

    def scan(self, root: Path) -> ScanResult:
        """Scan every document under ``root``.

        Per-document failures are collected as warnings; they never abort the
        scan.
        """
        started = time.perf_counter()
        root = Path(root)
        stats = ScanStats()
        warnings: list[ScanWarning] = []

        if not root.is_dir():
            LOGGER.warning("Document root not found: %s", root)
            warnings.append(
                ScanWarning(path=root, kind="missing_root", message="Document root not found")
            )
            stats.duration_ms = (time.perf_counter() - started) * 1000
            return ScanResult(index=Index.build([]), warnings=warnings, stats=stats)

        paths = list(iter_document_paths([root]))
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            outcomes = list(executor.map(lambda path: self._load_safely(root, path), paths))

        entries: list[tuple[DocumentRecord, DocumentTerms]] = []
        seen: dict[str, Path] = {}
        for path, outcome in zip(paths, outcomes):
            stats.files_scanned += 1
            if isinstance(outcome, DocumentError):
                if isinstance(outcome, ParseFailure):
                    stats.parse_errors += 1
                warnings.append(outcome.to_warning())
                continue

            stats.bytes_processed += outcome.size
            record = outcome.record
            if record.id in seen:
                duplicate = DuplicateDocument(
                    f"Duplicate id '{record.id}' (already defined by {seen[record.id]})",
                    path,
                    {"id": record.id},
                )
                LOGGER.warning("Skipping %s: %s", path, duplicate.message)
                warnings.append(duplicate.to_warning())
                continue
            seen[record.id] = path
            entries.append((record, outcome.terms))

        index = Index.build(entries)
        stats.documents_indexed = len(index)
        stats.duration_ms = (time.perf_counter() - started) * 1000
        LOGGER.info(
            "Indexed %d documents from %s (%d skipped)", len(index), root, len(warnings)
        )
        return ScanResult(index=index, warnings=warnings, stats=stats)

    def _load_safely(self, root: Path, path: Path) -> _Loaded | DocumentError:
        try:
            return self._load(root, path)
        except DocumentError as exc:
            LOGGER.warning("Skipping %s: %s", path, exc.message)
            return exc
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Skipping %s: %s", path, exc)
            return ParseFailure(f"Unreadable document: {exc}", path)

    def _load(self, root: Path, path: Path) -> _Loaded:
        raw = path.read_bytes()
        text = raw.decode("utf-8")
        block, body = split_front_matter(text)
        if block is None:
            raise ParseFailure("Missing YAML front-matter", path)
        if len(block.encode("utf-8")) > MAX_FRONT_MATTER_SIZE:
            raise ParseFailure(
                "Front-matter too large", path, {"limit": MAX_FRONT_MATTER_SIZE}
            )
        try:
            header = yaml.safe_load(block)
        except yaml.YAMLError as exc:
            raise ParseFailure(f"Invalid YAML front-matter: {exc}", path) from exc
        if not isinstance(header, dict):
            raise ParseFailure("Front-matter is not a mapping", path)
        if not header.get("id"):
            raise ParseFailure("Front-matter has no 'id'", path)

        relative = path.relative_to(root)
        segment = category_for_path(relative)
        if segment is None:
            raise UnknownCategory("Path has no category segment", path)
        try:
            category = Category(segment)
        except ValueError:
            raise UnknownCategory(
                f"Unrecognised category '{segment}'", path, {"category": segment}
            ) from None

        title = (
            _as_text(header["title"]) if header.get("title") else None
        ) or extract_title(body) or path.stem.replace("-", " ").capitalize()
        description = (
            _as_text(header["description"]) if header.get("description") else content_preview(body)
        )
        if header.get("last_modified"):
            last_modified = _as_text(header["last_modified"])
        else:
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            last_modified = mtime.date().isoformat()

        doc_id = _as_text(header["id"])
        digest = compute_digest(raw)
        record = DocumentRecord(
            id=doc_id,
            category=category,
            title=title,
            description=description,
            path=path,
            content_digest=digest,
            last_modified=last_modified,
            kind=kind_for_path(relative),
            size=len(raw),
        )
        return _Loaded(record=record, terms=self._terms_for(record, body), size=len(raw))

    def _terms_for(self, record: DocumentRecord, body: str) -> DocumentTerms:
        if self.term_cache is not None:
            cached = self.term_cache.load(record.content_digest)
            if cached is not None:
                return cached

        terms = DocumentTerms(
            title=term_frequencies(record.title),
            body=term_frequencies(f"{record.description}\n{body}"),
            ident=term_frequencies(record.id),
        )
        if self.term_cache is not None:
            self.term_cache.save(record.content_digest, terms)
        return terms

