"""Immutable in-memory index over scanned documents."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterable, Mapping

from leyline.models import Category, DocumentRecord


@dataclass(frozen=True, slots=True)
class DocumentTerms:
    """Term frequencies of one document, split by where they occur."""

    title: Mapping[str, int]
    body: Mapping[str, int]
    ident: Mapping[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"title": dict(self.title), "body": dict(self.body), "id": dict(self.ident)}

    @classmethod
    def from_dict(cls, data: Mapping) -> "DocumentTerms":
        return cls(
            title={str(k): int(v) for k, v in data["title"].items()},
            body={str(k): int(v) for k, v in data["body"].items()},
            ident={str(k): int(v) for k, v in data.get("id", {}).items()},
        )


def _empty_mapping() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True, slots=True)
class Index:
    """One consistent snapshot of the by-category, by-id and token views.

    Always built wholesale through :meth:`build`; never patched in place.
    """

    by_category: Mapping[Category, tuple[DocumentRecord, ...]] = field(default_factory=_empty_mapping)
    by_id: Mapping[str, DocumentRecord] = field(default_factory=_empty_mapping)
    tokens: Mapping[str, frozenset[str]] = field(default_factory=_empty_mapping)
    terms: Mapping[str, DocumentTerms] = field(default_factory=_empty_mapping)
    built_at: datetime | None = None

    @classmethod
    def empty(cls) -> "Index":
        return cls()

    @classmethod
    def build(cls, entries: Iterable[tuple[DocumentRecord, DocumentTerms]]) -> "Index":
        """Build all views from (record, terms) pairs with unique ids."""
        grouped: dict[Category, list[DocumentRecord]] = {}
        by_id: dict[str, DocumentRecord] = {}
        postings: dict[str, set[str]] = {}
        terms: dict[str, DocumentTerms] = {}

        for record, doc_terms in entries:
            if record.id in by_id:
                raise ValueError(f"Duplicate document id: {record.id}")
            by_id[record.id] = record
            terms[record.id] = doc_terms
            grouped.setdefault(record.category, []).append(record)
            for token in set(doc_terms.title) | set(doc_terms.body) | set(doc_terms.ident):
                postings.setdefault(token, set()).add(record.id)

        by_category = {
            category: tuple(sorted(grouped[category], key=lambda doc: doc.id))
            for category in Category
            if category in grouped
        }
        return cls(
            by_category=MappingProxyType(by_category),
            by_id=MappingProxyType(by_id),
            tokens=MappingProxyType({token: frozenset(ids) for token, ids in postings.items()}),
            terms=MappingProxyType(terms),
            built_at=datetime.now(timezone.utc),
        )

    def __len__(self) -> int:
        return len(self.by_id)

    def categories(self) -> list[Category]:
        return [category for category in Category if self.by_category.get(category)]

    def documents_for(self, category: Category) -> tuple[DocumentRecord, ...]:
        return self.by_category.get(category, ())

    def vocabulary(self) -> list[str]:
        return sorted(self.tokens)

    def estimate_memory(self) -> int:
        """Rough byte footprint of the records, postings and term tables."""
        total = 0
        for record in self.by_id.values():
            total += sys.getsizeof(record)
            total += sum(
                sys.getsizeof(value)
                for value in (
                    record.id,
                    record.title,
                    record.description,
                    str(record.path),
                    record.content_digest,
                    record.last_modified,
                )
            )
        for token, ids in self.tokens.items():
            total += sys.getsizeof(token) + sys.getsizeof(ids)
        for doc_terms in self.terms.values():
            total += sum(
                sys.getsizeof(table) for table in (doc_terms.title, doc_terms.body, doc_terms.ident)
            )
        return total
