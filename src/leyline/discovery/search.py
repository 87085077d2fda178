"""Free-text search over an Index."""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import List

from leyline.discovery.index import DocumentTerms, Index
from leyline.models import DocumentRecord
from leyline.utils.text import tokenize

# Any title hit lands in (0.5, 1]; body-only hits stay in (0, 0.5).
TITLE_FLOOR = 0.5
TITLE_COVERAGE_WEIGHT = 0.7
BODY_STRENGTH_WEIGHT = 0.3
# Terms found only in the document id count for half a title term.
ID_HIT_WEIGHT = 0.5


@dataclass(slots=True)
class SearchResult:
    record: DocumentRecord
    score: float
    matched_terms: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            **self.record.to_dict(),
            "score": round(self.score, 4),
            "matched_terms": list(self.matched_terms),
        }


def query_terms(query: str) -> list[str]:
    """Unique query tokens in first-seen order."""
    return list(dict.fromkeys(tokenize(query or "")))


def relevance(terms: DocumentTerms, query: list[str]) -> float:
    """Score one document against the query terms, normalised to [0, 1].

    Title matches always outrank body-only matches: a body-only document can
    approach but never reach ``TITLE_FLOOR``. Id tokens lift a document above
    the floor too, but a term matched only through the id adds
    ``ID_HIT_WEIGHT`` of a title term to the coverage.
    """
    if not query:
        return 0.0
    title_hits = sum(1 for term in query if terms.title.get(term))
    id_hits = sum(1 for term in query if terms.ident.get(term) and not terms.title.get(term))
    body_strength = sum(
        terms.body.get(term, 0) / (terms.body.get(term, 0) + 1) for term in query
    ) / len(query)

    if title_hits or id_hits:
        coverage = (title_hits + ID_HIT_WEIGHT * id_hits) / len(query)
        score = TITLE_FLOOR + (1 - TITLE_FLOOR) * (
            TITLE_COVERAGE_WEIGHT * coverage + BODY_STRENGTH_WEIGHT * body_strength
        )
        return min(score, 1.0)
    return TITLE_FLOOR * body_strength


def rank(index: Index, query: str, *, limit: int | None = None) -> List[SearchResult]:
    """Return matching documents ordered by descending score, then id."""
    terms = query_terms(query)
    if not terms:
        return []

    candidates: set[str] = set()
    for term in terms:
        candidates |= index.tokens.get(term, frozenset())

    results: List[SearchResult] = []
    for doc_id in candidates:
        doc_terms = index.terms[doc_id]
        score = relevance(doc_terms, terms)
        if score <= 0:
            continue
        matched = tuple(
            t
            for t in terms
            if doc_terms.title.get(t) or doc_terms.ident.get(t) or doc_terms.body.get(t)
        )
        results.append(SearchResult(record=index.by_id[doc_id], score=score, matched_terms=matched))

    results.sort(key=lambda result: (-result.score, result.record.id))
    if limit is not None:
        results = results[: max(limit, 0)]
    return results


def suggest_corrections(index: Index, query: str, *, limit: int = 3) -> List[str]:
    """Suggest vocabulary terms close to the misspelled query terms."""
    vocabulary = index.vocabulary()
    if not vocabulary:
        return []
    suggestions: List[str] = []
    for term in query_terms(query):
        if term in index.tokens:
            continue
        for match in difflib.get_close_matches(term, vocabulary, n=limit, cutoff=0.75):
            if match not in suggestions:
                suggestions.append(match)
    return suggestions[:limit]
