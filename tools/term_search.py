"""
tools/term_search.py — Interactive HPO term search (autocomplete + exact lookup).

Independent of the calibrator. Fuzzy search is looser and spans five fields
with weights; exact lookup mirrors the "exact match" page: id, then English
name, then Chinese name.

Scoring uses rapidfuzz's ``partial_ratio``, so a query matches anywhere in a
field. The threshold is a distance: 0 accepts only perfect substring
matches, 1 accepts everything.
"""

from __future__ import annotations

import logging
from typing import Iterator, Literal, Optional

from rapidfuzz import fuzz, process, utils

from core.config import SEARCH_LIMIT, SEARCH_THRESHOLD
from core.models import ReferenceRecord, SearchHit, SearchResponse
from core.reference_index import ReferenceIndex

logger = logging.getLogger(__name__)

SearchMode = Literal["fuzzy", "exact"]

# (record attribute, weight)
SEARCH_FIELDS: tuple[tuple[str, float], ...] = (
    ("id", 2.0),
    ("name_cn", 1.5),
    ("name_en", 1.0),
    ("definition_cn", 0.5),
    ("definition_en", 0.3),
)


class SearchResults:
    """Ranked hits for one query.

    Nothing is scored until the first iteration. Every ``iter()`` starts
    from the top again.
    """

    def __init__(self, owner: "FuzzySearchIndex", query: str, limit: int) -> None:
        self._owner = owner
        self.query = query
        self.limit = limit
        self._hits: Optional[list[SearchHit]] = None

    def _materialise(self) -> list[SearchHit]:
        if self._hits is None:
            self._hits = self._owner._rank(self.query, self.limit)
        return self._hits

    def __iter__(self) -> Iterator[SearchHit]:
        return iter(self._materialise())

    def __len__(self) -> int:
        return len(self._materialise())

    @property
    def evaluated(self) -> bool:
        return self._hits is not None


class FuzzySearchIndex:
    """Weighted multi-field fuzzy search over reference records."""

    def __init__(
        self,
        records: list[ReferenceRecord] | tuple[ReferenceRecord, ...],
        *,
        threshold: float = SEARCH_THRESHOLD,
        limit: int = SEARCH_LIMIT,
    ) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")
        self._records = tuple(records)
        self.threshold = threshold
        self.limit = limit
        self._max_weight = max(w for _, w in SEARCH_FIELDS)
        # One choice list per field, aligned with self._records
        self._choices: dict[str, list[str]] = {
            field: [getattr(r, field) or "" for r in self._records]
            for field, _ in SEARCH_FIELDS
        }

    @classmethod
    def from_index(cls, index: ReferenceIndex, **kwargs) -> "FuzzySearchIndex":
        index.require_ready()
        return cls(index.records, **kwargs)

    def __len__(self) -> int:
        return len(self._records)

    def search(self, query: str, limit: Optional[int] = None) -> SearchResults:
        return SearchResults(self, query or "", self.limit if limit is None else limit)

    # ------------------------------------------------------------------

    def _rank(self, query: str, limit: int) -> list[SearchHit]:
        q = query.strip()
        if not q or limit <= 0 or not self._records:
            return []

        cutoff = (1.0 - self.threshold) * 100
        best: dict[int, float] = {}

        for field, weight in SEARCH_FIELDS:
            matches = process.extract(
                q,
                self._choices[field],
                scorer=fuzz.partial_ratio,
                processor=utils.default_process,
                limit=None,
                score_cutoff=cutoff,
            )
            for _choice, score, idx in matches:
                if not self._choices[field][idx]:
                    continue
                weighted = (score / 100.0) * weight / self._max_weight
                if weighted > best.get(idx, -1.0):
                    best[idx] = weighted

        ranked = sorted(best.items(), key=lambda item: (-item[1], item[0]))[:limit]
        logger.debug("Fuzzy search %r: %d candidates, %d returned", q, len(best), len(ranked))
        return [SearchHit.from_record(self._records[i], round(score, 4)) for i, score in ranked]


# ── Exact lookup ────────────────────────────────────────────────────────


def exact_lookup(index: ReferenceIndex, keyword: str) -> Optional[ReferenceRecord]:
    """
    Find one record by id (case-insensitive), then English name
    (case-insensitive), then Chinese name (exact).
    """
    index.require_ready()
    kw = (keyword or "").strip()
    if not kw:
        return None

    record = index.get_by_id(kw.upper())
    if record is not None:
        return record

    folded = kw.lower()
    for rec in index.records:
        if rec.id.lower() == folded:
            return rec
    for rec in index.records:
        if rec.name_en.lower() == folded:
            return rec
    for rec in index.records:
        if rec.name_cn == kw:
            return rec
    return None


def search_terms(
    index: ReferenceIndex,
    query: str,
    mode: SearchMode = "fuzzy",
    limit: int = SEARCH_LIMIT,
    *,
    fuzzy: Optional[FuzzySearchIndex] = None,
) -> SearchResponse:
    """
    Run a search and wrap the hits as a :class:`SearchResponse`.

    Parameters
    ----------
    index : ReferenceIndex
        Loaded reference index.
    query : str
        User query. Blank queries return no results.
    mode : {"fuzzy", "exact"}
        Fuzzy ranked search or single exact lookup.
    limit : int
        Maximum hits for fuzzy mode.
    fuzzy : FuzzySearchIndex, optional
        A prebuilt search index to reuse across calls.
    """
    index.require_ready()
    if not (query or "").strip():
        return SearchResponse(results=[], total=0, query=query or "")

    if mode == "exact":
        record = exact_lookup(index, query)
        hits = [SearchHit.from_record(record, 1.0)] if record else []
    elif mode == "fuzzy":
        searcher = fuzzy or FuzzySearchIndex.from_index(index)
        hits = list(searcher.search(query, limit=limit))
    else:
        raise ValueError(f"Unknown search mode: {mode!r}")

    return SearchResponse(results=hits, total=len(hits), query=query)
