"""
tests/test_term_search.py — Fuzzy search, exact lookup and the search facade.
"""

from __future__ import annotations

import pytest

from core.errors import IndexNotReady
from core.reference_index import ReferenceIndex
from tools.term_search import FuzzySearchIndex, exact_lookup, search_terms


@pytest.fixture
def fuzzy(ready_index) -> FuzzySearchIndex:
    return FuzzySearchIndex.from_index(ready_index)


# ═══════════════════════════════════════════════════════════════════════════
# 1. FuzzySearchIndex
# ═══════════════════════════════════════════════════════════════════════════


class TestFuzzySearch:
    @pytest.mark.parametrize("query", ["", "   "])
    def test_empty_query(self, fuzzy, query):
        assert list(fuzzy.search(query)) == []

    def test_id_ranks_highest(self, fuzzy):
        hits = list(fuzzy.search("HP:0001945"))
        assert hits[0].id == "HP:0001945"
        assert hits[0].score == pytest.approx(1.0)

    def test_chinese_name(self, fuzzy):
        hits = list(fuzzy.search("发热"))
        assert [h.id for h in hits] == ["HP:0001945"]
        assert hits[0].score == pytest.approx(0.75)
        assert hits[0].label == "HP:0001945 - 发热 (Fever)"

    def test_case_insensitive_english(self, fuzzy):
        hits = list(fuzzy.search("fever"))
        assert hits[0].id == "HP:0001945"

    def test_substring_anywhere(self, fuzzy):
        hits = list(fuzzy.search("困难"))
        assert hits[0].id == "HP:0002094"

    def test_definition_match(self, fuzzy):
        hits = list(fuzzy.search("labored breathing"))
        assert "HP:0002094" in [h.id for h in hits]

    def test_scores_are_descending(self, fuzzy):
        hits = list(fuzzy.search("pain"))
        scores = [h.score for h in hits]
        assert scores == sorted(scores, reverse=True)

    def test_limit(self, ready_index):
        fuzzy = FuzzySearchIndex.from_index(ready_index, threshold=1.0)
        assert len(list(fuzzy.search("x", limit=3))) == 3
        assert len(list(fuzzy.search("x", limit=0))) == 0

    def test_default_limit(self, ready_index):
        fuzzy = FuzzySearchIndex.from_index(ready_index, threshold=1.0, limit=2)
        assert len(fuzzy.search("x")) == 2

    def test_threshold_is_a_distance(self, ready_index):
        strict = FuzzySearchIndex.from_index(ready_index, threshold=0.0)
        loose = FuzzySearchIndex.from_index(ready_index, threshold=0.5)
        assert list(strict.search("发烧")) == []
        assert "HP:0001945" in [h.id for h in loose.search("发烧")]

    def test_invalid_threshold(self, ready_index):
        with pytest.raises(ValueError):
            FuzzySearchIndex(ready_index.records, threshold=1.5)

    def test_results_are_lazy_and_restartable(self, fuzzy):
        results = fuzzy.search("发热")
        assert not results.evaluated

        first = list(results)
        assert results.evaluated
        assert list(results) == first
        assert [h.id for h in results] == [h.id for h in first]

    def test_from_unloaded_index_raises(self, sample_payload):
        async def fetch():
            return sample_payload

        with pytest.raises(IndexNotReady):
            FuzzySearchIndex.from_index(ReferenceIndex(fetch=fetch))


# ═══════════════════════════════════════════════════════════════════════════
# 2. exact_lookup
# ═══════════════════════════════════════════════════════════════════════════


class TestExactLookup:
    def test_by_id_case_insensitive(self, ready_index):
        assert exact_lookup(ready_index, "hp:0001945").name_en == "Fever"

    def test_by_english_name_case_insensitive(self, ready_index):
        assert exact_lookup(ready_index, " HEADACHE ").id == "HP:0002315"

    def test_by_chinese_name(self, ready_index):
        assert exact_lookup(ready_index, "呼吸困难").id == "HP:0002094"

    def test_partial_does_not_match(self, ready_index):
        assert exact_lookup(ready_index, "呼吸") is None
        assert exact_lookup(ready_index, "") is None

    def test_id_takes_priority_over_names(self):
        index = ReferenceIndex.from_records([
            {"hpoId": "HP:0000002", "nameEn": "HP:0000001", "nameCn": "乙"},
            {"hpoId": "HP:0000001", "nameEn": "First", "nameCn": "甲"},
        ])
        assert exact_lookup(index, "HP:0000001").name_en == "First"


# ═══════════════════════════════════════════════════════════════════════════
# 3. search_terms
# ═══════════════════════════════════════════════════════════════════════════


class TestSearchTerms:
    def test_exact_mode(self, ready_index):
        response = search_terms(ready_index, "Fever", mode="exact")
        assert response.total == 1
        assert response.query == "Fever"
        assert response.results[0].id == "HP:0001945"

    def test_exact_mode_no_hit(self, ready_index):
        response = search_terms(ready_index, "Pyrexia", mode="exact")
        assert response.total == 0
        assert response.results == []

    def test_fuzzy_mode(self, ready_index):
        response = search_terms(ready_index, "咳嗽")
        assert response.results[0].id == "HP:0012735"
        assert response.total == len(response.results)

    def test_reuses_prebuilt_index(self, ready_index, fuzzy):
        response = search_terms(ready_index, "头痛", fuzzy=fuzzy, limit=1)
        assert [h.id for h in response.results] == ["HP:0002315"]

    def test_blank_query(self, ready_index):
        assert search_terms(ready_index, "  ").total == 0

    def test_unknown_mode(self, ready_index):
        with pytest.raises(ValueError):
            search_terms(ready_index, "x", mode="regex")
