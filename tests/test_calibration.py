"""
tests/test_calibration.py — Name-based calibration and span reconciliation.
"""

from __future__ import annotations

import random

import pytest

from core.reference_index import ReferenceIndex
from tools.calibrate import REASON_NO_MATCH, REASON_NO_NAME, calibrate, find_best_match
from tools.span_locator import reconcile_span, span_is_valid


# ═══════════════════════════════════════════════════════════════════════════
# 1. calibrate()
# ═══════════════════════════════════════════════════════════════════════════


class TestCalibrate:
    def test_exact_cn(self, ready_index):
        out = calibrate(ready_index, "发热", "Fever")
        assert out.matched
        assert out.record.id == "HP:0001945"
        assert out.match_kind == "exact_cn"
        assert out.similarity == 1.0
        assert out.reject_reason is None

    def test_exact_cn_ignores_surrounding_whitespace(self, ready_index):
        out = calibrate(ready_index, "  咳嗽 ")
        assert out.record.id == "HP:0012735"
        assert out.match_kind == "exact_cn"

    def test_fuzzy_cn(self, ready_index):
        out = calibrate(ready_index, "呼吸困难症")
        assert out.matched
        assert out.record.id == "HP:0002094"
        assert out.match_kind == "fuzzy_cn"
        assert out.similarity == pytest.approx(0.8)

    def test_short_cn_synonym_does_not_fuzzy_match(self, ready_index):
        # two-character names only ever match exactly
        out = calibrate(ready_index, "发烧")
        assert not out.matched
        assert out.reject_reason == REASON_NO_MATCH

    def test_falls_back_to_english(self, ready_index):
        out = calibrate(ready_index, "完全不存在的词", "Headache")
        assert out.record.id == "HP:0002315"
        assert out.match_kind == "exact_en"

    def test_fuzzy_en(self, ready_index):
        out = calibrate(ready_index, "", "Headaches")
        assert out.record.id == "HP:0002315"
        assert out.match_kind == "fuzzy_en"
        assert out.similarity == pytest.approx(1 - 1 / 9)

    def test_no_name_provided(self, ready_index):
        out = calibrate(ready_index, "  ", None, "HP:0001945")
        assert not out.matched
        assert out.match_kind == "none"
        assert out.reject_reason == REASON_NO_NAME

    def test_no_match_found(self, ready_index):
        out = calibrate(ready_index, "完全不存在的词", "Entirely unknown", "HP:0001945")
        assert not out.matched
        assert out.record is None
        assert out.reject_reason == REASON_NO_MATCH

    def test_claimed_id_is_not_trusted(self, ready_index):
        out = calibrate(ready_index, "头痛", "Headache", claimed_id="HP:0001945")
        assert out.record.id == "HP:0002315"

    def test_threshold_is_configurable(self, ready_index):
        assert not calibrate(ready_index, "呼吸困难症", threshold=0.9).matched
        assert calibrate(ready_index, "呼吸困难症", threshold=0.8).matched

    def test_resolution_independent_of_claimed_id(self, ready_index):
        names = [("发热", "Fever"), ("呼吸困难症", None), ("", "Headaches"), ("咳嗽", "Cough")]
        ids = [r.id for r in ready_index.records] + ["HP:9999999", None, "garbage"]
        rng = random.Random(7)

        baseline = [calibrate(ready_index, cn, en).record.id for cn, en in names]
        for _ in range(5):
            corrupted = [
                calibrate(ready_index, cn, en, rng.choice(ids)).record.id for cn, en in names
            ]
            assert corrupted == baseline


class TestFindBestMatch:
    def test_first_record_wins_ties(self):
        index = ReferenceIndex.from_records([
            {"hpoId": "HP:0000001", "nameEn": "abcdx", "nameCn": "甲"},
            {"hpoId": "HP:0000002", "nameEn": "abcdy", "nameCn": "乙"},
        ])
        record, sim = find_best_match(index, "abcdz", "name_en", threshold=0.5)
        assert record.id == "HP:0000001"
        assert sim == pytest.approx(0.8)

    def test_exact_short_circuits_over_earlier_fuzzy(self):
        index = ReferenceIndex.from_records([
            {"hpoId": "HP:0000001", "nameEn": "Headaches", "nameCn": "甲"},
            {"hpoId": "HP:0000002", "nameEn": "Headache", "nameCn": "乙"},
        ])
        record, sim = find_best_match(index, "Headache", "name_en", threshold=0.75)
        assert record.id == "HP:0000002"
        assert sim == 1.0

    def test_blank_query(self, ready_index):
        assert find_best_match(ready_index, "   ", "name_cn") is None

    def test_below_threshold(self, ready_index):
        assert find_best_match(ready_index, "Nothing like it", "name_en", 0.75) is None


# ═══════════════════════════════════════════════════════════════════════════
# 2. Span reconciliation
# ═══════════════════════════════════════════════════════════════════════════


class TestReconcileSpan:
    TEXT = "患者发热三天，伴咳嗽"

    def test_correct_span_unchanged(self):
        assert reconcile_span(self.TEXT, "发热", 2, 4) == (2, 4)

    def test_wrong_span_relocated(self):
        assert reconcile_span(self.TEXT, "发热", 0, 0) == (2, 4)

    def test_missing_span_located(self):
        assert reconcile_span(self.TEXT, "咳嗽", None, None) == (8, 10)

    def test_partial_span_located(self):
        assert reconcile_span(self.TEXT, "咳嗽", 8, None) == (8, 10)

    def test_out_of_range_span_relocated(self):
        assert reconcile_span(self.TEXT, "咳嗽", 8, 99) == (8, 10)
        assert reconcile_span(self.TEXT, "发热", -2, 0) == (2, 4)

    def test_not_found(self):
        assert reconcile_span(self.TEXT, "头痛", 0, 2) == (None, None)

    def test_first_occurrence_only(self):
        text = "发热，退热后再次发热"
        assert reconcile_span(text, "发热", 3, 4) == (0, 2)

    def test_valid_later_occurrence_kept(self):
        text = "发热，退热后再次发热"
        assert reconcile_span(text, "发热", 8, 10) == (8, 10)

    def test_idempotent(self):
        start, end = reconcile_span(self.TEXT, "咳嗽", None, None)
        assert reconcile_span(self.TEXT, "咳嗽", start, end) == (start, end)

    def test_span_is_valid(self):
        assert span_is_valid(self.TEXT, "发热", 2, 4)
        assert not span_is_valid(self.TEXT, "发热", 4, 2)
        assert not span_is_valid(self.TEXT, "发热", None, 4)
