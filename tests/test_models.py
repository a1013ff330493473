"""
tests/test_models.py — Wire-format parsing of reference records and LLM candidates.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.models import ExtractionCandidate, ReferenceRecord, ResolvedEntry, SearchHit


class TestReferenceRecord:
    def test_aliases(self):
        rec = ReferenceRecord.model_validate({
            "hpoId": "HP:0001945", "nameEn": "Fever", "nameCn": "发热",
            "definition": "Elevated temperature.", "definitionZh": "体温升高。",
        })
        assert (rec.id, rec.name_en, rec.name_cn) == ("HP:0001945", "Fever", "发热")
        assert rec.definition_cn == "体温升高。"

    def test_missing_definitions_default_empty(self):
        rec = ReferenceRecord.model_validate({"hpoId": "HP:0001945", "nameEn": "Fever", "nameCn": "发热"})
        assert rec.definition_en == ""
        assert rec.definition_cn == ""

    @pytest.mark.parametrize("bad", [
        {"hpoId": "HP:123", "nameEn": "Fever", "nameCn": "发热"},
        {"hpoId": "HP:0001945", "nameEn": "", "nameCn": "发热"},
        {"hpoId": "HP:0001945", "nameEn": "Fever"},
    ])
    def test_invalid(self, bad):
        with pytest.raises(ValidationError):
            ReferenceRecord.model_validate(bad)

    def test_frozen(self):
        rec = ReferenceRecord(id="HP:0001945", name_en="Fever", name_cn="发热")
        with pytest.raises(ValidationError):
            rec.name_en = "Pyrexia"


class TestExtractionCandidate:
    def test_aliases_and_extra_keys(self):
        cand = ExtractionCandidate.model_validate({
            "hpoId": "HP:0001259", "nameCn": "发热", "nameEn": "Fever",
            "matchedText": "发热", "startIndex": 2, "endIndex": 4, "confidence": 0.9,
            "reasoning": "ignored",
        })
        assert cand.claimed_id == "HP:0001259"
        assert (cand.start_index, cand.end_index) == (2, 4)
        assert cand.claimed_confidence == 0.9

    @pytest.mark.parametrize("raw, expected", [
        ("7", 7), (" -3 ", -3), (4.0, 4), (4.5, None), ("--3", None), ("abc", None),
        (True, None), (None, None), ([1], None),
    ])
    def test_loose_indices(self, raw, expected):
        assert ExtractionCandidate.model_validate({"startIndex": raw}).start_index == expected

    @pytest.mark.parametrize("raw, expected", [
        (0.5, 0.5), ("0.75", 0.75), ("high", None), (False, None), ({}, None),
    ])
    def test_loose_confidence(self, raw, expected):
        assert ExtractionCandidate.model_validate({"confidence": raw}).claimed_confidence == expected

    def test_non_string_names(self):
        cand = ExtractionCandidate.model_validate({"nameCn": 123, "matchedText": ["x"]})
        assert cand.name_cn == "123"
        assert cand.matched_text is None


class TestOutputModels:
    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            ResolvedEntry(id="HP:0001945", name_en="Fever", name_cn="发热",
                          confidence=101, matched_text="发热")

    def test_search_hit_label(self):
        rec = ReferenceRecord(id="HP:0002315", name_en="Headache", name_cn="头痛")
        hit = SearchHit.from_record(rec, 0.5)
        assert hit.label == "HP:0002315 - 头痛 (Headache)"
        assert hit.model_dump(by_alias=True)["hpoId"] == "HP:0002315"
