"""
tests/conftest.py — Shared fixtures: a small bilingual HPO reference set.
"""

from __future__ import annotations

import copy

import pytest

from core.reference_index import ReferenceIndex


SAMPLE_HPO_DATA = [
    {
        "hpoId": "HP:0001945",
        "nameEn": "Fever",
        "nameCn": "发热",
        "definition": "Body temperature elevated above the normal range.",
        "definitionZh": "体温高于正常范围。",
    },
    {
        "hpoId": "HP:0012735",
        "nameEn": "Cough",
        "nameCn": "咳嗽",
        "definition": "A sudden, audible expulsion of air from the lungs.",
        "definitionZh": "肺部空气突然有声排出。",
    },
    {
        "hpoId": "HP:0002315",
        "nameEn": "Headache",
        "nameCn": "头痛",
        "definition": "Cephalgia, or pain sensed in various parts of the head.",
        "definitionZh": "头部各处感到的疼痛。",
    },
    {
        "hpoId": "HP:0002094",
        "nameEn": "Dyspnea",
        "nameCn": "呼吸困难",
        "definition": "Difficult or labored breathing.",
        "definitionZh": "呼吸费力。",
    },
    {
        "hpoId": "HP:0001824",
        "nameEn": "Weight loss",
        "nameCn": "体重减轻",
        "definition": "Reduction in existing body weight.",
        "definitionZh": None,
    },
    {
        "hpoId": "HP:0001250",
        "nameEn": "Seizure",
        "nameCn": "癫痫发作",
        "definition": "",
        "definitionZh": "",
    },
]


@pytest.fixture
def sample_payload() -> list[dict]:
    """Wire-format reference data (fresh copy per test)."""
    return copy.deepcopy(SAMPLE_HPO_DATA)


@pytest.fixture
def ready_index(sample_payload) -> ReferenceIndex:
    """A loaded ReferenceIndex over the sample data."""
    return ReferenceIndex.from_records(sample_payload)
