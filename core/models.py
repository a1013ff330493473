"""
core/models.py — Single source of truth for ALL data models across the project.
Every package imports from here. No package defines its own models.

Python field names are snake_case; JSON aliases match the wire format of the
reference dataset (hpo_data.json) and of the LLM's extraction output.
"""

from __future__ import annotations

import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


MatchKind = Literal["exact_cn", "fuzzy_cn", "exact_en", "fuzzy_en", "none"]

_INT_RE = re.compile(r"-?\d+")


# ---------------------------------------------------------------------------
# Reference dataset
# ---------------------------------------------------------------------------

class ReferenceRecord(BaseModel):
    """One canonical HPO term from hpo_data.json."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="hpoId", pattern=r"^HP:\d{7}$")   # e.g. "HP:0001945"
    name_en: str = Field(alias="nameEn", min_length=1)       # e.g. "Fever"
    name_cn: str = Field(alias="nameCn", min_length=1)       # e.g. "发热"
    definition_en: str = Field(default="", alias="definition")
    definition_cn: str = Field(default="", alias="definitionZh")

    @field_validator("definition_en", "definition_cn", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v


# ---------------------------------------------------------------------------
# LLM extraction candidate (untrusted input)
# ---------------------------------------------------------------------------

class ExtractionCandidate(BaseModel):
    """One phenotype claim from the text-generation service.

    Every field is optional at parse time; the pipeline decides what is
    required. ``claimed_id`` is kept for audit only.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    claimed_id: Optional[str] = Field(default=None, alias="hpoId")
    name_cn: Optional[str] = Field(default=None, alias="nameCn")
    name_en: Optional[str] = Field(default=None, alias="nameEn")
    matched_text: Optional[str] = Field(default=None, alias="matchedText")
    start_index: Optional[int] = Field(default=None, alias="startIndex")
    end_index: Optional[int] = Field(default=None, alias="endIndex")
    claimed_confidence: Optional[float] = Field(default=None, alias="confidence")

    @field_validator("claimed_id", "name_cn", "name_en", "matched_text", mode="before")
    @classmethod
    def _stringify(cls, v):
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, (int, float)):
            return str(v)
        return None

    @field_validator("start_index", "end_index", mode="before")
    @classmethod
    def _loose_index(cls, v):
        if isinstance(v, bool):
            return None
        if isinstance(v, float):
            return int(v) if v.is_integer() else None
        if isinstance(v, str):
            return int(v) if _INT_RE.fullmatch(v.strip()) else None
        return v if isinstance(v, int) else None

    @field_validator("claimed_confidence", mode="before")
    @classmethod
    def _loose_confidence(cls, v):
        if isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return v
        if isinstance(v, str):
            try:
                return float(v)
            except ValueError:
                return None
        return None


# ---------------------------------------------------------------------------
# Calibrator output
# ---------------------------------------------------------------------------

class CalibrationOutcome(BaseModel):
    """Result of resolving one candidate against the reference index."""
    matched: bool
    record: Optional[ReferenceRecord] = None
    match_kind: MatchKind = "none"
    similarity: Optional[float] = None
    reject_reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Pipeline output
# ---------------------------------------------------------------------------

class ResolvedEntry(BaseModel):
    """One verified phenotype occurrence in the source document."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="hpoId")
    name_en: str = Field(alias="nameEn")
    name_cn: str = Field(alias="nameCn")
    confidence: int = Field(ge=0, le=100)
    matched_text: str = Field(alias="matchedText")
    start_index: Optional[int] = Field(default=None, alias="startIndex")
    end_index: Optional[int] = Field(default=None, alias="endIndex")


class RejectedCandidate(BaseModel):
    """A candidate dropped by validation or calibration (audit only)."""
    claimed_id: Optional[str] = None
    name_cn: Optional[str] = None
    name_en: Optional[str] = None
    reason: str


class CalibrationRecord(BaseModel):
    """Per-candidate calibration log line (audit only)."""
    claimed_id: Optional[str] = None
    resolved_id: Optional[str] = None
    name_cn: Optional[str] = None
    name_en: Optional[str] = None
    match_kind: MatchKind = "none"
    similarity: Optional[float] = None


class SpanCorrection(BaseModel):
    """Span indices replaced during reconciliation. ``after`` is None when the
    matched text does not occur in the document."""
    hpo_id: str
    matched_text: str
    before: tuple[Optional[int], Optional[int]]
    after: Optional[tuple[int, int]] = None


class DuplicateResolution(BaseModel):
    """Outcome of one id collision during deduplication."""
    hpo_id: str
    kept: ResolvedEntry
    removed: ResolvedEntry


class ConversionResult(BaseModel):
    """The complete output of one note → HPO conversion."""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = ""
    original_text: str = Field(alias="originalText")
    entries: list[ResolvedEntry] = Field(default_factory=list, alias="hpoEntries")
    process_time_ms: int = Field(default=0, alias="processTime")
    rejected: list[RejectedCandidate] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Interactive search
# ---------------------------------------------------------------------------

class SearchHit(BaseModel):
    """One ranked row for autocomplete / exact-match lookup."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="hpoId")
    name_en: str = Field(alias="nameEn")
    name_cn: str = Field(alias="nameCn")
    definition_en: str = Field(default="", alias="definition")
    definition_cn: str = Field(default="", alias="definitionZh")
    score: float = 1.0                                    # 0..1, higher is closer
    label: str = ""                                       # "HP:x - 中文 (English)"

    @classmethod
    def from_record(cls, record: ReferenceRecord, score: float = 1.0) -> "SearchHit":
        return cls(
            id=record.id,
            name_en=record.name_en,
            name_cn=record.name_cn,
            definition_en=record.definition_en,
            definition_cn=record.definition_cn,
            score=score,
            label=f"{record.id} - {record.name_cn} ({record.name_en})",
        )


class SearchResponse(BaseModel):
    """Search API payload."""
    results: list[SearchHit] = Field(default_factory=list)
    total: int = 0
    query: str = ""


# ---------------------------------------------------------------------------
# Generation-service configuration
# ---------------------------------------------------------------------------

class LLMConfig(BaseModel):
    """Credentials for the text-generation service."""
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model_name: str = ""


class ServiceCheckResult(BaseModel):
    """Outcome of a connectivity check against the generation service."""
    success: bool
    error_type: Optional[
        Literal["invalid_url", "auth", "timeout", "network", "not_found", "server", "unknown"]
    ] = None
    message: Optional[str] = None
