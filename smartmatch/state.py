"""
smartmatch/state.py — Pipeline state dataclass.

Accumulates results as each candidate moves through the calibration
pipeline. This is the single object threaded through ``calibrate_batch``;
every step reads what it needs and writes its output back.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from core.models import (
    CalibrationRecord,
    DuplicateResolution,
    RejectedCandidate,
    ResolvedEntry,
    SpanCorrection,
)


@dataclass
class PipelineState:
    """Mutable accumulator for all intermediate and final pipeline data."""

    # ── Identity & raw input ────────────────────────────────────────────
    session_id: str = ""
    original_text: str = ""
    raw_count: int = 0

    # ── Audit trail ─────────────────────────────────────────────────────
    calibration_log: list[CalibrationRecord] = field(default_factory=list)
    rejected: list[RejectedCandidate] = field(default_factory=list)
    span_corrections: list[SpanCorrection] = field(default_factory=list)
    duplicates: list[DuplicateResolution] = field(default_factory=list)

    # ── Output (insertion order = first appearance of each id) ──────────
    entries_by_id: dict[str, ResolvedEntry] = field(default_factory=dict)

    # ── Helpers ─────────────────────────────────────────────────────────

    @property
    def entries(self) -> list[ResolvedEntry]:
        return list(self.entries_by_id.values())

    def match_stats(self) -> dict[str, int]:
        """Count calibration outcomes by match kind."""
        return dict(Counter(r.match_kind for r in self.calibration_log))

    def snapshot(self) -> dict:
        """Return a plain-dict snapshot suitable for JSON serialisation."""
        return {
            "session_id": self.session_id,
            "raw_count": self.raw_count,
            "calibration_log": [r.model_dump() for r in self.calibration_log],
            "rejected": [r.model_dump() for r in self.rejected],
            "span_corrections": [c.model_dump() for c in self.span_corrections],
            "duplicates": [d.model_dump(by_alias=True) for d in self.duplicates],
            "entries": [e.model_dump(by_alias=True) for e in self.entries],
            "match_stats": self.match_stats(),
        }
