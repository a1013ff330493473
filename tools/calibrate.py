"""
tools/calibrate.py — Resolve an extraction candidate to a canonical HPO term.

Pure programmatic, no LLM calls. Identity comes from name evidence only:
Chinese name first, then English name, each by exact match or Levenshtein
similarity against the reference index. The LLM's claimed id is logged for
audit and never used to resolve.
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

from core.config import CALIBRATION_THRESHOLD
from core.models import CalibrationOutcome, ReferenceRecord
from core.reference_index import ReferenceIndex
from core.similarity import similarity

logger = logging.getLogger(__name__)

NameField = Literal["name_cn", "name_en"]

REASON_NO_NAME = "no name provided"
REASON_NO_MATCH = "no match found"


def find_best_match(
    index: ReferenceIndex,
    query: str,
    field: NameField,
    threshold: float = CALIBRATION_THRESHOLD,
) -> Optional[tuple[ReferenceRecord, float]]:
    """
    Linear scan of the index for the record whose *field* best matches *query*.

    An exact match on the trimmed query short-circuits with similarity 1.0.
    Otherwise the first record reaching the highest similarity wins.

    Returns
    -------
    (ReferenceRecord, float) or None
        The best record and its similarity, or ``None`` if the index is empty,
        the query is blank, or the best similarity is below *threshold*.
    """
    trimmed = (query or "").strip()
    if not trimmed or not index.records:
        return None

    best: Optional[ReferenceRecord] = None
    best_sim = 0.0

    for record in index.records:
        value = getattr(record, field)
        if not value:
            continue
        if value == trimmed:
            return record, 1.0
        sim = similarity(trimmed, value)
        if sim > best_sim:
            best_sim = sim
            best = record

    if best is not None and best_sim >= threshold:
        return best, best_sim
    return None


def calibrate(
    index: ReferenceIndex,
    name_cn: Optional[str],
    name_en: Optional[str] = None,
    claimed_id: Optional[str] = None,
    *,
    threshold: float = CALIBRATION_THRESHOLD,
) -> CalibrationOutcome:
    """
    Resolve one candidate by name.

    Parameters
    ----------
    index : ReferenceIndex
        A loaded index. ``DataUnavailable`` / ``IndexNotReady`` is raised
        otherwise.
    name_cn, name_en : str, optional
        Names proposed by the LLM. ``name_cn`` is tried first.
    claimed_id : str, optional
        The LLM's own id. Audit only.
    threshold : float
        Minimum similarity for a fuzzy match.
    """
    index.require_ready()

    cn = (name_cn or "").strip()
    en = (name_en or "").strip()
    log_extra = {"claimed_id": claimed_id, "name_cn": cn, "name_en": en}

    if not cn and not en:
        logger.warning("Calibration skipped: no name provided", extra=log_extra)
        return CalibrationOutcome(matched=False, reject_reason=REASON_NO_NAME)

    attempts: list[tuple[str, NameField, str]] = []
    if cn:
        attempts.append((cn, "name_cn", "cn"))
    if en:
        attempts.append((en, "name_en", "en"))

    for query, field, suffix in attempts:
        hit = find_best_match(index, query, field, threshold)
        if hit is None:
            continue
        record, sim = hit
        kind = f"exact_{suffix}" if sim == 1.0 else f"fuzzy_{suffix}"
        logger.debug(
            "Calibrated %r by %s (similarity %.3f) -> %s",
            query, kind, sim, record.id,
            extra={**log_extra, "resolved_id": record.id, "match_kind": kind, "similarity": sim},
        )
        if claimed_id and claimed_id != record.id:
            logger.info(
                "Claimed id %s incorrect for %r; resolved to %s",
                claimed_id, query, record.id,
                extra={**log_extra, "resolved_id": record.id},
            )
        return CalibrationOutcome(matched=True, record=record, match_kind=kind, similarity=sim)

    logger.warning(
        "No reference match for %r / %r (claimed id %s not used)",
        cn, en, claimed_id,
        extra=log_extra,
    )
    return CalibrationOutcome(matched=False, reject_reason=REASON_NO_MATCH)
