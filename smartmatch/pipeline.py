"""
smartmatch/pipeline.py — Clinical note → HPO conversion orchestrator.

The CLI scripts and any embedding service call ``run_conversion``. It asks
the LLM for phenotype candidates, then hands the raw batch to
``calibrate_batch``, the deterministic core that:

1. validates each candidate's required fields,
2. re-derives the HPO id from the names (the LLM's id is never trusted),
3. reconciles the text span against the note,
4. scales confidence to 0..100,
5. de-duplicates by resolved id (strictly higher confidence wins).

Per-candidate problems are recorded on the ``PipelineState`` and never
raise. Only an unready index, missing credentials, a failed generation call
or unparseable generation output abort a conversion.
"""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from core.config import CALIBRATION_THRESHOLD, GENERATION_TIMEOUT_S, load_llm_config
from core.errors import GenerationError, MalformedGenerationOutput, NotConfigured
from core.models import (
    CalibrationRecord,
    ConversionResult,
    DuplicateResolution,
    ExtractionCandidate,
    LLMConfig,
    RejectedCandidate,
    ResolvedEntry,
    SpanCorrection,
)
from core.reference_index import ReferenceIndex
from core.session_manager import AUDIT_STEPS, SessionManager
from smartmatch.llm_client import call_llm, extract_json
from smartmatch.state import PipelineState
from tools.calibrate import calibrate
from tools.span_locator import reconcile_span

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8

REASON_MALFORMED = "malformed candidate"
REASON_MISSING_FIELDS = "missing required fields"

GenerateFn = Callable[..., Awaitable[str]]


# ── Prompt cache ────────────────────────────────────────────────────────
_PROMPT_DIR = Path(__file__).resolve().parent / "prompts"
_DOCUMENT_MARKER = "<<DOCUMENT>>"


@lru_cache(maxsize=None)
def _load_prompt(name: str) -> str:
    return (_PROMPT_DIR / name).read_text(encoding="utf-8")


def build_prompts(text: str) -> tuple[str, str]:
    """Return the ``(system, user)`` prompt pair for one clinical note."""
    system = _load_prompt("extraction_system.txt").strip()
    user = _load_prompt("extraction_user.txt").strip().replace(_DOCUMENT_MARKER, text)
    return system, user


# ── Session helper ──────────────────────────────────────────────────────


def _safe_session(method: Callable, *args: Any, **kwargs: Any) -> None:
    """Fire-and-forget a SessionManager method; auditing is never fatal."""
    try:
        method(*args, **kwargs)
    except Exception:
        logger.debug(
            "SessionManager call failed: %s", getattr(method, "__name__", method), exc_info=True
        )


# ── Small pure helpers ──────────────────────────────────────────────────


def scale_confidence(value: Optional[float]) -> int:
    """Map a 0..1 confidence to an int percentage (half rounds up), clamped."""
    if value is None or not math.isfinite(value):
        value = DEFAULT_CONFIDENCE
    # clamp before scaling; a huge finite value would overflow to inf
    value = min(max(value, 0.0), 1.0)
    return math.floor(value * 100 + 0.5)


def parse_generation_output(raw: str) -> Any:
    """Decode the LLM's JSON, tolerating code fences around it."""
    try:
        return extract_json(raw)
    except json.JSONDecodeError as exc:
        raise MalformedGenerationOutput(
            "LLM output could not be parsed as JSON", raw_output=raw
        ) from exc


def highlight_preview(text: str, entries: list[ResolvedEntry]) -> str:
    """Render *text* with ``[HPO:id]…[/HPO]`` around every anchored entry."""
    anchored = sorted(
        (e for e in entries if e.start_index is not None and e.end_index is not None),
        key=lambda e: e.start_index,
    )
    parts: list[str] = []
    cursor = 0
    for entry in anchored:
        if entry.start_index < cursor:
            continue  # overlaps the previous highlight
        parts.append(text[cursor:entry.start_index])
        parts.append(f"[HPO:{entry.id}]{text[entry.start_index:entry.end_index]}[/HPO]")
        cursor = entry.end_index
    parts.append(text[cursor:])
    return "".join(parts)


# ═════════════════════════════════════════════════════════════════════════
# DETERMINISTIC CORE
# ═════════════════════════════════════════════════════════════════════════


def _reject(state: PipelineState, reason: str, cand: Optional[ExtractionCandidate] = None) -> None:
    rejected = RejectedCandidate(
        claimed_id=cand.claimed_id if cand else None,
        name_cn=cand.name_cn if cand else None,
        name_en=cand.name_en if cand else None,
        reason=reason,
    )
    state.rejected.append(rejected)
    logger.warning(
        "Candidate rejected: %s", reason,
        extra={"session_id": state.session_id, **rejected.model_dump()},
    )


def _process_candidate(
    state: PipelineState,
    text: str,
    item: Any,
    index: ReferenceIndex,
    threshold: float,
) -> None:
    # ── 1. Field validation ─────────────────────────────────────────────
    if not isinstance(item, dict):
        _reject(state, REASON_MALFORMED)
        return
    try:
        cand = ExtractionCandidate.model_validate(item)
    except ValidationError:
        _reject(state, REASON_MALFORMED)
        return

    matched_text = cand.matched_text or ""
    if not (cand.name_cn or "").strip() or not matched_text.strip():
        _reject(state, REASON_MISSING_FIELDS, cand)
        return

    # ── 2. Calibration ──────────────────────────────────────────────────
    outcome = calibrate(index, cand.name_cn, cand.name_en, cand.claimed_id, threshold=threshold)
    state.calibration_log.append(CalibrationRecord(
        claimed_id=cand.claimed_id,
        resolved_id=outcome.record.id if outcome.record else None,
        name_cn=cand.name_cn,
        name_en=cand.name_en,
        match_kind=outcome.match_kind,
        similarity=outcome.similarity,
    ))
    if not outcome.matched or outcome.record is None:
        _reject(state, outcome.reject_reason or "no match found", cand)
        return
    record = outcome.record

    # ── 3. Span reconciliation ──────────────────────────────────────────
    before = (cand.start_index, cand.end_index)
    start, end = reconcile_span(text, matched_text, cand.start_index, cand.end_index)
    if (start, end) != before or start is None:
        after = (start, end) if start is not None and end is not None else None
        state.span_corrections.append(SpanCorrection(
            hpo_id=record.id, matched_text=matched_text, before=before, after=after,
        ))
        log = logger.info if after is not None else logger.warning
        log(
            "Span for %s corrected %s -> %s", record.id, before, after,
            extra={"session_id": state.session_id, "hpo_id": record.id,
                   "span_before": before, "span_after": after},
        )

    # ── 4. Confidence ───────────────────────────────────────────────────
    entry = ResolvedEntry(
        id=record.id,
        name_en=record.name_en,
        name_cn=record.name_cn,
        confidence=scale_confidence(cand.claimed_confidence),
        matched_text=matched_text,
        start_index=start,
        end_index=end,
    )

    # ── 5. Deduplication (dict keeps first-seen position) ───────────────
    existing = state.entries_by_id.get(entry.id)
    if existing is None:
        state.entries_by_id[entry.id] = entry
    elif entry.confidence > existing.confidence:
        state.entries_by_id[entry.id] = entry
        state.duplicates.append(DuplicateResolution(hpo_id=entry.id, kept=entry, removed=existing))
    else:
        state.duplicates.append(DuplicateResolution(hpo_id=entry.id, kept=existing, removed=entry))


def calibrate_batch(
    text: str,
    raw_batch: Any,
    index: ReferenceIndex,
    *,
    threshold: float = CALIBRATION_THRESHOLD,
    state: Optional[PipelineState] = None,
) -> PipelineState:
    """
    Turn one raw candidate batch into de-duplicated, verified entries.

    Parameters
    ----------
    text : str
        The source clinical note.
    raw_batch : Any
        Decoded LLM output. Anything other than a list is treated as empty.
    index : ReferenceIndex
        A loaded reference index.
    threshold : float
        Calibration similarity floor.
    state : PipelineState, optional
        Accumulator to write into; a fresh one is created if omitted.

    Returns
    -------
    PipelineState
        ``entries`` holds the result; the audit lists explain every drop.
    """
    index.require_ready()
    if state is None:
        state = PipelineState(original_text=text)
    else:
        state.original_text = text

    if not isinstance(raw_batch, list):
        logger.warning(
            "LLM response is not an array (%s); treating as empty",
            type(raw_batch).__name__,
            extra={"session_id": state.session_id},
        )
        raw_batch = []

    state.raw_count = len(raw_batch)
    for item in raw_batch:
        _process_candidate(state, text, item, index, threshold)
    return state


# ═════════════════════════════════════════════════════════════════════════
# THE CONVERSION PIPELINE
# ═════════════════════════════════════════════════════════════════════════


def _log_summary(state: PipelineState, elapsed_ms: int) -> None:
    corrected_ids = sum(
        1 for r in state.calibration_log
        if r.claimed_id and r.resolved_id and r.claimed_id != r.resolved_id
    )
    logger.info(
        "Conversion %s: %d raw, %d entries, %d rejected, %d span fixes, %d duplicates in %dms",
        state.session_id, state.raw_count, len(state.entries_by_id), len(state.rejected),
        len(state.span_corrections), len(state.duplicates), elapsed_ms,
        extra={
            "session_id": state.session_id,
            "match_stats": state.match_stats(),
            "claimed_ids_corrected": corrected_ids,
        },
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Highlighted preview: %s", highlight_preview(state.original_text, state.entries),
            extra={"session_id": state.session_id},
        )


async def run_conversion(
    text: str,
    index: ReferenceIndex,
    *,
    config: Optional[LLMConfig] = None,
    session_mgr: Optional[SessionManager] = None,
    generate: Optional[GenerateFn] = None,
    threshold: float = CALIBRATION_THRESHOLD,
    timeout: float = GENERATION_TIMEOUT_S,
) -> ConversionResult:
    """
    Convert one clinical note into verified HPO entries.

    Parameters
    ----------
    text : str
        The clinical note.
    index : ReferenceIndex
        A loaded reference index.
    config : LLMConfig, optional
        Generation-service credentials; read from the environment if omitted.
    session_mgr : SessionManager, optional
        Redis audit store. Failures there never affect the result.
    generate : async callable, optional
        ``await generate(config, system, user, timeout=...)`` returning raw
        text. Defaults to :func:`smartmatch.llm_client.call_llm`.
    threshold : float
        Calibration similarity floor.
    timeout : float
        Generation timeout in seconds.

    Returns
    -------
    ConversionResult
    """
    t0 = time.perf_counter()

    # ── Step 0: Preconditions ───────────────────────────────────────────
    index.require_ready()
    config = config or load_llm_config()
    if not config.api_key.strip():
        raise NotConfigured("LLM API key is not configured")

    state = PipelineState(session_id=uuid.uuid4().hex[:12], original_text=text)
    if session_mgr is not None:
        _safe_session(session_mgr.create_session, state.session_id, {
            "text": text, "model": config.model_name, "threshold": threshold,
        })

    # ── Step 1: Generation ──────────────────────────────────────────────
    system, user = build_prompts(text)
    logger.info(
        "Starting conversion %s (model=%s, %d chars)",
        state.session_id, config.model_name, len(text),
        extra={"session_id": state.session_id},
    )
    gen = generate or call_llm
    try:
        raw = await gen(config, system, user, timeout=timeout)
    except GenerationError as exc:
        logger.error("LLM call failed: %s", exc, extra={"session_id": state.session_id})
        raise
    logger.debug(
        "LLM raw output (%d chars): %s", len(raw), raw,
        extra={"session_id": state.session_id, "model": config.model_name},
    )

    # ── Step 2: Parse ───────────────────────────────────────────────────
    try:
        batch = parse_generation_output(raw)
    except MalformedGenerationOutput:
        logger.error(
            "Failed to parse LLM response as JSON", extra={"session_id": state.session_id}
        )
        raise

    # ── Step 3: Calibrate ───────────────────────────────────────────────
    calibrate_batch(text, batch, index, threshold=threshold, state=state)

    elapsed_ms = int((time.perf_counter() - t0) * 1000)
    result = ConversionResult(
        session_id=state.session_id,
        original_text=text,
        entries=state.entries,
        process_time_ms=elapsed_ms,
        rejected=list(state.rejected),
    )
    _log_summary(state, elapsed_ms)

    # ── Step 4: Audit ───────────────────────────────────────────────────
    if session_mgr is not None:
        snapshot = state.snapshot()
        for step in AUDIT_STEPS:
            _safe_session(session_mgr.log_step, state.session_id, step, snapshot[step])
        _safe_session(session_mgr.set_output, state.session_id, result.model_dump(by_alias=True))

    return result
