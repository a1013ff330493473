"""
tools/span_locator.py — Reconcile a claimed text span against the source note.

LLM-reported offsets are frequently wrong. The claimed span is kept only if
it bounds exactly the matched text; otherwise the first literal occurrence
of the matched text is used, or no span at all.
"""

from __future__ import annotations

from typing import Optional

Span = tuple[Optional[int], Optional[int]]


def span_is_valid(text: str, matched_text: str, start: Optional[int], end: Optional[int]) -> bool:
    if start is None or end is None:
        return False
    if not 0 <= start <= end <= len(text):
        return False
    return text[start:end] == matched_text


def reconcile_span(
    text: str,
    matched_text: str,
    start: Optional[int],
    end: Optional[int],
) -> Span:
    """
    Return the ``(start, end)`` offsets to use for *matched_text*.

    Offsets are Python string indices (code points); ``end`` is exclusive.
    ``(None, None)`` means the matched text does not occur in *text*.
    """
    if span_is_valid(text, matched_text, start, end):
        return start, end

    k = text.find(matched_text) if matched_text else -1
    if k == -1:
        return None, None
    return k, k + len(matched_text)
