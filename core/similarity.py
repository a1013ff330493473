"""
core/similarity.py — Normalised edit-distance similarity for name matching.

Pure functions; no normalisation or case folding is applied here. Callers
trim or fold before scoring if they need to.
"""

from __future__ import annotations

from rapidfuzz.distance import Levenshtein

# Strings shorter than this get no partial credit.
MIN_PARTIAL_LENGTH = 4


def levenshtein(a: str, b: str) -> int:
    """Classic Levenshtein distance (insert / delete / substitute all cost 1)."""
    return Levenshtein.distance(a, b, weights=(1, 1, 1))


def similarity(a: str, b: str) -> float:
    """
    Return a closeness score in ``[0, 1]`` for two strings.

    - 0.0 if either string is empty.
    - 1.0 if the strings are identical.
    - Binary (1.0 / 0.0) when the longer string has fewer than
      ``MIN_PARTIAL_LENGTH`` characters.
    - Otherwise ``1 - levenshtein(a, b) / max(len(a), len(b))``.
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    max_len = max(len(a), len(b))
    if max_len < MIN_PARTIAL_LENGTH:
        return 0.0

    return 1.0 - levenshtein(a, b) / max_len
