from __future__ import annotations

from rapidfuzz.distance import Levenshtein


def levenshtein_distance(left: str, right: str) -> int:
    return Levenshtein.distance(left, right)


def similarity(left: str, right: str) -> float:
    """Edit-distance similarity in [0, 1], normalized by the longer string.

    Callers are expected to case-fold before comparing. Empty input scores 0.
    """
    if not left or not right:
        return 0.0
    return Levenshtein.normalized_similarity(left, right)


def is_similar(left: str, right: str, threshold: float) -> bool:
    return similarity(left, right) >= threshold
