"""
reputation.py — Reputation Model

Maps a task rating (0–100) to a bounded change in reputation:

    rating >= 90   → +2
    rating 70–89   → +1
    rating 50–69   →  0
    rating <  50   → -3

and keeps the score inside [0, 100]. Pure functions, no state.
"""

from __future__ import annotations

MIN_SCORE = 0
MAX_SCORE = 100
BOOTSTRAP_SCORE = 50


def delta(rating: int) -> int:
    if rating >= 90:
        return 2
    if rating >= 70:
        return 1
    if rating >= 50:
        return 0
    return -3


def clamp(score: int, lo: int = MIN_SCORE, hi: int = MAX_SCORE) -> int:
    return max(lo, min(hi, score))


def apply(score: int, rating: int) -> tuple[int, int]:
    """Return (new_score, delta) for a task completed with `rating`."""
    change = delta(rating)
    return clamp(score + change), change
