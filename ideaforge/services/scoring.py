"""Swipe scoring primitives.

Pure functions: a swipe's direction sets the base score, its duration sets a
speed bucket, and slower (more deliberate) swipes weigh more.
"""
from ideaforge.models.schemas import SwipeDirection, SwipeSpeed

FAST_THRESHOLD_MS = 1000
SLOW_THRESHOLD_MS = 3000

BASE_SCORES = {
    SwipeDirection.RIGHT: 1.0,
    SwipeDirection.UP: 2.0,
    SwipeDirection.LEFT: -0.5,
}

SPEED_WEIGHTS = {
    SwipeSpeed.FAST: 0.5,
    SwipeSpeed.MEDIUM: 1.0,
    SwipeSpeed.SLOW: 1.5,
}

# Ranking confidence when every swipe in a session was positive
SUPER_LIKE_CONFIDENCE = 2.0
SPEED_CONFIDENCE = {
    SwipeSpeed.FAST: 0.75,
    SwipeSpeed.MEDIUM: 1.0,
    SwipeSpeed.SLOW: 1.5,
}


def speed_bucket(duration_ms: int) -> SwipeSpeed:
    if duration_ms < FAST_THRESHOLD_MS:
        return SwipeSpeed.FAST
    if duration_ms > SLOW_THRESHOLD_MS:
        return SwipeSpeed.SLOW
    return SwipeSpeed.MEDIUM


def base_score(direction: SwipeDirection) -> float:
    return BASE_SCORES[direction]


def speed_weight(speed: SwipeSpeed) -> float:
    return SPEED_WEIGHTS[speed]


def score_delta(direction: SwipeDirection, duration_ms: int) -> float:
    return base_score(direction) * speed_weight(speed_bucket(duration_ms))


def apply_delta(score: float, delta: float) -> float:
    """Scores are clamped at zero, however many dislikes pile up."""
    return max(0.0, score + delta)


def confidence_multiplier(direction: SwipeDirection, speed: SwipeSpeed) -> float:
    if direction == SwipeDirection.UP:
        return SUPER_LIKE_CONFIDENCE
    return SPEED_CONFIDENCE[speed]


def is_positive(direction: SwipeDirection) -> bool:
    return direction in (SwipeDirection.RIGHT, SwipeDirection.UP)
