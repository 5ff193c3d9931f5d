"""Tests for the reputation model."""

import random

import pytest

from moltworker import reputation
from moltworker.reputation import BOOTSTRAP_SCORE, MAX_SCORE, MIN_SCORE, apply, clamp, delta


@pytest.mark.parametrize("rating, expected", [
    (100, 2),
    (90, 2),
    (89, 1),
    (70, 1),
    (69, 0),
    (50, 0),
    (49, -3),
    (0, -3),
])
def test_delta_table_boundaries(rating, expected):
    assert delta(rating) == expected


@pytest.mark.parametrize("score, expected", [
    (-10, 0),
    (0, 0),
    (50, 50),
    (100, 100),
    (250, 100),
])
def test_clamp(score, expected):
    assert clamp(score) == expected


def test_clamp_is_idempotent():
    for x in range(-300, 300, 7):
        assert clamp(clamp(x)) == clamp(x)


def test_score_stays_bounded_under_any_sequence():
    rng = random.Random(8004)
    for _ in range(200):
        score = BOOTSTRAP_SCORE
        for _ in range(rng.randint(1, 120)):
            score, _ = apply(score, rng.randint(0, 100))
            assert MIN_SCORE <= score <= MAX_SCORE


def test_apply_returns_raw_delta_even_when_clamped():
    assert apply(99, 95) == (100, 2)
    assert apply(100, 95) == (100, 2)
    assert apply(1, 10) == (0, -3)


def test_bootstrap_value():
    assert reputation.BOOTSTRAP_SCORE == 50


def test_scenario_95_then_40():
    score, _ = apply(BOOTSTRAP_SCORE, 95)
    score, _ = apply(score, 40)
    assert score == 49
