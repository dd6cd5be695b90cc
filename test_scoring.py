import pytest

from quizzy.database.models import Difficulty, ReviewStatus
from quizzy.services.scoring import classify_answer, compute_score, compute_xp, format_duration


def test_classify_answer():
    assert classify_answer(None, "Paris") is ReviewStatus.UNANSWERED
    assert classify_answer("Paris", "Paris") is ReviewStatus.CORRECT
    assert classify_answer("Lyon", "Paris") is ReviewStatus.INCORRECT


@pytest.mark.parametrize("remaining, total, hint, expected", [
    (30, 30, False, 100),
    (20, 30, False, 66),
    (25, 30, True, 41),
    (9, 30, False, 30),
    (1, 60, False, 1),
    (0, 30, False, 0),
    (45, 45, True, 50),
])
def test_xp_for_correct_answers(remaining, total, hint, expected):
    assert compute_xp(ReviewStatus.CORRECT, remaining, total, hint) == expected


def test_wrong_or_missing_answers_earn_no_xp():
    assert compute_xp(ReviewStatus.INCORRECT, 30, 30, False) == 0
    assert compute_xp(ReviewStatus.UNANSWERED, 30, 30, False) == 0


def test_xp_is_capped_by_the_budget():
    assert compute_xp(ReviewStatus.CORRECT, 99, 30, False) == 100
    assert compute_xp(ReviewStatus.CORRECT, -5, 30, False) == 0


@pytest.mark.parametrize("correct, total, expected", [
    (1, 1, 100),
    (1, 2, 50),
    (1, 8, 13),
    (2, 3, 67),
    (1, 3, 33),
    (0, 10, 0),
    (0, 0, 0),
])
def test_score_rounds_half_up(correct, total, expected):
    assert compute_score(correct, total) == expected


def test_format_duration():
    assert format_duration(42000) == "0 m 42 s"
    assert format_duration(125500) == "2 m 5 s"


@pytest.mark.parametrize("raw, expected", [
    ("easy", 60),
    ("Medium", 45),
    ("HARD", 30),
    ("random", 30),
    (None, 30),
])
def test_time_budget_per_difficulty(raw, expected):
    assert Difficulty.parse(raw).time_budget == expected
