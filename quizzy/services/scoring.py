from typing import Optional

from quizzy.database.models import ReviewStatus


def classify_answer(selected: Optional[str], correct_answer: str) -> ReviewStatus:
    """
    Decides the outcome of one question. Both strings must already be decoded.
    """
    if selected is None:
        return ReviewStatus.UNANSWERED
    if selected == correct_answer:
        return ReviewStatus.CORRECT
    return ReviewStatus.INCORRECT


def compute_xp(status: ReviewStatus, remaining_seconds: int, total_seconds: int, hint_used: bool) -> int:
    """
    Speed bonus for a correct answer: floor(remaining / total * 100),
    then halved (floored again) when the hint was used.
    Incorrect and unanswered questions earn nothing.
    """
    if status is not ReviewStatus.CORRECT or total_seconds <= 0:
        return 0
    remaining = max(0, min(remaining_seconds, total_seconds))
    # floor(remaining / total * 100) in integer form
    xp = remaining * 100 // total_seconds
    if hint_used:
        xp = xp // 2
    return xp


def compute_score(correct: int, total: int) -> int:
    """Percentage of correct answers, rounded half up (12.5 -> 13)."""
    if total <= 0:
        return 0
    return (correct * 200 + total) // (2 * total)


def format_duration(milliseconds: int) -> str:
    minutes = milliseconds // 60000
    seconds = (milliseconds % 60000) // 1000
    return f"{minutes} m {seconds} s"
