import random
from datetime import datetime, timezone
from typing import Optional

from quizzy.database.models import DAILY_TITLE_PREFIX

DAILY_QUESTION_COUNT = 10


def today_iso() -> str:
    """Current UTC date as YYYY-MM-DD."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def date_seed(day: str) -> int:
    return sum(ord(ch) for ch in day)


def generate_daily_quiz(loader, today: Optional[str] = None, rng: Optional[random.Random] = None) -> Optional[dict]:
    """
    Builds today's daily quiz. Every user gets the same quiz set on the same
    day (picked from the date); the question order is shuffled per call.
    Returns None when no quiz sets are loaded.
    """
    today = today or today_iso()
    rng = rng or random.Random()

    keys = loader.keys()
    if not keys:
        return None
    chosen = keys[date_seed(today) % len(keys)]

    questions = loader.get_set(chosen)
    rng.shuffle(questions)

    return {
        "quizTitle": f"{DAILY_TITLE_PREFIX}{today}",
        "quizSetId": f"daily-{today}",
        "dateTaken": today,
        "categoryTitle": "Mixed",
        "difficulty": "random",
        "sourceSetId": chosen,
        "questions": questions[:DAILY_QUESTION_COUNT],
    }
