import glob
import json
import logging
import os
import re
from typing import Dict, Iterable, List, Optional

from quizzy.database.models import Difficulty, QuestionRecord

logger = logging.getLogger(__name__)

ASSETS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../../assets/quiz_sets"))

MIN_QUESTIONS = 8
SETS_PER_DIFFICULTY = 2
SET_KEY_PATTERN = re.compile(r"^cat(\d+)_(easy|medium|hard)_set(\d+)$")

# The 24 OpenTDB categories the app offers
CATEGORIES = {
    9: "General Knowledge",
    10: "Entertainment: Books",
    11: "Entertainment: Film",
    12: "Entertainment: Music",
    13: "Entertainment: Musicals & Theatres",
    14: "Entertainment: Television",
    15: "Entertainment: Video Games",
    16: "Entertainment: Board Games",
    17: "Science & Nature",
    18: "Science: Computers",
    19: "Science: Mathematics",
    20: "Mythology",
    21: "Sports",
    22: "Geography",
    23: "History",
    24: "Politics",
    25: "Art",
    26: "Celebrities",
    27: "Animals",
    28: "Vehicles",
    29: "Entertainment: Comics",
    30: "Science: Gadgets",
    31: "Entertainment: Japanese Anime & Manga",
    32: "Entertainment: Cartoon & Animations",
}


def category_title(category_id: int) -> str:
    name = CATEGORIES.get(category_id)
    if not name:
        return f"Category {category_id}"
    return re.sub(r"^Entertainment:\s*", "", name)


class QuestionLoader:
    """
    In-memory catalog of quiz sets, one JSON file per set:
    cat<category>_<difficulty>_set<n>.json holding {"results": [...]}.
    """

    def __init__(self, assets_dir: str = ASSETS_DIR):
        self.assets_dir = assets_dir
        self.cache: Dict[str, List[QuestionRecord]] = {}
        self.load_all()

    def load_all(self):
        self.cache = {}
        if not os.path.isdir(self.assets_dir):
            logger.warning(f"Quiz set directory not found: {self.assets_dir}")
            return

        for path in sorted(glob.glob(os.path.join(self.assets_dir, "*.json"))):
            key = os.path.splitext(os.path.basename(path))[0]
            if not SET_KEY_PATTERN.match(key):
                logger.warning(f"Skipping {key}: not a quiz set file name")
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                questions = [QuestionRecord(**q) for q in data.get("results", [])]
                self.cache[key] = questions
                logger.info(f"Loaded {len(questions)} questions from {key}")
            except Exception as e:
                logger.error(f"Failed to load {path}: {e}")

    def keys(self) -> List[str]:
        return sorted(self.cache)

    def get_set(self, key: str) -> List[QuestionRecord]:
        return list(self.cache.get(key, []))

    def categories(self) -> List[dict]:
        """Categories that have at least one playable set."""
        playable = set()
        for key, questions in self.cache.items():
            if len(questions) >= MIN_QUESTIONS:
                playable.add(int(SET_KEY_PATTERN.match(key).group(1)))
        return [{"id": cid, "title": category_title(cid)} for cid in sorted(playable)]

    def list_sets(self, category_id: int, completed: Optional[Iterable[str]] = None) -> List[dict]:
        """
        Playable sets of one category, easy to hard, numbered in display order.
        Sets with fewer than MIN_QUESTIONS questions are left out.
        """
        done = set(completed or [])
        items = []
        for difficulty in Difficulty:
            for n in range(1, SETS_PER_DIFFICULTY + 1):
                key = f"cat{category_id}_{difficulty.value}_set{n}"
                questions = self.cache.get(key, [])
                if len(questions) < MIN_QUESTIONS:
                    continue
                items.append({
                    "id": key,
                    "difficulty": difficulty.value.title(),
                    "seconds_per_question": difficulty.time_budget,
                    "questions": len(questions),
                    "completed": key in done,
                    "display_index": len(items) + 1,
                })
        return items
