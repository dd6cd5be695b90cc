import html
import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

DAILY_TITLE_PREFIX = "Daily Quiz - "
CATEGORY_ID_PATTERN = re.compile(r"cat(\d+)_")


class QuizConfigError(ValueError):
    """Raised when a session is started with inputs that break the quiz contract."""


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @property
    def time_budget(self) -> int:
        return TIME_BUDGETS[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> "Difficulty":
        # Unknown values (the daily quiz sends "random") fall back to hard
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.HARD


TIME_BUDGETS = {
    Difficulty.EASY: 60,
    Difficulty.MEDIUM: 45,
    Difficulty.HARD: 30,
}


class ReviewStatus(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    UNANSWERED = "unanswered"


class QuestionRecord(BaseModel):
    """One trivia question as delivered by the quiz set files (OpenTDB format)."""
    question: str
    correct_answer: str
    incorrect_answers: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    difficulty: Optional[str] = None

    def decoded(self) -> "QuestionRecord":
        return QuestionRecord(
            question=html.unescape(self.question),
            correct_answer=html.unescape(self.correct_answer),
            incorrect_answers=[html.unescape(a) for a in self.incorrect_answers],
            category=self.category,
            difficulty=self.difficulty,
        )


class QuizSessionConfig(BaseModel):
    quiz_set_id: str
    quiz_title: str
    difficulty: Difficulty = Difficulty.HARD
    questions: List[QuestionRecord]

    @classmethod
    def from_params(cls, params: dict) -> "QuizSessionConfig":
        """
        Builds a config from navigation-style parameters:
        {quizSetId, quizTitle, difficulty?, questions}.
        """
        questions = params.get("questions") or []
        if not questions:
            raise QuizConfigError("A quiz session needs at least one question.")
        return cls(
            quiz_set_id=params.get("quizSetId", ""),
            quiz_title=params.get("quizTitle", ""),
            difficulty=Difficulty.parse(params.get("difficulty")),
            questions=[q if isinstance(q, QuestionRecord) else QuestionRecord(**q) for q in questions],
        )

    @property
    def is_daily(self) -> bool:
        return self.quiz_title.startswith(DAILY_TITLE_PREFIX)

    @property
    def category_title(self) -> str:
        return re.sub(r"^#\d+\s*", "", self.quiz_title)


class ReviewEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    number: int
    question: str
    correct_answer: str = Field(alias="correctAnswer")
    selected_answer: Optional[str] = Field(default=None, alias="selectedAnswer")
    status: ReviewStatus

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class ResultSummary(BaseModel):
    """Payload handed to the result screen once a session completes."""
    model_config = ConfigDict(populate_by_name=True)

    total_questions: int = Field(alias="totalQuestions")
    correct: int
    incorrect: int
    unanswered: int
    time_taken: int = Field(alias="timeTaken")  # milliseconds
    xp_earned: int = Field(alias="xpEarned")
    review_data: List[ReviewEntry] = Field(alias="reviewData")
    category_title: str = Field(alias="categoryTitle")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class QuizHistoryRecord(BaseModel):
    user_id: int
    category_id: int
    category_title: str
    quiz_title: str
    difficulty: str
    score: int
    xp: int
    time_taken_seconds: int
    review_data: str
    quiz_set_id: str
    date_taken: Optional[str] = None
    time_taken: Optional[datetime] = None
