import random

import pytest

from quizzy.database.db_client import ResultSinkError
from quizzy.database.models import QuizSessionConfig
from quizzy.services.quiz_session import QuizSession


def make_question(question, correct, incorrect):
    return {"question": question, "correct_answer": correct, "incorrect_answers": list(incorrect)}


GK_QUESTIONS = [
    make_question("What is the capital of France?", "Paris", ["Lyon", "Marseille", "Nice"]),
    make_question("How many days are there in a leap year?", "366", ["365", "364", "367"]),
    make_question("What is the largest planet in our solar system?", "Jupiter", ["Saturn", "Neptune", "Earth"]),
]


class FakeSink:
    def __init__(self, fail=False):
        self.fail = fail
        self.history = []
        self.daily = []

    async def insert_quiz_history(self, record):
        if self.fail:
            raise ResultSinkError("backend down")
        self.history.append(record)

    async def save_daily_quiz_result(self, user_id, score, xp, review_data, time_taken_seconds=0):
        if self.fail:
            raise ResultSinkError("backend down")
        self.daily.append({
            "user_id": user_id,
            "score": score,
            "xp": xp,
            "review_data": review_data,
            "time_taken_seconds": time_taken_seconds,
        })


class FakePresenter:
    def __init__(self):
        self.summaries = []

    async def __call__(self, summary):
        self.summaries.append(summary)


class FakePreferences:
    def __init__(self, sound=True, vibration=True):
        self.sound = sound
        self.vibration = vibration

    async def is_sound_enabled(self):
        return self.sound

    async def is_vibration_enabled(self):
        return self.vibration


class FakeFeedback:
    def __init__(self, fail=False):
        self.fail = fail
        self.sounds = []
        self.vibrations = []

    async def play(self, success):
        if self.fail:
            raise RuntimeError("speaker unplugged")
        self.sounds.append(success)

    async def vibrate(self, success):
        if self.fail:
            raise RuntimeError("no motor")
        self.vibrations.append(success)


class FakeNotifications:
    def __init__(self):
        self.cancelled = 0
        self.dates = []

    async def cancel_all(self):
        self.cancelled += 1

    async def record_completion_date(self, iso_date):
        self.dates.append(iso_date)


class FakeView:
    def __init__(self):
        self.calls = []

    async def show_question(self, session):
        self.calls.append(("question", session.current_index))

    async def show_countdown(self, session):
        self.calls.append(("countdown", session.remaining_seconds))

    async def show_outcome(self, session, outcome):
        self.calls.append(("outcome", outcome.status.value))

    async def refresh(self, session):
        self.calls.append(("refresh", session.selected_answer))


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def presenter():
    return FakePresenter()


@pytest.fixture
def notifications():
    return FakeNotifications()


@pytest.fixture
def feedback():
    return FakeFeedback()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def make_session(sink, presenter, notifications, feedback, clock):
    created = []

    def factory(questions=None, title="#1 General Knowledge", set_id="cat9_easy_set1",
                difficulty="hard", user_id=42, **overrides):
        async def current_user():
            return user_id

        config = QuizSessionConfig.from_params({
            "quizSetId": set_id,
            "quizTitle": title,
            "difficulty": difficulty,
            "questions": questions if questions is not None else GK_QUESTIONS[:1],
        })
        kwargs = dict(
            user_provider=current_user,
            result_sink=sink,
            presenter=presenter,
            preferences=FakePreferences(),
            feedback=feedback,
            notifications=notifications,
            rng=random.Random(7),
            clock=clock,
            tick_interval=3600,
            advance_delay=0,
        )
        kwargs.update(overrides)
        session = QuizSession(config, **kwargs)
        created.append(session)
        return session

    yield factory

    for session in created:
        session.dispose()
