import asyncio
import json
import logging
import random
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol, Union

from quizzy.database.models import (
    CATEGORY_ID_PATTERN,
    QuestionRecord,
    QuizConfigError,
    QuizHistoryRecord,
    QuizSessionConfig,
    ResultSummary,
    ReviewEntry,
    ReviewStatus,
)
from quizzy.services.daily_quiz import today_iso
from quizzy.services.scoring import classify_answer, compute_score, compute_xp

logger = logging.getLogger(__name__)

TICK_INTERVAL = 1.0  # seconds between countdown steps
ADVANCE_DELAY = 1.5  # seconds the answer feedback stays on screen


# --- Collaborators ---

class ResultSink(Protocol):
    async def insert_quiz_history(self, record: QuizHistoryRecord) -> None: ...

    async def save_daily_quiz_result(self, user_id: int, score: int, xp: int,
                                     review_data: List[dict], time_taken_seconds: int = 0) -> None: ...


class PreferenceReader(Protocol):
    async def is_sound_enabled(self) -> bool: ...

    async def is_vibration_enabled(self) -> bool: ...


class FeedbackDevice(Protocol):
    async def play(self, success: bool) -> None: ...

    async def vibrate(self, success: bool) -> None: ...


class NotificationCanceler(Protocol):
    async def cancel_all(self) -> None: ...

    async def record_completion_date(self, iso_date: str) -> None: ...


class QuizView(Protocol):
    async def show_question(self, session: "QuizSession") -> None: ...

    async def show_countdown(self, session: "QuizSession") -> None: ...

    async def show_outcome(self, session: "QuizSession", outcome: "QuestionOutcome") -> None: ...


ResultPresenter = Callable[[ResultSummary], Awaitable[None]]
CurrentUserProvider = Callable[[], Awaitable[Optional[int]]]


# --- Session kind ---

@dataclass(frozen=True)
class NormalSession:
    category_id: int


@dataclass(frozen=True)
class DailySession:
    pass


SessionKind = Union[NormalSession, DailySession]


def resolve_session_kind(config: QuizSessionConfig) -> SessionKind:
    """
    Decides once, up front, which result path a session takes.
    Daily sessions are recognised by their title; every other session must
    carry a category id in its quiz set id (cat<digits>_...).
    """
    if config.is_daily:
        return DailySession()
    match = CATEGORY_ID_PATTERN.search(config.quiz_set_id)
    if not match:
        raise QuizConfigError(f"Cannot read a category id from quiz set id {config.quiz_set_id!r}")
    return NormalSession(category_id=int(match.group(1)))


# --- Per-question data ---

class SessionPhase(str, Enum):
    AWAITING_ANSWER = "awaiting_answer"
    LOCKED = "locked"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class LoadedQuestion:
    prompt: str
    correct_answer: str
    options: List[str]


@dataclass(frozen=True)
class QuestionOutcome:
    index: int
    status: ReviewStatus
    selected_answer: Optional[str]
    correct_answer: str
    xp: int


class ExitGuard:
    """
    Holds back a navigation away from a running session until the user
    confirms that the progress may be thrown away.
    """

    def __init__(self, session: "QuizSession"):
        self._session = session
        self._pending: Optional[Callable[[], Awaitable[None]]] = None

    @property
    def enabled(self) -> bool:
        return self._session.is_active

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def intercept(self, action: Callable[[], Awaitable[None]]) -> bool:
        """
        Returns True when the action was held back and now waits for
        confirm() or cancel(). Returns False when the caller may go ahead.
        """
        if not self.enabled:
            return False
        self._pending = action
        return True

    async def confirm(self):
        action, self._pending = self._pending, None
        await self._session.abandon()
        if action is not None:
            await action()

    def cancel(self):
        self._pending = None


class QuizSession:
    """
    Drives one quiz attempt: question presentation, countdown, hints,
    scoring and the final hand-off to the result screen.

    All state changes happen on the event loop that runs the session. Timer
    callbacks carry the epoch they were started in; a callback from an
    earlier question or a disposed session is dropped.
    """

    def __init__(
        self,
        config: QuizSessionConfig,
        user_provider: CurrentUserProvider,
        result_sink: ResultSink,
        presenter: ResultPresenter,
        preferences: Optional[PreferenceReader] = None,
        feedback: Optional[FeedbackDevice] = None,
        notifications: Optional[NotificationCanceler] = None,
        view: Optional[QuizView] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        tick_interval: float = TICK_INTERVAL,
        advance_delay: float = ADVANCE_DELAY,
        session_id: Optional[str] = None,
    ):
        if not config.questions:
            raise QuizConfigError("A quiz session needs at least one question.")

        self.session_id = session_id or str(uuid.uuid4())[:8]
        self.config = config
        self.kind = resolve_session_kind(config)
        self.total_time = config.difficulty.time_budget
        self.total_questions = len(config.questions)

        self._user_provider = user_provider
        self._sink = result_sink
        self._presenter = presenter
        self._preferences = preferences
        self._feedback = feedback
        self._notifications = notifications
        self._view = view
        self._rng = rng or random.Random()
        self._clock = clock
        self._tick_interval = tick_interval
        self._advance_delay = advance_delay

        self.phase = SessionPhase.AWAITING_ANSWER
        self.current_index = 0
        self.remaining_seconds = self.total_time
        self.selected_answer: Optional[str] = None
        self.hint_used = False
        self.eliminated_option: Optional[str] = None
        self.submitted = False
        self.correct_count = 0
        self.incorrect_count = 0
        self.total_xp = 0
        self.review_log: List[ReviewEntry] = []
        self.last_outcome: Optional[QuestionOutcome] = None
        self.summary: Optional[ResultSummary] = None
        self.session_started_at = clock()
        self.exit_guard = ExitGuard(self)

        self._epoch = 0
        self._countdown_task: Optional[asyncio.Task] = None
        self._advance_task: Optional[asyncio.Task] = None
        self._side_tasks = set()

        self.current = self._load_question(0)

    # --- Read-only views of the state ---

    @property
    def is_daily(self) -> bool:
        return isinstance(self.kind, DailySession)

    @property
    def is_active(self) -> bool:
        return self.phase not in (SessionPhase.COMPLETED, SessionPhase.ABANDONED)

    @property
    def view(self) -> Optional[QuizView]:
        return self._view

    @property
    def question_number(self) -> int:
        return self.current_index + 1

    @property
    def visible_options(self) -> List[str]:
        return [o for o in self.current.options if o != self.eliminated_option]

    # --- Lifecycle ---

    async def start(self):
        logger.info(f"Quiz session started: {self.config.quiz_set_id} "
                    f"({self.total_questions} questions, {self.total_time}s each)")
        self._start_countdown()
        self._notify_view("show_question")

    async def abandon(self):
        """Stops the session without recording anything."""
        if self.is_active:
            self.phase = SessionPhase.ABANDONED
            logger.info(f"Quiz session abandoned at question {self.question_number}: {self.config.quiz_set_id}")
        self.dispose()

    def dispose(self):
        self._epoch += 1
        self._cancel_countdown()
        if self._advance_task is not None and not self._advance_task.done():
            self._advance_task.cancel()
        self._advance_task = None

    async def drain(self):
        """Waits for the pending advance/finalize step and any side effects."""
        while True:
            pending = [t for t in (self._advance_task, *self._side_tasks) if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    # --- User input ---

    def select_answer(self, answer: str) -> bool:
        if self.submitted or self.phase is not SessionPhase.AWAITING_ANSWER:
            return False
        if answer not in self.current.options:
            raise ValueError(f"{answer!r} is not an option for question {self.question_number}")
        if answer == self.eliminated_option:
            return False
        self.selected_answer = answer
        return True

    def request_hint(self) -> Optional[str]:
        """Removes one wrong option. Only one hint per question."""
        if self.submitted or self.hint_used or self.phase is not SessionPhase.AWAITING_ANSWER:
            return None
        incorrect = [o for o in self.current.options if o != self.current.correct_answer]
        if not incorrect:
            return None
        self.eliminated_option = self._rng.choice(incorrect)
        self.hint_used = True
        return self.eliminated_option

    def submit(self) -> Optional[QuestionOutcome]:
        """
        Locks the current answer in (an unanswered question is allowed),
        scores it and schedules the move to the next question.
        """
        if self.submitted or self.phase is not SessionPhase.AWAITING_ANSWER:
            return None
        self.submitted = True
        self.phase = SessionPhase.LOCKED
        self._cancel_countdown()

        status = classify_answer(self.selected_answer, self.current.correct_answer)
        xp = compute_xp(status, self.remaining_seconds, self.total_time, self.hint_used)

        if status is ReviewStatus.CORRECT:
            self.correct_count += 1
        elif status is ReviewStatus.INCORRECT:
            self.incorrect_count += 1
        self.total_xp += xp
        self.review_log.append(ReviewEntry(
            number=self.question_number,
            question=self.current.prompt,
            correct_answer=self.current.correct_answer,
            selected_answer=self.selected_answer,
            status=status,
        ))

        outcome = QuestionOutcome(
            index=self.current_index,
            status=status,
            selected_answer=self.selected_answer,
            correct_answer=self.current.correct_answer,
            xp=xp,
        )
        self.last_outcome = outcome
        logger.debug(f"Q{self.question_number} locked: {status.value}, +{xp} XP")

        if status is not ReviewStatus.UNANSWERED:
            self._spawn(self._give_feedback(status is ReviewStatus.CORRECT))
        self._notify_view("show_outcome", outcome)
        self._advance_task = asyncio.get_running_loop().create_task(self._advance_after_delay(self._epoch))
        return outcome

    def tick(self):
        """One countdown step for the current question."""
        self._handle_tick(self._epoch)

    # --- Timers ---

    def _start_countdown(self):
        self._cancel_countdown()
        self._countdown_task = asyncio.get_running_loop().create_task(self._run_countdown(self._epoch))

    def _cancel_countdown(self):
        if self._countdown_task is not None and not self._countdown_task.done():
            self._countdown_task.cancel()
        self._countdown_task = None

    async def _run_countdown(self, epoch: int):
        try:
            while True:
                await asyncio.sleep(self._tick_interval)
                if not self._handle_tick(epoch):
                    return
        except asyncio.CancelledError:
            # Answer submitted or session left
            pass

    def _handle_tick(self, epoch: int) -> bool:
        """Returns False once this countdown has nothing left to do."""
        if epoch != self._epoch or self.submitted or self.phase is not SessionPhase.AWAITING_ANSWER:
            logger.debug(f"Dropping stale tick (epoch {epoch}, current {self._epoch})")
            return False
        if self.remaining_seconds > 0:
            self.remaining_seconds -= 1
        if self.remaining_seconds == 0:
            logger.info(f"Time up on Q{self.question_number} of {self.config.quiz_set_id}")
            self.submit()
            return False
        self._notify_view("show_countdown")
        return True

    async def _advance_after_delay(self, epoch: int):
        await asyncio.sleep(self._advance_delay)
        if epoch != self._epoch or self.phase is not SessionPhase.LOCKED:
            return
        if self.current_index < self.total_questions - 1:
            self._advance()
        else:
            await self._finalize()

    def _advance(self):
        self._epoch += 1
        self.current_index += 1
        self.selected_answer = None
        self.submitted = False
        self.eliminated_option = None
        self.hint_used = False
        self.remaining_seconds = self.total_time
        self.current = self._load_question(self.current_index)
        self.phase = SessionPhase.AWAITING_ANSWER
        self._start_countdown()
        self._notify_view("show_question")

    # --- Completion ---

    async def _finalize(self):
        self.phase = SessionPhase.FINALIZING
        time_taken_seconds = int(self._clock() - self.session_started_at)
        score = compute_score(self.correct_count, self.total_questions)

        user_id = await self._current_user()
        if user_id is None:
            logger.warning(f"No signed-in user, result for {self.config.quiz_set_id} not saved")
        elif self.is_daily:
            await self._save_daily(user_id, score, time_taken_seconds)
        else:
            await self._save_normal(user_id, score, time_taken_seconds)
        if self.is_daily:
            await self._clear_daily_reminder()

        self.summary = ResultSummary(
            total_questions=self.total_questions,
            correct=self.correct_count,
            incorrect=self.incorrect_count,
            unanswered=self.total_questions - self.correct_count - self.incorrect_count,
            time_taken=time_taken_seconds * 1000,
            xp_earned=self.total_xp,
            review_data=list(self.review_log),
            category_title=self.config.quiz_title,
        )
        self.phase = SessionPhase.COMPLETED
        self._epoch += 1
        logger.info(f"Quiz session completed: {self.config.quiz_set_id} score={score} xp={self.total_xp}")

        try:
            await self._presenter(self.summary)
        except Exception as e:
            logger.error(f"Result presenter failed: {e}")

    async def _current_user(self) -> Optional[int]:
        try:
            return await self._user_provider()
        except Exception as e:
            logger.error(f"Failed to resolve current user: {e}")
            return None

    async def _save_daily(self, user_id: int, score: int, time_taken_seconds: int):
        try:
            await self._sink.save_daily_quiz_result(
                user_id, score, self.total_xp,
                [entry.to_payload() for entry in self.review_log],
                time_taken_seconds,
            )
            logger.info(f"Daily quiz result saved for {user_id}")
        except Exception as e:
            logger.error(f"Failed to save daily quiz result for {user_id}: {e}")

    async def _save_normal(self, user_id: int, score: int, time_taken_seconds: int):
        try:
            record = QuizHistoryRecord(
                user_id=user_id,
                category_id=self.kind.category_id,
                category_title=self.config.category_title,
                quiz_title=self.config.quiz_title,
                difficulty=self.config.difficulty.value,
                score=score,
                xp=self.total_xp,
                time_taken_seconds=time_taken_seconds,
                review_data=self._serialize_review(),
                quiz_set_id=self.config.quiz_set_id,
            )
            await self._sink.insert_quiz_history(record)
            logger.info(f"Quiz history saved for {user_id}: {self.config.quiz_set_id}")
        except Exception as e:
            logger.error(f"Failed to save quiz history for {user_id}: {e}")

    def _serialize_review(self) -> str:
        return json.dumps([entry.to_payload() for entry in self.review_log])

    async def _clear_daily_reminder(self):
        if self._notifications is None:
            return
        try:
            await self._notifications.cancel_all()
        except Exception as e:
            logger.warning(f"Failed to cancel daily reminder: {e}")
        try:
            await self._notifications.record_completion_date(today_iso())
        except Exception as e:
            logger.warning(f"Failed to record daily quiz completion: {e}")

    # --- Helpers ---

    def _load_question(self, index: int) -> LoadedQuestion:
        raw: QuestionRecord = self.config.questions[index].decoded()
        if not raw.correct_answer:
            raise QuizConfigError(f"Question {index + 1} has no correct answer")
        options = list(raw.incorrect_answers) + [raw.correct_answer]
        self._rng.shuffle(options)
        return LoadedQuestion(prompt=raw.question, correct_answer=raw.correct_answer, options=options)

    async def _give_feedback(self, success: bool):
        if self._feedback is None:
            return
        if await self._preference("is_sound_enabled"):
            try:
                await self._feedback.play(success)
            except Exception as e:
                logger.warning(f"Sound feedback failed: {e}")
        if await self._preference("is_vibration_enabled"):
            try:
                await self._feedback.vibrate(success)
            except Exception as e:
                logger.warning(f"Haptic feedback failed: {e}")

    async def _preference(self, name: str) -> bool:
        if self._preferences is None:
            return True
        try:
            return bool(await getattr(self._preferences, name)())
        except Exception as e:
            logger.warning(f"Could not read preference {name}: {e}")
            return False

    def _notify_view(self, method: str, *args):
        if self._view is None:
            return
        self._spawn(self._call_view(method, *args))

    async def _call_view(self, method: str, *args):
        try:
            await getattr(self._view, method)(self, *args)
        except Exception as e:
            logger.warning(f"Quiz view {method} failed: {e}")

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._side_tasks.add(task)
        task.add_done_callback(self._side_tasks.discard)
        return task
