import asyncio
import json
import random

import pytest

from conftest import GK_QUESTIONS, FakeFeedback, FakePreferences, FakeSink, FakeView, make_question
from quizzy.database.models import QuizConfigError, QuizSessionConfig, ReviewStatus
from quizzy.services.daily_quiz import today_iso
from quizzy.services.quiz_session import DailySession, NormalSession, SessionPhase


def wrong_option(session):
    return next(o for o in session.current.options if o != session.current.correct_answer)


async def answer(session, correct=True):
    session.select_answer(session.current.correct_answer if correct else wrong_option(session))
    outcome = session.submit()
    await session.drain()
    return outcome


# --- Scenarios ---

async def test_single_hard_question_answered_at_once_earns_full_xp(make_session, presenter, sink):
    session = make_session()
    assert session.total_time == 30

    outcome = await answer(session, correct=True)

    assert outcome.xp == 100
    assert session.phase is SessionPhase.COMPLETED
    summary = presenter.summaries[0]
    assert (summary.total_questions, summary.correct, summary.incorrect, summary.unanswered) == (1, 1, 0, 0)
    assert summary.xp_earned == 100
    assert sink.history[0].score == 100


async def test_correct_then_incorrect(make_session, presenter, sink, notifications):
    session = make_session(questions=GK_QUESTIONS[:2])

    await answer(session, correct=True)
    assert session.current_index == 1
    assert session.phase is SessionPhase.AWAITING_ANSWER
    await answer(session, correct=False)

    summary = presenter.summaries[0]
    assert (summary.total_questions, summary.correct, summary.incorrect, summary.unanswered) == (2, 1, 1, 0)
    assert [e.status for e in summary.review_data] == [ReviewStatus.CORRECT, ReviewStatus.INCORRECT]
    assert [e.number for e in summary.review_data] == [1, 2]

    record = sink.history[0]
    assert record.user_id == 42
    assert record.category_id == 9
    assert record.category_title == "General Knowledge"
    assert record.quiz_title == "#1 General Knowledge"
    assert record.difficulty == "hard"
    assert record.score == 50
    assert record.xp == 100
    assert record.quiz_set_id == "cat9_easy_set1"
    review = json.loads(record.review_data)
    assert review[0]["correctAnswer"] == "Paris"
    assert review[1]["status"] == "incorrect"
    assert review[1]["selectedAnswer"] != "366"

    assert sink.daily == []
    assert notifications.cancelled == 0
    assert notifications.dates == []


async def test_daily_session_takes_the_daily_path(make_session, presenter, sink, notifications):
    day = today_iso()
    session = make_session(title=f"Daily Quiz - {day}", set_id=f"daily-{day}", difficulty="random")
    assert isinstance(session.kind, DailySession)
    assert session.total_time == 30

    await answer(session, correct=True)

    assert len(sink.daily) == 1
    assert sink.daily[0]["score"] == 100
    assert sink.daily[0]["user_id"] == 42
    assert sink.daily[0]["review_data"][0]["status"] == "correct"
    assert sink.history == []
    assert notifications.cancelled == 1
    assert notifications.dates == [day]
    assert len(presenter.summaries) == 1


async def test_title_without_exact_daily_prefix_is_a_normal_session(make_session):
    session = make_session(title="Daily Quiz 2026", set_id="cat9_easy_set1")
    assert session.kind == NormalSession(category_id=9)


# --- Scoring ---

async def test_xp_drops_as_time_runs(make_session):
    session = make_session()
    for _ in range(10):
        session.tick()
    assert session.remaining_seconds == 20

    outcome = await answer(session, correct=True)

    assert outcome.xp == 66  # floor(20 / 30 * 100)


async def test_hint_halves_xp(make_session):
    session = make_session()
    for _ in range(5):
        session.tick()
    session.request_hint()

    outcome = await answer(session, correct=True)

    assert outcome.xp == 41  # floor(floor(25 / 30 * 100) / 2)


async def test_incorrect_answer_earns_nothing(make_session, presenter):
    session = make_session()
    outcome = await answer(session, correct=False)
    assert outcome.xp == 0
    assert outcome.status is ReviewStatus.INCORRECT
    assert presenter.summaries[0].xp_earned == 0


async def test_easy_budget_and_score_rounding(make_session, sink):
    questions = [make_question(f"Q{i}?", "yes", ["no", "maybe", "never"]) for i in range(8)]
    session = make_session(questions=questions, difficulty="Easy")
    assert session.total_time == 60

    await answer(session, correct=True)
    for _ in range(7):
        await answer(session, correct=False)

    assert sink.history[0].score == 13  # 12.5 rounds up
    assert sink.history[0].difficulty == "easy"


async def test_time_taken_comes_from_session_clock(make_session, presenter, clock, sink):
    session = make_session()
    clock.advance(42.7)
    await answer(session)
    assert presenter.summaries[0].time_taken == 42000
    assert sink.history[0].time_taken_seconds == 42


# --- Timeout ---

async def test_timeout_without_selection_is_unanswered(make_session, presenter, feedback):
    view = FakeView()
    session = make_session(view=view)
    for _ in range(30):
        session.tick()

    assert session.submitted
    assert session.remaining_seconds == 0
    assert session.last_outcome.status is ReviewStatus.UNANSWERED
    assert session.last_outcome.xp == 0

    await session.drain()
    summary = presenter.summaries[0]
    assert (summary.correct, summary.incorrect, summary.unanswered) == (0, 0, 1)
    assert summary.review_data[0].selected_answer is None
    assert feedback.sounds == [] and feedback.vibrations == []
    assert ("outcome", "unanswered") in view.calls


async def test_timeout_locks_in_current_selection(make_session, presenter):
    session = make_session()
    session.select_answer(session.current.correct_answer)
    for _ in range(40):
        session.tick()
    await session.drain()

    summary = presenter.summaries[0]
    assert summary.correct == 1
    assert summary.xp_earned == 0
    assert session.remaining_seconds == 0


async def test_countdown_task_auto_submits(make_session, presenter):
    session = make_session(tick_interval=0.001)
    await session.start()
    for _ in range(500):
        if session.summary is not None:
            break
        await asyncio.sleep(0.01)
    await session.drain()

    assert presenter.summaries[0].unanswered == 1


async def test_timeout_on_first_question_advances_to_second(make_session):
    session = make_session(questions=GK_QUESTIONS[:2])
    for _ in range(30):
        session.tick()
    await session.drain()

    assert session.current_index == 1
    assert session.remaining_seconds == 30
    assert not session.submitted
    assert len(session.review_log) == 1


async def test_stale_tick_after_advance_is_ignored(make_session):
    session = make_session(questions=GK_QUESTIONS[:2])
    stale_epoch = session._epoch
    await answer(session)
    assert session.current_index == 1

    assert session._handle_tick(stale_epoch) is False
    assert session.remaining_seconds == 30


# --- Hints and input ---

@pytest.mark.parametrize("seed", range(50))
async def test_hint_never_removes_the_correct_answer(make_session, seed):
    session = make_session(rng=random.Random(seed))
    removed = session.request_hint()
    assert removed is not None
    assert removed != session.current.correct_answer
    assert removed in session.current.options
    assert removed not in session.visible_options


async def test_second_hint_is_a_noop(make_session):
    session = make_session()
    first = session.request_hint()
    state = (session.eliminated_option, session.hint_used, session.selected_answer, session.remaining_seconds)

    assert session.request_hint() is None
    assert (session.eliminated_option, session.hint_used, session.selected_answer, session.remaining_seconds) == state
    assert session.eliminated_option == first


async def test_input_is_frozen_after_submit(make_session):
    session = make_session(questions=GK_QUESTIONS[:2], advance_delay=60)
    session.select_answer(session.current.correct_answer)
    session.submit()

    assert session.select_answer(wrong_option(session)) is False
    assert session.selected_answer == session.current.correct_answer
    assert session.request_hint() is None
    assert session.submit() is None
    assert len(session.review_log) == 1
    assert session.correct_count == 1


async def test_unknown_option_is_rejected(make_session):
    session = make_session()
    with pytest.raises(ValueError):
        session.select_answer("Berlin")


async def test_per_question_state_resets_on_advance(make_session):
    session = make_session(questions=GK_QUESTIONS[:2])
    session.tick()
    session.request_hint()
    await answer(session)

    assert session.current_index == 1
    assert session.selected_answer is None
    assert session.eliminated_option is None
    assert session.hint_used is False
    assert session.submitted is False
    assert session.remaining_seconds == 30
    assert session.current.correct_answer == "366"


async def test_questions_are_decoded_once_and_shuffled(make_session):
    question = make_question("Who makes &quot;Monopoly&quot;?", "M&amp;M&#039;s", ["Mattel", "Lego", "Bandai"])
    session = make_session(questions=[question])

    assert session.current.prompt == 'Who makes "Monopoly"?'
    assert session.current.correct_answer == "M&M's"
    assert sorted(session.current.options) == sorted(["M&M's", "Mattel", "Lego", "Bandai"])

    outcome = await answer(session, correct=True)
    assert outcome.status is ReviewStatus.CORRECT


async def test_review_log_grows_one_entry_per_question(make_session, presenter):
    session = make_session(questions=GK_QUESTIONS)
    for i in range(3):
        assert len(session.review_log) == session.current_index == i
        await answer(session, correct=i != 1)
    summary = presenter.summaries[0]
    assert len(summary.review_data) == summary.total_questions == 3
    assert summary.correct + summary.incorrect + summary.unanswered == 3


# --- Feedback ---

async def test_feedback_follows_preferences(make_session, feedback):
    session = make_session(preferences=FakePreferences(sound=False, vibration=True))
    await answer(session, correct=False)
    assert feedback.sounds == []
    assert feedback.vibrations == [False]


async def test_feedback_failure_does_not_block_progress(make_session, presenter):
    session = make_session(questions=GK_QUESTIONS[:2], feedback=FakeFeedback(fail=True))
    await answer(session)
    await answer(session)
    assert presenter.summaries[0].correct == 2


# --- Failures at the end ---

async def test_persistence_failure_still_shows_result(make_session, presenter):
    session = make_session(result_sink=FakeSink(fail=True))
    await answer(session)
    assert session.phase is SessionPhase.COMPLETED
    assert len(presenter.summaries) == 1


async def test_missing_user_skips_saving(make_session, presenter, sink):
    session = make_session(user_id=None)
    await answer(session)
    assert sink.history == []
    assert len(presenter.summaries) == 1


async def test_malformed_quiz_set_id_fails_fast(make_session):
    with pytest.raises(QuizConfigError):
        make_session(set_id="general-knowledge-1")


def test_empty_question_list_fails_fast():
    with pytest.raises(QuizConfigError):
        QuizSessionConfig.from_params({"quizSetId": "cat9_easy_set1", "quizTitle": "#1 GK", "questions": []})


# --- Exit guard ---

async def test_exit_guard_cancel_leaves_session_untouched(make_session, sink, presenter):
    session = make_session(questions=GK_QUESTIONS[:2])
    await session.start()
    session.tick()
    session.select_answer(session.current.correct_answer)
    before = (session.phase, session.current_index, session.remaining_seconds, session.selected_answer)
    navigated = []

    async def leave():
        navigated.append(True)

    assert session.exit_guard.intercept(leave) is True
    assert session.exit_guard.pending
    session.exit_guard.cancel()

    assert not session.exit_guard.pending
    assert navigated == []
    assert (session.phase, session.current_index, session.remaining_seconds, session.selected_answer) == before
    assert session._countdown_task is not None and not session._countdown_task.done()


async def test_exit_guard_confirm_abandons_without_saving(make_session, sink, presenter):
    session = make_session(questions=GK_QUESTIONS[:2])
    await session.start()
    await answer(session)
    navigated = []

    async def leave():
        navigated.append(True)

    assert session.exit_guard.intercept(leave) is True
    await session.exit_guard.confirm()

    assert navigated == [True]
    assert session.phase is SessionPhase.ABANDONED
    assert sink.history == [] and sink.daily == []
    assert presenter.summaries == []
    assert session.exit_guard.intercept(leave) is False


async def test_exit_guard_is_off_after_completion(make_session):
    session = make_session()
    await answer(session)

    async def leave():
        pass

    assert session.exit_guard.intercept(leave) is False
