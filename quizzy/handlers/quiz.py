import logging
import uuid
from functools import partial
from typing import Awaitable, Callable, Dict, Optional

from aiogram import Bot, F, Router, types
from aiogram.filters import Command
from aiogram.types import ReactionTypeEmoji
from aiogram.utils.keyboard import InlineKeyboardBuilder

from quizzy.database.db_client import SupabaseClient
from quizzy.database.models import QuizConfigError, QuizSessionConfig, ReviewStatus
from quizzy.handlers.messaging import progress_bar, send_with_fallback
from quizzy.handlers.result import show_result
from quizzy.services.daily_quiz import generate_daily_quiz
from quizzy.services.local_store import LocalStore, StoredPreferences
from quizzy.services.question_loader import QuestionLoader, category_title
from quizzy.services.quiz_session import QuestionOutcome, QuizSession
from quizzy.services.reminders import ReminderScheduler

router = Router()
logger = logging.getLogger(__name__)

# One running quiz per user
active_sessions: Dict[int, QuizSession] = {}

# Sessions whose exit prompt is open; kept here even if the session finishes meanwhile
pending_exits: Dict[int, QuizSession] = {}


def main_menu():
    builder = InlineKeyboardBuilder()
    builder.button(text="📚 Categories", callback_data="menu_categories")
    builder.button(text="📅 Daily Quiz", callback_data="menu_daily")
    builder.button(text="🕘 History", callback_data="menu_history")
    builder.button(text="⚙️ Settings", callback_data="menu_settings")
    builder.adjust(2)
    return builder.as_markup()


# --- Exit guard ---

async def guarded_navigation(message: types.Message, user_id: int, action: Callable[[], Awaitable[None]]):
    """
    Runs a navigation action, unless a quiz is running: then the user is
    asked first and the action waits for the answer.
    """
    session = active_sessions.get(user_id)
    if session is None or not session.exit_guard.intercept(action):
        await action()
        return
    pending_exits[user_id] = session

    builder = InlineKeyboardBuilder()
    builder.button(text="Cancel", callback_data="exit_no")
    builder.button(text="🚪 Exit", callback_data="exit_yes")
    await message.answer("*Exit Quiz?*\n\nProgress will be lost. Exit?",
                         reply_markup=builder.as_markup(), parse_mode="Markdown")


@router.message(Command("quit"))
async def cmd_quit(message: types.Message):
    user_id = message.from_user.id
    if user_id not in active_sessions:
        await message.answer("There is no quiz running.", reply_markup=main_menu())
        return

    async def back_home():
        await message.answer("🏠 Back to the menu.", reply_markup=main_menu())

    await guarded_navigation(message, user_id, back_home)


@router.callback_query(F.data == "exit_yes")
async def confirm_exit(callback: types.CallbackQuery):
    await callback.answer()
    user_id = callback.from_user.id
    session = pending_exits.pop(user_id, None)
    await callback.message.delete()
    if session is None:
        return
    if active_sessions.get(user_id) is session:
        del active_sessions[user_id]
    await session.exit_guard.confirm()


@router.callback_query(F.data == "exit_no")
async def cancel_exit(callback: types.CallbackQuery):
    await callback.answer("Keep going! 💪")
    session = pending_exits.pop(callback.from_user.id, None)
    if session is not None:
        session.exit_guard.cancel()
    await callback.message.delete()


# --- Chat view of a running session ---

class ChatQuizView:
    """Shows the current question as one chat message and keeps it up to date."""

    def __init__(self, bot: Bot, chat_id: int, session_id: str):
        self.bot = bot
        self.chat_id = chat_id
        self.session_id = session_id
        self.message_id: Optional[int] = None

    def milestones(self, total: int):
        return {total * 2 // 3, total // 3, 5}

    def render(self, session: QuizSession, outcome: Optional[QuestionOutcome] = None) -> str:
        header = f"*Q{session.question_number}/{session.total_questions}:* {session.current.prompt}"
        if outcome is None:
            timer = f"⏱️ {session.remaining_seconds}s {progress_bar(session.remaining_seconds, session.total_time)}"
            if session.remaining_seconds <= 5:
                timer += "\n⚡ *HURRY!*"
            lines = [header, "", timer]
            if session.hint_used:
                lines.append("💡 One wrong answer removed (XP halved)")
            return "\n".join(lines)

        if outcome.status is ReviewStatus.CORRECT:
            verdict = f"✅ *Correct!* +{outcome.xp} XP"
        elif outcome.status is ReviewStatus.INCORRECT:
            verdict = f"❌ *Wrong!*\nYour answer: {outcome.selected_answer}\nCorrect: {outcome.correct_answer}"
        else:
            verdict = f"⌛ *Time up!*\nCorrect: {outcome.correct_answer}"
        return f"{header}\n\n{verdict}\n\n🏆 Total: {session.total_xp} XP"

    def keyboard(self, session: QuizSession):
        builder = InlineKeyboardBuilder()
        for i, option in enumerate(session.current.options):
            if option == session.eliminated_option:
                continue
            label = f"👉 {option}" if option == session.selected_answer else option
            builder.button(text=label, callback_data=f"pick:{i}:{self.session_id}")
        controls = 0
        if not session.hint_used:
            builder.button(text="💡 Hint", callback_data=f"hint:{self.session_id}")
            controls += 1
        if session.selected_answer is not None:
            builder.button(text="📨 Submit", callback_data=f"submit:{self.session_id}")
            controls += 1
        options = len(session.visible_options)
        builder.adjust(*([1] * options), max(controls, 1))
        return builder.as_markup()

    async def show_question(self, session: QuizSession):
        msg = await send_with_fallback(
            partial(self.bot.send_message, self.chat_id),
            self.render(session),
            reply_markup=self.keyboard(session),
        )
        if msg is not None:
            self.message_id = msg.message_id

    async def refresh(self, session: QuizSession):
        if self.message_id is None:
            return
        await send_with_fallback(
            partial(self.bot.edit_message_text, chat_id=self.chat_id, message_id=self.message_id),
            self.render(session),
            reply_markup=self.keyboard(session),
        )

    async def show_countdown(self, session: QuizSession):
        # Telegram rate limits edits, so the timer only moves at a few points
        if session.remaining_seconds in self.milestones(session.total_time):
            await self.refresh(session)

    async def show_outcome(self, session: QuizSession, outcome: QuestionOutcome):
        if self.message_id is None:
            return
        await send_with_fallback(
            partial(self.bot.edit_message_text, chat_id=self.chat_id, message_id=self.message_id),
            self.render(session, outcome),
            reply_markup=None,
        )


class ChatFeedback:
    """Answer cues in chat: a reaction stands in for sound, a short ping for vibration."""

    def __init__(self, bot: Bot, chat_id: int, view: ChatQuizView):
        self.bot = bot
        self.chat_id = chat_id
        self.view = view

    async def play(self, success: bool):
        if self.view.message_id is None:
            return
        await self.bot.set_message_reaction(
            chat_id=self.chat_id,
            message_id=self.view.message_id,
            reaction=[ReactionTypeEmoji(emoji="🎉" if success else "👎")],
        )

    async def vibrate(self, success: bool):
        await self.bot.send_message(self.chat_id, "✅" if success else "❌")


# --- Starting sessions ---

async def start_session(bot: Bot, chat_id: int, user_id: int, params: dict,
                        db: SupabaseClient, store: LocalStore, reminders: ReminderScheduler) -> Optional[QuizSession]:
    try:
        config = QuizSessionConfig.from_params(params)
    except QuizConfigError as e:
        logger.error(f"Refusing to start quiz {params.get('quizSetId')}: {e}")
        await bot.send_message(chat_id, "⚠️ This quiz has no questions.")
        return None

    previous = active_sessions.pop(user_id, None)
    if previous is not None:
        await previous.abandon()

    session_id = str(uuid.uuid4())[:8]
    view = ChatQuizView(bot, chat_id, session_id)

    async def current_user() -> Optional[int]:
        return user_id

    async def present(summary):
        if active_sessions.get(user_id) is session:
            del active_sessions[user_id]
        await show_result(bot, chat_id, user_id, summary)

    session = QuizSession(
        config,
        user_provider=current_user,
        result_sink=db,
        presenter=present,
        preferences=StoredPreferences(store, user_id),
        feedback=ChatFeedback(bot, chat_id, view),
        notifications=reminders.canceler_for(user_id),
        view=view,
        session_id=session_id,
    )
    active_sessions[user_id] = session

    await bot.send_message(
        chat_id,
        f"🚀 *{config.quiz_title}*\n⏱️ {len(config.questions)} questions, {session.total_time}s each",
        parse_mode="Markdown",
    )
    await session.start()
    return session


@router.message(Command("quiz"))
async def cmd_quiz(message: types.Message, loader: QuestionLoader):
    await guarded_navigation(message, message.from_user.id, partial(show_categories, message, loader))


@router.callback_query(F.data == "menu_categories")
async def menu_categories(callback: types.CallbackQuery, loader: QuestionLoader):
    await callback.answer()
    await guarded_navigation(callback.message, callback.from_user.id, partial(show_categories, callback.message, loader))


async def show_categories(message: types.Message, loader: QuestionLoader):
    categories = loader.categories()
    if not categories:
        await message.answer("⚠️ No quiz sets are installed.")
        return
    builder = InlineKeyboardBuilder()
    for cat in categories:
        builder.button(text=cat["title"], callback_data=f"cat:{cat['id']}")
    builder.adjust(2)
    await message.answer("📚 *Pick a category:*", reply_markup=builder.as_markup(), parse_mode="Markdown")


@router.callback_query(F.data.startswith("cat:"))
async def show_quiz_sets(callback: types.CallbackQuery, loader: QuestionLoader, db: SupabaseClient):
    await callback.answer()
    category_id = int(callback.data.split(":")[1])
    completed = await db.get_completed_set_ids(callback.from_user.id)
    sets = loader.list_sets(category_id, completed)
    if not sets:
        await callback.message.answer("⚠️ No quizzes in this category yet.")
        return

    builder = InlineKeyboardBuilder()
    for item in sets:
        mark = " ✅" if item["completed"] else ""
        builder.button(
            text=f"#{item['display_index']} {item['difficulty']} · {item['seconds_per_question']} sec / Qs · "
                 f"{item['questions']} Qs{mark}",
            callback_data=f"set:{item['id']}:{item['display_index']}",
        )
    builder.adjust(1)
    await callback.message.edit_text(f"🎯 *{category_title(category_id)}*", reply_markup=builder.as_markup(),
                                     parse_mode="Markdown")


@router.callback_query(F.data.startswith("set:"))
async def start_quiz_set(callback: types.CallbackQuery, bot: Bot, loader: QuestionLoader, db: SupabaseClient,
                         store: LocalStore, reminders: ReminderScheduler):
    await callback.answer()
    _, key, display_index = callback.data.split(":")
    questions = loader.get_set(key)
    category_id = int(key.split("_")[0][3:])
    params = {
        "quizSetId": key,
        "quizTitle": f"#{display_index} {category_title(category_id)}",
        "difficulty": key.split("_")[1],
        "questions": questions,
    }
    action = partial(start_session, bot, callback.message.chat.id, callback.from_user.id, params, db, store, reminders)
    await guarded_navigation(callback.message, callback.from_user.id, action)


@router.message(Command("daily"))
async def cmd_daily(message: types.Message, bot: Bot, loader: QuestionLoader, db: SupabaseClient,
                    store: LocalStore, reminders: ReminderScheduler):
    action = partial(start_daily, bot, message.chat.id, message.from_user.id, loader, db, store, reminders)
    await guarded_navigation(message, message.from_user.id, action)


@router.callback_query(F.data == "menu_daily")
async def menu_daily(callback: types.CallbackQuery, bot: Bot, loader: QuestionLoader, db: SupabaseClient,
                     store: LocalStore, reminders: ReminderScheduler):
    await callback.answer()
    action = partial(start_daily, bot, callback.message.chat.id, callback.from_user.id, loader, db, store, reminders)
    await guarded_navigation(callback.message, callback.from_user.id, action)


async def start_daily(bot: Bot, chat_id: int, user_id: int, loader: QuestionLoader, db: SupabaseClient,
                      store: LocalStore, reminders: ReminderScheduler):
    quiz = generate_daily_quiz(loader)
    if quiz is None:
        await bot.send_message(chat_id, "⚠️ The daily quiz is not available right now.")
        return
    await start_session(bot, chat_id, user_id, quiz, db, store, reminders)


# --- Answering ---

def _session_for(callback: types.CallbackQuery, session_id: str) -> Optional[QuizSession]:
    session = active_sessions.get(callback.from_user.id)
    if session is None or session.session_id != session_id:
        return None
    return session


@router.callback_query(F.data.startswith("pick:"))
async def handle_pick(callback: types.CallbackQuery):
    _, index, session_id = callback.data.split(":")
    session = _session_for(callback, session_id)
    if session is None:
        await callback.answer("⚠️ Session expired!", show_alert=True)
        return
    index = int(index)
    if index >= len(session.current.options) or not session.select_answer(session.current.options[index]):
        await callback.answer()
        return
    await callback.answer()
    await session.view.refresh(session)


@router.callback_query(F.data.startswith("hint:"))
async def handle_hint(callback: types.CallbackQuery):
    session = _session_for(callback, callback.data.split(":")[1])
    if session is None:
        await callback.answer("⚠️ Session expired!", show_alert=True)
        return
    removed = session.request_hint()
    if removed is None:
        await callback.answer("Only one hint per question.")
        return
    await callback.answer(f"💡 Removed: {removed}")
    await session.view.refresh(session)


@router.callback_query(F.data.startswith("submit:"))
async def handle_submit(callback: types.CallbackQuery):
    session = _session_for(callback, callback.data.split(":")[1])
    if session is None:
        await callback.answer("⚠️ Session expired!", show_alert=True)
        return
    await callback.answer()
    session.submit()
