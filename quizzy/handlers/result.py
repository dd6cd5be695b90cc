from functools import partial
from typing import Dict

from aiogram import Bot, F, Router, types
from aiogram.utils.keyboard import InlineKeyboardBuilder

from quizzy.database.models import ResultSummary, ReviewStatus
from quizzy.handlers.messaging import send_with_fallback, short
from quizzy.services.scoring import compute_score, format_duration

router = Router()

# Last finished quiz per user, for the review screen
last_results: Dict[int, ResultSummary] = {}

STATUS_ICONS = {
    ReviewStatus.CORRECT: "✅",
    ReviewStatus.INCORRECT: "❌",
    ReviewStatus.UNANSWERED: "⌛",
}


def render_result(summary: ResultSummary) -> str:
    score = compute_score(summary.correct, summary.total_questions)
    return (
        f"🏁 *Quiz Finished!*\n"
        f"{summary.category_title}\n\n"
        f"🏆 *Score*: {score}%\n"
        f"🕒 *Time*: {format_duration(summary.time_taken)}\n"
        f"⭐ *XP Earned*: {summary.xp_earned}\n\n"
        f"✅ Correct: {summary.correct}\n"
        f"❌ Incorrect: {summary.incorrect}\n"
        f"⌛ Unanswered: {summary.unanswered}"
    )


def render_review(summary: ResultSummary) -> str:
    score = compute_score(summary.correct, summary.total_questions)
    lines = [f"📝 *Review: {summary.category_title}*", f"{score}% · {summary.xp_earned} XP", ""]
    for entry in summary.review_data:
        lines.append(f"{STATUS_ICONS[entry.status]} *{entry.number}.* {entry.question}")
        lines.append(f"   Correct: {entry.correct_answer}")
        if entry.status is ReviewStatus.INCORRECT:
            lines.append(f"   Yours: {short(entry.selected_answer)}")
    return "\n".join(lines)


async def show_result(bot: Bot, chat_id: int, user_id: int, summary: ResultSummary):
    last_results[user_id] = summary

    builder = InlineKeyboardBuilder()
    builder.button(text="📝 Review Answers", callback_data="review_last")
    builder.button(text="🔄 Play Again", callback_data="menu_categories")
    builder.button(text="🏠 Home", callback_data="menu_home")
    builder.adjust(1)

    await send_with_fallback(partial(bot.send_message, chat_id), render_result(summary),
                             reply_markup=builder.as_markup())


@router.callback_query(F.data == "review_last")
async def show_review(callback: types.CallbackQuery):
    await callback.answer()
    summary = last_results.get(callback.from_user.id)
    if summary is None:
        await callback.message.answer("Nothing to review yet. Finish a quiz first!")
        return
    await send_with_fallback(callback.message.answer, render_review(summary))
