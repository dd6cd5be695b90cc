import logging

from aiogram import F, Router, types
from aiogram.filters import Command
from aiogram.utils.keyboard import InlineKeyboardBuilder

from quizzy.database.db_client import SupabaseClient
from quizzy.handlers.messaging import send_with_fallback
from quizzy.handlers.quiz import guarded_navigation

router = Router()
logger = logging.getLogger(__name__)


def render_history(rows) -> str:
    if not rows:
        return "🕘 No quizzes played yet."
    lines = ["🕘 *Recent quizzes*", ""]
    for i, row in enumerate(rows, start=1):
        lines.append(
            f"{i}. {row.get('quiz_title')} · {row.get('score', 0)}% · {row.get('xp', 0)} XP · {row.get('date_taken') or ''}"
        )
    return "\n".join(lines)


def history_keyboard(rows):
    if not rows:
        return None
    builder = InlineKeyboardBuilder()
    for i, row in enumerate(rows, start=1):
        if row.get("id") is not None:
            builder.button(text=f"🗑 {i}", callback_data=f"hist_del:{row['id']}")
    builder.adjust(5)
    return builder.as_markup()


async def show_history(message: types.Message, user_id: int, db: SupabaseClient):
    rows = await db.get_history(user_id)
    await send_with_fallback(message.answer, render_history(rows), reply_markup=history_keyboard(rows))


@router.message(Command("history"))
async def cmd_history(message: types.Message, db: SupabaseClient):
    user_id = message.from_user.id

    async def action():
        await show_history(message, user_id, db)

    await guarded_navigation(message, user_id, action)


@router.callback_query(F.data == "menu_history")
async def menu_history(callback: types.CallbackQuery, db: SupabaseClient):
    await callback.answer()
    user_id = callback.from_user.id

    async def action():
        await show_history(callback.message, user_id, db)

    await guarded_navigation(callback.message, user_id, action)


@router.callback_query(F.data.startswith("hist_del:"))
async def delete_entry(callback: types.CallbackQuery, db: SupabaseClient):
    entry_id = int(callback.data.split(":")[1])
    user_id = callback.from_user.id
    if await db.delete_history_entry(user_id, entry_id):
        await callback.answer("Deleted.")
        rows = await db.get_history(user_id)
        await send_with_fallback(callback.message.edit_text, render_history(rows), reply_markup=history_keyboard(rows))
    else:
        await callback.answer("Could not delete this entry.", show_alert=True)
