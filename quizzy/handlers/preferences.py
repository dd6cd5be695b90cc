import logging

from aiogram import F, Router, types
from aiogram.filters import Command
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from quizzy.handlers.quiz import guarded_navigation
from quizzy.services.local_store import (
    NOTIFICATIONS_ENABLED,
    SOUND_ENABLED,
    VIBRATION_ENABLED,
    LocalStore,
)
from quizzy.services.reminders import ReminderScheduler

router = Router()
logger = logging.getLogger(__name__)

TOGGLES = {
    SOUND_ENABLED: "🔊 Sound",
    VIBRATION_ENABLED: "📳 Vibration",
    NOTIFICATIONS_ENABLED: "⏰ Daily reminder",
}


def get_settings_keyboard(store: LocalStore, user_id: int):
    kb = []
    for key, label in TOGGLES.items():
        state = "On" if store.get_flag(user_id, key) else "Off"
        kb.append([InlineKeyboardButton(text=f"{label}: {state}", callback_data=f"pref_toggle_{key}")])
    return InlineKeyboardMarkup(inline_keyboard=kb)


async def show_settings(message: types.Message, user_id: int, store: LocalStore):
    await message.answer("⚙️ *Settings*", reply_markup=get_settings_keyboard(store, user_id), parse_mode="Markdown")


@router.message(Command("settings"))
async def cmd_settings(message: types.Message, store: LocalStore):
    user_id = message.from_user.id

    async def action():
        await show_settings(message, user_id, store)

    await guarded_navigation(message, user_id, action)


@router.callback_query(F.data == "menu_settings")
async def menu_settings(callback: types.CallbackQuery, store: LocalStore):
    await callback.answer()
    user_id = callback.from_user.id

    async def action():
        await show_settings(callback.message, user_id, store)

    await guarded_navigation(callback.message, user_id, action)


@router.callback_query(F.data.startswith("pref_toggle_"))
async def toggle_setting(callback: types.CallbackQuery, store: LocalStore, reminders: ReminderScheduler):
    key = callback.data[len("pref_toggle_"):]
    if key not in TOGGLES:
        await callback.answer()
        return
    user_id = callback.from_user.id
    enabled = not store.get_flag(user_id, key)
    store.set_flag(user_id, key, enabled)
    logger.info(f"{key} set to {enabled} for {user_id}")

    if key == NOTIFICATIONS_ENABLED:
        if enabled:
            await reminders.schedule_daily(user_id)
        else:
            reminders.cancel(user_id)

    await callback.answer(f"{TOGGLES[key]} {'on' if enabled else 'off'}")
    await callback.message.edit_reply_markup(reply_markup=get_settings_keyboard(store, user_id))
