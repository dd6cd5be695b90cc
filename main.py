import asyncio
import logging

from aiogram import Bot, Dispatcher, F, types
from aiogram.filters.command import Command
from aiogram.utils.keyboard import InlineKeyboardBuilder
from aiohttp import web
from dotenv import load_dotenv

from quizzy.config import Settings
from quizzy.database.db_client import SupabaseClient
from quizzy.handlers.history import router as history_router
from quizzy.handlers.preferences import router as prefs_router
from quizzy.handlers.quiz import active_sessions, guarded_navigation, main_menu
from quizzy.handlers.quiz import router as quiz_router
from quizzy.handlers.result import router as result_router
from quizzy.services.local_store import LocalStore
from quizzy.services.question_loader import QuestionLoader
from quizzy.services.reminders import ReminderScheduler

# Load environment variables
load_dotenv()
settings = Settings.from_env()

# Logger setup
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

dp = Dispatcher()
dp.include_router(quiz_router)
dp.include_router(result_router)
dp.include_router(prefs_router)
dp.include_router(history_router)


async def welcome(message: types.Message, full_name: str):
    await message.answer(
        f"👋 *Hello {full_name}! Welcome to Quizzy.*\n\n"
        "🧠 Pick a category and beat the clock, or take today's Daily Quiz.\n"
        "⚡ Faster correct answers earn more XP. A 💡 hint halves it.\n\n"
        "👇 *What do you want to do?*",
        reply_markup=main_menu(),
        parse_mode="Markdown",
    )


@dp.message(Command("start"))
async def cmd_start(message: types.Message, db: SupabaseClient, reminders: ReminderScheduler):
    """
    Handle /start command.
    Registers the player's profile and schedules the daily reminder.
    """
    user_id = message.from_user.id
    full_name = message.from_user.full_name

    async def action():
        logger.info(f"User {user_id} started the bot.")
        existing = await db.get_profile(user_id)
        await db.upsert_profile({
            "id": user_id,
            "username": message.from_user.username or (existing or {}).get("username", ""),
            "full_name": full_name,
        })
        await reminders.schedule_daily(user_id)
        await welcome(message, full_name)

    await guarded_navigation(message, user_id, action)


@dp.callback_query(F.data == "menu_home")
async def menu_home(callback: types.CallbackQuery):
    await callback.answer()
    user_id = callback.from_user.id

    async def action():
        await welcome(callback.message, callback.from_user.full_name)

    await guarded_navigation(callback.message, user_id, action)


# --- Keep Alive Server ---

async def health_check(request):
    return web.Response(text="Bot is alive!")


async def start_web_server(port: int):
    app = web.Application()
    app.router.add_get("/", health_check)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    logger.info(f"Web server started on port {port}")
    return runner


def make_reminder_sender(bot: Bot):
    async def send_reminder(user_id: int, title: str, body: str):
        builder = InlineKeyboardBuilder()
        builder.button(text="📅 Start Daily Quiz", callback_data="menu_daily")
        await bot.send_message(user_id, f"*{title}*\n{body}", reply_markup=builder.as_markup(), parse_mode="Markdown")
    return send_reminder


# --- Main Entry Point ---
async def main():
    logger.info("Starting Quizzy Bot...")
    bot = Bot(token=settings.bot_token)

    runner = await start_web_server(settings.port)

    db = SupabaseClient(settings.supabase_url, settings.supabase_key)
    connected = await db.connect()
    if not connected:
        logger.error("Failed to connect to Supabase. Check credentials.")

    store = LocalStore(settings.store_file)
    loader = QuestionLoader(settings.assets_dir)
    reminders = ReminderScheduler(store, make_reminder_sender(bot), db=db, hour=settings.reminder_hour)

    dp["db"] = db
    dp["store"] = store
    dp["loader"] = loader
    dp["reminders"] = reminders
    await reminders.restore_all()

    try:
        logger.info("Bot is polling...")
        await dp.start_polling(bot)
    finally:
        for session in list(active_sessions.values()):
            session.dispose()
        reminders.cancel_everything()
        await runner.cleanup()
        await bot.session.close()


if __name__ == "__main__":
    if not settings.bot_token:
        logger.error("BOT_TOKEN not found in .env file!")
    else:
        try:
            asyncio.run(main())
        except KeyboardInterrupt:
            logger.info("Bot stopped by user.")
