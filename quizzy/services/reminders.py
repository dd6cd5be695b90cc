import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional

from quizzy.services.daily_quiz import today_iso
from quizzy.services.local_store import LAST_DAILY_QUIZ_DATE, NOTIFICATIONS_ENABLED, LocalStore

logger = logging.getLogger(__name__)

REMINDER_TITLE = "🧠 Ready for Today's Daily Quiz?"
REMINDER_BODY = "Test your knowledge now!"

# (user_id, title, body) -> delivery
ReminderSender = Callable[[int, str, str], Awaitable[None]]


def seconds_until(hour: int, now: Optional[datetime] = None, skip_today: bool = False) -> float:
    """
    Seconds from now until the next hour:00 UTC (tomorrow if already past).
    With skip_today the target is always tomorrow's hour:00.
    """
    now = now or datetime.now(timezone.utc)
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now or skip_today:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class ReminderScheduler:
    """Repeating daily reminders, one background task per user."""

    def __init__(self, store: LocalStore, sender: ReminderSender, db=None, hour: int = 8):
        self.store = store
        self.sender = sender
        self.db = db
        self.hour = hour
        self.tasks: Dict[int, asyncio.Task] = {}

    async def schedule_daily(self, user_id: int, skip_today: bool = False) -> bool:
        """
        Starts the daily reminder for a user, replacing any existing one.
        Nothing is scheduled when reminders are switched off. When today's
        daily quiz is already done the first reminder goes out tomorrow.
        """
        try:
            if not self.store.get_flag(user_id, NOTIFICATIONS_ENABLED):
                self.cancel(user_id)
                return False
            if not skip_today and await self._done_today(user_id):
                logger.info(f"Daily quiz already completed today by {user_id}. First reminder tomorrow.")
                skip_today = True

            self.cancel(user_id)
            delay = seconds_until(self.hour, skip_today=skip_today)
            self.tasks[user_id] = asyncio.create_task(self._reminder_loop(user_id, delay))
            logger.info(f"Daily quiz reminder scheduled for {user_id} at {self.hour:02d}:00 UTC")
            return True
        except Exception as e:
            logger.error(f"Reminder scheduling error for {user_id}: {e}")
            return False

    async def restore_all(self) -> int:
        """Re-arms reminders for every user the local store knows, e.g. after a restart."""
        scheduled = 0
        for key in list(self.store.values):
            if not key.isdigit():
                continue
            if await self.schedule_daily(int(key)):
                scheduled += 1
        logger.info(f"Restored daily reminders for {scheduled} users")
        return scheduled

    def cancel(self, user_id: int):
        task = self.tasks.pop(user_id, None)
        if task is not None and not task.done():
            task.cancel()
            logger.info(f"Daily quiz reminder cancelled for {user_id}")

    def cancel_everything(self):
        for user_id in list(self.tasks):
            self.cancel(user_id)

    def canceler_for(self, user_id: int) -> "UserReminders":
        return UserReminders(self, user_id)

    async def _done_today(self, user_id: int) -> bool:
        today = today_iso()
        if self.store.get_item(user_id, LAST_DAILY_QUIZ_DATE) == today:
            return True
        if self.db is None:
            return False
        return await self.db.has_completed_daily_quiz(user_id, today)

    async def _reminder_loop(self, user_id: int, delay: float):
        try:
            while True:
                await asyncio.sleep(delay)
                if self.store.get_item(user_id, LAST_DAILY_QUIZ_DATE) != today_iso():
                    try:
                        await self.sender(user_id, REMINDER_TITLE, REMINDER_BODY)
                    except Exception as e:
                        logger.error(f"Failed to send reminder to {user_id}: {e}")
                # Step past the reminder minute before computing the next wait
                await asyncio.sleep(1)
                delay = seconds_until(self.hour)
        except asyncio.CancelledError:
            pass


class UserReminders:
    """Reminder controls of one user, handed to a daily quiz session."""

    def __init__(self, scheduler: ReminderScheduler, user_id: int):
        self.scheduler = scheduler
        self.user_id = user_id

    async def cancel_all(self):
        """Drops today's pending reminder; the next one is tomorrow's."""
        await self.scheduler.schedule_daily(self.user_id, skip_today=True)

    async def record_completion_date(self, iso_date: str):
        self.scheduler.store.set_item(self.user_id, LAST_DAILY_QUIZ_DATE, iso_date)
