import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from supabase import Client, create_client

from quizzy.database.models import DAILY_TITLE_PREFIX, QuizHistoryRecord

logger = logging.getLogger(__name__)

HISTORY_TABLE = "quiz_history"
PROFILES_TABLE = "profiles"


class ResultSinkError(RuntimeError):
    """Raised when a quiz result could not be written."""


class SupabaseClient:
    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        self.url = url or os.getenv("SUPABASE_URL")
        self.key = key or os.getenv("SUPABASE_KEY")
        self.client: Client = None

    async def connect(self):
        """
        Connects to Supabase.
        """
        try:
            if not self.url or not self.key:
                logger.error("Supabase credentials missing in .env")
                return False

            self.client = create_client(self.url, self.key)
            logger.info("Supabase connected successfully.")
            return True
        except Exception as e:
            logger.error(f"Supabase connection failed: {e}")
            return False

    def get_utc_date(self) -> str:
        """Returns current date in UTC as string YYYY-MM-DD"""
        return datetime.now(timezone.utc).strftime("%Y-%m-%d")

    def _require_client(self) -> Client:
        if not self.client:
            raise ResultSinkError("DB Client not initialized.")
        return self.client

    # --- Quiz results ---

    async def insert_quiz_history(self, record: QuizHistoryRecord):
        """
        Stores one finished (non-daily) quiz in the history table.
        """
        client = self._require_client()
        now = datetime.now(timezone.utc)
        payload = record.model_dump(mode="json")
        payload["date_taken"] = record.date_taken or now.strftime("%Y-%m-%d")
        payload["time_taken"] = (record.time_taken or now).isoformat()
        try:
            client.table(HISTORY_TABLE).insert(payload).execute()
            logger.info(f"Saved quiz history for {record.user_id}: {record.quiz_set_id} ({record.score}%)")
        except Exception as e:
            raise ResultSinkError(f"Failed to insert quiz history: {e}") from e

    async def save_daily_quiz_result(self, user_id: int, score: int, xp: int, review_data: List[dict],
                                     time_taken_seconds: int = 0):
        """
        Save or update today's Daily Quiz result for a user.
        An existing row for today is only replaced by a strictly higher score.
        """
        client = self._require_client()
        now = datetime.now(timezone.utc)
        date_taken = now.strftime("%Y-%m-%d")
        quiz_title = f"{DAILY_TITLE_PREFIX}{date_taken}"

        try:
            response = (
                client.table(HISTORY_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("quiz_title", quiz_title)
                .execute()
            )
            existing = response.data[0] if response.data else None

            if existing and score <= (existing.get("score") or 0):
                logger.info(f"Daily quiz for {user_id} kept at {existing.get('score')} (new score {score})")
                return

            payload = {
                "user_id": user_id,
                "category_id": 0,  # mixed
                "category_title": "Mixed",
                "quiz_title": quiz_title,
                "difficulty": "random",
                "score": score,
                "xp": xp,
                "time_taken_seconds": time_taken_seconds,
                "date_taken": date_taken,
                "time_taken": now.isoformat(),
                "review_data": review_data,
            }
            if existing:
                client.table(HISTORY_TABLE).update(payload).eq("id", existing["id"]).execute()
            else:
                client.table(HISTORY_TABLE).insert(payload).execute()
            logger.info(f"Daily quiz saved for {user_id}: {score}%")
        except Exception as e:
            raise ResultSinkError(f"Failed to save daily quiz result: {e}") from e

    # --- History reads ---

    async def has_completed_daily_quiz(self, user_id: int, day: str) -> bool:
        if not self.client: return False
        try:
            response = (
                self.client.table(HISTORY_TABLE)
                .select("id")
                .eq("user_id", user_id)
                .eq("date_taken", day)
                .ilike("quiz_title", "Daily Quiz%")
                .execute()
            )
            return bool(response.data)
        except Exception as e:
            logger.error(f"Failed to check daily quiz history: {e}")
            return False

    async def get_completed_set_ids(self, user_id: int) -> set:
        if not self.client: return set()
        try:
            response = self.client.table(HISTORY_TABLE).select("quiz_set_id").eq("user_id", user_id).execute()
            return {row["quiz_set_id"] for row in response.data or [] if row.get("quiz_set_id")}
        except Exception as e:
            logger.error(f"Progress fetch error: {e}")
            return set()

    async def get_history(self, user_id: int, limit: int = 10) -> List[dict]:
        if not self.client: return []
        try:
            response = (
                self.client.table(HISTORY_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .order("time_taken", desc=True)
                .limit(limit)
                .execute()
            )
            return response.data or []
        except Exception as e:
            logger.error(f"Failed to get history: {e}")
            return []

    async def delete_history_entry(self, user_id: int, entry_id: int) -> bool:
        if not self.client: return False
        try:
            self.client.table(HISTORY_TABLE).delete().eq("id", entry_id).eq("user_id", user_id).execute()
            logger.info(f"Deleted history entry {entry_id} of {user_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to delete history entry: {e}")
            return False

    # --- Profiles ---

    async def get_profile(self, user_id: int):
        if not self.client: return None
        try:
            response = self.client.table(PROFILES_TABLE).select("*").eq("id", user_id).execute()
            if response.data:
                return response.data[0]
            return None
        except Exception as e:
            logger.error(f"Failed to get profile: {e}")
            return None

    async def upsert_profile(self, data: dict) -> bool:
        if not self.client:
            logger.warning("DB Client not initialized.")
            return False
        try:
            self.client.table(PROFILES_TABLE).upsert(data).execute()
            logger.info(f"Upserted profile: {data.get('id')}")
            return True
        except Exception as e:
            logger.error(f"Failed to upsert profile: {e}")
            return False
