import json
import logging
import os
from typing import Dict, Optional

logger = logging.getLogger(__name__)

STORE_FILE = os.path.abspath(os.path.join(os.path.dirname(__file__), "../../data/local_store.json"))

SOUND_ENABLED = "soundEnabled"
VIBRATION_ENABLED = "vibrationEnabled"
NOTIFICATIONS_ENABLED = "notificationsEnabled"
LAST_DAILY_QUIZ_DATE = "lastDailyQuizDate"


class LocalStore:
    """
    Small per-user key/value store for device-style settings, kept in a JSON
    file so values survive a restart. Values are strings.
    """

    def __init__(self, path: str = STORE_FILE):
        self.path = path
        self.values: Dict[str, Dict[str, str]] = {}
        self.load_from_disk()

    def load_from_disk(self):
        if not os.path.exists(self.path):
            self.values = {}
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                self.values = json.load(f)
            logger.info(f"Loaded local settings for {len(self.values)} users")
        except Exception as e:
            logger.error(f"Failed to load local store {self.path}: {e}")
            self.values = {}

    def save_to_disk(self):
        try:
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self.values, f, indent=2)
        except Exception as e:
            logger.error(f"Failed to save local store: {e}")

    def get_item(self, user_id: int, key: str) -> Optional[str]:
        return self.values.get(str(user_id), {}).get(key)

    def set_item(self, user_id: int, key: str, value: str):
        self.values.setdefault(str(user_id), {})[key] = value
        self.save_to_disk()

    def remove_item(self, user_id: int, key: str):
        user_values = self.values.get(str(user_id))
        if user_values and key in user_values:
            del user_values[key]
            self.save_to_disk()

    def get_flag(self, user_id: int, key: str, default: bool = True) -> bool:
        value = self.get_item(user_id, key)
        if value is None:
            return default
        return value == "true"

    def set_flag(self, user_id: int, key: str, enabled: bool):
        self.set_item(user_id, key, "true" if enabled else "false")


class StoredPreferences:
    """Sound and vibration switches of one user; both default to on."""

    def __init__(self, store: LocalStore, user_id: int):
        self.store = store
        self.user_id = user_id

    async def is_sound_enabled(self) -> bool:
        return self.store.get_flag(self.user_id, SOUND_ENABLED)

    async def is_vibration_enabled(self) -> bool:
        return self.store.get_flag(self.user_id, VIBRATION_ENABLED)
