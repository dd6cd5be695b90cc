import os
from typing import Optional

from pydantic import BaseModel

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


class Settings(BaseModel):
    bot_token: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    port: int = 8080
    data_dir: str = os.path.join(PROJECT_ROOT, "data")
    assets_dir: str = os.path.join(PROJECT_ROOT, "assets", "quiz_sets")
    reminder_hour: int = 8
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Reads settings from the process environment.
        Call load_dotenv() first if values live in a .env file.
        """
        defaults = cls()
        return cls(
            bot_token=os.getenv("BOT_TOKEN"),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY"),
            port=int(os.getenv("PORT", defaults.port)),
            data_dir=os.getenv("QUIZZY_DATA_DIR", defaults.data_dir),
            assets_dir=os.getenv("QUIZZY_ASSETS_DIR", defaults.assets_dir),
            reminder_hour=int(os.getenv("REMINDER_HOUR", defaults.reminder_hour)),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )

    @property
    def store_file(self) -> str:
        return os.path.join(self.data_dir, "local_store.json")
