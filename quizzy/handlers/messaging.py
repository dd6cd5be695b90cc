import logging
from typing import Awaitable, Callable, Optional

from aiogram.exceptions import TelegramBadRequest

logger = logging.getLogger(__name__)


async def send_with_fallback(send: Callable[..., Awaitable], text: str, reply_markup=None):
    """
    Sends (or edits) with Markdown first and retries as plain text when
    Telegram rejects the entities. Trivia text often carries stray * and _.
    """
    try:
        return await send(text, reply_markup=reply_markup, parse_mode="Markdown")
    except TelegramBadRequest as e:
        if "not modified" in str(e):
            return None
        logger.warning(f"Markdown send failed: {e}. Retrying plain text.")
    try:
        return await send(text.replace("*", ""), reply_markup=reply_markup, parse_mode=None)
    except TelegramBadRequest as e:
        if "not modified" in str(e):
            return None
        raise


def progress_bar(remaining: int, total: int, width: int = 5) -> str:
    if total <= 0 or remaining <= 0:
        return "⬛" * width
    filled = max(1, -(-remaining * width // total))  # ceil
    ratio = remaining / total
    if ratio > 0.66:
        block = "🟩"
    elif ratio > 0.33:
        block = "🟨"
    elif ratio > 0.15:
        block = "🟧"
    else:
        block = "🟥"
    return block * filled + "⬜" * (width - filled)


def short(text: Optional[str], limit: int = 60) -> str:
    if text is None:
        return "—"
    return text if len(text) <= limit else text[: limit - 1] + "…"
