"""Telegram Bot API client and update parsing."""

from .client import (
    BotClient,
    ChatNotFound,
    MessageEmpty,
    MessageTooLong,
    TelegramApiError,
    TelegramClient,
    TelegramError,
    TelegramNetworkError,
    TooManyRequests,
)
from .parsing import parse_incoming_update, poll_incoming
from .types import (
    TelegramCallbackQuery,
    TelegramDocument,
    TelegramIncomingMessage,
    TelegramIncomingUpdate,
)

__all__ = [
    "BotClient",
    "ChatNotFound",
    "MessageEmpty",
    "MessageTooLong",
    "TelegramApiError",
    "TelegramCallbackQuery",
    "TelegramClient",
    "TelegramDocument",
    "TelegramError",
    "TelegramIncomingMessage",
    "TelegramIncomingUpdate",
    "TelegramNetworkError",
    "TooManyRequests",
    "parse_incoming_update",
    "poll_incoming",
]
