from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias


@dataclass(frozen=True, slots=True)
class TelegramDocument:
    file_id: str
    file_name: str | None
    mime_type: str | None
    file_size: int | None


@dataclass(frozen=True, slots=True)
class TelegramIncomingMessage:
    chat_id: int
    message_id: int
    text: str
    sender_username: str | None
    sender_first_name: str | None
    has_sender: bool = True
    document: TelegramDocument | None = None


@dataclass(frozen=True, slots=True)
class TelegramCallbackQuery:
    callback_query_id: str
    chat_id: int
    message_id: int
    data: str
    sender_username: str | None
    sender_first_name: str | None
    has_sender: bool = True


TelegramIncomingUpdate: TypeAlias = TelegramIncomingMessage | TelegramCallbackQuery
