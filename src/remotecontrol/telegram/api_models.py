from __future__ import annotations

from typing import Any

import msgspec

__all__ = [
    "CallbackQuery",
    "Chat",
    "Document",
    "File",
    "Message",
    "Update",
    "User",
    "decode_update",
]


class User(msgspec.Struct, forbid_unknown_fields=False):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: str | None = None
    username: str | None = None


class Chat(msgspec.Struct, forbid_unknown_fields=False):
    id: int
    type: str = "private"


class Document(msgspec.Struct, forbid_unknown_fields=False):
    file_id: str
    file_unique_id: str | None = None
    file_name: str | None = None
    mime_type: str | None = None
    file_size: int | None = None


class Message(msgspec.Struct, forbid_unknown_fields=False):
    message_id: int
    chat: Chat | None = None
    from_: User | None = msgspec.field(default=None, name="from")
    date: int | None = None
    text: str | None = None
    caption: str | None = None
    document: Document | None = None


class CallbackQuery(msgspec.Struct, forbid_unknown_fields=False):
    id: str
    from_: User | None = msgspec.field(default=None, name="from")
    message: Message | None = None
    data: str | None = None


class Update(msgspec.Struct, forbid_unknown_fields=False):
    update_id: int
    message: Message | None = None
    callback_query: CallbackQuery | None = None


class File(msgspec.Struct, forbid_unknown_fields=False):
    file_id: str
    file_unique_id: str | None = None
    file_size: int | None = None
    file_path: str | None = None


def decode_update(payload: dict[str, Any]) -> Update:
    return msgspec.convert(payload, type=Update)
