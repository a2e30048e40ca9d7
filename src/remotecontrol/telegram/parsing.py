from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import anyio
import msgspec

from ..logging import get_logger
from .api_models import CallbackQuery, Document, Message, Update, User
from .client import BotClient, TelegramError, TooManyRequests
from .types import (
    TelegramCallbackQuery,
    TelegramDocument,
    TelegramIncomingMessage,
    TelegramIncomingUpdate,
)

logger = get_logger(__name__)

ALLOWED_UPDATES = ["message", "callback_query"]
POLL_FAILURE_BACKOFF_S = 2.0


def parse_incoming_update(
    update: Update | dict[str, Any],
) -> TelegramIncomingUpdate | None:
    if isinstance(update, dict):
        try:
            update = msgspec.convert(update, type=Update)
        except msgspec.ValidationError:
            logger.debug("telegram.update.invalid", update=update)
            return None

    if update.message is not None:
        return _parse_incoming_message(update.message)
    if update.callback_query is not None:
        return _parse_callback_query(update.callback_query)
    return None


def _sender_fields(user: User | None) -> tuple[str | None, str | None]:
    if user is None:
        return None, None
    return user.username, user.first_name


def _parse_incoming_message(msg: Message) -> TelegramIncomingMessage | None:
    chat = msg.chat
    if chat is None:
        return None
    text = msg.text if msg.text is not None else msg.caption
    username, first_name = _sender_fields(msg.from_)
    document = _document(msg.document) if msg.document is not None else None
    return TelegramIncomingMessage(
        chat_id=chat.id,
        message_id=msg.message_id,
        text=text or "",
        sender_username=username,
        sender_first_name=first_name,
        has_sender=msg.from_ is not None,
        document=document,
    )


def _parse_callback_query(query: CallbackQuery) -> TelegramCallbackQuery | None:
    msg = query.message
    if msg is None or msg.chat is None:
        return None
    username, first_name = _sender_fields(query.from_)
    return TelegramCallbackQuery(
        callback_query_id=query.id,
        chat_id=msg.chat.id,
        message_id=msg.message_id,
        data=query.data or "",
        sender_username=username,
        sender_first_name=first_name,
        has_sender=query.from_ is not None,
    )


def _document(document: Document) -> TelegramDocument:
    return TelegramDocument(
        file_id=document.file_id,
        file_name=document.file_name,
        mime_type=document.mime_type,
        file_size=document.file_size,
    )


async def poll_incoming(
    bot: BotClient,
    *,
    offset: int | None = None,
    timeout_s: int = 3,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> AsyncIterator[TelegramIncomingUpdate]:
    while True:
        try:
            updates = await bot.get_updates(
                offset=offset,
                timeout_s=timeout_s,
                allowed_updates=ALLOWED_UPDATES,
            )
        except TooManyRequests as exc:
            delay = exc.retry_after or POLL_FAILURE_BACKOFF_S
            logger.info("loop.get_updates.rate_limited", retry_after=delay)
            await sleep(delay)
            continue
        except TelegramError as exc:
            logger.info("loop.get_updates.failed", error=str(exc))
            await sleep(POLL_FAILURE_BACKOFF_S)
            continue
        logger.debug("loop.updates", updates=updates)
        for upd in updates:
            update_id = upd.get("update_id") if isinstance(upd, dict) else None
            if isinstance(update_id, int):
                offset = update_id + 1
            parsed = parse_incoming_update(upd)
            if parsed is not None:
                yield parsed
