from __future__ import annotations

import re
from typing import Any, Protocol

import httpx
import msgspec

from ..logging import get_logger
from .api_models import File

logger = get_logger(__name__)

API_BASE_URL = "https://api.telegram.org"
PARSE_MODE_MARKDOWN = "Markdown"
CHAT_ACTION_TYPING = "typing"

_RETRY_AFTER_RE = re.compile(r"retry after (\d+)", re.IGNORECASE)


class TelegramError(Exception):
    pass


class TelegramNetworkError(TelegramError):
    pass


class TelegramApiError(TelegramError):
    def __init__(self, description: str, error_code: int | None = None) -> None:
        super().__init__(description)
        self.description = description
        self.error_code = error_code


class MessageEmpty(TelegramApiError):
    pass


class MessageTooLong(TelegramApiError):
    pass


class ChatNotFound(TelegramApiError):
    pass


class TooManyRequests(TelegramApiError):
    def __init__(
        self,
        description: str,
        error_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(description, error_code)
        self.retry_after = retry_after


def _retry_after_from_payload(payload: dict[str, Any]) -> float | None:
    params = payload.get("parameters")
    if isinstance(params, dict):
        retry_after = params.get("retry_after")
        if isinstance(retry_after, (int, float)):
            return float(retry_after)
    description = payload.get("description")
    if isinstance(description, str):
        match = _RETRY_AFTER_RE.search(description)
        if match:
            return float(match.group(1))
    return None


def classify_api_error(payload: dict[str, Any]) -> TelegramApiError:
    description = str(payload.get("description") or "unknown error")
    error_code = payload.get("error_code")
    if not isinstance(error_code, int):
        error_code = None
    lowered = description.lower()
    if error_code == 429 or "too many requests" in lowered:
        return TooManyRequests(
            description,
            error_code,
            retry_after=_retry_after_from_payload(payload),
        )
    if "message text is empty" in lowered or "message is empty" in lowered:
        return MessageEmpty(description, error_code)
    if "message is too long" in lowered:
        return MessageTooLong(description, error_code)
    if "chat not found" in lowered:
        return ChatNotFound(description, error_code)
    return TelegramApiError(description, error_code)


class BotClient(Protocol):
    async def close(self) -> None: ...

    async def get_me(self) -> dict: ...

    async def delete_webhook(self, drop_pending_updates: bool = False) -> bool: ...

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[dict]: ...

    async def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> dict: ...

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> dict | bool: ...

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: str | None = None,
    ) -> bool: ...

    async def get_file(self, file_id: str) -> File: ...

    def file_url(self, file_path: str) -> str: ...

    async def send_chat_action(self, chat_id: int, action: str) -> bool: ...

    async def set_message_reaction(
        self, chat_id: int, message_id: int, emoji: str
    ) -> bool: ...


class TelegramClient:
    def __init__(
        self,
        token: str,
        timeout_s: float = 60,
        client: httpx.AsyncClient | None = None,
        base_url: str = API_BASE_URL,
    ) -> None:
        if not token:
            raise ValueError("Telegram token is empty")
        self._base = f"{base_url}/bot{token}"
        self._file_base = f"{base_url}/file/bot{token}"
        self._timeout_s = timeout_s
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(
        self,
        method: str,
        json_data: dict[str, Any],
        *,
        timeout_s: float | None = None,
    ) -> Any:
        logger.debug("telegram.request", method=method, payload=json_data)
        try:
            resp = await self._client.post(
                f"{self._base}/{method}",
                json=json_data,
                timeout=timeout_s if timeout_s is not None else self._timeout_s,
            )
        except httpx.HTTPError as e:
            logger.error(
                "telegram.network_error",
                method=method,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            raise TelegramNetworkError(f"{method}: {e}") from e

        try:
            payload = resp.json()
        except ValueError as e:
            body = resp.text
            if resp.status_code >= 400:
                logger.error(
                    "telegram.http_error",
                    method=method,
                    status=resp.status_code,
                    body=body,
                )
                raise TelegramApiError(
                    f"HTTP {resp.status_code} ({body})", resp.status_code
                ) from e
            logger.error(
                "telegram.bad_response",
                method=method,
                status=resp.status_code,
                error=str(e),
                body=body,
            )
            raise TelegramNetworkError(f"{method}: malformed response") from e

        if not isinstance(payload, dict):
            logger.error("telegram.invalid_payload", method=method, payload=payload)
            raise TelegramNetworkError(f"{method}: malformed response")

        if not payload.get("ok"):
            error = classify_api_error(payload)
            logger.error(
                "telegram.api_error",
                method=method,
                status=resp.status_code,
                error_type=error.__class__.__name__,
                description=error.description,
            )
            raise error

        logger.debug("telegram.response", method=method, payload=payload)
        return payload.get("result")

    async def get_me(self) -> dict:
        result = await self._post("getMe", {})
        if not isinstance(result, dict):
            raise TelegramNetworkError("getMe: malformed response")
        return result

    async def delete_webhook(self, drop_pending_updates: bool = False) -> bool:
        result = await self._post(
            "deleteWebhook", {"drop_pending_updates": drop_pending_updates}
        )
        return bool(result)

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[dict]:
        params: dict[str, Any] = {"timeout": timeout_s}
        if offset is not None:
            params["offset"] = offset
        if allowed_updates is not None:
            params["allowed_updates"] = allowed_updates
        # the server holds the request for up to `timeout_s`
        result = await self._post(
            "getUpdates", params, timeout_s=timeout_s + self._timeout_s
        )
        if not isinstance(result, list):
            raise TelegramNetworkError("getUpdates: malformed response")
        return result

    async def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> dict:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
        }
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        if reply_markup is not None:
            params["reply_markup"] = reply_markup
        return await self._post("sendMessage", params)

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> dict | bool:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
        }
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        if reply_markup is not None:
            params["reply_markup"] = reply_markup
        return await self._post("editMessageText", params)

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: str | None = None,
    ) -> bool:
        params: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text is not None:
            params["text"] = text
        return bool(await self._post("answerCallbackQuery", params))

    async def get_file(self, file_id: str) -> File:
        result = await self._post("getFile", {"file_id": file_id})
        try:
            return msgspec.convert(result, type=File)
        except msgspec.ValidationError as e:
            raise TelegramNetworkError(f"getFile: malformed response ({e})") from e

    def file_url(self, file_path: str) -> str:
        return f"{self._file_base}/{file_path}"

    async def send_chat_action(self, chat_id: int, action: str) -> bool:
        return bool(
            await self._post("sendChatAction", {"chat_id": chat_id, "action": action})
        )

    async def set_message_reaction(
        self, chat_id: int, message_id: int, emoji: str
    ) -> bool:
        return bool(
            await self._post(
                "setMessageReaction",
                {
                    "chat_id": chat_id,
                    "message_id": message_id,
                    "reaction": [{"type": "emoji", "emoji": emoji}],
                },
            )
        )
