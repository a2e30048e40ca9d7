"""Broadcast relay and the local HTTP endpoint that feeds it."""

from __future__ import annotations

import hmac
from collections.abc import Awaitable, Callable

import anyio
import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from .config import BotConfig
from .dispatcher import REQUEST_TIMEOUT_S, describe_send_error
from .logging import get_logger
from .render import DefaultMenu, Reply, reply_markup
from .store import Store
from .telegram import BotClient, TelegramError
from .telegram.client import PARSE_MODE_MARKDOWN

logger = get_logger(__name__)

BROADCAST_PATH = "/broadcast"
PARAM_MESSAGE = "m"
QUEUE_SIZE = 3
LISTEN_HOST = "127.0.0.1"


class BroadcastRelay:
    """Bounded queue of messages fanned out to every known, allowed chat.

    `enqueue` blocks while the queue is full.
    """

    def __init__(
        self,
        *,
        bot: BotClient,
        store: Store,
        config: BotConfig,
        capacity: int = QUEUE_SIZE,
        request_timeout_s: float = REQUEST_TIMEOUT_S,
    ) -> None:
        self._bot = bot
        self._store = store
        self._config = config
        self._request_timeout_s = request_timeout_s
        self._send, self._receive = anyio.create_memory_object_stream(
            max_buffer_size=capacity
        )

    async def enqueue(self, message: str) -> None:
        await self._send.send(message)

    async def run(self) -> None:
        async with self._receive:
            async for message in self._receive:
                await self.broadcast(message)

    async def aclose(self) -> None:
        await self._send.aclose()

    async def broadcast(self, message: str) -> int:
        reply = Reply(message, DefaultMenu())
        parse_mode = PARSE_MODE_MARKDOWN if reply.markdown else None
        sent = 0
        for chat in self._store.get_chats():
            if not self._config.is_available_id(chat.user_id):
                error = f"not an allowed user id for broadcasting: {chat.user_id}"
                logger.warning("broadcast.skipped", user_id=chat.user_id)
                self._store.log_error(error)
                continue
            try:
                with anyio.fail_after(self._request_timeout_s):
                    await self._bot.send_message(
                        chat.chat_id,
                        reply.text,
                        parse_mode=parse_mode,
                        reply_markup=reply_markup(reply.keyboard),
                    )
            except (TelegramError, TimeoutError) as e:
                error = describe_send_error(
                    e, chat_id=chat.chat_id, text=message, broadcast=True
                )
                logger.error("broadcast.failed", chat_id=chat.chat_id, message=error)
                self._store.log_error(error)
                continue
            sent += 1
        logger.info("broadcast.sent", chats=sent)
        return sent


def _authorized(request: Request, token: str) -> bool:
    if not token:
        return True
    header = request.headers.get("authorization", "")
    return hmac.compare_digest(header, f"Bearer {token}")


def create_broadcast_app(
    enqueue: Callable[[str], Awaitable[None]],
    *,
    token: str = "",
    verbose: bool = False,
) -> Starlette:
    async def broadcast_endpoint(request: Request) -> Response:
        if not _authorized(request, token):
            logger.warning("http.unauthorized", client=request.client)
            return Response(status_code=401)
        form = await request.form()
        value = form.get(PARAM_MESSAGE)
        if value is None:
            value = request.query_params.get(PARAM_MESSAGE, "")
        message = value.strip() if isinstance(value, str) else ""
        if message:
            if verbose:
                logger.info("http.broadcast.received", message=message)
            await enqueue(message)
        return Response(status_code=200)

    return Starlette(
        routes=[Route(BROADCAST_PATH, broadcast_endpoint, methods=["POST"])]
    )


async def serve_http(app: Starlette, port: int, host: str = LISTEN_HOST) -> None:
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        lifespan="off",
        log_config=None,
        access_log=False,
    )
    server = uvicorn.Server(config)
    logger.info("http.starting", host=host, port=port, path=BROADCAST_PATH)
    await server.serve()
