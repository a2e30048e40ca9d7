from __future__ import annotations

import signal
import sqlite3

import anyio

from .broadcast import BroadcastRelay, create_broadcast_app, serve_http
from .config import DB_FILENAME, BotConfig, config_dir
from .dispatcher import REQUEST_TIMEOUT_S, Dispatcher
from .logging import get_logger
from .session import InMemorySessionStore
from .store import Database, open_database
from .system import PsutilSystemInfo
from .systemctl import Systemctl
from .telegram import TelegramClient, TelegramError, poll_incoming
from .transmission import TransmissionClient

logger = get_logger(__name__)


class StartupError(RuntimeError):
    pass


def _open_store(config: BotConfig) -> Database:
    path = config.db_path or config_dir() / DB_FILENAME
    try:
        return open_database(path)
    except (sqlite3.Error, OSError) as e:
        raise StartupError(f"failed to open database {path}: {e}") from e


async def _watch_signals(scope: anyio.CancelScope) -> None:
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            logger.info("loop.signal", signal=signal.Signals(signum).name)
            scope.cancel()
            return


async def _check_bot(bot: TelegramClient) -> dict:
    try:
        with anyio.fail_after(REQUEST_TIMEOUT_S):
            me = await bot.get_me()
    except (TelegramError, TimeoutError) as e:
        raise StartupError(f"failed to get info of the bot: {e}") from e
    # getUpdates does not work while a webhook is set
    try:
        with anyio.fail_after(REQUEST_TIMEOUT_S):
            await bot.delete_webhook(drop_pending_updates=False)
    except (TelegramError, TimeoutError) as e:
        raise StartupError(f"failed to delete webhook: {e}") from e
    return me


async def run_bot(config: BotConfig) -> None:
    store = _open_store(config)
    store.log("starting server...")

    bot = TelegramClient(config.api_token)
    transmission = TransmissionClient(
        config.transmission_rpc_port,
        config.transmission_rpc_username,
        config.transmission_rpc_passwd,
    )
    dispatcher = Dispatcher(
        bot=bot,
        torrents=transmission,
        services=Systemctl(),
        store=store,
        sessions=InMemorySessionStore(config.available_ids),
        config=config,
        system=PsutilSystemInfo(),
    )
    relay = BroadcastRelay(bot=bot, store=store, config=config)
    app = create_broadcast_app(
        relay.enqueue, token=config.cli_token, verbose=config.is_verbose
    )

    try:
        me = await _check_bot(bot)
        logger.info(
            "loop.launching",
            username=me.get("username"),
            first_name=me.get("first_name"),
        )
        async with anyio.create_task_group() as tg:
            tg.start_soon(_watch_signals, tg.cancel_scope)
            tg.start_soon(relay.run)
            tg.start_soon(serve_http, app, config.cli_port)
            async for update in poll_incoming(
                bot, timeout_s=config.monitor_interval
            ):
                tg.start_soon(dispatcher.handle, update)
    finally:
        with anyio.CancelScope(shield=True):
            store.log("stopping server...")
            logger.info("loop.stopping")
            await relay.aclose()
            await transmission.close()
            await bot.close()
            store.close()
