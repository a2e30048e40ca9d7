"""Authorization gate and per-event command dispatch.

Every inbound message runs as one turn under the session store lock:
read the sender's state, call collaborators, send the reply, then write the
next state. Callback queries (inline button presses) never touch session
state; they answer the query and edit the message the button belongs to.
"""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import anyio

from . import __version__
from .commands import MAGNET_PREFIX, CommandTag, Intent, is_cancel, parse_text
from .config import BotConfig
from .logging import get_logger
from .render import (
    MESSAGE_CANCELED,
    MESSAGE_DEFAULT,
    MESSAGE_FILE_FETCH_FAILED,
    MESSAGE_NO_CONTROLLABLE_SERVICES,
    MESSAGE_NO_TORRENTS,
    MESSAGE_SERVICE_TO_START,
    MESSAGE_SERVICE_TO_STOP,
    MESSAGE_TORRENT_DELETE,
    MESSAGE_TORRENT_REMOVE,
    MESSAGE_TORRENT_UPLOAD,
    MESSAGE_UNPROCESSABLE_FILE_FORMAT,
    CancelMenu,
    InlineKeyboard,
    Reply,
    format_help,
    format_logs,
    format_privacy,
    format_service_statuses,
    format_status,
    format_torrent_list,
    format_unknown_command,
    help_keyboard,
    reply_markup,
    service_picker,
    torrent_picker,
)
from .session import SessionState, SessionStore
from .store import Store
from .system import SystemInfo
from .systemctl import ServiceController
from .telegram import (
    BotClient,
    ChatNotFound,
    MessageEmpty,
    MessageTooLong,
    TelegramCallbackQuery,
    TelegramDocument,
    TelegramError,
    TelegramIncomingMessage,
    TelegramIncomingUpdate,
    TooManyRequests,
)
from .telegram.client import CHAT_ACTION_TYPING, PARSE_MODE_MARKDOWN
from .transmission import TorrentQueue, TransmissionError, is_torrent_id

logger = get_logger(__name__)

REQUEST_TIMEOUT_S = 60.0
IGNORABLE_REQUEST_TIMEOUT_S = 5.0
NUM_RECENT_LOGS = 20
MAX_CALLBACK_ANSWER_LEN = 200
TORRENT_FILE_SUFFIX = ".torrent"
REACTION_ACCEPTED = "👌"


class RejectReason(enum.Enum):
    NO_IDENTITY = "no_identity"
    NOT_ALLOWED = "not_allowed"


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: RejectReason
    identity: str | None = None


def authorize(
    event: TelegramIncomingUpdate,
    config: BotConfig,
    store: Store,
) -> str | Rejected:
    """Resolve the sender's identity (username) and check the allow-list."""
    if not event.has_sender:
        message = "update has no 'from' value"
        rejected = Rejected(RejectReason.NO_IDENTITY)
    elif not event.sender_username:
        message = f"has no user name: {event.sender_first_name or ''}"
        rejected = Rejected(RejectReason.NO_IDENTITY)
    elif not config.is_available_id(event.sender_username):
        message = f"not an allowed user id: {event.sender_username}"
        rejected = Rejected(RejectReason.NOT_ALLOWED, event.sender_username)
    else:
        return event.sender_username
    logger.warning(
        "dispatch.unauthorized",
        reason=rejected.reason.value,
        identity=rejected.identity,
        chat_id=event.chat_id,
    )
    store.log_error(message)
    return rejected


def describe_send_error(
    error: BaseException,
    *,
    chat_id: int,
    text: str,
    broadcast: bool = False,
) -> str:
    size = len(text.encode("utf-8"))
    if isinstance(error, MessageEmpty):
        return "broadcast message is empty" if broadcast else "message is empty"
    if isinstance(error, MessageTooLong):
        if broadcast:
            return f"broadcast message is too long: {size} bytes"
        return f"message is too long: {size} bytes"
    if isinstance(error, ChatNotFound):
        if broadcast:
            return f"no such chat id for broadcast: {chat_id}"
        return f"no such chat id: {chat_id}"
    if isinstance(error, TooManyRequests):
        return "too many requests for broadcast" if broadcast else "too many requests"
    detail = str(error) or error.__class__.__name__
    if broadcast:
        return f"failed to broadcast to chat id {chat_id}: {detail}"
    return f"failed to send message: {detail}"


class Dispatcher:
    def __init__(
        self,
        *,
        bot: BotClient,
        torrents: TorrentQueue,
        services: ServiceController,
        store: Store,
        sessions: SessionStore,
        config: BotConfig,
        system: SystemInfo,
        version: str = __version__,
        request_timeout_s: float = REQUEST_TIMEOUT_S,
        ignorable_timeout_s: float = IGNORABLE_REQUEST_TIMEOUT_S,
    ) -> None:
        self._bot = bot
        self._torrents = torrents
        self._services = services
        self._store = store
        self._sessions = sessions
        self._config = config
        self._system = system
        self._version = version
        self._request_timeout_s = request_timeout_s
        self._ignorable_timeout_s = ignorable_timeout_s

    async def handle(self, update: TelegramIncomingUpdate) -> bool:
        if isinstance(update, TelegramCallbackQuery):
            return await self.handle_callback(update)
        return await self.handle_message(update)

    async def handle_message(self, msg: TelegramIncomingMessage) -> bool:
        try:
            return await self._handle_message(msg)
        except Exception:
            logger.exception("dispatch.failed", chat_id=msg.chat_id)
            return False

    async def handle_callback(self, query: TelegramCallbackQuery) -> bool:
        try:
            return await self._handle_callback(query)
        except Exception:
            logger.exception("dispatch.failed", chat_id=query.chat_id)
            return False

    def _record_error(self, event: str, message: str, **fields: object) -> None:
        logger.error(event, message=message, **fields)
        self._store.log_error(message)

    async def _ignorable(
        self, event: str, call: Callable[[], Awaitable[object]]
    ) -> None:
        try:
            with anyio.fail_after(self._ignorable_timeout_s):
                await call()
        except (TelegramError, TimeoutError) as e:
            logger.debug(event, error=str(e) or e.__class__.__name__)

    async def _typing(self, chat_id: int) -> None:
        await self._ignorable(
            "dispatch.typing_failed",
            lambda: self._bot.send_chat_action(chat_id, CHAT_ACTION_TYPING),
        )

    async def _react(self, msg: TelegramIncomingMessage) -> None:
        await self._ignorable(
            "dispatch.reaction_failed",
            lambda: self._bot.set_message_reaction(
                msg.chat_id, msg.message_id, REACTION_ACCEPTED
            ),
        )

    async def _handle_message(self, msg: TelegramIncomingMessage) -> bool:
        identity = authorize(msg, self._config, self._store)
        if isinstance(identity, Rejected):
            return False

        self._store.save_chat(msg.chat_id, identity)
        await self._typing(msg.chat_id)

        async with self._sessions.turn():
            session = self._sessions.get(identity)
            if session is None:
                self._record_error(
                    "dispatch.no_session",
                    f"no session for id: {identity}",
                    identity=identity,
                )
                return False

            if session.state is SessionState.WAITING_UPLOAD:
                reply = await self._on_waiting_upload(msg)
                next_state = SessionState.WAITING
            else:
                reply, next_state = await self._on_waiting(msg)

            sent = await self._send_reply(msg.chat_id, reply)
            self._sessions.set(identity, next_state)
            return sent

    async def _send_reply(self, chat_id: int, reply: Reply) -> bool:
        parse_mode = PARSE_MODE_MARKDOWN if reply.markdown else None
        try:
            with anyio.fail_after(self._request_timeout_s):
                await self._bot.send_message(
                    chat_id,
                    reply.text,
                    parse_mode=parse_mode,
                    reply_markup=reply_markup(reply.keyboard),
                )
        except (TelegramError, TimeoutError) as e:
            self._record_error(
                "dispatch.send_failed",
                describe_send_error(e, chat_id=chat_id, text=reply.text),
                chat_id=chat_id,
                error_type=e.__class__.__name__,
            )
            return False
        return True

    async def _resolve_file_url(self, document: TelegramDocument) -> str | None:
        try:
            with anyio.fail_after(self._request_timeout_s):
                file = await self._bot.get_file(document.file_id)
        except (TelegramError, TimeoutError) as e:
            self._record_error(
                "dispatch.get_file_failed",
                f"failed to fetch file info: {document.file_id} "
                f"({str(e) or e.__class__.__name__})",
            )
            return None
        if not file.file_path:
            self._record_error(
                "dispatch.get_file_failed",
                f"no file path for uploaded file: {document.file_id}",
            )
            return None
        return self._bot.file_url(file.file_path)

    async def _add_torrent(self, msg: TelegramIncomingMessage, source: str) -> Reply:
        await self._react(msg)
        return Reply(await self._torrents.add(source))

    async def _on_waiting(
        self, msg: TelegramIncomingMessage
    ) -> tuple[Reply, SessionState]:
        if msg.document is not None:
            url = await self._resolve_file_url(msg.document)
            if url is None:
                return Reply(MESSAGE_FILE_FETCH_FAILED), SessionState.WAITING
            # only .torrent files are supported
            if not url.endswith(TORRENT_FILE_SUFFIX):
                return Reply(MESSAGE_UNPROCESSABLE_FILE_FORMAT), SessionState.WAITING
            return await self._add_torrent(msg, url), SessionState.WAITING

        intent = parse_text(msg.text)
        match intent.command:
            case CommandTag.MAGNET:
                reply = await self._add_torrent(msg, intent.argument)
            case CommandTag.START:
                reply = Reply(MESSAGE_DEFAULT)
            case CommandTag.SERVICE_STATUS:
                reply = await self._service_status()
            case CommandTag.SERVICE_START | CommandTag.SERVICE_STOP:
                text, keyboard = await self._service_action(intent)
                reply = Reply(text, keyboard) if keyboard is not None else Reply(text)
            case CommandTag.TORRENT_LIST:
                reply = await self._torrent_list()
            case CommandTag.TORRENT_ADD:
                if not intent.argument.startswith(MAGNET_PREFIX):
                    return (
                        Reply(MESSAGE_TORRENT_UPLOAD, CancelMenu()),
                        SessionState.WAITING_UPLOAD,
                    )
                reply = await self._add_torrent(msg, intent.argument)
            case CommandTag.TORRENT_REMOVE | CommandTag.TORRENT_DELETE:
                text, keyboard = await self._torrent_action(intent)
                reply = Reply(text, keyboard) if keyboard is not None else Reply(text)
            case CommandTag.STATUS:
                reply = Reply(self._status())
            case CommandTag.LOGS:
                reply = Reply(format_logs(self._store.get_logs(NUM_RECENT_LOGS)))
            case CommandTag.HELP:
                reply = Reply(format_help(), help_keyboard())
            case CommandTag.PRIVACY:
                reply = Reply(format_privacy())
            case CommandTag.CANCEL:
                reply = Reply(MESSAGE_CANCELED)
            case _:
                reply = Reply(format_unknown_command(intent.argument))
        return reply, SessionState.WAITING

    async def _on_waiting_upload(self, msg: TelegramIncomingMessage) -> Reply:
        if is_cancel(msg.text):
            return Reply(MESSAGE_CANCELED)
        if msg.document is not None:
            source = await self._resolve_file_url(msg.document)
            if source is None:
                return Reply(MESSAGE_FILE_FETCH_FAILED)
        else:
            source = msg.text.strip()
        return await self._add_torrent(msg, source)

    async def _service_status(self) -> Reply:
        services = self._config.controllable_services
        if not services:
            return Reply(MESSAGE_NO_CONTROLLABLE_SERVICES)
        statuses = await self._services.status(services)
        return Reply(format_service_statuses(statuses))

    async def _service_action(
        self, intent: Intent
    ) -> tuple[str, InlineKeyboard | None]:
        services = self._config.controllable_services
        if not services:
            return MESSAGE_NO_CONTROLLABLE_SERVICES, None

        starting = intent.command is CommandTag.SERVICE_START
        service = intent.argument
        if not self._config.is_controllable_service(service):
            prompt = MESSAGE_SERVICE_TO_START if starting else MESSAGE_SERVICE_TO_STOP
            return prompt, service_picker(services, intent.command)

        if starting:
            result = await self._services.start(service)
            if result.ok:
                return f"Started service: {service}", None
            self._record_error(
                "dispatch.service_failed",
                f"service failed to start: {result.output}",
                service=service,
            )
            return f"Failed to start service: {service} ({result.error})", None

        result = await self._services.stop(service)
        if result.ok:
            return f"Stopped service: {service}", None
        self._record_error(
            "dispatch.service_failed",
            f"service failed to stop: {result.output}",
            service=service,
        )
        return f"Failed to stop service: {service} ({result.error})", None

    async def _torrent_list(self) -> Reply:
        try:
            torrents = await self._torrents.list_torrents()
        except TransmissionError as e:
            logger.info("dispatch.torrent_list_failed", error=str(e))
            return Reply(str(e))
        return Reply(format_torrent_list(torrents))

    async def _torrent_action(
        self, intent: Intent
    ) -> tuple[str, InlineKeyboard | None]:
        try:
            torrents = await self._torrents.list_torrents()
        except TransmissionError as e:
            logger.info("dispatch.torrent_list_failed", error=str(e))
            torrents = []
        if not torrents:
            return MESSAGE_NO_TORRENTS, None

        removing = intent.command is CommandTag.TORRENT_REMOVE
        if not is_torrent_id(intent.argument):
            prompt = MESSAGE_TORRENT_REMOVE if removing else MESSAGE_TORRENT_DELETE
            return prompt, torrent_picker(torrents, intent.command)

        if removing:
            return await self._torrents.remove(intent.argument), None
        return await self._torrents.delete(intent.argument), None

    def _status(self) -> str:
        return format_status(
            version=self._version,
            uptime_s=self._system.uptime_s(),
            memory=self._system.memory_usage(),
            disks=self._system.disk_usage(self._config.mount_points),
        )

    async def _handle_callback(self, query: TelegramCallbackQuery) -> bool:
        identity = authorize(query, self._config, self._store)
        if isinstance(identity, Rejected):
            return False

        await self._typing(query.chat_id)

        intent = parse_text(query.data)
        match intent.command:
            case CommandTag.CANCEL:
                text = ""
            case CommandTag.SERVICE_START | CommandTag.SERVICE_STOP:
                text, _ = await self._service_action(intent)
            case CommandTag.TORRENT_REMOVE | CommandTag.TORRENT_DELETE:
                text, _ = await self._torrent_action(intent)
            case _:
                self._record_error(
                    "dispatch.callback_unprocessable",
                    f"unprocessable callback query: {query.data}",
                )
                return False

        try:
            with anyio.fail_after(self._request_timeout_s):
                await self._bot.answer_callback_query(
                    query.callback_query_id,
                    text=text[:MAX_CALLBACK_ANSWER_LEN] or None,
                )
        except (TelegramError, TimeoutError) as e:
            self._record_error(
                "dispatch.callback_answer_failed",
                f"failed to answer callback query: {query.callback_query_id} "
                f"({str(e) or e.__class__.__name__})",
            )
            return False

        # editing without a reply markup also drops the inline keyboard
        reply = Reply(text or MESSAGE_CANCELED)
        try:
            with anyio.fail_after(self._request_timeout_s):
                await self._bot.edit_message_text(
                    query.chat_id,
                    query.message_id,
                    reply.text,
                    parse_mode=PARSE_MODE_MARKDOWN if reply.markdown else None,
                )
        except (TelegramError, TimeoutError) as e:
            self._record_error(
                "dispatch.edit_failed",
                f"failed to edit message text: {str(e) or e.__class__.__name__}",
                chat_id=query.chat_id,
            )
            return False
        return True
