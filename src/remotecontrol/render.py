"""Pure renderers for bot replies (text, keyboards, markdown safety)."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeAlias

from .commands import (
    COMMAND_CANCEL,
    COMMAND_HELP,
    COMMAND_LOGS,
    COMMAND_PRIVACY,
    COMMAND_SERVICE_START,
    COMMAND_SERVICE_STATUS,
    COMMAND_SERVICE_STOP,
    COMMAND_STATUS,
    COMMAND_TORRENT_ADD,
    COMMAND_TORRENT_DELETE,
    COMMAND_TORRENT_LIST,
    COMMAND_TORRENT_REMOVE,
    CommandTag,
    callback_data,
    remove_markdown_chars,
)

GITHUB_PAGE_URL = "https://github.com/meinside/telegram-remotecontrol-bot"

MESSAGE_DEFAULT = "Input your command:"
MESSAGE_UNKNOWN_COMMAND = "Unknown command."
MESSAGE_UNPROCESSABLE_FILE_FORMAT = "Unprocessable file format."
MESSAGE_NO_CONTROLLABLE_SERVICES = "No controllable services."
MESSAGE_NO_LOGS = "No saved logs."
MESSAGE_SERVICE_TO_START = "Select service to start:"
MESSAGE_SERVICE_TO_STOP = "Select service to stop:"
MESSAGE_TORRENT_UPLOAD = "Send magnet, url, or file of target torrent:"
MESSAGE_TORRENT_REMOVE = "Send the id of torrent to remove from the list:"
MESSAGE_TORRENT_DELETE = (
    "Send the id of torrent to delete from the list and local storage:"
)
MESSAGE_NO_TORRENTS = "No torrents."
MESSAGE_FILE_FETCH_FAILED = "Failed to fetch the uploaded file."
MESSAGE_CANCEL = "Cancel"
MESSAGE_CANCELED = "Canceled."

DETAIL_PREFIX = "  ┖ "
LOG_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_MENU_ROWS: tuple[tuple[str, ...], ...] = (
    (
        COMMAND_TORRENT_LIST,
        COMMAND_TORRENT_ADD,
        COMMAND_TORRENT_REMOVE,
        COMMAND_TORRENT_DELETE,
    ),
    (COMMAND_SERVICE_STATUS, COMMAND_SERVICE_START, COMMAND_SERVICE_STOP),
    (COMMAND_STATUS, COMMAND_LOGS, COMMAND_PRIVACY, COMMAND_HELP),
)
CANCEL_MENU_ROWS: tuple[tuple[str, ...], ...] = ((COMMAND_CANCEL,),)

# Transmission torrent status codes
_STATUS_EMOJI = {
    0: "⛔",  # stopped
    1: "⏳🔍",  # queued to verify local data
    2: "🔍",  # verifying local data
    3: "⏳📥",  # queued to download
    4: "📥",  # downloading
    5: "⏳🌱",  # queued to seed
    6: "🌱",  # seeding
}
_STATUS_UNKNOWN = "❓"
_STATUS_STOPPED = 0
_STATUS_DOWNLOADING = 4
_STATUS_SEEDING = 6


@dataclass(frozen=True, slots=True)
class NoKeyboard:
    pass


@dataclass(frozen=True, slots=True)
class DefaultMenu:
    pass


@dataclass(frozen=True, slots=True)
class CancelMenu:
    pass


@dataclass(frozen=True, slots=True)
class InlineButton:
    text: str
    callback_data: str | None = None
    url: str | None = None


@dataclass(frozen=True, slots=True)
class InlineKeyboard:
    rows: tuple[tuple[InlineButton, ...], ...] = ()


Keyboard: TypeAlias = NoKeyboard | DefaultMenu | CancelMenu | InlineKeyboard


@dataclass(frozen=True, slots=True)
class Reply:
    text: str
    keyboard: Keyboard = field(default_factory=DefaultMenu)

    @property
    def markdown(self) -> bool:
        return use_markdown(self.text)


def use_markdown(text: str) -> bool:
    """True when every markdown delimiter in `text` is paired.

    Unpaired delimiters make the Bot API reject the whole message, so such text
    goes out as plain text instead.
    """
    return all(text.count(delim) % 2 == 0 for delim in ("_", "*", "`"))


def _reply_keyboard(rows: Sequence[Sequence[str]]) -> dict[str, Any]:
    return {
        "keyboard": [[{"text": label} for label in row] for row in rows],
        "resize_keyboard": True,
    }


def _inline_button(button: InlineButton) -> dict[str, Any]:
    payload: dict[str, Any] = {"text": button.text}
    if button.url is not None:
        payload["url"] = button.url
    else:
        payload["callback_data"] = button.callback_data or ""
    return payload


def reply_markup(keyboard: Keyboard) -> dict[str, Any] | None:
    if isinstance(keyboard, DefaultMenu):
        return _reply_keyboard(DEFAULT_MENU_ROWS)
    if isinstance(keyboard, CancelMenu):
        return _reply_keyboard(CANCEL_MENU_ROWS)
    if isinstance(keyboard, InlineKeyboard):
        return {
            "inline_keyboard": [
                [_inline_button(button) for button in row] for row in keyboard.rows
            ]
        }
    return None


def cancel_button() -> InlineButton:
    return InlineButton(MESSAGE_CANCEL, callback_data=COMMAND_CANCEL)


def picker(options: Iterable[tuple[str, str]]) -> InlineKeyboard:
    """One button per `(label, callback_data)` row, then a cancel row."""
    rows = [(InlineButton(label, callback_data=data),) for label, data in options]
    rows.append((cancel_button(),))
    return InlineKeyboard(rows=tuple(rows))


def help_keyboard() -> InlineKeyboard:
    return InlineKeyboard(rows=((InlineButton("GitHub", url=GITHUB_PAGE_URL),),))


def readable_size(num: int | float) -> str:
    num = int(num)
    if num < 1 << 10:
        return f"{num}B"
    if num < 1 << 20:
        return f"{num / (1 << 10):.1f}KB"
    if num < 1 << 30:
        return f"{num / (1 << 20):.1f}MB"
    if num < 1 << 40:
        return f"{num / (1 << 30):.2f}GB"
    return f"{num / (1 << 40):.2f}TB"


def torrent_status_emoji(status: int) -> str:
    return _STATUS_EMOJI.get(status, _STATUS_UNKNOWN)


def _torrent_details(torrent: Any) -> list[str]:
    status = torrent.status
    emoji = torrent_status_emoji(status)
    if status == _STATUS_SEEDING:
        details = [f"{emoji} {readable_size(torrent.total_size)}"]
        if torrent.rate_upload > 0:
            details.append(f"↑{readable_size(torrent.rate_upload)}/s")
        return details
    if status in (_STATUS_DOWNLOADING, _STATUS_STOPPED):
        done = readable_size(torrent.total_size * torrent.percent_done)
        details = [
            f"{emoji} {done}/{readable_size(torrent.total_size)} "
            f"({torrent.percent_done * 100.0:.2f}%)"
        ]
        updown = []
        if torrent.rate_download > 0:
            updown.append(f"↓{readable_size(torrent.rate_download)}/s")
        if torrent.rate_upload > 0:
            updown.append(f"↑{readable_size(torrent.rate_upload)}/s")
        if updown:
            details.append(" ".join(updown))
        return details
    return [emoji]


def format_torrent_list(torrents: Sequence[Any]) -> str:
    if not torrents:
        return MESSAGE_NO_TORRENTS
    lines: list[str] = []
    for torrent in torrents:
        title = f"*{torrent.id}*. _{remove_markdown_chars(torrent.name, ' ')}_"
        if torrent.error_string:
            lines.append(
                f"{title}\n{DETAIL_PREFIX}({readable_size(torrent.total_size)}) "
                f"*{torrent.error_string}*"
            )
            continue
        details = "\n".join(DETAIL_PREFIX + d for d in _torrent_details(torrent))
        lines.append(f"{title}\n{details}")
    lines.append("----")
    lines.append(f"total {len(torrents)} torrent(s)")
    return "\n".join(lines)


def torrent_picker(torrents: Sequence[Any], command: CommandTag) -> InlineKeyboard:
    return picker(
        (f"{torrent.id}. {torrent.name}", callback_data(command, torrent.id))
        for torrent in torrents
    )


def service_picker(services: Sequence[str], command: CommandTag) -> InlineKeyboard:
    return picker((service, callback_data(command, service)) for service in services)


def format_service_statuses(statuses: Mapping[str, str]) -> str:
    if not statuses:
        return MESSAGE_NO_CONTROLLABLE_SERVICES
    return "\n".join(
        f"┖ {service}: *{status}*" for service, status in statuses.items()
    )


def format_unknown_command(text: str) -> str:
    cmd = remove_markdown_chars(text)
    if cmd:
        return f"*{cmd}*: {MESSAGE_UNKNOWN_COMMAND}"
    return MESSAGE_UNKNOWN_COMMAND


def format_help() -> str:
    return f"""
following commands are supported:

*for transmission*

{COMMAND_TORRENT_LIST} : show torrent list
{COMMAND_TORRENT_ADD} : add torrent with url or magnet
{COMMAND_TORRENT_REMOVE} : remove torrent from list
{COMMAND_TORRENT_DELETE} : remove torrent and delete data

*for systemctl*

{COMMAND_SERVICE_STATUS} : show status of each service (systemctl is-active)
{COMMAND_SERVICE_START} : start a service (systemctl start)
{COMMAND_SERVICE_STOP} : stop a service (systemctl stop)

*others*

{COMMAND_STATUS} : show this bot's status
{COMMAND_LOGS} : show latest logs of this bot
{COMMAND_PRIVACY} : show privacy policy of this bot
{COMMAND_HELP} : show this help message
"""


def format_privacy() -> str:
    return f"""
privacy policy:

{GITHUB_PAGE_URL}/raw/master/PRIVACY.md
"""


def format_uptime(elapsed_s: float) -> str:
    total = max(0, int(elapsed_s))
    days, rest = divmod(total, 60 * 60 * 24)
    hours = rest // (60 * 60)
    return f"*{days}* day(s) *{hours}* hour(s)"


def format_memory(rss: int, vms: int) -> str:
    mb = 1024 * 1024
    return f"rss *{rss / mb:.1f} MB*, vms *{vms / mb:.1f} MB*"


def format_disk_usages(usages: Iterable[Any]) -> str:
    gb = 1024 * 1024 * 1024
    lines = []
    for usage in usages:
        if usage.error is not None:
            lines.append(f"{usage.path}: {usage.error}")
            continue
        lines.append(
            f"  {usage.path}  all *{usage.total / gb:.2f} GB*, "
            f"used *{usage.used / gb:.2f} GB*, free *{usage.free / gb:.2f} GB*"
        )
    return "\n".join(lines)


def format_status(
    *,
    version: str,
    uptime_s: float,
    memory: Any,
    disks: Iterable[Any],
) -> str:
    return (
        f"app version: {version}\n"
        f"app uptime: {format_uptime(uptime_s)}\n"
        f"app memory usage: {format_memory(memory.rss, memory.vms)}\n"
        f"system disk usage:\n{format_disk_usages(disks)}"
    )


def format_logs(entries: Iterable[Any]) -> str:
    lines = [
        f"{_format_time(entry.created_at)} {entry.type}: {entry.message}"
        for entry in entries
    ]
    if not lines:
        return MESSAGE_NO_LOGS
    return "\n".join(lines)


def _format_time(value: datetime | str) -> str:
    if isinstance(value, datetime):
        return value.strftime(LOG_TIME_FORMAT)
    return str(value)
