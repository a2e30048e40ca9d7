from __future__ import annotations

import enum
from dataclasses import dataclass

MAGNET_PREFIX = "magnet:"

COMMAND_START = "/start"
COMMAND_SERVICE_STATUS = "/servicestatus"
COMMAND_SERVICE_START = "/servicestart"
COMMAND_SERVICE_STOP = "/servicestop"
COMMAND_TORRENT_LIST = "/trlist"
COMMAND_TORRENT_ADD = "/tradd"
COMMAND_TORRENT_REMOVE = "/trremove"
COMMAND_TORRENT_DELETE = "/trdelete"
COMMAND_STATUS = "/status"
COMMAND_LOGS = "/logs"
COMMAND_HELP = "/help"
COMMAND_PRIVACY = "/privacy"
COMMAND_CANCEL = "/cancel"


class CommandTag(enum.Enum):
    MAGNET = "magnet"
    START = "start"
    SERVICE_STATUS = "servicestatus"
    SERVICE_START = "servicestart"
    SERVICE_STOP = "servicestop"
    TORRENT_LIST = "trlist"
    TORRENT_ADD = "tradd"
    TORRENT_REMOVE = "trremove"
    TORRENT_DELETE = "trdelete"
    STATUS = "status"
    LOGS = "logs"
    HELP = "help"
    PRIVACY = "privacy"
    CANCEL = "cancel"
    UNKNOWN = "unknown"


# First prefix match wins. Keep every prefix unique so the order never decides
# between two commands.
VOCABULARY: tuple[tuple[str, CommandTag], ...] = (
    (COMMAND_START, CommandTag.START),
    (COMMAND_SERVICE_STATUS, CommandTag.SERVICE_STATUS),
    (COMMAND_SERVICE_START, CommandTag.SERVICE_START),
    (COMMAND_SERVICE_STOP, CommandTag.SERVICE_STOP),
    (COMMAND_TORRENT_LIST, CommandTag.TORRENT_LIST),
    (COMMAND_TORRENT_ADD, CommandTag.TORRENT_ADD),
    (COMMAND_TORRENT_REMOVE, CommandTag.TORRENT_REMOVE),
    (COMMAND_TORRENT_DELETE, CommandTag.TORRENT_DELETE),
    (COMMAND_STATUS, CommandTag.STATUS),
    (COMMAND_LOGS, CommandTag.LOGS),
    (COMMAND_HELP, CommandTag.HELP),
    (COMMAND_PRIVACY, CommandTag.PRIVACY),
    (COMMAND_CANCEL, CommandTag.CANCEL),
)

COMMAND_FOR_TAG: dict[CommandTag, str] = {tag: prefix for prefix, tag in VOCABULARY}

_MARKDOWN_CHARS = ("*", "_", "`")


@dataclass(frozen=True, slots=True)
class Intent:
    command: CommandTag
    argument: str = ""


def remove_markdown_chars(text: str, replace_with: str = "") -> str:
    """Strip characters the Bot API markdown parser chokes on when unbalanced."""
    for char in _MARKDOWN_CHARS:
        text = text.replace(char, replace_with)
    return text


def parse_text(text: str) -> Intent:
    stripped = text.strip()
    if stripped.startswith(MAGNET_PREFIX):
        return Intent(CommandTag.MAGNET, stripped)
    for prefix, tag in VOCABULARY:
        if stripped.startswith(prefix):
            return Intent(tag, stripped[len(prefix) :].strip())
    return Intent(CommandTag.UNKNOWN, remove_markdown_chars(stripped))


def is_cancel(text: str) -> bool:
    return parse_text(text).command is CommandTag.CANCEL


def callback_data(command: CommandTag, argument: str | int) -> str:
    return f"{COMMAND_FOR_TAG[command]} {argument}"
