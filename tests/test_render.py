from datetime import datetime

import pytest

from remotecontrol.commands import CommandTag
from remotecontrol.render import (
    CancelMenu,
    DefaultMenu,
    InlineButton,
    InlineKeyboard,
    NoKeyboard,
    Reply,
    format_logs,
    format_service_statuses,
    format_status,
    format_torrent_list,
    format_unknown_command,
    format_uptime,
    readable_size,
    reply_markup,
    service_picker,
    torrent_picker,
    use_markdown,
)
from remotecontrol.store import LogEntry
from remotecontrol.system import DiskUsage, MemoryUsage
from remotecontrol.transmission import TorrentStatus
from tests.factories import make_torrent


class TestUseMarkdown:
    @pytest.mark.parametrize(
        "text",
        [
            "plain",
            "*bold*",
            "_it_ and *b*",
            "`code`",
            "```\nblock\n```",
            "",
            # an odd number of fences is fine while the backtick count is even
            "```x`",
            "a```b```c```d`",
            "``` code ` x",
        ],
    )
    def test_balanced(self, text: str) -> None:
        assert use_markdown(text) is True

    @pytest.mark.parametrize(
        "text",
        ["*bold", "snake_case", "`tick", "a * b * c *e", "```"],
    )
    def test_unbalanced(self, text: str) -> None:
        assert use_markdown(text) is False

    def test_reply_markdown_is_stable(self) -> None:
        reply = Reply("*1*. _name_")
        assert reply.markdown is reply.markdown is True


class TestReplyMarkup:
    def test_default_menu(self) -> None:
        markup = reply_markup(DefaultMenu())
        assert markup is not None
        assert markup["resize_keyboard"] is True
        rows = [[button["text"] for button in row] for row in markup["keyboard"]]
        assert rows == [
            ["/trlist", "/tradd", "/trremove", "/trdelete"],
            ["/servicestatus", "/servicestart", "/servicestop"],
            ["/status", "/logs", "/privacy", "/help"],
        ]

    def test_cancel_menu(self) -> None:
        markup = reply_markup(CancelMenu())
        assert markup == {"keyboard": [[{"text": "/cancel"}]], "resize_keyboard": True}

    def test_no_keyboard(self) -> None:
        assert reply_markup(NoKeyboard()) is None

    def test_inline_keyboard(self) -> None:
        keyboard = InlineKeyboard(
            rows=(
                (InlineButton("a", callback_data="/x a"),),
                (InlineButton("site", url="https://example.com"),),
            )
        )
        assert reply_markup(keyboard) == {
            "inline_keyboard": [
                [{"text": "a", "callback_data": "/x a"}],
                [{"text": "site", "url": "https://example.com"}],
            ]
        }

    def test_default_reply_uses_default_menu(self) -> None:
        assert Reply("x").keyboard == DefaultMenu()


class TestPickers:
    def test_service_picker_keeps_configured_order(self) -> None:
        keyboard = service_picker(["nginx", "samba"], CommandTag.SERVICE_STOP)
        assert [row[0].text for row in keyboard.rows] == ["nginx", "samba", "Cancel"]
        assert [row[0].callback_data for row in keyboard.rows] == [
            "/servicestop nginx",
            "/servicestop samba",
            "/cancel",
        ]

    def test_torrent_picker_labels(self) -> None:
        keyboard = torrent_picker(
            [make_torrent(3, "debian.iso"), make_torrent(7, "arch.iso")],
            CommandTag.TORRENT_REMOVE,
        )
        assert keyboard.rows[0][0] == InlineButton(
            "3. debian.iso", callback_data="/trremove 3"
        )
        assert keyboard.rows[1][0].callback_data == "/trremove 7"
        assert keyboard.rows[-1][0].callback_data == "/cancel"


@pytest.mark.parametrize(
    ("num", "expected"),
    [
        (0, "0B"),
        (1023, "1023B"),
        (1024, "1.0KB"),
        (1536, "1.5KB"),
        (5 * 1024**2, "5.0MB"),
        (3 * 1024**3, "3.00GB"),
        (2 * 1024**4, "2.00TB"),
    ],
)
def test_readable_size(num: int, expected: str) -> None:
    assert readable_size(num) == expected


class TestTorrentList:
    def test_empty(self) -> None:
        assert format_torrent_list([]) == "No torrents."

    def test_downloading_with_rates(self) -> None:
        torrent = make_torrent(
            1,
            "my_file*name",
            status=TorrentStatus.DOWNLOADING,
            total_size=1024**3,
            percent_done=0.5,
            rate_download=2048,
            rate_upload=1024,
        )
        text = format_torrent_list([torrent])
        assert text.splitlines() == [
            "*1*. _my file name_",
            "  ┖ 📥 512.0MB/1.00GB (50.00%)",
            "  ┖ ↓2.0KB/s ↑1.0KB/s",
            "----",
            "total 1 torrent(s)",
        ]

    def test_seeding(self) -> None:
        torrent = make_torrent(
            2, "linux", status=TorrentStatus.SEEDING, total_size=2048, rate_upload=0
        )
        lines = format_torrent_list([torrent]).splitlines()
        assert lines[1] == "  ┖ 🌱 2.0KB"
        assert len(lines) == 4

    def test_error_string(self) -> None:
        torrent = make_torrent(
            3, "broken", total_size=10, error_string="tracker did not respond"
        )
        lines = format_torrent_list([torrent]).splitlines()
        assert lines[:2] == ["*3*. _broken_", "  ┖ (10B) *tracker did not respond*"]

    def test_queued_and_unknown_status(self) -> None:
        queued = make_torrent(4, "a", status=TorrentStatus.QUEUED_TO_SEED)
        unknown = make_torrent(5, "b", status=42)
        lines = format_torrent_list([queued, unknown]).splitlines()
        assert lines[1] == "  ┖ ⏳🌱"
        assert lines[3] == "  ┖ ❓"
        assert lines[-1] == "total 2 torrent(s)"


def test_service_statuses() -> None:
    text = format_service_statuses({"nginx": "active", "samba": "inactive"})
    assert text == "┖ nginx: *active*\n┖ samba: *inactive*"
    assert use_markdown(text)


def test_unknown_command_echo() -> None:
    assert format_unknown_command("hello") == "*hello*: Unknown command."
    assert format_unknown_command("") == "Unknown command."


def test_uptime() -> None:
    assert format_uptime(3 * 86400 + 5 * 3600 + 120) == "*3* day(s) *5* hour(s)"
    assert format_uptime(-1) == "*0* day(s) *0* hour(s)"


def test_status_text() -> None:
    gb = 1024**3
    text = format_status(
        version="1.2.3",
        uptime_s=3600,
        memory=MemoryUsage(rss=10 * 1024**2, vms=20 * 1024**2),
        disks=[
            DiskUsage("/", total=10 * gb, used=4 * gb, free=6 * gb),
            DiskUsage("/mnt", error="not mounted"),
        ],
    )
    assert text.splitlines() == [
        "app version: 1.2.3",
        "app uptime: *0* day(s) *1* hour(s)",
        "app memory usage: rss *10.0 MB*, vms *20.0 MB*",
        "system disk usage:",
        "  /  all *10.00 GB*, used *4.00 GB*, free *6.00 GB*",
        "/mnt: not mounted",
    ]


def test_logs() -> None:
    entries = [
        LogEntry("err", "boom", datetime(2024, 5, 6, 7, 8, 9)),
        LogEntry("log", "starting server...", datetime(2024, 5, 6, 7, 0, 0)),
    ]
    assert format_logs(entries) == (
        "2024-05-06 07:08:09 err: boom\n2024-05-06 07:00:00 log: starting server..."
    )
    assert format_logs([]) == "No saved logs."
