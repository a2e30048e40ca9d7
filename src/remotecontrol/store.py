"""Local sqlite store for bot logs and known chats."""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from .logging import get_logger

logger = get_logger(__name__)

LOG_TYPE_LOG = "log"
LOG_TYPE_ERROR = "err"


@dataclass(frozen=True, slots=True)
class LogEntry:
    type: str
    message: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class ChatRecord:
    chat_id: int
    user_id: str
    created_at: datetime


class Store(Protocol):
    def log(self, message: str) -> None: ...

    def log_error(self, message: str) -> None: ...

    def get_logs(self, latest_n: int) -> list[LogEntry]: ...

    def save_chat(self, chat_id: int, user_id: str) -> None: ...

    def get_chats(self) -> list[ChatRecord]: ...


def _init_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL,
            message TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS chats (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            chat_id INTEGER NOT NULL UNIQUE,
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.commit()


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


class Database:
    """sqlite3 connection shared by every task.

    A single lock serializes access to the connection. Failures are logged and
    swallowed per call; reads come back empty.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _save_log(self, type_: str, message: str) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO logs (type, message, created_at) VALUES (?, ?, ?)",
                    (type_, message, _now()),
                )
        except sqlite3.Error as e:
            logger.error("store.save_log.failed", error=str(e))

    def log(self, message: str) -> None:
        self._save_log(LOG_TYPE_LOG, message)

    def log_error(self, message: str) -> None:
        self._save_log(LOG_TYPE_ERROR, message)

    def get_logs(self, latest_n: int) -> list[LogEntry]:
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT type, message, created_at FROM logs "
                    "ORDER BY id DESC LIMIT ?",
                    (latest_n,),
                ).fetchall()
        except sqlite3.Error as e:
            logger.error("store.get_logs.failed", error=str(e))
            return []
        return [
            LogEntry(type=type_, message=message, created_at=_parse_time(created))
            for type_, message, created in rows
        ]

    def save_chat(self, chat_id: int, user_id: str) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT OR IGNORE INTO chats (chat_id, user_id, created_at) "
                    "VALUES (?, ?, ?)",
                    (chat_id, user_id, _now()),
                )
        except sqlite3.Error as e:
            logger.error("store.save_chat.failed", chat_id=chat_id, error=str(e))

    def delete_chat(self, chat_id: int) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM chats WHERE chat_id = ?", (chat_id,))
        except sqlite3.Error as e:
            logger.error("store.delete_chat.failed", chat_id=chat_id, error=str(e))

    def get_chats(self) -> list[ChatRecord]:
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT chat_id, user_id, created_at FROM chats ORDER BY id"
                ).fetchall()
        except sqlite3.Error as e:
            logger.error("store.get_chats.failed", error=str(e))
            return []
        return [
            ChatRecord(chat_id=chat_id, user_id=user_id, created_at=_parse_time(created))
            for chat_id, user_id, created in rows
        ]


def _parse_time(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return datetime.fromtimestamp(0)


def open_database(path: Path) -> Database:
    """Open (and migrate) the store; raises on failure."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    try:
        _init_schema(conn)
    except sqlite3.Error:
        conn.close()
        raise
    return Database(conn)
