"""Per-user conversation state.

One exclusive lock guards every session. The dispatcher holds it for a whole
turn (read state, call collaborators, send the reply, write state), so two
events from the same user never interleave. The price is that all users are
serialized too, which is fine for a personal bot with a handful of ids.
"""

from __future__ import annotations

import enum
from collections.abc import AsyncIterator, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

import anyio

from .logging import get_logger

logger = get_logger(__name__)


class SessionState(enum.Enum):
    WAITING = "waiting"
    WAITING_UPLOAD = "waiting_upload"


@dataclass(frozen=True, slots=True)
class Session:
    user_id: str
    state: SessionState = SessionState.WAITING


class SessionStore(Protocol):
    def turn(self) -> AbstractAsyncContextManager[None]: ...

    def get(self, user_id: str) -> Session | None: ...

    def set(self, user_id: str, state: SessionState) -> None: ...


class InMemorySessionStore:
    def __init__(self, user_ids: Iterable[str]) -> None:
        self._sessions: dict[str, Session] = {
            user_id: Session(user_id=user_id) for user_id in user_ids
        }
        self._lock = anyio.Lock()

    @asynccontextmanager
    async def turn(self) -> AsyncIterator[None]:
        async with self._lock:
            yield

    def get(self, user_id: str) -> Session | None:
        return self._sessions.get(user_id)

    def set(self, user_id: str, state: SessionState) -> None:
        if user_id not in self._sessions:
            # sessions are created once at startup from the allow-list
            logger.error("session.set.unknown", user_id=user_id)
            return
        previous = self._sessions[user_id].state
        self._sessions[user_id] = Session(user_id=user_id, state=state)
        if previous is not state:
            logger.debug(
                "session.transition",
                user_id=user_id,
                previous=previous.value,
                state=state.value,
            )
