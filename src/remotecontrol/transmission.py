"""Transmission JSON-RPC client.

https://github.com/transmission/transmission/blob/main/docs/rpc-spec.md
"""

from __future__ import annotations

import enum
from typing import Any, Protocol

import httpx
import msgspec

from .logging import get_logger

logger = get_logger(__name__)

SESSION_ID_HEADER = "X-Transmission-Session-Id"
MAX_ATTEMPTS = 3
DEFAULT_TIMEOUT_S = 60.0

TORRENT_FIELDS = (
    "id",
    "status",
    "name",
    "rateDownload",  # B/s
    "rateUpload",  # B/s
    "percentDone",
    "totalSize",
    "errorString",
)

MESSAGE_ADDED = "Given torrent was successfully added to the list."
MESSAGE_DUPLICATED = "Duplicated torrent was given."
MESSAGE_ADD_FAILED = "Failed to add given torrent."
MESSAGE_REMOVE_FAILED = "Failed to remove given torrent."


class TransmissionError(Exception):
    pass


class MalformedResponse(TransmissionError):
    pass


class TorrentStatus(enum.IntEnum):
    STOPPED = 0
    QUEUED_TO_VERIFY = 1
    VERIFYING = 2
    QUEUED_TO_DOWNLOAD = 3
    DOWNLOADING = 4
    QUEUED_TO_SEED = 5
    SEEDING = 6


class Torrent(msgspec.Struct, rename="camel", forbid_unknown_fields=False):
    id: int
    name: str = ""
    status: int = TorrentStatus.STOPPED
    rate_download: int = 0
    rate_upload: int = 0
    percent_done: float = 0.0
    total_size: int = 0
    error_string: str = ""


class _RpcArguments(msgspec.Struct, forbid_unknown_fields=False):
    torrents: list[Torrent] = msgspec.field(default_factory=list)
    torrent_added: dict[str, Any] | None = msgspec.field(
        default=None, name="torrent-added"
    )
    torrent_duplicate: dict[str, Any] | None = msgspec.field(
        default=None, name="torrent-duplicate"
    )


class _RpcResponse(msgspec.Struct, forbid_unknown_fields=False):
    result: str = ""
    arguments: _RpcArguments = msgspec.field(default_factory=_RpcArguments)


class TorrentQueue(Protocol):
    async def list_torrents(self) -> list[Torrent]: ...

    async def add(self, source: str) -> str: ...

    async def remove(self, torrent_id: str) -> str: ...

    async def delete(self, torrent_id: str) -> str: ...


def rpc_url(port: int, host: str = "localhost") -> str:
    return f"http://{host}:{port}/transmission/rpc"


def is_torrent_id(text: str) -> bool:
    # plain ascii digits only; int() would also take "+7", "1_0" and "٣"
    return text.isascii() and text.isdigit()


class TransmissionClient:
    def __init__(
        self,
        port: int,
        username: str = "",
        passwd: str = "",
        *,
        host: str = "localhost",
        max_attempts: int = MAX_ATTEMPTS,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = rpc_url(port, host)
        self._auth = (username, passwd) if username and passwd else None
        self._max_attempts = max(1, max_attempts)
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None
        self._session_id = ""

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, method: str, arguments: dict[str, Any]) -> bytes:
        body = msgspec.json.encode({"method": method, "arguments": arguments})
        last_error = ""
        for attempt in range(1, self._max_attempts + 1):
            try:
                resp = await self._client.post(
                    self._url,
                    content=body,
                    headers={
                        SESSION_ID_HEADER: self._session_id,
                        "Content-Type": "application/json",
                    },
                    auth=self._auth,
                )
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(
                    "transmission.send_failed",
                    method=method,
                    attempt=attempt,
                    error=last_error,
                    error_type=e.__class__.__name__,
                )
                continue

            if resp.status_code == httpx.codes.CONFLICT:
                session_id = resp.headers.get(SESSION_ID_HEADER)
                if not session_id:
                    logger.error("transmission.session_header_missing", method=method)
                    raise TransmissionError(
                        f"couldn't find '{SESSION_ID_HEADER}' value from http headers"
                    )
                logger.debug("transmission.session_refreshed", attempt=attempt)
                self._session_id = session_id
                last_error = "session id mismatch"
                continue

            if resp.status_code != httpx.codes.OK:
                logger.error(
                    "transmission.http_error",
                    method=method,
                    status=resp.status_code,
                    body=resp.text,
                )
                raise TransmissionError(f"HTTP {resp.status_code} ({resp.text})")

            return resp.content

        raise TransmissionError(
            f"no more retries for this request: {method} ({last_error})"
        )

    async def _call(self, method: str, arguments: dict[str, Any]) -> _RpcResponse:
        content = await self._post(method, arguments)
        try:
            return msgspec.json.decode(content, type=_RpcResponse)
        except msgspec.DecodeError as e:
            logger.error("transmission.bad_response", method=method, body=content)
            raise MalformedResponse(
                f"Malformed RPC server response: {content.decode(errors='replace')}"
            ) from e

    async def list_torrents(self) -> list[Torrent]:
        response = await self._call("torrent-get", {"fields": list(TORRENT_FIELDS)})
        if response.result != "success":
            raise TransmissionError(f"Failed to list torrents: {response.result}")
        return response.arguments.torrents

    async def add(self, source: str) -> str:
        try:
            response = await self._call("torrent-add", {"filename": source})
        except MalformedResponse as e:
            return str(e)
        except TransmissionError as e:
            return f"Failed to add given torrent: {e}"
        if response.result != "success":
            logger.info("transmission.add_rejected", result=response.result)
            return MESSAGE_ADD_FAILED
        if response.arguments.torrent_duplicate is not None:
            return MESSAGE_DUPLICATED
        return MESSAGE_ADDED

    async def remove(self, torrent_id: str) -> str:
        return await self._remove(torrent_id, delete_local_data=False)

    async def delete(self, torrent_id: str) -> str:
        return await self._remove(torrent_id, delete_local_data=True)

    async def _remove(self, torrent_id: str, *, delete_local_data: bool) -> str:
        if not is_torrent_id(torrent_id):
            return f"Not a valid torrent id: {torrent_id}"
        numeric_id = int(torrent_id)
        try:
            response = await self._call(
                "torrent-remove",
                {"ids": [numeric_id], "delete-local-data": delete_local_data},
            )
        except MalformedResponse as e:
            return str(e)
        except TransmissionError as e:
            return f"Failed to remove given torrent: {e}"
        if response.result != "success":
            logger.info("transmission.remove_rejected", result=response.result)
            return MESSAGE_REMOVE_FAILED
        if delete_local_data:
            return f"Torrent id: {numeric_id} and its data were successfully deleted"
        return f"Torrent id: {numeric_id} was successfully removed from the list"
