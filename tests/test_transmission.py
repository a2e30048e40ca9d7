import json

import httpx
import pytest

from remotecontrol.transmission import (
    SESSION_ID_HEADER,
    MalformedResponse,
    TorrentStatus,
    TransmissionClient,
    TransmissionError,
    is_torrent_id,
    rpc_url,
)


def _client(handler, **kwargs) -> tuple[TransmissionClient, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TransmissionClient(9091, client=http, **kwargs), http


def test_rpc_url() -> None:
    assert rpc_url(9091) == "http://localhost:9091/transmission/rpc"


@pytest.mark.anyio
async def test_session_id_refresh_then_success() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get(SESSION_ID_HEADER, ""))
        if request.headers.get(SESSION_ID_HEADER) != "abc":
            return httpx.Response(409, headers={SESSION_ID_HEADER: "abc"})
        return httpx.Response(
            200, json={"result": "success", "arguments": {"torrent-added": {"id": 1}}}
        )

    tr, http = _client(handler)
    try:
        result = await tr.add("magnet:?xt=abc")
        again = await tr.add("magnet:?xt=def")
    finally:
        await http.aclose()

    assert result == "Given torrent was successfully added to the list."
    assert again == result
    # the refreshed id is kept for later requests
    assert seen == ["", "abc", "abc"]


@pytest.mark.anyio
async def test_conflict_without_header_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409)

    tr, http = _client(handler)
    try:
        with pytest.raises(TransmissionError, match="couldn't find"):
            await tr.list_torrents()
    finally:
        await http.aclose()


@pytest.mark.anyio
async def test_retries_are_bounded() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(
            409, headers={SESSION_ID_HEADER: f"token-{len(calls)}"}
        )

    tr, http = _client(handler)
    try:
        result = await tr.add("magnet:?xt=abc")
    finally:
        await http.aclose()

    assert len(calls) == 3
    assert result.startswith(
        "Failed to add given torrent: no more retries for this request: torrent-add"
    )


@pytest.mark.anyio
async def test_transport_errors_are_retried() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"result": "success", "arguments": {}})

    tr, http = _client(handler)
    try:
        result = await tr.remove("4")
    finally:
        await http.aclose()

    assert len(calls) == 3
    assert result == "Torrent id: 4 was successfully removed from the list"


@pytest.mark.anyio
async def test_list_torrents_decodes_fields() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "result": "success",
                "arguments": {
                    "torrents": [
                        {
                            "id": 3,
                            "name": "debian.iso",
                            "status": 4,
                            "rateDownload": 1000,
                            "rateUpload": 10,
                            "percentDone": 0.25,
                            "totalSize": 4096,
                            "errorString": "",
                            "extra": True,
                        }
                    ]
                },
            },
        )

    tr, http = _client(handler)
    try:
        torrents = await tr.list_torrents()
    finally:
        await http.aclose()

    assert bodies[0]["method"] == "torrent-get"
    assert "percentDone" in bodies[0]["arguments"]["fields"]
    assert len(torrents) == 1
    torrent = torrents[0]
    assert torrent.id == 3
    assert torrent.status == TorrentStatus.DOWNLOADING
    assert torrent.rate_download == 1000
    assert torrent.percent_done == 0.25
    assert torrent.total_size == 4096


@pytest.mark.anyio
async def test_list_torrents_failure_result_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": "no such method"})

    tr, http = _client(handler)
    try:
        with pytest.raises(TransmissionError):
            await tr.list_torrents()
    finally:
        await http.aclose()


@pytest.mark.anyio
async def test_http_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="Unauthorized")

    tr, http = _client(handler)
    try:
        result = await tr.delete("2")
    finally:
        await http.aclose()

    assert result == "Failed to remove given torrent: HTTP 401 (Unauthorized)"


@pytest.mark.anyio
async def test_duplicate_and_failed_add() -> None:
    responses = [
        {"result": "success", "arguments": {"torrent-duplicate": {"id": 1}}},
        {"result": "invalid or corrupt torrent file"},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=responses.pop(0))

    tr, http = _client(handler)
    try:
        duplicate = await tr.add("magnet:?xt=1")
        failed = await tr.add("http://example.com/bad.torrent")
    finally:
        await http.aclose()

    assert duplicate == "Duplicated torrent was given."
    assert failed == "Failed to add given torrent."


@pytest.mark.anyio
async def test_malformed_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>nope</html>")

    tr, http = _client(handler)
    try:
        result = await tr.add("magnet:?xt=1")
        with pytest.raises(MalformedResponse):
            await tr.list_torrents()
    finally:
        await http.aclose()

    assert result == "Malformed RPC server response: <html>nope</html>"


@pytest.mark.anyio
async def test_remove_and_delete_requests() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"result": "success"})

    tr, http = _client(handler)
    try:
        removed = await tr.remove("5")
        deleted = await tr.delete("6")
    finally:
        await http.aclose()

    assert bodies == [
        {"method": "torrent-remove", "arguments": {"ids": [5], "delete-local-data": False}},
        {"method": "torrent-remove", "arguments": {"ids": [6], "delete-local-data": True}},
    ]
    assert removed == "Torrent id: 5 was successfully removed from the list"
    assert deleted == "Torrent id: 6 and its data were successfully deleted"


@pytest.mark.anyio
async def test_invalid_id_skips_rpc() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    tr, http = _client(handler)
    try:
        assert await tr.remove("abc") == "Not a valid torrent id: abc"
        assert await tr.delete("1_0") == "Not a valid torrent id: 1_0"
        assert await tr.remove("+7") == "Not a valid torrent id: +7"
        assert await tr.remove("٣") == "Not a valid torrent id: ٣"
    finally:
        await http.aclose()


@pytest.mark.parametrize(
    ("text", "expected"),
    [("42", True), ("007", True), ("", False), ("1_0", False), ("+7", False), ("٣", False)],
)
def test_is_torrent_id(text: str, expected: bool) -> None:
    assert is_torrent_id(text) is expected


@pytest.mark.anyio
async def test_basic_auth_when_configured() -> None:
    auth_headers: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        auth_headers.append(request.headers.get("authorization"))
        return httpx.Response(200, json={"result": "success"})

    tr, http = _client(handler, username="user", passwd="secret")
    try:
        await tr.remove("1")
    finally:
        await http.aclose()

    assert auth_headers[0] is not None
    assert auth_headers[0].startswith("Basic ")
