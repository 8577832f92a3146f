from __future__ import annotations

import asyncio
import socket
from types import SimpleNamespace
from typing import Any

import aiohttp
import pytest

from provctl.core.errors import CloudError, CloudErrorKind, NetworkUnreachableError
from provctl.transports.cloud_api import CloudAPI, classify_client_error, connection_error


def test_classify_dns_failure_as_not_found() -> None:
    key = SimpleNamespace(host="api.particle.io", port=443, ssl=True)
    exc = aiohttp.ClientConnectorError(key, socket.gaierror(-2, "Name or service not known"))
    assert classify_client_error(exc) is CloudErrorKind.NOT_FOUND


def test_classify_connection_problems_as_unreachable() -> None:
    key = SimpleNamespace(host="api.particle.io", port=443, ssl=True)
    refused = aiohttp.ClientConnectorError(key, ConnectionRefusedError(111, "Connection refused"))
    assert classify_client_error(refused) is CloudErrorKind.NETWORK_UNREACHABLE
    assert classify_client_error(aiohttp.ServerDisconnectedError()) is CloudErrorKind.NETWORK_UNREACHABLE
    assert classify_client_error(asyncio.TimeoutError()) is CloudErrorKind.NETWORK_UNREACHABLE


def test_classify_other_client_errors_as_api() -> None:
    assert classify_client_error(aiohttp.ClientPayloadError("truncated")) is CloudErrorKind.API


def test_connection_error_types_follow_kind() -> None:
    key = SimpleNamespace(host="api.particle.io", port=443, ssl=True)
    dns = connection_error(
        aiohttp.ClientConnectorError(key, socket.gaierror(-2, "Name or service not known")),
        "https://api.particle.io",
    )
    assert type(dns) is CloudError
    assert dns.kind is CloudErrorKind.NOT_FOUND

    unreachable = connection_error(asyncio.TimeoutError(), "https://api.particle.io")
    assert isinstance(unreachable, NetworkUnreachableError)
    assert unreachable.kind is CloudErrorKind.NETWORK_UNREACHABLE
    assert "Could not reach https://api.particle.io" in str(unreachable)


def test_dropped_connection_raises_network_unreachable(monkeypatch: pytest.MonkeyPatch) -> None:
    def request(self, *args, **kwargs):
        raise aiohttp.ServerDisconnectedError()

    monkeypatch.setattr(aiohttp.ClientSession, "request", request)

    with pytest.raises(NetworkUnreachableError) as exc:
        asyncio.run(CloudAPI("token").get_claim_code())
    assert exc.value.kind is CloudErrorKind.NETWORK_UNREACHABLE


def test_missing_token_is_unauthorized() -> None:
    with pytest.raises(CloudError) as exc:
        asyncio.run(CloudAPI(None).get_claim_code())
    assert exc.value.kind is CloudErrorKind.UNAUTHORIZED


class StubAPI(CloudAPI):
    def __init__(self, body: Any) -> None:
        super().__init__("token")
        self.body = body
        self.requests: list[tuple[str, str, dict[str, str] | None]] = []

    async def _request(self, method: str, path: str, form: dict[str, str] | None = None) -> Any:
        self.requests.append((method, path, form))
        return self.body


def test_list_devices_parses_payload() -> None:
    api = StubAPI(
        [
            {"id": "0123456789ABCDEF01234567", "connected": True, "name": "kitchen"},
            {"id": "FEDCBA", "connected": False, "name": None},
            {"name": "no id"},
        ]
    )

    devices = asyncio.run(api.list_devices())

    assert [(d.id, d.connected, d.name) for d in devices] == [
        ("0123456789ABCDEF01234567", True, "kitchen"),
        ("FEDCBA", False, None),
    ]
    assert api.requests == [("GET", "/v1/devices", None)]


def test_claim_code_and_rename_requests() -> None:
    api = StubAPI({"claim_code": "abc123", "device_ids": []})
    assert asyncio.run(api.get_claim_code()) == "abc123"
    asyncio.run(api.rename_device("DEVICE", "kitchen"))
    assert api.requests[-1] == ("PUT", "/v1/devices/DEVICE", {"name": "kitchen"})


def test_missing_claim_code_is_an_error() -> None:
    with pytest.raises(CloudError, match="claim code"):
        asyncio.run(StubAPI({"ok": False}).get_claim_code())
