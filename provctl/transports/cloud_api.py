"""REST client for the device cloud: claim codes, device listing, naming."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any

import aiohttp

from provctl.core.errors import CloudError, CloudErrorKind, NetworkUnreachableError
from provctl.core.model import CloudDevice

DEFAULT_API_URL = "https://api.particle.io"
LOGGER = logging.getLogger(__name__)


def classify_client_error(exc: BaseException) -> CloudErrorKind:
    if isinstance(exc, aiohttp.ClientConnectorError) and isinstance(exc.os_error, socket.gaierror):
        return CloudErrorKind.NOT_FOUND
    if isinstance(exc, (aiohttp.ClientConnectionError, asyncio.TimeoutError)):
        return CloudErrorKind.NETWORK_UNREACHABLE
    return CloudErrorKind.API


def connection_error(exc: BaseException, base_url: str) -> CloudError:
    message = f"Could not reach {base_url}: {exc}"
    kind = classify_client_error(exc)
    if kind is CloudErrorKind.NETWORK_UNREACHABLE:
        return NetworkUnreachableError(message)
    return CloudError(message, kind)


class CloudAPI:
    def __init__(
        self,
        access_token: str | None,
        *,
        base_url: str = DEFAULT_API_URL,
        timeout_s: float = 30.0,
    ) -> None:
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def get_claim_code(self) -> str:
        data = await self._request("POST", "/v1/device_claims")
        claim_code = data.get("claim_code") if isinstance(data, dict) else None
        if not claim_code:
            raise CloudError("The cloud did not return a claim code")
        return str(claim_code)

    async def list_devices(self) -> list[CloudDevice]:
        data = await self._request("GET", "/v1/devices")
        if not isinstance(data, list):
            raise CloudError("Unexpected device list payload from the cloud")
        return [
            CloudDevice(
                id=str(item["id"]),
                connected=bool(item.get("connected")),
                name=item.get("name"),
            )
            for item in data
            if isinstance(item, dict) and item.get("id")
        ]

    async def rename_device(self, device_id: str, name: str) -> None:
        await self._request("PUT", f"/v1/devices/{device_id}", {"name": name})

    async def _request(self, method: str, path: str, form: dict[str, str] | None = None) -> Any:
        if not self.access_token:
            raise CloudError(
                "No access token configured. Set PROVCTL_ACCESS_TOKEN or access_token in config.yaml.",
                CloudErrorKind.UNAUTHORIZED,
            )

        headers = {"Authorization": f"Bearer {self.access_token}"}
        url = f"{self.base_url}{path}"
        LOGGER.debug("Cloud %s %s", method, path)
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.request(method, url, data=form, headers=headers) as resp:
                    status = resp.status
                    try:
                        body = await resp.json(content_type=None)
                    except ValueError:
                        body = None
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                error = connection_error(exc, self.base_url)
                LOGGER.debug("Cloud request %s %s failed (%s): %s", method, path, error.kind.value, exc)
                raise error from exc

        if status in (401, 403):
            raise CloudError("The cloud rejected the access token", CloudErrorKind.UNAUTHORIZED)
        if status >= 400:
            detail = ""
            if isinstance(body, dict):
                detail = body.get("error_description") or body.get("error") or ""
            raise CloudError(f"Cloud request {method} {path} failed with HTTP {status} {detail}".strip())
        return body
