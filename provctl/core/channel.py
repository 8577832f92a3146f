"""Point-to-point provisioning operations that report failure as values."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from provctl.core.errors import ProvctlError
from provctl.core.model import EnterpriseCredentials, ScannedNetwork, SecurityClass
from provctl.transports.base import ProvisioningLink

DEFAULT_SELF_AP_PREFIX = "Photon-"
LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ChannelResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: str | None = None


def process_scan_results(
    networks: Iterable[ScannedNetwork],
    self_ap_prefix: str = DEFAULT_SELF_AP_PREFIX,
) -> list[ScannedNetwork]:
    """Sort by ssid, keep the first entry per ssid, and hide the device's own AP."""
    seen: set[str] = set()
    processed: list[ScannedNetwork] = []
    for network in sorted(networks, key=lambda n: n.ssid):
        if not network.ssid or network.ssid in seen:
            continue
        seen.add(network.ssid)
        if self_ap_prefix and network.ssid.startswith(self_ap_prefix):
            continue
        processed.append(network)
    return processed


class ProvisioningChannel:
    def __init__(self, link: ProvisioningLink, *, self_ap_prefix: str = DEFAULT_SELF_AP_PREFIX) -> None:
        self.link = link
        self.self_ap_prefix = self_ap_prefix

    async def scan_networks(self) -> ChannelResult[list[ScannedNetwork]]:
        return await self._exchange("scan", self._scan())

    async def query_device_info(self) -> ChannelResult[str]:
        return await self._exchange("device-info", self.link.device_info())

    async def exchange_public_key(self) -> ChannelResult[bool]:
        return await self._exchange("public-key", self._public_key())

    async def push_claim_code(self, code: str) -> ChannelResult[bool]:
        return await self._exchange("claim-code", self._done(self.link.set_claim_code(code)))

    async def push_configuration(
        self,
        network: str,
        security: SecurityClass,
        *,
        password: str | None = None,
        enterprise: EnterpriseCredentials | None = None,
        channel: int | None = None,
    ) -> ChannelResult[bool]:
        return await self._exchange(
            "configure",
            self._done(
                self.link.configure(
                    network,
                    security.bits,
                    password=password,
                    enterprise=enterprise,
                    channel=channel,
                )
            ),
        )

    async def command_connect(self) -> ChannelResult[bool]:
        return await self._exchange("connect", self._done(self.link.connect()))

    async def _scan(self) -> list[ScannedNetwork]:
        return process_scan_results(await self.link.scan(), self.self_ap_prefix)

    async def _public_key(self) -> bool:
        await self.link.public_key()
        return True

    @staticmethod
    async def _done(call: Awaitable[Any]) -> bool:
        await call
        return True

    @staticmethod
    async def _exchange(name: str, call: Awaitable[T]) -> ChannelResult[T]:
        try:
            value = await call
        except (ProvctlError, OSError) as exc:
            LOGGER.debug("Device exchange '%s' failed: %s", name, exc)
            return ChannelResult(ok=False, error=str(exc) or exc.__class__.__name__)
        return ChannelResult(ok=True, value=value)
