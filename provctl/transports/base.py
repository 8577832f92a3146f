"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from provctl.core.model import CloudDevice, EnterpriseCredentials, ScannedNetwork, UtilityResult


class TransferUtility(Protocol):
    def run(self, args: Sequence[str], *, timeout_s: float | None = None) -> UtilityResult:
        """Run the DFU utility with args; raise TransferTimeoutError past the deadline."""


class ProvisioningLink(Protocol):
    async def scan(self) -> list[ScannedNetwork]: ...

    async def device_info(self) -> str: ...

    async def public_key(self) -> bytes: ...

    async def set_claim_code(self, code: str) -> None: ...

    async def configure(
        self,
        ssid: str,
        security_bits: int,
        *,
        password: str | None = None,
        enterprise: EnterpriseCredentials | None = None,
        channel: int | None = None,
    ) -> None: ...

    async def connect(self) -> None: ...


class CloudClient(Protocol):
    async def get_claim_code(self) -> str: ...

    async def list_devices(self) -> list[CloudDevice]: ...

    async def rename_device(self, device_id: str, name: str) -> None: ...


class HostWifi(Protocol):
    @property
    def supports_connect(self) -> bool: ...

    async def current_network(self) -> str | None: ...

    async def connect(self, ssid: str, password: str | None = None) -> None: ...
