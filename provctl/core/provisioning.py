"""SoftAP provisioning handshake as an explicit state machine.

The orchestrator never prompts directly. Whenever it needs operator input it
builds an `InputRequest` and suspends on `OperatorInterface.ask`; progress is
reported through `OperatorInterface.notify`. Device calls go through a
`ProvisioningChannel`, cloud calls through a `CloudClient`, and host network
changes through an optional `HostWifi`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, TypeVar

from provctl.core.channel import ChannelResult, ProvisioningChannel
from provctl.core.errors import (
    CloudError,
    CloudErrorKind,
    CloudVerificationPending,
    OperatorCancelledError,
    ProvctlError,
)
from provctl.core.model import (
    CloudDevice,
    EnterpriseCredentials,
    ProvisioningSession,
    ScannedNetwork,
    SecurityClass,
)
from provctl.core.retry import RetryPolicy, wait_or_cancel
from provctl.transports.base import CloudClient, HostWifi

RESCAN = "[rescan networks]"
MANUAL_ENTRY = "[manual entry]"
LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class ProvisioningState(str, Enum):
    IDLE = "idle"
    OBTAINING_CLAIM_CODE = "obtaining_claim_code"
    JOINING_DEVICE_NETWORK = "joining_device_network"
    AWAITING_NETWORK_SELECTION = "awaiting_network_selection"
    AWAITING_CREDENTIALS = "awaiting_credentials"
    IDENTIFYING_DEVICE = "identifying_device"
    PUSHING_CLAIM_CODE = "pushing_claim_code"
    EXCHANGING_KEY = "exchanging_key"
    PUSHING_CONFIGURATION = "pushing_configuration"
    REQUESTING_CONNECT = "requesting_connect"
    RECONNECTING_HOST = "reconnecting_host"
    VERIFYING_CLOUD = "verifying_cloud"
    NAMED = "named"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ProvisioningState.DONE, ProvisioningState.FAILED, ProvisioningState.CANCELLED)


class InputKind(str, Enum):
    CONFIRM_INTERNET = "confirm_internet"
    JOIN_DEVICE_NETWORK = "join_device_network"
    SCAN_CHOICE = "scan_choice"
    NETWORK_SELECTION = "network_selection"
    MANUAL_NETWORK = "manual_network"
    PASSWORD = "password"
    ENTERPRISE_CREDENTIALS = "enterprise_credentials"
    CONFIRM_SETTINGS = "confirm_settings"
    RECONNECT_HOST = "reconnect_host"
    VERIFY_ACTION = "verify_action"
    DEVICE_NAME = "device_name"


class VerifyAction(str, Enum):
    RECHECK = "recheck"
    RECONFIGURE = "reconfigure"


class EventLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class InputRequest:
    kind: InputKind
    message: str
    choices: tuple[str, ...] = ()
    default: Any = None


@dataclass(frozen=True)
class ManualNetwork:
    ssid: str
    security: SecurityClass


@dataclass(frozen=True)
class ProvisioningEvent:
    state: ProvisioningState
    message: str
    level: EventLevel = EventLevel.INFO


class OperatorInterface(Protocol):
    async def ask(self, request: InputRequest) -> Any:
        """Return the typed answer for request.kind, or raise OperatorCancelledError."""

    def notify(self, event: ProvisioningEvent) -> None: ...


@dataclass(frozen=True)
class RetryPolicies:
    scan: RetryPolicy = field(
        default_factory=lambda: RetryPolicy.bounded(10, initial_delay=1.0, delay=2.0)
    )
    device_step: RetryPolicy = field(default_factory=lambda: RetryPolicy.unbounded(1.0))
    verify_initial_delay: float = 2.0


class _Restart(Exception):
    """Internal signal: go back to network selection."""


class ProvisioningOrchestrator:
    def __init__(
        self,
        channel: ProvisioningChannel,
        cloud: CloudClient,
        operator: OperatorInterface,
        *,
        host_wifi: HostWifi | None = None,
        session: ProvisioningSession | None = None,
        policies: RetryPolicies | None = None,
        self_ap_prefix: str | None = None,
    ) -> None:
        self.channel = channel
        self.cloud = cloud
        self.operator = operator
        self.host_wifi = host_wifi
        self.session = session or ProvisioningSession()
        self.policies = policies or RetryPolicies()
        self.self_ap_prefix = self_ap_prefix or channel.self_ap_prefix
        self.state = ProvisioningState.IDLE
        self.history: list[ProvisioningState] = [ProvisioningState.IDLE]
        self.failure: str | None = None
        self._networks: dict[str, ScannedNetwork] = {}
        self._cancelled = asyncio.Event()

        if not self._can_switch_networks():
            self.session.manual = True

    def cancel(self) -> None:
        """Request cooperative cancellation; pending retry waits end immediately."""
        self._cancelled.set()

    async def run(self) -> ProvisioningState:
        try:
            await self._obtain_claim_code()
            while True:
                await self._join_device_network()
                try:
                    await self._choose_network()
                    await self._configure_device()
                    await self._reconnect_host()
                    online = await self._verify_cloud()
                except _Restart:
                    self.session.clear_network()
                    continue
                break
            await self._name_device(online)
            self._enter(ProvisioningState.DONE, "Provisioning complete.")
        except OperatorCancelledError as exc:
            self._enter(ProvisioningState.CANCELLED, str(exc) or "Cancelled by operator")
        except ProvctlError as exc:
            self.failure = str(exc)
            self._enter(ProvisioningState.FAILED, self.failure, EventLevel.ERROR)
        finally:
            # Wake any wait still pending so nothing outlives the run.
            self._cancelled.set()
        return self.state

    # -- states -------------------------------------------------------------

    async def _obtain_claim_code(self) -> None:
        self._enter(ProvisioningState.OBTAINING_CLAIM_CODE, "Obtaining secure claim code from the cloud...")

        if self.host_wifi is not None:
            try:
                current = await self.host_wifi.current_network()
            except ProvctlError as exc:
                LOGGER.debug("Could not determine the current host network: %s", exc)
                current = None
            if current and current.startswith(self.self_ap_prefix):
                reconnected = await self._ask(
                    InputKind.CONFIRM_INTERNET,
                    "You are still connected to the device's Wi-Fi network. "
                    "Please reconnect to a Wi-Fi network with internet access. Have you reconnected?",
                    default=True,
                )
                if not reconnected:
                    raise OperatorCancelledError("Not connected to the internet")

        try:
            self.session.claim_code = await self.cloud.get_claim_code()
        except CloudError as exc:
            # Claim codes are single-use, so there is no automatic retry here.
            if exc.kind is CloudErrorKind.NOT_FOUND:
                reason = "Your computer couldn't find the cloud."
            elif exc.kind is CloudErrorKind.NETWORK_UNREACHABLE:
                reason = "There was a network error while connecting to the cloud."
            else:
                reason = f"The cloud refused to issue a claim code: {exc}"
            raise CloudError(
                f"{reason} An active internet connection is needed to complete setup. "
                "Please check your connection and try again.",
                exc.kind,
            ) from exc

        self._notify("Obtained secure claim code.")

    async def _join_device_network(self) -> None:
        self._enter(ProvisioningState.JOINING_DEVICE_NETWORK)
        device_ap = self.session.device_ap
        if not self.session.manual and device_ap and self.host_wifi is not None:
            self._notify(f"Attempting to connect to {device_ap}...")
            try:
                await self.host_wifi.connect(device_ap)
            except ProvctlError as exc:
                self._notify(
                    f"Something went wrong connecting to {device_ap}: {exc}",
                    EventLevel.WARNING,
                )
            else:
                self._notify(f"Connected to {device_ap}.")
                return

        joined = await self._ask(
            InputKind.JOIN_DEVICE_NETWORK,
            f"Please connect to the {device_ap or 'device'} Wi-Fi network now. Ready?",
            default=True,
        )
        if not joined:
            raise OperatorCancelledError("Device network not joined")

    async def _choose_network(self) -> None:
        while True:
            self._enter(ProvisioningState.AWAITING_NETWORK_SELECTION)
            auto = await self._ask(
                InputKind.SCAN_CHOICE,
                "Shall the device scan for available Wi-Fi networks?",
                default=True,
            )
            if auto:
                selected = await self._select_scanned_network()
            else:
                selected = await self._enter_network_manually()

            self.session.network, self.session.security, self.session.channel = selected
            await self._collect_credentials(self.session.security)

            if await self._ask(
                InputKind.CONFIRM_SETTINGS,
                self._settings_summary(),
                default=True,
            ):
                return
            self._notify("Let's try again...")
            self.session.clear_network()

    async def _select_scanned_network(self) -> tuple[str, SecurityClass, int | None]:
        while True:
            networks = await self._scan_with_retry()
            if networks is None:
                self._notify(
                    "The device failed to scan for nearby Wi-Fi networks. Switching to manual entry.",
                    EventLevel.WARNING,
                )
                return await self._enter_network_manually()

            self._networks = {n.ssid: n for n in networks}
            answer = await self._ask(
                InputKind.NETWORK_SELECTION,
                "Please select the network to which your device should connect:",
                choices=(*self._networks, RESCAN, MANUAL_ENTRY),
            )
            if answer == RESCAN:
                continue
            if answer == MANUAL_ENTRY:
                return await self._enter_network_manually()
            network = self._networks.get(answer)
            if network is None:
                self._notify(f"'{answer}' is not one of the scanned networks.", EventLevel.WARNING)
                continue
            return network.ssid, network.security, network.channel

    async def _scan_with_retry(self) -> list[ScannedNetwork] | None:
        policy = self.policies.scan
        attempt = 0
        while policy.allows(attempt):
            await wait_or_cancel(self._cancelled, policy.delay_before(attempt))
            result = await self.channel.scan_networks()
            if result.ok:
                return result.value or []
            attempt += 1
            LOGGER.warning("Device scan failed (attempt %s): %s", attempt, result.error)
            self._notify(
                "The device encountered an error while scanning for Wi-Fi networks. Retrying...",
                EventLevel.WARNING,
            )
        return None

    async def _enter_network_manually(self) -> tuple[str, SecurityClass, int | None]:
        while True:
            answer: ManualNetwork = await self._ask(
                InputKind.MANUAL_NETWORK,
                "Please enter the SSID and security of your Wi-Fi network:",
                choices=tuple(s.value for s in SecurityClass),
            )
            if answer.ssid and answer.ssid.strip():
                return answer.ssid.strip(), answer.security, None
            self._notify(
                "We can't set up your device without a Wi-Fi network! Let's try again...",
                EventLevel.WARNING,
            )

    async def _collect_credentials(self, security: SecurityClass) -> None:
        self.session.password = None
        self.session.enterprise = None
        if security is SecurityClass.OPEN:
            return

        while True:
            self._enter(ProvisioningState.AWAITING_CREDENTIALS)
            if security.is_enterprise:
                credentials: EnterpriseCredentials = await self._ask(
                    InputKind.ENTERPRISE_CREDENTIALS,
                    f"Enter the enterprise credentials for {self.session.network}:",
                )
                missing = credentials.missing_fields()
                if not missing:
                    self.session.enterprise = credentials
                    self.session.password = credentials.password
                    return
                self._notify(
                    f"Missing {', '.join(missing)} for {credentials.eap.label}. Let's try again...",
                    EventLevel.WARNING,
                )
            else:
                password = await self._ask(
                    InputKind.PASSWORD,
                    f"Please enter the password for {self.session.network}:",
                )
                if password and password.strip():
                    self.session.password = password
                    return
                self._notify(
                    "You chose a security type that requires a password! Let's try again...",
                    EventLevel.WARNING,
                )

    async def _configure_device(self) -> None:
        session = self.session

        self._enter(ProvisioningState.IDENTIFYING_DEVICE, "Obtaining device information...")
        session.device_id = await self._retry_step(self.channel.query_device_info)
        self._notify(f"Setting up device id {session.device_id.lower()}")

        self._enter(ProvisioningState.PUSHING_CLAIM_CODE, "Setting the cloud claim code...")
        claim_code = session.claim_code or ""
        await self._retry_step(lambda: self.channel.push_claim_code(claim_code))

        self._enter(ProvisioningState.EXCHANGING_KEY, "Requesting public key from the device...")
        await self._retry_step(self.channel.exchange_public_key)

        self._enter(
            ProvisioningState.PUSHING_CONFIGURATION,
            "Telling the device to apply your Wi-Fi configuration...",
        )
        network = session.network or ""
        security = session.security or SecurityClass.OPEN
        await self._retry_step(
            lambda: self.channel.push_configuration(
                network,
                security,
                password=session.password,
                enterprise=session.enterprise,
                channel=session.channel,
            )
        )

        self._enter(
            ProvisioningState.REQUESTING_CONNECT,
            "The device will now attempt to connect to your Wi-Fi network...",
        )
        await self._retry_step(self.channel.command_connect)

    async def _retry_step(self, call: Callable[[], Awaitable[ChannelResult[T]]]) -> T:
        policy = self.policies.device_step
        attempt = 0
        while policy.allows(attempt):
            await wait_or_cancel(self._cancelled, policy.delay_before(attempt))
            result = await call()
            if result.ok:
                return result.value  # type: ignore[return-value]
            attempt += 1
            LOGGER.info("%s failed (attempt %s): %s", self.state.value, attempt, result.error)
            self._notify(f"No answer from the device ({result.error}). Retrying...", EventLevel.WARNING)
        raise OperatorCancelledError(f"Gave up on {self.state.value} after {attempt} attempts")

    async def _reconnect_host(self) -> None:
        self._enter(ProvisioningState.RECONNECTING_HOST)
        session = self.session
        if not session.manual and not session.is_enterprise and self.host_wifi is not None:
            self._notify("Reconnecting your computer to your Wi-Fi network...")
            try:
                await self.host_wifi.connect(session.network or "", session.password)
            except ProvctlError as exc:
                self._notify(f"Could not reconnect automatically: {exc}", EventLevel.WARNING)
            else:
                return

        reconnected = await self._ask(
            InputKind.RECONNECT_HOST,
            "Please re-connect your computer to your Wi-Fi network now. Reconnected?",
            default=True,
        )
        if not reconnected:
            raise OperatorCancelledError("Host network not reconnected")

    async def _verify_cloud(self) -> CloudDevice:
        self._enter(
            ProvisioningState.VERIFYING_CLOUD,
            "Attempting to verify the device's connection to the cloud...",
        )
        delay = self.policies.verify_initial_delay
        while True:
            await wait_or_cancel(self._cancelled, delay)
            delay = 0.0
            try:
                return await self._poll_cloud()
            except CloudError as exc:
                if exc.kind is CloudErrorKind.NOT_FOUND:
                    self._notify("Network not ready yet, retrying...", EventLevel.WARNING)
                    delay = self.policies.verify_initial_delay
                    continue
                self._notify(
                    f"Unable to verify your device's connection: {exc}. "
                    "Please make sure you're connected to the internet.",
                    EventLevel.ERROR,
                )
            except CloudVerificationPending as exc:
                self._notify(str(exc), EventLevel.WARNING)

            action = await self._ask(
                InputKind.VERIFY_ACTION,
                "What would you like to do?",
                choices=(VerifyAction.RECHECK.value, VerifyAction.RECONFIGURE.value),
                default=VerifyAction.RECHECK,
            )
            if VerifyAction(action) is VerifyAction.RECONFIGURE:
                raise _Restart()

    async def _poll_cloud(self) -> CloudDevice:
        wanted = (self.session.device_id or "").upper()
        for device in await self.cloud.list_devices():
            if device.id.upper() == wanted and device.connected:
                return device
        raise CloudVerificationPending("It doesn't look like your device has made it to the cloud yet.")

    async def _name_device(self, device: CloudDevice) -> None:
        self._enter(ProvisioningState.NAMED, "Your device has made it happily to the cloud!")
        while True:
            name = await self._ask(
                InputKind.DEVICE_NAME,
                "What would you like to call your device (Enter to skip)?",
                default="",
            )
            name = (name or "").strip()
            if not name:
                self._notify("Skipping device naming.")
                return
            try:
                await self.cloud.rename_device(device.id, name)
            except CloudError as exc:
                self._notify(f"Error naming your device: {exc}", EventLevel.ERROR)
                continue
            self.session.device_name = name
            self._notify(f"Your device has been given the name {name}.")
            return

    # -- helpers ------------------------------------------------------------

    def _can_switch_networks(self) -> bool:
        return self.host_wifi is not None and self.host_wifi.supports_connect

    def _settings_summary(self) -> str:
        session = self.session
        security = session.security or SecurityClass.OPEN
        lines = [
            "Here's what we're going to send to the device:",
            f"Wi-Fi Network: {session.network}",
            f"Security: {security.label}",
        ]
        creds = session.enterprise
        if creds is None:
            lines.append(f"Password: {session.password or '[none]'}")
        else:
            lines.append(f"EAP Type: {creds.eap.label}")
            if creds.username:
                lines.append(f"Username: {creds.username}")
            if creds.client_certificate is not None:
                lines.append(f"Client certificate: {'[present]' if creds.client_certificate else '[empty]'}")
                lines.append(f"Private key: {'[present]' if creds.private_key else '[empty]'}")
            lines.append(f"Outer identity: {creds.outer_identity or '(default - anonymous)'}")
            lines.append(f"CA certificate: {'[present]' if creds.root_ca else '[empty]'}")
        lines.append("Would you like to continue with the information shown above?")
        return "\n".join(lines)

    async def _ask(
        self,
        kind: InputKind,
        message: str,
        *,
        choices: tuple[str, ...] = (),
        default: Any = None,
    ) -> Any:
        if self._cancelled.is_set():
            raise OperatorCancelledError("Cancelled by operator")
        answer = await self.operator.ask(
            InputRequest(kind=kind, message=message, choices=choices, default=default)
        )
        if self._cancelled.is_set():
            raise OperatorCancelledError("Cancelled by operator")
        return answer

    def _enter(
        self,
        state: ProvisioningState,
        message: str = "",
        level: EventLevel = EventLevel.INFO,
    ) -> None:
        LOGGER.debug("Provisioning state %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)
        self.operator.notify(ProvisioningEvent(state=state, message=message, level=level))

    def _notify(self, message: str, level: EventLevel = EventLevel.INFO) -> None:
        self.operator.notify(ProvisioningEvent(state=self.state, message=message, level=level))
