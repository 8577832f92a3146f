"""Stable public API for building tooling on top of provctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from provctl.config import Settings, load_settings
from provctl.core.channel import ChannelResult, ProvisioningChannel, process_scan_results
from provctl.core.errors import (
    CloudError,
    CloudErrorKind,
    CloudVerificationPending,
    ConfigError,
    DeviceUnresponsiveError,
    NetworkUnreachableError,
    NoDeviceFoundError,
    OperatorCancelledError,
    PermissionDeniedError,
    ProvctlError,
    ProvisioningError,
    SpecLoadError,
    SpecLookupError,
    SpecValidationError,
    TransferError,
    TransferFailedError,
    TransferTimeoutError,
    UnknownDeviceError,
    UnknownSegmentError,
)
from provctl.core.model import (
    CloudDevice,
    DeviceDescriptor,
    DeviceSpec,
    EapType,
    EnterpriseCredentials,
    Padding,
    ProvisioningSession,
    ScannedNetwork,
    SecurityClass,
    SegmentSpec,
    TransferResult,
)
from provctl.core.provisioning import (
    MANUAL_ENTRY,
    RESCAN,
    InputKind,
    InputRequest,
    ManualNetwork,
    OperatorInterface,
    ProvisioningEvent,
    ProvisioningOrchestrator,
    ProvisioningState,
    RetryPolicies,
    VerifyAction,
)
from provctl.core.retry import RetryPolicy
from provctl.core.spec_registry import SegmentSpecRegistry, load_registry
from provctl.core.transfer import DeviceTransferEngine, pad_to_even
from provctl.transports.base import CloudClient, HostWifi, ProvisioningLink, TransferUtility
from provctl.transports.cloud_api import CloudAPI
from provctl.transports.dfu_util import DfuUtil
from provctl.transports.nmcli import NmcliWifi
from provctl.transports.softap import SoftAPLink

__all__ = [
    "ProvctlError",
    "ConfigError",
    "SpecLoadError",
    "SpecValidationError",
    "SpecLookupError",
    "UnknownDeviceError",
    "UnknownSegmentError",
    "TransferError",
    "TransferTimeoutError",
    "TransferFailedError",
    "PermissionDeniedError",
    "NoDeviceFoundError",
    "ProvisioningError",
    "DeviceUnresponsiveError",
    "NetworkUnreachableError",
    "CloudError",
    "CloudErrorKind",
    "CloudVerificationPending",
    "OperatorCancelledError",
    "CloudDevice",
    "DeviceDescriptor",
    "DeviceSpec",
    "EapType",
    "EnterpriseCredentials",
    "Padding",
    "ProvisioningSession",
    "ScannedNetwork",
    "SecurityClass",
    "SegmentSpec",
    "TransferResult",
    "ChannelResult",
    "ProvisioningChannel",
    "process_scan_results",
    "InputKind",
    "InputRequest",
    "ManualNetwork",
    "OperatorInterface",
    "ProvisioningEvent",
    "ProvisioningOrchestrator",
    "ProvisioningState",
    "RetryPolicies",
    "RetryPolicy",
    "VerifyAction",
    "RESCAN",
    "MANUAL_ENTRY",
    "SegmentSpecRegistry",
    "DeviceTransferEngine",
    "pad_to_even",
    "CloudClient",
    "HostWifi",
    "ProvisioningLink",
    "TransferUtility",
    "CloudAPI",
    "DfuUtil",
    "NmcliWifi",
    "SoftAPLink",
    "Settings",
    "Client",
]


class Client:
    """Public client wiring settings, the spec registry, and default transports.

    A `Client` exposes a DFU transfer engine and builds provisioning
    orchestrators; every collaborator can be overridden for tests or for
    embedding in GUI/TUI frontends.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        utility: TransferUtility | None = None,
        registry: SegmentSpecRegistry | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.load_warnings: tuple[str, ...] = ()
        if registry is None:
            loaded = load_registry()
            registry = loaded.registry
            self.load_warnings = loaded.warnings
        self.registry = registry
        self.transfer = DeviceTransferEngine(
            registry,
            utility or DfuUtil(self.settings.dfu_util, use_sudo=self.settings.use_sudo_for_dfu),
            list_timeout_s=self.settings.list_timeout_s,
        )

    def retry_policies(self) -> RetryPolicies:
        s = self.settings
        return RetryPolicies(
            scan=RetryPolicy.bounded(s.scan_attempts, initial_delay=s.scan_initial_delay_s, delay=s.scan_delay_s),
            device_step=RetryPolicy.unbounded(s.step_delay_s),
            verify_initial_delay=s.verify_initial_delay_s,
        )

    def provisioner(
        self,
        operator: OperatorInterface,
        *,
        session: ProvisioningSession | None = None,
        link: ProvisioningLink | None = None,
        cloud: CloudClient | None = None,
        host_wifi: HostWifi | None = None,
    ) -> ProvisioningOrchestrator:
        s = self.settings
        channel = ProvisioningChannel(
            link or SoftAPLink(s.softap_url, timeout_s=s.softap_timeout_s),
            self_ap_prefix=s.device_ap_prefix,
        )
        return ProvisioningOrchestrator(
            channel,
            cloud or CloudAPI(s.access_token, base_url=s.api_url),
            operator,
            host_wifi=host_wifi,
            session=session,
            policies=self.retry_policies(),
        )
