"""Domain-specific errors for provctl."""

from __future__ import annotations

from enum import Enum


class ProvctlError(Exception):
    """Base error for provctl."""


class ConfigError(ProvctlError):
    """Raised when the settings file or environment overrides are invalid."""


class SpecValidationError(ProvctlError):
    """Raised when a device spec file does not conform to schema or semantics."""


class SpecLoadError(ProvctlError):
    """Raised when loading device spec sources fails."""


class SpecLookupError(ProvctlError):
    """Base error for registry lookup misses."""


class UnknownDeviceError(SpecLookupError):
    """Raised when a DFU id or platform id has no registered spec."""


class UnknownSegmentError(SpecLookupError):
    """Raised when a segment name is absent from the device's spec."""


class TransferError(ProvctlError):
    """Base DFU transfer error."""


class TransferTimeoutError(TransferError):
    """Raised when a bounded transfer utility call exceeds its deadline."""


class PermissionDeniedError(TransferError):
    """Raised when the OS denies access to the DFU device."""


class TransferFailedError(TransferError):
    """Raised when the transfer utility reports failure."""


class NoDeviceFoundError(TransferError):
    """Raised when no device in DFU mode can be selected."""


class ProvisioningError(ProvctlError):
    """Base Wi-Fi provisioning error."""


class DeviceUnresponsiveError(ProvisioningError):
    """Raised when a request/response exchange with the device fails."""


class CloudErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    NETWORK_UNREACHABLE = "network_unreachable"
    UNAUTHORIZED = "unauthorized"
    API = "api"


class CloudError(ProvisioningError):
    """Raised by cloud collaborators; `kind` drives the orchestrator's recovery."""

    def __init__(self, message: str, kind: CloudErrorKind = CloudErrorKind.API) -> None:
        super().__init__(message)
        self.kind = kind


class NetworkUnreachableError(CloudError):
    """Raised when a cloud endpoint cannot be reached."""

    def __init__(self, message: str) -> None:
        super().__init__(message, CloudErrorKind.NETWORK_UNREACHABLE)


class CloudVerificationPending(ProvisioningError):
    """Signals that the device is not yet visible as connected in the cloud."""


class OperatorCancelledError(ProvctlError):
    """Raised when the operator declines or aborts at a prompt."""
