"""Core data models used across the registry, transfer engine, and provisioning."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

WEP_ENABLED = 0x0001
TKIP_ENABLED = 0x0002
AES_ENABLED = 0x0004
SHARED_ENABLED = 0x8000
WPA_SECURITY = 0x00200000
WPA2_SECURITY = 0x00400000
ENTERPRISE_ENABLED = 0x02000000


class Padding(str, Enum):
    NONE = "none"
    EVEN = "even"


@dataclass(frozen=True)
class SegmentSpec:
    name: str
    address: int
    alt: int
    size: int | None = None
    padding: Padding = Padding.NONE

    @property
    def address_hex(self) -> str:
        return f"0x{self.address:08X}"


@dataclass(frozen=True)
class DeviceSpec:
    dfu_id: str
    product_name: str
    platform_id: int
    segments: dict[str, SegmentSpec]


@dataclass(frozen=True)
class DeviceDescriptor:
    dfu_id: str
    product_name: str
    spec: DeviceSpec


class TransferDirection(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"

    @property
    def flag(self) -> str:
        return "-U" if self is TransferDirection.UPLOAD else "-D"


@dataclass(frozen=True)
class TransferRequest:
    direction: TransferDirection
    segment: str
    path: Path
    leave: bool = False


@dataclass(frozen=True)
class TransferResult:
    request: TransferRequest
    output: str
    overridden: bool = False


@dataclass(frozen=True)
class UtilityResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class SecurityClass(str, Enum):
    OPEN = "open"
    WEP_PSK = "wep-psk"
    WEP_SHARED = "wep-shared"
    WPA_TKIP = "wpa-tkip"
    WPA_AES = "wpa-aes"
    WPA2_TKIP = "wpa2-tkip"
    WPA2_AES = "wpa2-aes"
    WPA2_MIXED = "wpa2-mixed"
    WPA2 = "wpa2"
    WPA_ENTERPRISE_AES = "wpa-enterprise-aes"
    WPA_ENTERPRISE_TKIP = "wpa-enterprise-tkip"
    WPA2_ENTERPRISE = "wpa2-enterprise"
    WPA2_ENTERPRISE_AES = "wpa2-enterprise-aes"
    WPA2_ENTERPRISE_TKIP = "wpa2-enterprise-tkip"
    WPA2_ENTERPRISE_MIXED = "wpa2-enterprise-mixed"

    @property
    def bits(self) -> int:
        return _SECURITY_BITS[self]

    @property
    def label(self) -> str:
        return self.value.replace("-", " ").upper()

    @property
    def is_enterprise(self) -> bool:
        return bool(self.bits & ENTERPRISE_ENABLED)

    @property
    def requires_password(self) -> bool:
        return self is not SecurityClass.OPEN and not self.is_enterprise

    @classmethod
    def from_bits(cls, bits: int) -> SecurityClass:
        """Map a device-reported bitmask to a class, falling back on its flags."""
        for member in cls:
            # wpa2 and wpa2-mixed (and their enterprise forms) share a mask;
            # the first declared member wins.
            if member.bits == bits:
                return member
        if bits & ENTERPRISE_ENABLED:
            return cls.WPA2_ENTERPRISE if bits & WPA2_SECURITY else cls.WPA_ENTERPRISE_AES
        if bits & WPA2_SECURITY:
            return cls.WPA2
        if bits & WPA_SECURITY:
            return cls.WPA_AES if bits & AES_ENABLED else cls.WPA_TKIP
        if bits & WEP_ENABLED:
            return cls.WEP_SHARED if bits & SHARED_ENABLED else cls.WEP_PSK
        return cls.OPEN


_SECURITY_BITS: dict[SecurityClass, int] = {
    SecurityClass.OPEN: 0,
    SecurityClass.WEP_PSK: WEP_ENABLED,
    SecurityClass.WEP_SHARED: WEP_ENABLED | SHARED_ENABLED,
    SecurityClass.WPA_TKIP: WPA_SECURITY | TKIP_ENABLED,
    SecurityClass.WPA_AES: WPA_SECURITY | AES_ENABLED,
    SecurityClass.WPA2_TKIP: WPA2_SECURITY | TKIP_ENABLED,
    SecurityClass.WPA2_AES: WPA2_SECURITY | AES_ENABLED,
    SecurityClass.WPA2_MIXED: WPA2_SECURITY | AES_ENABLED | TKIP_ENABLED,
    SecurityClass.WPA2: WPA2_SECURITY | AES_ENABLED | TKIP_ENABLED,
    SecurityClass.WPA_ENTERPRISE_AES: ENTERPRISE_ENABLED | WPA_SECURITY | AES_ENABLED,
    SecurityClass.WPA_ENTERPRISE_TKIP: ENTERPRISE_ENABLED | WPA_SECURITY | TKIP_ENABLED,
    SecurityClass.WPA2_ENTERPRISE: ENTERPRISE_ENABLED | WPA2_SECURITY | AES_ENABLED | TKIP_ENABLED,
    SecurityClass.WPA2_ENTERPRISE_AES: ENTERPRISE_ENABLED | WPA2_SECURITY | AES_ENABLED,
    SecurityClass.WPA2_ENTERPRISE_TKIP: ENTERPRISE_ENABLED | WPA2_SECURITY | TKIP_ENABLED,
    SecurityClass.WPA2_ENTERPRISE_MIXED: ENTERPRISE_ENABLED | WPA2_SECURITY | AES_ENABLED | TKIP_ENABLED,
}


class EapType(str, Enum):
    PEAP = "peap"
    TLS = "tls"

    @property
    def wire_value(self) -> int:
        return 25 if self is EapType.PEAP else 13

    @property
    def label(self) -> str:
        return "PEAP/MSCHAPv2" if self is EapType.PEAP else "EAP-TLS"


@dataclass(frozen=True)
class EnterpriseCredentials:
    eap: EapType
    username: str | None = None
    password: str | None = None
    client_certificate: str | None = None
    private_key: str | None = None
    outer_identity: str | None = None
    root_ca: str | None = None

    def missing_fields(self) -> tuple[str, ...]:
        if self.eap is EapType.PEAP:
            required = ("username", "password")
        else:
            required = ("client_certificate", "private_key")
        return tuple(name for name in required if not (getattr(self, name) or "").strip())


@dataclass(frozen=True)
class ScannedNetwork:
    ssid: str
    security_bits: int
    rssi: int | None = None
    channel: int | None = None

    @property
    def security(self) -> SecurityClass:
        return SecurityClass.from_bits(self.security_bits)


@dataclass(frozen=True)
class CloudDevice:
    id: str
    connected: bool
    name: str | None = None


@dataclass
class ProvisioningSession:
    """State threaded through one provisioning run.

    Fields fill in as handshake steps succeed; the orchestrator that created
    the session is its only writer.
    """

    dfu_id: str | None = None
    device_ap: str | None = None
    manual: bool = False
    claim_code: str | None = None
    network: str | None = None
    security: SecurityClass | None = None
    channel: int | None = None
    password: str | None = field(default=None, repr=False)
    enterprise: EnterpriseCredentials | None = field(default=None, repr=False)
    device_id: str | None = None
    device_name: str | None = None

    @property
    def is_enterprise(self) -> bool:
        return self.security is not None and self.security.is_enterprise

    def clear_network(self) -> None:
        self.network = None
        self.security = None
        self.channel = None
        self.password = None
        self.enterprise = None
