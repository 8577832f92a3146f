"""SoftAP HTTP link to a device hosting its temporary setup access point."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

import aiohttp
from cryptography.hazmat.primitives import padding as sym_padding
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from provctl.core.errors import DeviceUnresponsiveError
from provctl.core.model import EnterpriseCredentials, ScannedNetwork

DEFAULT_SOFTAP_URL = "http://192.168.0.1"
LOGGER = logging.getLogger(__name__)


def _trim_der(blob: bytes) -> bytes:
    """Cut a DER SEQUENCE to its declared length; devices pad the key buffer."""
    if len(blob) < 2 or blob[0] != 0x30:
        return blob
    first = blob[1]
    if first < 0x80:
        return blob[: 2 + first]
    count = first & 0x7F
    length = int.from_bytes(blob[2 : 2 + count], "big")
    return blob[: 2 + count + length]


def load_device_public_key(der: bytes) -> RSAPublicKey:
    try:
        key = serialization.load_der_public_key(_trim_der(der))
    except ValueError as exc:
        raise DeviceUnresponsiveError(f"Device returned an unreadable public key: {exc}") from exc
    if not isinstance(key, RSAPublicKey):
        raise DeviceUnresponsiveError("Device public key is not an RSA key")
    return key


def encrypt_secret(key: RSAPublicKey, secret: str) -> str:
    return key.encrypt(secret.encode("utf-8"), padding.PKCS1v15()).hex()


def encrypt_private_key(key: RSAPublicKey, pem: str) -> tuple[str, str]:
    """Encrypt a PEM private key with a one-off AES-128 key wrapped by the device key.

    Returns `(wrapped_key_hex, ciphertext_hex)`; the wrapped blob is the AES key
    followed by the IV.
    """
    aes_key = os.urandom(16)
    iv = os.urandom(16)
    padder = sym_padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(pem.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(aes_key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    wrapped = key.encrypt(aes_key + iv, padding.PKCS1v15())
    return wrapped.hex(), ciphertext.hex()


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _scanned_network(entry: dict[str, Any]) -> ScannedNetwork:
    return ScannedNetwork(
        ssid=str(entry.get("ssid") or ""),
        security_bits=int(entry.get("sec") or 0),
        rssi=_optional_int(entry.get("rssi")),
        channel=_optional_int(entry.get("ch")),
    )


class SoftAPLink:
    def __init__(self, base_url: str = DEFAULT_SOFTAP_URL, *, timeout_s: float = 8.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._public_key: RSAPublicKey | None = None

    async def scan(self) -> list[ScannedNetwork]:
        data = await self._request("GET", "/scan-ap")
        entries = data.get("scans") or []
        if not isinstance(entries, list):
            raise DeviceUnresponsiveError("Device returned a malformed scan result")
        try:
            return [_scanned_network(entry) for entry in entries]
        except (AttributeError, TypeError, ValueError) as exc:
            raise DeviceUnresponsiveError("Device returned a malformed scan result") from exc

    async def device_info(self) -> str:
        data = await self._request("GET", "/device-id")
        device_id = data.get("id")
        if not device_id:
            raise DeviceUnresponsiveError("Device did not report its id")
        return str(device_id)

    async def public_key(self) -> bytes:
        data = await self._request("GET", "/public-key")
        self._check(data, "/public-key")
        try:
            der = bytes.fromhex(data["b"])
        except (KeyError, TypeError, ValueError) as exc:
            raise DeviceUnresponsiveError("Device returned a malformed public key") from exc
        self._public_key = load_device_public_key(der)
        return der

    async def set_claim_code(self, code: str) -> None:
        data = await self._request("POST", "/set", {"k": "cc", "v": code})
        self._check(data, "/set")

    async def configure(
        self,
        ssid: str,
        security_bits: int,
        *,
        password: str | None = None,
        enterprise: EnterpriseCredentials | None = None,
        channel: int | None = None,
    ) -> None:
        payload: dict[str, Any] = {"idx": 0, "ssid": ssid, "sec": security_bits, "ch": channel or 0}
        if password:
            payload["pwd"] = encrypt_secret(self._require_key(), password)
        if enterprise is not None:
            payload["eap"] = enterprise.eap.wire_value
            if enterprise.outer_identity:
                payload["oi"] = enterprise.outer_identity
            if enterprise.username:
                payload["id"] = enterprise.username
            if enterprise.client_certificate:
                payload["crt"] = enterprise.client_certificate
            if enterprise.private_key:
                payload["ek"], payload["key"] = encrypt_private_key(
                    self._require_key(), enterprise.private_key
                )
            if enterprise.root_ca:
                payload["ca"] = enterprise.root_ca

        data = await self._request("POST", "/configure-ap", payload)
        self._check(data, "/configure-ap")

    async def connect(self) -> None:
        data = await self._request("POST", "/connect-ap", {"idx": 0})
        self._check(data, "/connect-ap")

    def _require_key(self) -> RSAPublicKey:
        if self._public_key is None:
            raise DeviceUnresponsiveError("Device public key is required before sending secrets")
        return self._public_key

    @staticmethod
    def _check(data: dict[str, Any], path: str) -> None:
        code = data.get("r", 0)
        if code != 0:
            raise DeviceUnresponsiveError(f"Device rejected {path} (r={code})")

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        LOGGER.debug("SoftAP %s %s", method, path)
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.request(method, url, json=payload) as resp:
                    if resp.status != 200:
                        raise DeviceUnresponsiveError(f"Device answered {path} with HTTP {resp.status}")
                    data = await resp.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise DeviceUnresponsiveError(f"No response from device at {url}: {exc}") from exc
            except ValueError as exc:
                raise DeviceUnresponsiveError(f"Device sent invalid JSON for {path}") from exc

        if not isinstance(data, dict):
            raise DeviceUnresponsiveError(f"Device returned an unexpected payload for {path}")
        return data
