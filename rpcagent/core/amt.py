"""AMT host interface (PTHI) commands.

Every command is a 12-byte header (version 1.1, command code, body length)
followed by a little-endian body. Responses echo the command code with the
response bit set and carry a status word before their body.
"""

from __future__ import annotations

import ipaddress
import logging
import struct
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol

from rpcagent.core.errors import AMTCommandError
from rpcagent.core.model import CertHashEntry, Credentials, LanSettings, RemoteAccessStatus
from rpcagent.transports.heci import MEIDevice

_HEADER = struct.Struct("<BBHII")
_RESPONSE_HEADER = struct.Struct("<BBHIII")
_RESPONSE_BIT = 0x00800000
_ANSI_STRING_MAX = 1000
_USERNAME_MAX = 33
_VERSION_STRING_MAX = 20
_BIOS_VERSION_LEN = 65
_MAX_VERSIONS = 50

GET_CODE_VERSIONS = 0x0400001A
GET_CERT_HASH_HANDLES = 0x0400002C
GET_CERT_HASH_ENTRY = 0x0400002D
GET_DNS_SUFFIX = 0x04000036
GET_REMOTE_ACCESS_STATUS = 0x04000046
GET_LAN_INTERFACE_SETTINGS = 0x04000048
GET_UUID = 0x0400005C
GET_LOCAL_SYSTEM_ACCOUNT = 0x04000067
GET_CONTROL_MODE = 0x0400006B

WIRED_INTERFACE = 0
WIRELESS_INTERFACE = 1

NETWORK_STATUS = {0: "direct", 1: "vpn", 2: "outside enterprise"}
REMOTE_STATUS = {0: "not connected", 1: "connecting", 2: "connected"}
REMOTE_TRIGGER = {0: "user initiated", 1: "alert", 2: "periodic", 3: "provisioning"}
DHCP_MODE = {1: "passive", 2: "active"}
HASH_ALGORITHMS = {0: ("MD5", 16), 1: ("SHA1", 20), 2: ("SHA256", 32), 3: ("SHA512", 64)}

LOGGER = logging.getLogger(__name__)


class AMTCommandInterface(Protocol):
    def get_version_data(self, key: str) -> str: ...

    def get_uuid(self) -> str: ...

    def get_control_mode(self) -> int: ...

    def get_dns_suffix(self) -> str: ...

    def get_local_system_account(self) -> Credentials: ...

    def get_remote_access_connection_status(self) -> RemoteAccessStatus: ...

    def get_lan_interface_settings(self, wireless: bool) -> LanSettings: ...

    def get_certificate_hashes(self) -> list[CertHashEntry]: ...


def build_request(command: int, body: bytes = b"") -> bytes:
    return _HEADER.pack(1, 1, 0, command, len(body)) + body


def parse_response(command: int, raw: bytes) -> bytes:
    """Validate a response header and return the body after the status word."""
    if len(raw) < _RESPONSE_HEADER.size:
        raise AMTCommandError(f"Short response to command {command:#010x}: {len(raw)} bytes")
    _, _, _, code, _, status = _RESPONSE_HEADER.unpack_from(raw)
    if code != command | _RESPONSE_BIT:
        raise AMTCommandError(f"Unexpected response {code:#010x} to command {command:#010x}")
    if status != 0:
        raise AMTCommandError(f"Command {command:#010x} failed with status {status}")
    return raw[_RESPONSE_HEADER.size :]


def _ansi_string(body: bytes, offset: int) -> str:
    (length,) = struct.unpack_from("<H", body, offset)
    length = min(length, _ANSI_STRING_MAX)
    if len(body) < offset + 2 + length:
        raise ValueError(f"string of {length} bytes at offset {offset} overruns a {len(body)} byte body")
    return body[offset + 2 : offset + 2 + length].decode("ascii", errors="replace").rstrip("\x00")


def _fixed_string(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace")


@contextmanager
def decoding(command: int) -> Iterator[None]:
    """Turn a body too short or malformed for its command into AMTCommandError."""
    try:
        yield
    except (struct.error, ValueError) as exc:
        raise AMTCommandError(f"Malformed response to command {command:#010x}: {exc}") from exc


class AMTCommand:
    def __init__(self, device_factory: Callable[[], MEIDevice] = MEIDevice) -> None:
        self._device_factory = device_factory

    def _call(self, command: int, body: bytes = b"") -> bytes:
        LOGGER.debug("sending host interface command %#010x", command)
        with self._device_factory() as device:
            raw = device.call(build_request(command, body))
        return parse_response(command, raw)

    def get_code_versions(self) -> dict[str, str]:
        body = self._call(GET_CODE_VERSIONS)
        entry = struct.Struct(f"<H{_VERSION_STRING_MAX}sH{_VERSION_STRING_MAX}s")
        versions: dict[str, str] = {}
        with decoding(GET_CODE_VERSIONS):
            (count,) = struct.unpack_from("<I", body, _BIOS_VERSION_LEN)
            offset = _BIOS_VERSION_LEN + 4
            for _ in range(min(count, _MAX_VERSIONS)):
                desc_len, desc, ver_len, ver = entry.unpack_from(body, offset)
                versions[_fixed_string(desc[:desc_len])] = _fixed_string(ver[:ver_len])
                offset += entry.size
        return versions

    def get_version_data(self, key: str) -> str:
        versions = self.get_code_versions()
        if key not in versions:
            raise AMTCommandError(f"Firmware did not report '{key}'")
        return versions[key]

    def get_uuid(self) -> str:
        body = self._call(GET_UUID)
        with decoding(GET_UUID):
            return str(uuid.UUID(bytes_le=body[:16]))

    def get_control_mode(self) -> int:
        body = self._call(GET_CONTROL_MODE)
        with decoding(GET_CONTROL_MODE):
            (state,) = struct.unpack_from("<I", body)
        return state

    def get_dns_suffix(self) -> str:
        body = self._call(GET_DNS_SUFFIX)
        with decoding(GET_DNS_SUFFIX):
            return _ansi_string(body, 0)

    def get_local_system_account(self) -> Credentials:
        body = self._call(GET_LOCAL_SYSTEM_ACCOUNT, bytes(40))
        if len(body) < 2 * _USERNAME_MAX:
            raise AMTCommandError(f"Malformed response to command {GET_LOCAL_SYSTEM_ACCOUNT:#010x}: {len(body)} bytes")
        username = _fixed_string(body[:_USERNAME_MAX])
        password = _fixed_string(body[_USERNAME_MAX : 2 * _USERNAME_MAX])
        return Credentials(username=username, password=password)

    def get_remote_access_connection_status(self) -> RemoteAccessStatus:
        body = self._call(GET_REMOTE_ACCESS_STATUS)
        with decoding(GET_REMOTE_ACCESS_STATUS):
            network, remote, trigger = struct.unpack_from("<III", body)
            hostname = _ansi_string(body, 12)
        return RemoteAccessStatus(
            network_status=NETWORK_STATUS.get(network, "unknown"),
            remote_status=REMOTE_STATUS.get(remote, "unknown"),
            remote_trigger=REMOTE_TRIGGER.get(trigger, "unknown"),
            mps_hostname=hostname,
        )

    def get_lan_interface_settings(self, wireless: bool) -> LanSettings:
        index = WIRELESS_INTERFACE if wireless else WIRED_INTERFACE
        body = self._call(GET_LAN_INTERFACE_SETTINGS, struct.pack("<I", index))
        with decoding(GET_LAN_INTERFACE_SETTINGS):
            enabled, ipv4, dhcp_enabled, dhcp_mode, link_status, mac = struct.unpack_from("<IIIBB6s", body)
        return LanSettings(
            is_enabled=enabled == 1,
            link_status="up" if link_status == 1 else "down",
            dhcp_enabled=dhcp_enabled == 1,
            dhcp_mode=DHCP_MODE.get(dhcp_mode, "unknown"),
            ip_address=str(ipaddress.IPv4Address(ipv4)),
            mac_address=":".join(f"{octet:02x}" for octet in mac),
        )

    def get_certificate_hashes(self) -> list[CertHashEntry]:
        body = self._call(GET_CERT_HASH_HANDLES)
        with decoding(GET_CERT_HASH_HANDLES):
            (count,) = struct.unpack_from("<I", body)
            handles = struct.unpack_from(f"<{count}I", body, 4)
        return [self._get_certificate_hash(handle) for handle in handles]

    def _get_certificate_hash(self, handle: int) -> CertHashEntry:
        body = self._call(GET_CERT_HASH_ENTRY, struct.pack("<I", handle))
        with decoding(GET_CERT_HASH_ENTRY):
            is_default, is_active, digest, algorithm = struct.unpack_from("<II64sB", body)
            name = _ansi_string(body, 73)
        algorithm_name, size = HASH_ALGORITHMS.get(algorithm, ("UNKNOWN", 64))
        return CertHashEntry(
            name=name,
            hash=digest[:size].hex(),
            algorithm=algorithm_name,
            is_active=is_active == 1,
            is_default=is_default == 1,
        )
