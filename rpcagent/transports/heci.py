"""Management engine interface (MEI) device transport.

Opens the Linux MEI character device and connects to the AMT host interface
client. Each request is written whole and its response read back whole; the
driver preserves message boundaries.
"""

from __future__ import annotations

import fcntl
import logging
import os
import struct
import uuid

from rpcagent.core.errors import AccessDeniedError, AMTNotDetectedError, TransportReceiveError, TransportSendError

MEI_DEVICE = "/dev/mei0"
PTHI_CLIENT_GUID = uuid.UUID("12f80028-b4b7-4b2d-aca8-46e0ff65814c")

_IOC_NRSHIFT = 0
_IOC_TYPESHIFT = 8
_IOC_SIZESHIFT = 16
_IOC_DIRSHIFT = 30
_IOC_WRITE = 1
_IOC_READ = 2
_CONNECT_CLIENT_DATA_SIZE = 16
_DEFAULT_MAX_MESSAGE = 4096
LOGGER = logging.getLogger(__name__)


def _IOWR(type_: int, nr: int, size: int) -> int:
    return (
        ((_IOC_READ | _IOC_WRITE) << _IOC_DIRSHIFT)
        | (type_ << _IOC_TYPESHIFT)
        | (nr << _IOC_NRSHIFT)
        | (size << _IOC_SIZESHIFT)
    )


IOCTL_MEI_CONNECT_CLIENT = _IOWR(ord("H"), 0x01, _CONNECT_CLIENT_DATA_SIZE)


class MEIDevice:
    def __init__(self, path: str = MEI_DEVICE, client_guid: uuid.UUID = PTHI_CLIENT_GUID) -> None:
        self.path = path
        self.client_guid = client_guid
        self.max_message_length = 0
        self.protocol_version = 0
        self._fd: int | None = None

    def open(self) -> None:
        try:
            fd = os.open(self.path, os.O_RDWR)
        except FileNotFoundError as exc:
            raise AMTNotDetectedError(
                f"{self.path} not found. Ensure Intel ME is present and the MEI driver is loaded."
            ) from exc
        except PermissionError as exc:
            raise AccessDeniedError(
                f"Access to {self.path} denied. Run with administrator or root privileges."
            ) from exc
        except OSError as exc:
            raise AMTNotDetectedError(f"Could not open {self.path}: {exc}") from exc

        data = bytearray(self.client_guid.bytes_le)
        try:
            fcntl.ioctl(fd, IOCTL_MEI_CONNECT_CLIENT, data, True)
        except OSError as exc:
            os.close(fd)
            raise AMTNotDetectedError(f"Could not connect to the AMT host interface: {exc}") from exc

        self.max_message_length, self.protocol_version = struct.unpack_from("<IB", data)
        self._fd = fd
        LOGGER.debug("connected to mei client, max message %d bytes", self.max_message_length)

    def close(self) -> None:
        fd, self._fd = self._fd, None
        if fd is not None:
            os.close(fd)

    def call(self, request: bytes) -> bytes:
        if self._fd is None:
            raise TransportSendError("MEI device is not open")
        try:
            os.write(self._fd, request)
        except OSError as exc:
            raise TransportSendError(f"MEI write failed: {exc}") from exc
        try:
            return os.read(self._fd, self.max_message_length or _DEFAULT_MAX_MESSAGE)
        except OSError as exc:
            raise TransportReceiveError(f"MEI read failed: {exc}") from exc

    def __enter__(self) -> MEIDevice:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
