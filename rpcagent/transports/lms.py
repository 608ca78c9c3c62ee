"""Local management service (LMS) channel over a loopback TCP socket.

LMS gives no length prefix or terminator for a response. A response is
considered complete once the socket has been quiet until the read deadline, so
callers validate the returned frame before trusting it (see frame_is_complete).
"""

from __future__ import annotations

import logging
import queue
import socket
import struct
import threading
import time

from rpcagent.core.errors import (
    NotConnectedError,
    TransportConnectError,
    TransportReceiveError,
    TransportSendError,
)

LMS_ADDRESS = "localhost"
LMS_PORT = 16992
DEFAULT_READ_TIMEOUT_S = 1.0
_READ_CHUNK = 4096
_LINGER_S = 1
LOGGER = logging.getLogger(__name__)


class LMSConnection:
    def __init__(
        self,
        host: str = LMS_ADDRESS,
        port: int = LMS_PORT,
        *,
        read_timeout_s: float = DEFAULT_READ_TIMEOUT_S,
    ) -> None:
        self.host = host
        self.port = port
        self.read_timeout_s = read_timeout_s
        self._sock: socket.socket | None = None
        self._connected_once = False
        self._invalid = False

    @property
    def is_open(self) -> bool:
        return self._sock is not None and not self._invalid

    def connect(self) -> None:
        if self._connected_once:
            raise TransportConnectError("LMS session already used; open a new connection")
        LOGGER.debug("connecting to lms at %s:%s", self.host, self.port)
        try:
            infos = socket.getaddrinfo(self.host, self.port, socket.AF_INET, socket.SOCK_STREAM)
        except socket.gaierror as exc:
            raise TransportConnectError(f"Could not resolve LMS address {self.host}:{self.port}: {exc}") from exc

        family, socktype, proto, _, address = infos[0]
        sock = socket.socket(family, socktype, proto)
        try:
            sock.connect(address)
        except OSError as exc:
            sock.close()
            raise TransportConnectError(f"LMS connect failed for {self.host}:{self.port}: {exc}") from exc

        self._sock = sock
        self._connected_once = True
        LOGGER.debug("connected to lms")

    def send(self, data: bytes) -> None:
        if self._sock is None:
            raise NotConnectedError("no connection to send on")
        if self._invalid:
            raise TransportSendError("LMS session was invalidated by an earlier read error")
        LOGGER.debug("sending %d bytes to lms", len(data))
        try:
            self._sock.sendall(data)
        except OSError as exc:
            raise TransportSendError(f"LMS send failed: {exc}") from exc

    def listen(self, data_channel: queue.Queue[bytes], error_channel: queue.Queue[Exception]) -> None:
        """Read until end of stream, the read deadline, or an error.

        The accumulated bytes are always put on data_channel. Errors other than
        the deadline are also put on error_channel and invalidate the session.
        """
        sock = self._sock
        if sock is None:
            error_channel.put(NotConnectedError("no connection to listen on"))
            data_channel.put(b"")
            return

        LOGGER.debug("listening for lms messages")
        deadline = time.monotonic() + self.read_timeout_s
        buffer = bytearray()
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, _LINGER_S))
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                sock.settimeout(remaining)
                try:
                    chunk = sock.recv(_READ_CHUNK)
                except TimeoutError:
                    break
                if not chunk:
                    break
                buffer.extend(chunk)
        except OSError as exc:
            LOGGER.error("lms read error: %s", exc)
            self._invalid = True
            error_channel.put(TransportReceiveError(f"LMS receive failed: {exc}"))

        data_channel.put(bytes(buffer))
        LOGGER.debug("done listening, %d bytes", len(buffer))

    def close(self) -> None:
        LOGGER.debug("closing connection to lms")
        if not self._connected_once:
            raise NotConnectedError("no connection to close")
        sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()

    def exchange(self, payload: bytes, *, deadline_s: float | None = None) -> bytes:
        """Send one payload and return the drained response.

        listen() runs on a worker thread; deadline_s bounds the wait for its
        result independently of the per-read deadline.
        """
        self.connect()
        try:
            self.send(payload)
            data_channel: queue.Queue[bytes] = queue.Queue(maxsize=1)
            error_channel: queue.Queue[Exception] = queue.Queue(maxsize=1)
            worker = threading.Thread(
                target=self.listen,
                args=(data_channel, error_channel),
                name="lms-listen",
                daemon=True,
            )
            worker.start()
            outer = deadline_s if deadline_s is not None else self.read_timeout_s + 1.0
            try:
                frame = data_channel.get(timeout=outer)
            except queue.Empty as exc:
                raise TransportReceiveError(f"No LMS response within {outer:.1f}s") from exc
            worker.join()
            if not error_channel.empty():
                raise error_channel.get_nowait()
            if not frame_is_complete(frame):
                LOGGER.warning("lms response looks truncated (%d bytes)", len(frame))
            return frame
        finally:
            self.close()


def frame_is_complete(raw: bytes) -> bool:
    """Check that raw holds a whole HTTP response."""
    head, separator, body = raw.partition(b"\r\n\r\n")
    if not separator:
        return False

    headers: dict[str, str] = {}
    for line in head.decode("latin-1").split("\r\n")[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()

    if "content-length" in headers:
        try:
            return len(body) >= int(headers["content-length"])
        except ValueError:
            return False
    if "chunked" in headers.get("transfer-encoding", "").lower():
        return body.endswith(b"0\r\n\r\n")
    return True
