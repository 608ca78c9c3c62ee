"""Transport interfaces."""

from __future__ import annotations

import queue
from typing import Protocol


class Channel(Protocol):
    def connect(self) -> None:
        """Open the underlying connection."""

    def send(self, data: bytes) -> None:
        """Write the full payload to the open connection."""

    def listen(self, data_channel: queue.Queue[bytes], error_channel: queue.Queue[Exception]) -> None:
        """Drain the connection until quiet, delivering bytes and any error."""

    def close(self) -> None:
        """Release the connection."""

    def exchange(self, payload: bytes) -> bytes:
        """Connect, send one payload, return the drained response, close."""
