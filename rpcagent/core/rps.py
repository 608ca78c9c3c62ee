"""Remote provisioning: the initial RPS message and the websocket executor.

The executor is a relay. Every payload the server sends is forwarded verbatim
to LMS through a fresh `LMSConnection`, and the drained response goes back
base64 encoded. The server decides when provisioning is finished.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import socket
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import aiohttp

from rpcagent import __version__
from rpcagent.core.amt import AMTCommandInterface
from rpcagent.core.credentials import PasswordReader, ensure_password
from rpcagent.core.errors import (
    InvalidParametersError,
    RemoteExecutionError,
    ServerCertificateVerificationError,
)
from rpcagent.core.model import ADMIN_USERNAME, RunFlags
from rpcagent.transports.base import Channel
from rpcagent.transports.lms import LMSConnection

PROTOCOL_VERSION = "4.0.0"
API_KEY = "key"
CLIENT_NAME = "rpcagent"
HEARTBEAT_S = 30.0
LOGGER = logging.getLogger(__name__)

_METHODS = {
    "activate": "activation",
    "deactivate": "deactivation",
}


@dataclass(frozen=True)
class ServerMessage:
    method: str
    status: str = ""
    message: str = ""
    payload: bytes = b""


def encode_message(method: str, payload: bytes = b"", *, status: str = "ok", message: str = "ok") -> str:
    return json.dumps(
        {
            "method": method,
            "apiKey": API_KEY,
            "appVersion": __version__,
            "protocolVersion": PROTOCOL_VERSION,
            "status": status,
            "message": message,
            "payload": base64.b64encode(payload).decode("ascii"),
        }
    )


def decode_message(raw: str) -> ServerMessage:
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RemoteExecutionError(f"Malformed message from server: {exc}") from exc
    if not isinstance(document, dict):
        raise RemoteExecutionError("Malformed message from server: expected an object")

    try:
        payload = base64.b64decode(document.get("payload") or "", validate=True)
    except binascii.Error as exc:
        raise RemoteExecutionError(f"Malformed payload from server: {exc}") from exc
    return ServerMessage(
        method=str(document.get("method", "")),
        status=str(document.get("status", "")),
        message=str(document.get("message", "")),
        payload=payload,
    )


def create_payload(flags: RunFlags, amt: AMTCommandInterface, reader: PasswordReader) -> dict[str, Any]:
    """Describe the device to the server, including the identity it should use through LMS."""
    payload: dict[str, Any] = {
        "ver": amt.get_version_data("AMT"),
        "build": amt.get_version_data("Build Number"),
        "sku": amt.get_version_data("Sku"),
        "uuid": amt.get_uuid(),
        "currentMode": amt.get_control_mode(),
        "hostname": socket.gethostname(),
        "fqdn": amt.get_dns_suffix(),
        "client": CLIENT_NAME,
        "certHashes": [entry.hash for entry in amt.get_certificate_hashes()],
    }
    if flags.command == "deactivate":
        payload["username"] = ADMIN_USERNAME
        payload["password"] = ensure_password(flags, reader)
    else:
        account = amt.get_local_system_account()
        payload["username"] = account.username
        payload["password"] = account.password
        payload["profile"] = flags.profile
    return payload


def prepare_initial_message(flags: RunFlags, amt: AMTCommandInterface, reader: PasswordReader) -> str:
    method = _METHODS.get(flags.command)
    if method is None:
        raise InvalidParametersError(f"'{flags.command}' is not a remote provisioning command")
    payload = create_payload(flags, amt, reader)
    LOGGER.debug("prepared %s message for device %s", method, payload["uuid"])
    return encode_message(method, json.dumps(payload).encode("utf-8"))


class Executor:
    def __init__(
        self,
        flags: RunFlags,
        *,
        channel_factory: Callable[[], Channel] = LMSConnection,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
        heartbeat_s: float = HEARTBEAT_S,
    ) -> None:
        if not flags.url:
            raise InvalidParametersError("Remote provisioning requires a server URL")
        self.flags = flags
        self.channel_factory = channel_factory
        self.session_factory = session_factory
        self.heartbeat_s = heartbeat_s
        self.finished = False

    def make_it_so(self, start_message: str) -> None:
        asyncio.run(self.run(start_message))

    async def run(self, start_message: str) -> None:
        url = self.flags.url
        verify = not self.flags.skip_cert_check
        if not verify:
            LOGGER.warning("TLS certificate verification for %s is disabled", url)

        async with self.session_factory() as session:
            try:
                websocket = await session.ws_connect(url, ssl=verify, heartbeat=self.heartbeat_s)
            except aiohttp.ClientConnectorCertificateError as exc:
                raise ServerCertificateVerificationError(f"Could not verify the certificate of {url}: {exc}") from exc
            except aiohttp.ClientError as exc:
                raise RemoteExecutionError(f"Could not connect to {url}: {exc}") from exc

            LOGGER.info("connected to %s", url)
            async with websocket:
                await websocket.send_str(start_message)
                async for frame in websocket:
                    if frame.type == aiohttp.WSMsgType.ERROR:
                        raise RemoteExecutionError(f"Websocket error: {websocket.exception()}")
                    if frame.type != aiohttp.WSMsgType.TEXT:
                        continue
                    reply = await self.handle(decode_message(frame.data))
                    if self.finished:
                        return
                    if reply is not None:
                        await websocket.send_str(reply)

        raise RemoteExecutionError("Server closed the connection before provisioning finished")

    async def handle(self, message: ServerMessage) -> str | None:
        """Act on one server message and return the reply to send, if any."""
        if message.method == "heartbeat_request":
            return encode_message("heartbeat_response", status="success", message="heartbeat")
        if message.method == "success":
            LOGGER.info("Status: %s", message.message)
            self.finished = True
            return None
        if message.method == "error":
            raise RemoteExecutionError(message.message or "Server reported an error")
        if not message.payload:
            LOGGER.warning("ignoring server message '%s' without payload", message.method)
            return None

        response = await asyncio.to_thread(self._relay, message.payload)
        return encode_message("response", response)

    def _relay(self, payload: bytes) -> bytes:
        channel = self.channel_factory()
        return channel.exchange(payload)
