"""Stable public API for building tooling on top of rpcagent.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import Callable

from rpcagent.core.amt import AMTCommand, AMTCommandInterface
from rpcagent.core.capabilities import decode_amt, decode_capabilities
from rpcagent.core.credentials import PasswordReader, PromptPasswordReader
from rpcagent.core.dispatcher import Action, Dispatcher, Plan, RemoteExecutor, plan
from rpcagent.core.errors import (
    ActivationError,
    AMTCommandError,
    AMTNotDetectedError,
    CapabilityDecodeError,
    ConfigLoadError,
    ConfigValidationError,
    CredentialResolutionError,
    ExitStatus,
    InvalidParametersError,
    MissingOrIncorrectPasswordError,
    RemoteExecutionError,
    RpcError,
    ServerCertificateVerificationError,
    TransportConnectError,
    TransportError,
    WsmanError,
)
from rpcagent.core.info import InfoCollector
from rpcagent.core.model import Credentials, InfoFlags, InfoReport, LocalConfig, Mode, RunFlags
from rpcagent.core.rps import Executor
from rpcagent.transports.wsman import WsmanClient

__all__ = [
    "RpcError",
    "ExitStatus",
    "ActivationError",
    "AMTCommandError",
    "AMTNotDetectedError",
    "CapabilityDecodeError",
    "ConfigLoadError",
    "ConfigValidationError",
    "CredentialResolutionError",
    "InvalidParametersError",
    "MissingOrIncorrectPasswordError",
    "RemoteExecutionError",
    "ServerCertificateVerificationError",
    "TransportError",
    "TransportConnectError",
    "WsmanError",
    "Action",
    "Credentials",
    "InfoFlags",
    "InfoReport",
    "LocalConfig",
    "Mode",
    "Plan",
    "RunFlags",
    "decode_capabilities",
    "Client",
]


class Client:
    """Public client for interacting with rpcagent core capabilities.

    A `Client` wraps the device command interface, password entry, the WSMAN
    client and the remote executor behind one object so GUIs, services and
    scripts can inspect or provision a device the same way the CLI does.
    """

    def __init__(
        self,
        *,
        amt: AMTCommandInterface | None = None,
        reader: PasswordReader | None = None,
        wsman_factory: Callable[[Credentials], WsmanClient] = WsmanClient,
        executor_factory: Callable[[RunFlags], RemoteExecutor] = Executor,
    ) -> None:
        self._amt = amt or AMTCommand()
        self._reader = reader or PromptPasswordReader()
        self._wsman_factory = wsman_factory
        self._executor_factory = executor_factory

    def describe_capabilities(self, version: str, sku: str) -> str:
        """Decoded feature text, or the label of the validation error."""
        return decode_amt(version, sku)

    def amt_info(self, flags: RunFlags) -> InfoReport:
        collector = InfoCollector(flags, self._amt, self._reader, wsman_factory=self._wsman_factory)
        return collector.collect()

    def plan(self, flags: RunFlags) -> Plan:
        return plan(flags)

    def run(self, flags: RunFlags) -> Plan:
        dispatcher = Dispatcher(
            amt=self._amt,
            reader=self._reader,
            wsman_factory=self._wsman_factory,
            executor_factory=self._executor_factory,
        )
        return dispatcher.run(flags)
