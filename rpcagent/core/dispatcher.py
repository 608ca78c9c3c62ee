"""Mode selection and dispatch for activate, deactivate and configure runs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from rpcagent.core.amt import AMTCommand, AMTCommandInterface
from rpcagent.core.credentials import (
    CredentialResolver,
    CredentialState,
    PasswordReader,
    PromptPasswordReader,
    credential_state,
)
from rpcagent.core.errors import (
    AccessDeniedError,
    AMTNotDetectedError,
    InvalidParametersError,
    MissingOrIncorrectPasswordError,
    MissingOrIncorrectProfileError,
    MissingOrIncorrectURLError,
    RpcError,
)
from rpcagent.core.local import LocalConfiguration, ManagementClient
from rpcagent.core.model import Credentials, Mode, RunFlags
from rpcagent.core.rps import Executor, prepare_initial_message
from rpcagent.transports.wsman import WsmanClient

LOGGER = logging.getLogger(__name__)


class Action(Enum):
    ACTIVATE_CCM = "activate-ccm"
    CONFIGURE = "configure"
    EXECUTE_REMOTE = "execute-remote"


_ACTIONS = {
    Mode.LOCAL_CCM: Action.ACTIVATE_CCM,
    Mode.LOCAL_ACM: Action.CONFIGURE,
    Mode.LOCAL_8021X: Action.CONFIGURE,
    Mode.REMOTE_PROVISION: Action.EXECUTE_REMOTE,
}


@dataclass(frozen=True)
class Plan:
    mode: Mode
    credentials: CredentialState
    action: Action


class RemoteExecutor(Protocol):
    def make_it_so(self, start_message: str) -> None: ...


def resolve_mode(flags: RunFlags) -> Mode:
    if flags.command == "configure":
        return Mode.LOCAL_8021X
    if flags.command not in ("activate", "deactivate"):
        raise InvalidParametersError(f"'{flags.command}' cannot be dispatched")

    if flags.local:
        if flags.command != "activate":
            raise InvalidParametersError("Local deactivation is not supported")
        if flags.use_ccm and flags.use_acm:
            raise InvalidParametersError("Choose only one of --ccm or --acm")
        if flags.use_ccm:
            return Mode.LOCAL_CCM
        if flags.use_acm:
            return Mode.LOCAL_ACM
        raise InvalidParametersError("Local activation requires --ccm or --acm")

    if not flags.url:
        raise MissingOrIncorrectURLError("Remote provisioning requires --url")
    if not flags.url.startswith(("ws://", "wss://")):
        raise MissingOrIncorrectURLError(f"Server URL must use ws:// or wss://, got {flags.url}")
    if flags.command == "activate" and not flags.profile:
        raise MissingOrIncorrectProfileError("Remote activation requires --profile")
    return Mode.REMOTE_PROVISION


def plan(flags: RunFlags) -> Plan:
    """Decide mode, identity and action for a run without touching the device."""
    mode = resolve_mode(flags)
    return Plan(mode=mode, credentials=credential_state(mode, flags.use_lsa), action=_ACTIONS[mode])


class Dispatcher:
    def __init__(
        self,
        *,
        amt: AMTCommandInterface | None = None,
        reader: PasswordReader | None = None,
        wsman_factory: Callable[[Credentials], ManagementClient] = WsmanClient,
        executor_factory: Callable[[RunFlags], RemoteExecutor] = Executor,
    ) -> None:
        self.amt = amt or AMTCommand()
        self.reader = reader or PromptPasswordReader()
        self.wsman_factory = wsman_factory
        self.executor_factory = executor_factory

    def run(self, flags: RunFlags) -> Plan:
        selected = plan(flags)
        LOGGER.debug("mode %s, action %s", selected.mode.value, selected.action.value)
        if selected.action is Action.EXECUTE_REMOTE:
            self._run_remote(flags)
        else:
            self._run_local(flags, selected)
        return selected

    def _run_local(self, flags: RunFlags, selected: Plan) -> None:
        credentials = CredentialResolver(self.reader, self.amt).resolve(flags, selected.mode)
        if credentials is None:
            raise InvalidParametersError(f"{selected.mode.value} has no local identity")

        client = self.wsman_factory(credentials)
        try:
            local = LocalConfiguration(flags, client, self.amt, self.reader)
            if selected.action is Action.ACTIVATE_CCM:
                local.activate_ccm()
            else:
                local.configure_wireless()
        finally:
            client.close()

    def _run_remote(self, flags: RunFlags) -> None:
        try:
            start_message = prepare_initial_message(flags, self.amt, self.reader)
        except (AMTNotDetectedError, AccessDeniedError):
            raise
        except RpcError as exc:
            raise MissingOrIncorrectPasswordError(f"Unable to prepare the initial message: {exc}") from exc
        self.executor_factory(flags).make_it_so(start_message)
