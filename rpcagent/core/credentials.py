"""Credential resolution for management sessions.

Credentials live only as long as the run that resolved them; nothing here logs
or stores a password.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

import typer

from rpcagent.core.errors import CredentialResolutionError, MissingOrIncorrectPasswordError, PasswordReadError, RpcError
from rpcagent.core.model import ADMIN_USERNAME, Credentials, Mode, RunFlags

LOGGER = logging.getLogger(__name__)


class PasswordReader(Protocol):
    def read_password(self) -> str:
        """Return the operator's password or raise PasswordReadError."""


class SystemAccountSource(Protocol):
    def get_local_system_account(self) -> Credentials: ...


class PromptPasswordReader:
    def __init__(self, prompt: str = "Please enter AMT Password") -> None:
        self.prompt = prompt

    def read_password(self) -> str:
        try:
            password = typer.prompt(self.prompt, hide_input=True, err=True)
        except typer.Abort as exc:
            raise PasswordReadError("Password entry was cancelled") from exc
        if not password:
            raise PasswordReadError("Empty password")
        return password


class CredentialState(Enum):
    UNRESOLVED = "unresolved"
    LOCAL_PASSWORD = "local-password"
    LOCAL_SYSTEM_ACCOUNT = "local-system-account"
    REMOTE_DELEGATED = "remote-delegated"


def credential_state(mode: Mode, use_lsa: bool) -> CredentialState:
    """Which identity a mode opens its session with."""
    if mode is Mode.REMOTE_PROVISION:
        return CredentialState.REMOTE_DELEGATED
    if mode in (Mode.LOCAL_CCM, Mode.LOCAL_ACM) and use_lsa:
        return CredentialState.LOCAL_SYSTEM_ACCOUNT
    return CredentialState.LOCAL_PASSWORD


def ensure_password(flags: RunFlags, reader: PasswordReader) -> str:
    """Return the operator password, reading it once if no flag or config set it."""
    if not flags.password and flags.config.password:
        flags.password = flags.config.password
    if not flags.password:
        try:
            flags.password = reader.read_password()
        except PasswordReadError as exc:
            raise MissingOrIncorrectPasswordError(f"AMT password is required: {exc}") from exc
    return flags.password


class CredentialResolver:
    def __init__(self, reader: PasswordReader, system_account: SystemAccountSource) -> None:
        self.reader = reader
        self.system_account = system_account

    def resolve(self, flags: RunFlags, mode: Mode) -> Credentials | None:
        state = credential_state(mode, flags.use_lsa)
        LOGGER.debug("credential state for %s: %s", mode.value, state.value)
        if state is CredentialState.REMOTE_DELEGATED:
            return None
        if state is CredentialState.LOCAL_SYSTEM_ACCOUNT:
            try:
                return self.system_account.get_local_system_account()
            except RpcError as exc:
                LOGGER.error("could not fetch the local system account: %s", exc)
                raise CredentialResolutionError(f"Failed to get the local system account: {exc}") from exc
        return Credentials(username=ADMIN_USERNAME, password=ensure_password(flags, self.reader))
