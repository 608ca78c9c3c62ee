from __future__ import annotations

import pytest
import typer

from rpcagent.core import credentials
from rpcagent.core.credentials import (
    CredentialResolver,
    CredentialState,
    PromptPasswordReader,
    credential_state,
    ensure_password,
)
from rpcagent.core.errors import CredentialResolutionError, MissingOrIncorrectPasswordError, PasswordReadError
from rpcagent.core.model import LocalConfig, Mode, RunFlags


@pytest.mark.parametrize(
    ("mode", "use_lsa", "state"),
    [
        (Mode.LOCAL_CCM, True, CredentialState.LOCAL_SYSTEM_ACCOUNT),
        (Mode.LOCAL_ACM, True, CredentialState.LOCAL_SYSTEM_ACCOUNT),
        (Mode.LOCAL_CCM, False, CredentialState.LOCAL_PASSWORD),
        (Mode.LOCAL_8021X, True, CredentialState.LOCAL_PASSWORD),
        (Mode.REMOTE_PROVISION, True, CredentialState.REMOTE_DELEGATED),
    ],
)
def test_credential_state(mode: Mode, use_lsa: bool, state: CredentialState) -> None:
    assert credential_state(mode, use_lsa) is state


def test_lsa_mode_uses_system_account(fake_amt, reader) -> None:
    creds = CredentialResolver(reader, fake_amt).resolve(RunFlags(command="activate"), Mode.LOCAL_CCM)
    assert creds.username == "$$OsAdmin"
    assert reader.reads == 0


def test_lsa_failure_is_fatal_without_fallback(fake_amt, reader, caplog: pytest.LogCaptureFixture) -> None:
    fake_amt.failing.add("lsa")
    with pytest.raises(CredentialResolutionError):
        CredentialResolver(reader, fake_amt).resolve(RunFlags(command="activate"), Mode.LOCAL_ACM)
    assert reader.reads == 0
    assert "local system account" in caplog.text


def test_password_mode_reads_once(fake_amt, reader) -> None:
    flags = RunFlags(command="activate", use_lsa=False)
    resolver = CredentialResolver(reader, fake_amt)

    first = resolver.resolve(flags, Mode.LOCAL_CCM)
    second = resolver.resolve(flags, Mode.LOCAL_CCM)

    assert first == second
    assert first.username == "admin"
    assert reader.reads == 1
    assert "P@ssw0rd!" not in repr(first)


def test_remote_mode_has_no_local_identity(fake_amt, reader) -> None:
    assert CredentialResolver(reader, fake_amt).resolve(RunFlags(command="activate"), Mode.REMOTE_PROVISION) is None
    assert fake_amt.calls == []


def test_ensure_password_prefers_flag_then_config(failing_reader) -> None:
    assert ensure_password(RunFlags(command="x", password="flag-pass"), failing_reader) == "flag-pass"
    flags = RunFlags(command="x", config=LocalConfig(password="config-pass"))
    assert ensure_password(flags, failing_reader) == "config-pass"
    assert flags.password == "config-pass"
    assert failing_reader.reads == 0


def test_ensure_password_read_failure(failing_reader) -> None:
    with pytest.raises(MissingOrIncorrectPasswordError):
        ensure_password(RunFlags(command="x"), failing_reader)


def test_prompt_reader(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(credentials.typer, "prompt", lambda *args, **kwargs: "typed")
    assert PromptPasswordReader().read_password() == "typed"

    monkeypatch.setattr(credentials.typer, "prompt", lambda *args, **kwargs: "")
    with pytest.raises(PasswordReadError):
        PromptPasswordReader().read_password()

    def abort(*args, **kwargs):
        raise typer.Abort()

    monkeypatch.setattr(credentials.typer, "prompt", abort)
    with pytest.raises(PasswordReadError):
        PromptPasswordReader().read_password()
