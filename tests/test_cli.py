from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from typer.testing import CliRunner

from rpcagent import __version__, cli
from rpcagent.core.dispatcher import plan
from rpcagent.core.errors import CredentialResolutionError, MissingOrIncorrectPasswordError
from rpcagent.core.model import InfoReport, RunFlags

runner = CliRunner()


class FakeClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.flags: list[RunFlags] = []

    def amt_info(self, flags: RunFlags) -> InfoReport:
        self.flags.append(flags)
        if self.error:
            raise self.error
        return InfoReport(values={"amt": "16.1.25", "sku": "16392"}, errors={"uuid": "uuid failed"})

    def run(self, flags: RunFlags):
        self.flags.append(flags)
        if self.error:
            raise self.error
        return plan(flags)


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> FakeClient:
    fake = FakeClient()
    monkeypatch.setattr(cli, "_build_client", lambda: fake)
    return fake


def test_amtinfo_defaults_to_all_fields(client: FakeClient) -> None:
    result = runner.invoke(cli.app, ["amtinfo"])

    assert result.exit_code == 0
    assert "16.1.25" in result.stdout
    assert "error: uuid failed" in result.stdout
    info = client.flags[0].info
    assert info.ver and info.cert and info.user_cert


def test_amtinfo_selected_fields_json(client: FakeClient) -> None:
    result = runner.invoke(cli.app, ["--json", "amtinfo", "--ver", "--sku"])

    assert result.exit_code == 0
    document = json.loads(result.stdout)
    assert document["errors"] == {"uuid": "uuid failed"}
    info = client.flags[0].info
    assert info.ver and info.sku and not info.uuid
    assert client.flags[0].json_output


def test_amtinfo_password_failure_exit_status(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "_build_client", lambda: FakeClient(MissingOrIncorrectPasswordError("AMT password is required")))

    result = runner.invoke(cli.app, ["amtinfo", "--usercert"])

    assert result.exit_code == 23
    assert "Error: AMT password is required" in result.stderr


def test_activate_local_ccm(client: FakeClient) -> None:
    result = runner.invoke(cli.app, ["activate", "--local", "--ccm", "--password", "P@ssw0rd!"])

    assert result.exit_code == 0
    assert "Completed local-ccm" in result.stdout
    flags = client.flags[0]
    assert flags.use_ccm and flags.use_lsa and flags.password == "P@ssw0rd!"
    assert flags.url is None


def test_activate_local_ignores_server_url_from_environment(client: FakeClient) -> None:
    result = runner.invoke(cli.app, ["activate", "--local", "--acm", "--no-lsa"], env={"RPS_URL": "wss://rps"})

    assert result.exit_code == 0
    assert client.flags[0].url is None
    assert client.flags[0].use_lsa is False


def test_activate_remote_from_environment(client: FakeClient) -> None:
    env = {"RPS_URL": "wss://rps.example.com", "RPS_PROFILE": "p1"}
    result = runner.invoke(cli.app, ["--json", "activate"], env=env)

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"status": "success", "mode": "remote"}
    assert client.flags[0].profile == "p1"


def test_activate_without_mode_is_a_parameter_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "_build_client", lambda: FakeClient())

    result = runner.invoke(cli.app, ["activate", "--local"])

    assert result.exit_code == 28
    assert "--ccm or --acm" in result.stderr


def test_activate_lsa_failure_exit_status(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "_build_client", lambda: FakeClient(CredentialResolutionError("no account")))

    result = runner.invoke(cli.app, ["activate", "--local", "--ccm"])

    assert result.exit_code == 100


def test_activate_bad_config_exit_status(client: FakeClient, tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("unknownKey: 1\n", encoding="utf-8")

    result = runner.invoke(cli.app, ["activate", "--local", "--acm", "--config", str(config)])

    assert result.exit_code == 21
    assert client.flags == []


def test_deactivate_requires_url(client: FakeClient) -> None:
    result = runner.invoke(cli.app, ["deactivate"], env={"RPS_URL": ""})
    assert result.exit_code == 20


def test_configure_wireless(client: FakeClient, tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        "wifiConfigs:\n"
        "  - profileName: home\n"
        "    ssid: HomeNet\n"
        "    priority: 1\n"
        "    authenticationMethod: 6\n"
        "    encryptionMethod: 4\n"
        "    pskPassphrase: correct horse\n",
        encoding="utf-8",
    )

    result = runner.invoke(cli.app, ["configure", "wireless", "--config", str(config)])

    assert result.exit_code == 0
    assert "Completed local-8021x" in result.stdout
    assert client.flags[0].config.wifi_profiles[0].ssid == "HomeNet"


def test_version_json() -> None:
    result = runner.invoke(cli.app, ["--json", "version"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["version"] == __version__


def test_configure_logging_levels() -> None:
    logger = logging.getLogger("rpcagent")

    cli.configure_logging(verbose=True, log_level="error", json_output=False)
    assert logger.level == logging.DEBUG

    cli.configure_logging(verbose=False, log_level="warning", json_output=True)
    assert logger.level == logging.WARNING
    assert isinstance(logger.handlers[0].formatter, cli.JSONFormatter)

    cli.configure_logging(verbose=False, log_level="loud", json_output=False)
    assert logger.level == logging.INFO


def test_json_formatter_emits_one_object_per_record() -> None:
    record = logging.LogRecord("rpcagent.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    document = json.loads(cli.JSONFormatter().format(record))
    assert document["msg"] == "hello world"
    assert document["level"] == "info"
