from __future__ import annotations

import logging

import pytest

from rpcagent.core.errors import AMTCommandError, PasswordReadError
from rpcagent.core.model import CertHashEntry, Credentials, LanSettings, RemoteAccessStatus


class FakeAMT:
    """Command interface answering from a table; names in `failing` raise AMTCommandError."""

    def __init__(self) -> None:
        self.versions = {"AMT": "16.1.25", "Build Number": "2049", "Sku": "16392"}
        self.control_mode = 0
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise AMTCommandError(f"{name} failed")

    def get_version_data(self, key: str) -> str:
        self._enter("version")
        return self.versions[key]

    def get_uuid(self) -> str:
        self._enter("uuid")
        return "4c4c4544-0039-4410-8042-b3c04f4d3332"

    def get_control_mode(self) -> int:
        self._enter("control_mode")
        return self.control_mode

    def get_dns_suffix(self) -> str:
        self._enter("dns")
        return "corp.example.com"

    def get_local_system_account(self) -> Credentials:
        self._enter("lsa")
        return Credentials("$$OsAdmin", "lsa-secret")

    def get_remote_access_connection_status(self) -> RemoteAccessStatus:
        self._enter("ras")
        return RemoteAccessStatus("direct", "not connected", "user initiated", "")

    def get_lan_interface_settings(self, wireless: bool) -> LanSettings:
        self._enter("lan")
        return LanSettings(True, "up", True, "active", "192.168.1.5", "a4:bb:6d:11:22:33")

    def get_certificate_hashes(self) -> list[CertHashEntry]:
        self._enter("cert")
        return [CertHashEntry("Test Root CA", "ab" * 32, "SHA256", True, True)]


class FakeReader:
    def __init__(self, password: str | None = "P@ssw0rd!") -> None:
        self.password = password
        self.reads = 0

    def read_password(self) -> str:
        self.reads += 1
        if self.password is None:
            raise PasswordReadError("no terminal")
        return self.password


@pytest.fixture
def fake_amt() -> FakeAMT:
    return FakeAMT()


@pytest.fixture
def reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def failing_reader() -> FakeReader:
    return FakeReader(password=None)


@pytest.fixture(autouse=True)
def _restore_package_logger():
    logger = logging.getLogger("rpcagent")
    handlers, level = logger.handlers[:], logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
