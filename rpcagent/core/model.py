"""Core data models used across loader, collector, dispatcher, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

ADMIN_USERNAME = "admin"


class Mode(Enum):
    LOCAL_CCM = "local-ccm"
    LOCAL_ACM = "local-acm"
    LOCAL_8021X = "local-8021x"
    REMOTE_PROVISION = "remote"


class ControlMode(int, Enum):
    PRE_PROVISIONING = 0
    CLIENT = 1
    ADMIN = 2

    @property
    def label(self) -> str:
        return _CONTROL_MODE_LABELS[self]


_CONTROL_MODE_LABELS = {
    ControlMode.PRE_PROVISIONING: "pre-provisioning state",
    ControlMode.CLIENT: "activated in client control mode",
    ControlMode.ADMIN: "activated in admin control mode",
}


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class Ieee8021xProfile:
    profile_name: str
    username: str
    password: str = field(repr=False)
    authentication_protocol: int = 2
    domain: str | None = None
    roaming_identity: str | None = None


@dataclass(frozen=True)
class WifiProfile:
    profile_name: str
    ssid: str
    priority: int
    authentication_method: int
    encryption_method: int
    psk_passphrase: str | None = field(default=None, repr=False)
    ieee8021x_profile_name: str | None = None


@dataclass(frozen=True)
class LocalConfig:
    password: str | None = field(default=None, repr=False)
    wifi_sync_enabled: bool = True
    wifi_profiles: tuple[WifiProfile, ...] = ()
    ieee8021x_profiles: dict[str, Ieee8021xProfile] = field(default_factory=dict)


@dataclass
class InfoFlags:
    ver: bool = False
    bld: bool = False
    sku: bool = False
    uuid: bool = False
    mode: bool = False
    dns: bool = False
    hostname: bool = False
    ras: bool = False
    lan: bool = False
    cert: bool = False
    user_cert: bool = False

    def any_selected(self) -> bool:
        return any(getattr(self, f.name) for f in fields(self))

    def select_all(self) -> None:
        for f in fields(self):
            setattr(self, f.name, True)


@dataclass
class RunFlags:
    """Flags for one run. The collector may clear `info.user_cert`."""

    command: str
    local: bool = False
    use_ccm: bool = False
    use_acm: bool = False
    use_lsa: bool = True
    password: str | None = field(default=None, repr=False)
    url: str | None = None
    profile: str | None = None
    skip_cert_check: bool = False
    json_output: bool = False
    config: LocalConfig = field(default_factory=LocalConfig)
    info: InfoFlags = field(default_factory=InfoFlags)


@dataclass
class InfoReport:
    values: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class RemoteAccessStatus:
    network_status: str
    remote_status: str
    remote_trigger: str
    mps_hostname: str


@dataclass(frozen=True)
class LanSettings:
    is_enabled: bool
    link_status: str
    dhcp_enabled: bool
    dhcp_mode: str
    ip_address: str
    mac_address: str


@dataclass(frozen=True)
class CertHashEntry:
    name: str
    hash: str
    algorithm: str
    is_active: bool
    is_default: bool


@dataclass(frozen=True)
class PublicKeyCertificate:
    element_name: str
    instance_id: str
    subject: str
    issuer: str
    trusted_root: bool
