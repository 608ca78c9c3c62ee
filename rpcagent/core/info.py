"""AMT information collection and rendering."""

from __future__ import annotations

import json
import logging
import socket
from collections.abc import Callable
from dataclasses import asdict
from typing import Any, Protocol

from rpcagent.core.amt import AMTCommandInterface
from rpcagent.core.capabilities import decode_amt
from rpcagent.core.credentials import PasswordReader, ensure_password
from rpcagent.core.errors import RpcError
from rpcagent.core.model import ADMIN_USERNAME, ControlMode, Credentials, InfoReport, PublicKeyCertificate, RunFlags
from rpcagent.transports.wsman import WsmanClient

LOGGER = logging.getLogger(__name__)

FIELD_LABELS = {
    "amt": "Version",
    "buildNumber": "Build Number",
    "sku": "SKU",
    "features": "Features",
    "uuid": "UUID",
    "controlMode": "Control Mode",
    "dnsSuffix": "DNS Suffix",
    "dnsSuffixOS": "DNS Suffix (OS)",
    "hostnameOS": "Hostname (OS)",
    "ras": "Remote Access",
    "wiredAdapter": "Wired Adapter",
    "wirelessAdapter": "Wireless Adapter",
    "certificateHashes": "Certificate Hashes",
    "publicKeyCerts": "Public Key Certs",
}


class CertificateSource(Protocol):
    def get_public_key_certificates(self) -> list[PublicKeyCertificate]: ...

    def close(self) -> None: ...


def control_mode_label(mode: int) -> str:
    try:
        return ControlMode(mode).label
    except ValueError:
        return f"unknown ({mode})"


class InfoCollector:
    def __init__(
        self,
        flags: RunFlags,
        amt: AMTCommandInterface,
        reader: PasswordReader,
        *,
        wsman_factory: Callable[[Credentials], CertificateSource] = WsmanClient,
    ) -> None:
        self.flags = flags
        self.amt = amt
        self.reader = reader
        self.wsman_factory = wsman_factory

    def collect(self) -> InfoReport:
        """Run every requested query, recording failures per field.

        Raises MissingOrIncorrectPasswordError when user certificates are
        requested and no password can be obtained.
        """
        info = self.flags.info
        if info.user_cert and not self._user_certs_available():
            info.user_cert = False
        if info.user_cert:
            ensure_password(self.flags, self.reader)

        report = InfoReport()
        for name, query in self._queries():
            try:
                report.values[name] = query()
            except (RpcError, OSError) as exc:
                LOGGER.error("failed to read %s: %s", FIELD_LABELS.get(name, name), exc)
                report.errors[name] = str(exc)

        if info.ver and info.sku and "amt" in report.values and "sku" in report.values:
            report.values["features"] = decode_amt(report.values["amt"], report.values["sku"])
        return report

    def _user_certs_available(self) -> bool:
        try:
            mode = self.amt.get_control_mode()
        except RpcError as exc:
            LOGGER.error("could not read control mode, skipping user certificates: %s", exc)
            return False
        if mode == ControlMode.PRE_PROVISIONING:
            LOGGER.info("device is in pre-provisioning mode; user certificates are available after activation")
            return False
        return True

    def _queries(self) -> list[tuple[str, Callable[[], Any]]]:
        info = self.flags.info
        queries: list[tuple[str, Callable[[], Any]]] = []
        if info.ver:
            queries.append(("amt", lambda: self.amt.get_version_data("AMT")))
        if info.bld:
            queries.append(("buildNumber", lambda: self.amt.get_version_data("Build Number")))
        if info.sku:
            queries.append(("sku", lambda: self.amt.get_version_data("Sku")))
        if info.uuid:
            queries.append(("uuid", self.amt.get_uuid))
        if info.mode:
            queries.append(("controlMode", lambda: control_mode_label(self.amt.get_control_mode())))
        if info.dns:
            queries.append(("dnsSuffix", self.amt.get_dns_suffix))
            queries.append(("dnsSuffixOS", lambda: socket.getfqdn().partition(".")[2]))
        if info.hostname:
            queries.append(("hostnameOS", socket.gethostname))
        if info.ras:
            queries.append(("ras", lambda: asdict(self.amt.get_remote_access_connection_status())))
        if info.lan:
            queries.append(("wiredAdapter", lambda: asdict(self.amt.get_lan_interface_settings(wireless=False))))
            queries.append(("wirelessAdapter", lambda: asdict(self.amt.get_lan_interface_settings(wireless=True))))
        if info.cert:
            queries.append(("certificateHashes", self._certificate_hashes))
        if info.user_cert:
            queries.append(("publicKeyCerts", self._public_key_certs))
        return queries

    def _certificate_hashes(self) -> dict[str, dict[str, Any]]:
        return {entry.name: asdict(entry) for entry in self.amt.get_certificate_hashes()}

    def _public_key_certs(self) -> list[dict[str, Any]]:
        client = self.wsman_factory(Credentials(username=ADMIN_USERNAME, password=self.flags.password or ""))
        try:
            return [asdict(cert) for cert in client.get_public_key_certificates()]
        finally:
            client.close()


def render_json(report: InfoReport) -> str:
    document: dict[str, Any] = dict(report.values)
    if report.errors:
        document["errors"] = dict(report.errors)
    return json.dumps(document, indent=2)


def _render_value(lines: list[str], label: str, value: Any, indent: str) -> None:
    if isinstance(value, dict):
        lines.append(f"{indent}{label}")
        for key, item in value.items():
            _render_value(lines, str(key), item, indent + "  ")
    elif isinstance(value, list):
        lines.append(f"{indent}{label}")
        for index, item in enumerate(value, start=1):
            _render_value(lines, f"#{index}", item, indent + "  ")
    else:
        lines.append(f"{indent}{label:<24}: {value}")


def render_text(report: InfoReport) -> str:
    lines: list[str] = []
    for key, label in FIELD_LABELS.items():
        if key in report.values:
            _render_value(lines, label, report.values[key], "")
        elif key in report.errors:
            lines.append(f"{label:<24}: error: {report.errors[key]}")
    return "\n".join(lines)
