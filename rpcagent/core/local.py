"""Local activation and configuration over the loopback WSMAN endpoint."""

from __future__ import annotations

import logging
from typing import Protocol

from rpcagent.core.amt import AMTCommandInterface
from rpcagent.core.credentials import PasswordReader, ensure_password
from rpcagent.core.errors import ActivationError, ConfigValidationError, RpcError, WsmanError
from rpcagent.core.model import ControlMode, Ieee8021xProfile, RunFlags, WifiProfile

LOGGER = logging.getLogger(__name__)


class ManagementClient(Protocol):
    def host_based_setup(self, admin_password: str) -> None: ...

    def set_local_profile_sync(self, enabled: bool) -> None: ...

    def add_wifi_settings(self, profile: WifiProfile, ieee8021x: Ieee8021xProfile | None = None) -> None: ...

    def close(self) -> None: ...


class LocalConfiguration:
    def __init__(
        self,
        flags: RunFlags,
        client: ManagementClient,
        amt: AMTCommandInterface,
        reader: PasswordReader,
    ) -> None:
        self.flags = flags
        self.client = client
        self.amt = amt
        self.reader = reader

    def activate_ccm(self) -> None:
        """Activate the device in client control mode with the operator's password."""
        try:
            mode = self.amt.get_control_mode()
        except RpcError as exc:
            raise ActivationError(f"Unable to read the control mode: {exc}") from exc
        if mode != ControlMode.PRE_PROVISIONING:
            raise ActivationError(f"Device is already activated (control mode {mode})")

        admin_password = ensure_password(self.flags, self.reader)
        try:
            self.client.host_based_setup(admin_password)
        except WsmanError as exc:
            raise ActivationError(f"CCM activation failed: {exc}") from exc
        LOGGER.info("Status: Device activated in Client Control Mode")

    def configure_wireless(self) -> None:
        """Push every configured wireless profile, then fail if any was rejected."""
        config = self.flags.config
        if not config.wifi_profiles:
            raise ConfigValidationError("No wireless profiles configured")

        self.client.set_local_profile_sync(config.wifi_sync_enabled)
        failed: list[str] = []
        for profile in config.wifi_profiles:
            eap = None
            if profile.ieee8021x_profile_name:
                eap = config.ieee8021x_profiles[profile.ieee8021x_profile_name]
            try:
                self.client.add_wifi_settings(profile, eap)
            except WsmanError as exc:
                LOGGER.error("failed to add wireless profile %s: %s", profile.profile_name, exc)
                failed.append(profile.profile_name)
                continue
            LOGGER.info("added wireless profile %s", profile.profile_name)

        if failed:
            raise WsmanError(f"Failed to configure wireless profiles: {', '.join(failed)}")
