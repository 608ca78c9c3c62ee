"""Loading and validation of the YAML local configuration file."""

from __future__ import annotations

import json
import logging
import os
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from rpcagent.core.errors import ConfigLoadError, ConfigValidationError
from rpcagent.core.model import Ieee8021xProfile, LocalConfig, WifiProfile

PSK_METHODS = frozenset({4, 6})
IEEE8021X_METHODS = frozenset({5, 7})
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


def _load_schema_validator() -> Any:
    schema_text = resources.files("rpcagent.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "rpcagent/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _build_ieee8021x(doc: dict[str, Any], source: Path) -> dict[str, Ieee8021xProfile]:
    profiles: dict[str, Ieee8021xProfile] = {}
    for entry in doc.get("ieee8021xConfigs", []):
        name = entry["profileName"]
        if name in profiles:
            raise ConfigValidationError(f"Duplicate 802.1x profile '{name}' in {source}")
        profiles[name] = Ieee8021xProfile(
            profile_name=name,
            username=entry["username"],
            password=entry["password"],
            authentication_protocol=int(entry["authenticationProtocol"]),
            domain=entry.get("domain"),
            roaming_identity=entry.get("roamingIdentity"),
        )
    return profiles


def _build_wifi(doc: dict[str, Any], ieee8021x: dict[str, Ieee8021xProfile], source: Path) -> tuple[WifiProfile, ...]:
    profiles: list[WifiProfile] = []
    seen: set[str] = set()
    for entry in doc.get("wifiConfigs", []):
        name = entry["profileName"]
        if name in seen:
            raise ConfigValidationError(f"Duplicate wireless profile '{name}' in {source}")
        seen.add(name)

        method = int(entry["authenticationMethod"])
        passphrase = entry.get("pskPassphrase")
        eap_name = entry.get("ieee8021xProfileName")
        if method in PSK_METHODS and not passphrase:
            raise ConfigValidationError(f"Wireless profile '{name}' uses a PSK method but has no pskPassphrase")
        if method in IEEE8021X_METHODS:
            if not eap_name:
                raise ConfigValidationError(
                    f"Wireless profile '{name}' uses 802.1x but has no ieee8021xProfileName"
                )
            if eap_name not in ieee8021x:
                raise ConfigValidationError(
                    f"Wireless profile '{name}' references unknown 802.1x profile '{eap_name}'"
                )
        elif eap_name:
            LOGGER.warning("Wireless profile '%s' ignores 802.1x profile '%s' for a PSK method", name, eap_name)
            eap_name = None

        profiles.append(
            WifiProfile(
                profile_name=name,
                ssid=entry["ssid"],
                priority=int(entry["priority"]),
                authentication_method=method,
                encryption_method=int(entry["encryptionMethod"]),
                psk_passphrase=passphrase,
                ieee8021x_profile_name=eap_name,
            )
        )
    return tuple(profiles)


def build_local_config(doc: dict[str, Any], source: Path) -> LocalConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    ieee8021x = _build_ieee8021x(doc, source)
    return LocalConfig(
        password=doc.get("password"),
        wifi_sync_enabled=bool(doc.get("wifiSyncEnabled", True)),
        wifi_profiles=_build_wifi(doc, ieee8021x, source),
        ieee8021x_profiles=ieee8021x,
    )


def load_local_config(path: Path | None = None) -> LocalConfig:
    """Load the configuration at path, or the default location when it exists."""
    if path is None:
        path = default_config_path()
        if not path.is_file():
            return LocalConfig()
        LOGGER.debug("using default config %s", path)
    return build_local_config(_read_yaml(path), path)
