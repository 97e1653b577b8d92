"""
Configuration Management

Provides the discovery configuration and environment/file based loading.
"""

import ipaddress
import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .constants import (
    DEFAULT_MDNS_PORT,
    DEFAULT_MULTICAST_TTL,
    DEFAULT_QUERY_INTERVAL,
    DEFAULT_RECORD_TTL,
    DEFAULT_SERVICE_TAG,
    MDNS_MULTICAST_ADDRESS,
    MIN_QUERY_INTERVAL,
)
from .exceptions import ConfigurationError


@dataclass(frozen=True)
class DiscoveryConfig:
    """Discovery engine configuration. Immutable once built."""

    port: int = DEFAULT_MDNS_PORT
    broadcast: bool = True
    compat: bool = True
    interval: float = DEFAULT_QUERY_INTERVAL
    service_tag: str = DEFAULT_SERVICE_TAG
    multicast_address: str = MDNS_MULTICAST_ADDRESS
    interface: Optional[str] = None
    ttl: int = DEFAULT_RECORD_TTL
    multicast_ttl: int = DEFAULT_MULTICAST_TTL
    loopback: bool = True

    def validate(self) -> None:
        """
        Check every field, reporting all problems at once.

        Raises:
            ConfigurationError: Listing each invalid field.
        """
        errors: List[str] = []

        if not isinstance(self.port, int) or isinstance(self.port, bool) or not (1 <= self.port <= 65535):
            errors.append("port must be an integer between 1 and 65535")

        if not isinstance(self.broadcast, bool):
            errors.append("broadcast must be a boolean")

        if not isinstance(self.compat, bool):
            errors.append("compat must be a boolean")

        if not isinstance(self.interval, (int, float)) or isinstance(self.interval, bool) \
                or self.interval < MIN_QUERY_INTERVAL:
            errors.append(f"interval must be a number of seconds >= {MIN_QUERY_INTERVAL}")

        if not isinstance(self.service_tag, str) or not self.service_tag.strip(".").strip():
            errors.append("service_tag must be a non-empty DNS name")

        try:
            group = ipaddress.IPv4Address(self.multicast_address)
            if not group.is_multicast:
                errors.append("multicast_address must be an IPv4 multicast address")
        except (ipaddress.AddressValueError, ValueError):
            errors.append("multicast_address must be an IPv4 multicast address")

        if self.interface is not None:
            try:
                ipaddress.IPv4Address(self.interface)
            except (ipaddress.AddressValueError, ValueError):
                errors.append("interface must be an IPv4 address")

        if not isinstance(self.ttl, int) or not (0 <= self.ttl <= 2 ** 31 - 1):
            errors.append("ttl must be a non-negative 32-bit integer")

        if not isinstance(self.multicast_ttl, int) or not (1 <= self.multicast_ttl <= 255):
            errors.append("multicast_ttl must be an integer between 1 and 255")

        if not isinstance(self.loopback, bool):
            errors.append("loopback must be a boolean")

        if errors:
            raise ConfigurationError(f"Discovery configuration validation failed: {'; '.join(errors)}")

    def with_overrides(self, **changes: Any) -> "DiscoveryConfig":
        """Return a validated copy with the given fields replaced."""
        try:
            config = replace(self, **changes)
        except TypeError as e:
            raise ConfigurationError(f"Unknown discovery configuration field: {e}")
        config.validate()
        return config

    @classmethod
    def env_overrides(cls) -> Dict[str, Any]:
        """
        Fields set through ``MDNS_*`` variables.

        Only variables that are present are returned, so an explicit value
        equal to the default still overrides a configuration file.

        Raises:
            ConfigurationError: If a variable cannot be converted.
        """
        overrides: Dict[str, Any] = {}
        for name, (variable, convert) in _ENV_VARIABLES.items():
            raw = os.environ.get(variable)
            if raw is None:
                continue
            try:
                overrides[name] = convert(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid {variable} from environment: {e}")
        return overrides

    @classmethod
    def from_env(cls) -> "DiscoveryConfig":
        """Defaults overlaid with the environment."""
        return cls().with_overrides(**cls.env_overrides())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiscoveryConfig":
        """Build from a mapping; keys that are not fields are ignored."""
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}

        # YAML and JSON give whole seconds as int
        interval = values.get("interval")
        if isinstance(interval, int) and not isinstance(interval, bool):
            values["interval"] = float(interval)

        try:
            config = cls(**values)
        except TypeError as e:
            raise ConfigurationError(f"Failed to create discovery configuration from dictionary: {e}")
        config.validate()
        return config


def _parse_flag(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


_ENV_VARIABLES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "port": ("MDNS_PORT", int),
    "broadcast": ("MDNS_BROADCAST", _parse_flag),
    "compat": ("MDNS_COMPAT", _parse_flag),
    "interval": ("MDNS_INTERVAL", float),
    "service_tag": ("MDNS_SERVICE_TAG", str),
    "multicast_address": ("MDNS_MULTICAST_ADDRESS", str),
    "interface": ("MDNS_INTERFACE", lambda raw: raw or None),
    "ttl": ("MDNS_TTL", int),
    "multicast_ttl": ("MDNS_MULTICAST_TTL", int),
    "loopback": ("MDNS_LOOPBACK", _parse_flag),
}


def _parse_json(text: str, path: Path) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in configuration file {path}: {e}")


def _parse_yaml(text: str, path: Path) -> Any:
    try:
        import yaml
    except ImportError:
        raise ConfigurationError(
            "PyYAML is required for YAML configuration files. Install with: pip install mdns-discovery[yaml]"
        )
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file {path}: {e}")


_PARSERS: Dict[str, Callable[[str, Path], Any]] = {
    ".json": _parse_json,
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
}


class ConfigurationLoader:
    """Finds, reads and merges configuration files and the environment."""

    DEFAULT_CONFIG_PATHS = [
        "mdns_config.json",
        ".mdns_config.json",
        "mdns_config.yaml",
        ".mdns_config.yaml",
        "mdns_config.yml",
        ".mdns_config.yml",
    ]

    @staticmethod
    def find_config_file() -> Optional[Path]:
        """First default configuration file present in the working directory."""
        for candidate in ConfigurationLoader.DEFAULT_CONFIG_PATHS:
            path = Path(candidate)
            if path.is_file():
                return path
        return None

    @staticmethod
    def load_from_file(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
        """
        Read a JSON or YAML configuration file.

        Args:
            config_path: File to read. When None the default locations are
                searched and an empty mapping is returned if none exists.

        Raises:
            ConfigurationError: If the file is missing, unreadable, malformed
                or not a mapping.
        """
        path = Path(config_path) if config_path is not None else ConfigurationLoader.find_config_file()
        if path is None:
            return {}

        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        parse = _PARSERS.get(path.suffix.lower())
        if parse is None:
            raise ConfigurationError(f"Unsupported configuration file format: {path.suffix}")

        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Failed to load configuration from {path}: {e}")

        data = parse(text, path)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")
        return data

    @staticmethod
    def load_discovery_config(
        config_path: Optional[Union[str, Path]] = None,
        use_env: bool = True
    ) -> DiscoveryConfig:
        """
        Defaults, then the file's ``discovery`` section, then ``MDNS_*``.

        Raises:
            ConfigurationError: If any layer is invalid.
        """
        section = ConfigurationLoader.load_from_file(config_path).get("discovery") or {}
        if not isinstance(section, dict):
            raise ConfigurationError("The discovery configuration section must be a mapping")

        config = DiscoveryConfig.from_dict(section)
        if use_env:
            config = config.with_overrides(**DiscoveryConfig.env_overrides())
        return config
