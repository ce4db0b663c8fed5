"""
API server configuration for ProxiCloud.

This module defines the configuration dataclass for the API server and the
loader that fills it from a YAML file and environment variables.

Precedence (highest first):
    environment variables > YAML file > dataclass defaults

YAML layout:
    server:   {bind_ip, port}
    proxmox:  {host, node, token_id, token_secret, insecure, timeout_seconds}
    projects: {file}
    sdn:      {zone_type, dhcp_enabled}
    logging:  {level, file}

Usage:
    from proxicloud.server.config import config, load_config

    load_config("/etc/proxicloud/config.yaml")
    config.PORT = 9000
"""

import os
from dataclasses import dataclass

import yaml

from proxicloud.models.enums import LogLevel


class ConfigError(Exception):
    """Invalid or unreadable configuration."""

    pass


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class ServerConfig:
    """
    API server configuration.

    Attributes:
        BIND_IP: IP address to bind the server to.
        PORT: HTTP API port.
        PROXMOX_HOST: Proxmox host name, IP or full URL.
        PROXMOX_NODE: Node whose containers are listed.
        PROJECTS_FILE: Path of the JSON project state file.
        SDN_ZONE_TYPE: Type of the zones created for projects.
        LOG_LEVEL: Logging verbosity level.
    """

    # -------------------------------------------------------------------------
    # Network Configuration
    # -------------------------------------------------------------------------

    BIND_IP: str = "0.0.0.0"
    PORT: int = 8080

    # -------------------------------------------------------------------------
    # Proxmox Connection
    # -------------------------------------------------------------------------

    PROXMOX_HOST: str = ""
    PROXMOX_NODE: str = ""
    PROXMOX_TOKEN_ID: str = ""
    PROXMOX_TOKEN_SECRET: str = ""
    # Skip TLS verification (self-signed Proxmox certificates)
    PROXMOX_INSECURE: bool = False
    PROXMOX_TIMEOUT_SECONDS: int = 60

    # -------------------------------------------------------------------------
    # Path Configuration
    # -------------------------------------------------------------------------

    PROJECTS_FILE: str = "/var/lib/proxicloud/projects.json"

    # -------------------------------------------------------------------------
    # SDN Configuration
    # -------------------------------------------------------------------------

    SDN_ZONE_TYPE: str = "simple"
    # dnsmasq DHCP + PVE IPAM on created zones, SNAT + DHCP range on subnets
    SDN_DHCP_ENABLED: bool = True

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------

    LOG_LEVEL: LogLevel = LogLevel.INFO
    LOG_FILE: str = ""

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def validate(self) -> None:
        """
        Check that the server can start with this configuration.

        Raises:
            ConfigError: Port out of range or Proxmox connection incomplete.
        """
        if not 1 <= self.PORT <= 65535:
            raise ConfigError(f"invalid port: {self.PORT}")

        missing = [
            name
            for name in (
                "PROXMOX_HOST",
                "PROXMOX_NODE",
                "PROXMOX_TOKEN_ID",
                "PROXMOX_TOKEN_SECRET",
            )
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigError(f"missing required settings: {', '.join(missing)}")

    def get_bind_address(self) -> str:
        """Get "ip:port" for log messages."""
        return f"{self.BIND_IP}:{self.PORT}"


# =============================================================================
# Loading
# =============================================================================

_TRUE_VALUES = {"true", "yes", "on", "1"}
_FALSE_VALUES = {"false", "no", "off", "0"}


def _parse_bool(value) -> bool:
    """Parse a YAML/env boolean; quoted strings like "false" are honored."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    raise ValueError(f"not a boolean: {value!r}")


# (section, key) -> (attribute, converter)
_YAML_FIELDS = {
    ("server", "bind_ip"): ("BIND_IP", str),
    ("server", "port"): ("PORT", int),
    ("proxmox", "host"): ("PROXMOX_HOST", str),
    ("proxmox", "node"): ("PROXMOX_NODE", str),
    ("proxmox", "token_id"): ("PROXMOX_TOKEN_ID", str),
    ("proxmox", "token_secret"): ("PROXMOX_TOKEN_SECRET", str),
    ("proxmox", "insecure"): ("PROXMOX_INSECURE", _parse_bool),
    ("proxmox", "timeout_seconds"): ("PROXMOX_TIMEOUT_SECONDS", int),
    ("projects", "file"): ("PROJECTS_FILE", str),
    ("sdn", "zone_type"): ("SDN_ZONE_TYPE", str),
    ("sdn", "dhcp_enabled"): ("SDN_DHCP_ENABLED", _parse_bool),
    ("logging", "level"): ("LOG_LEVEL", LogLevel),
    ("logging", "file"): ("LOG_FILE", str),
}

_ENV_FIELDS = {
    "PORT": ("PORT", int),
    "HOST": ("BIND_IP", str),
    "PROXMOX_HOST": ("PROXMOX_HOST", str),
    "PROXMOX_NODE": ("PROXMOX_NODE", str),
    "PROXMOX_TOKEN_ID": ("PROXMOX_TOKEN_ID", str),
    "PROXMOX_TOKEN_SECRET": ("PROXMOX_TOKEN_SECRET", str),
    "PROXICLOUD_PROJECTS_FILE": ("PROJECTS_FILE", str),
}


def _apply(target: ServerConfig, attr: str, converter, value, source: str) -> None:
    try:
        setattr(target, attr, converter(value))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {source}: {value!r}") from e


def load_config(path: str | None = None, target: ServerConfig | None = None) -> ServerConfig:
    """
    Load configuration from a YAML file and the environment.

    Args:
        path: YAML file, or None to use only defaults + environment.
        target: Config instance to update (defaults to the global one).

    Returns:
        The updated config instance.

    Raises:
        ConfigError: Unreadable file, malformed YAML or invalid values.
    """
    target = target if target is not None else config

    if path:
        try:
            with open(path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"failed to read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse config file {path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(f"config file {path} must contain a mapping")

        for (section, key), (attr, converter) in _YAML_FIELDS.items():
            values = raw.get(section) or {}
            if key in values:
                _apply(target, attr, converter, values[key], f"{section}.{key}")

    for env_name, (attr, converter) in _ENV_FIELDS.items():
        value = os.environ.get(env_name)
        if value:
            _apply(target, attr, converter, value, env_name)

    return target


# =============================================================================
# Global Instance
# =============================================================================

# Global config instance - modify before server startup
config = ServerConfig()
