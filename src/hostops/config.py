"""
Centralized configuration for hostops.

Uses Pydantic BaseSettings for environment variable integration
and validation. All values a procedure may consult are defined here,
and the object is frozen: a run reads it, never changes it.

Configuration sources (in order of precedence):
1. Explicit constructor arguments (``--set KEY=VALUE``)
2. YAML config file (``--config hostops.yaml``)
3. Environment variables (HOSTOPS_*)
4. .env file
5. Default values

Example:
    from hostops.config import get_config

    config = get_config()
    print(config.backup_dir)  # From HOSTOPS_BACKUP_DIR or default

    # Override at runtime
    config = get_config(retention_days=14)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hostops.errors import ConfigError
from hostops.timeouts import SUBPROCESS_DEFAULT_TIMEOUT_S

__all__ = [
    "HostOpsConfig",
    "get_config",
    "reset_config",
    "load_config",
    "parse_overrides",
]

DEFAULT_SERVICES = ["sshd", "nginx", "apache2", "mysql", "postgresql", "docker"]

DEFAULT_DISABLED_SERVICES = [
    "telnet",
    "rsh",
    "rlogin",
    "vsftpd",
    "cups",
    "avahi-daemon",
    "bluetooth",
]

DEFAULT_BACKUP_PATHS = [
    "/etc/fstab",
    "/etc/hosts",
    "/etc/hostname",
    "/etc/resolv.conf",
    "/etc/network",
    "/etc/sysconfig",
    "/etc/ssh/sshd_config",
    "/etc/sudoers",
    "/etc/passwd",
    "/etc/group",
    "/etc/shadow",
    "/etc/gshadow",
]


class HostOpsConfig(BaseSettings):
    """
    Central configuration for hostops.

    All settings can be overridden via environment variables
    prefixed with HOSTOPS_. List values are read from the
    environment as JSON.

    Example:
        export HOSTOPS_BACKUP_DIR=/srv/backups
        export HOSTOPS_SERVICES='["sshd", "nginx"]'
    """

    model_config = SettingsConfigDict(
        env_prefix="HOSTOPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Run logging
    log_dir: str = Field(
        default="/var/log/hostops",
        description="Directory receiving one log file per run",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Level for library diagnostics (run logs always record INFO and up)",
    )

    # State (resource locks)
    state_dir: str = Field(
        default="~/.hostops/state",
        description="Directory for lock files",
    )

    # Command execution
    command_timeout_s: int = Field(
        default=SUBPROCESS_DEFAULT_TIMEOUT_S,
        ge=1,
        description="Default timeout for short external commands",
    )

    # Backups
    backup_dir: str = Field(
        default="/var/backups/system",
        description="Destination for system backups",
    )
    db_backup_dir: str = Field(
        default="/var/backups/databases",
        description="Destination for database dumps",
    )
    retention_days: int = Field(
        default=7,
        ge=0,
        description="Backups older than this many days are pruned",
    )
    backup_paths: List[str] = Field(
        default_factory=lambda: list(DEFAULT_BACKUP_PATHS),
        description="Configuration files and directories archived by backup-system",
    )

    # Alerts
    alert_email: Optional[str] = Field(
        default=None,
        description="Recipient for alert mail (disabled when unset)",
    )
    mail_command: str = Field(
        default="mail",
        description="Mail user agent invoked as `<cmd> -s <subject> <recipient>`",
    )

    # Resource thresholds (percent)
    cpu_threshold: float = Field(default=80.0, ge=0, le=100)
    memory_threshold: float = Field(default=80.0, ge=0, le=100)
    disk_threshold: float = Field(default=80.0, ge=0, le=100)

    # Service monitoring
    services: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SERVICES),
        description="systemd units checked by monitor-services",
    )

    # Database credentials
    mysql_user: str = Field(default="root")
    mysql_password: Optional[SecretStr] = Field(default=None)
    postgres_user: str = Field(default="postgres")
    mongo_user: Optional[str] = Field(default=None)
    mongo_password: Optional[SecretStr] = Field(default=None)
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_password: Optional[SecretStr] = Field(default=None)

    # Hardening
    ssh_port: int = Field(
        default=22,
        ge=1,
        le=65535,
        description="Port written to sshd_config and opened in the firewall",
    )
    disable_services: List[str] = Field(
        default_factory=lambda: list(DEFAULT_DISABLED_SERVICES),
        description="Units stopped and disabled by harden-host when active",
    )

    @field_validator("log_dir", "state_dir", "backup_dir", "db_backup_dir")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand ~ and environment variables in paths."""
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("services", "backup_paths", "disable_services", mode="before")
    @classmethod
    def split_csv(cls, v: Any) -> Any:
        """Accept ``a,b,c`` strings from --set as well as lists."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("alert_email")
    @classmethod
    def blank_email_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    def get_lock_dir(self) -> Path:
        """Get the directory holding named-resource lock files."""
        return Path(self.state_dir) / "locks"

    def get_log_path(self, procedure: str, timestamp: str) -> Path:
        """Get the log file path for one run."""
        return Path(self.log_dir) / f"{procedure}_{timestamp}.log"


# Global singleton
_config: Optional[HostOpsConfig] = None


def get_config(**overrides) -> HostOpsConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.

    Args:
        **overrides: Override any config values

    Returns:
        HostOpsConfig instance
    """
    global _config

    if overrides or _config is None:
        _config = HostOpsConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> HostOpsConfig:
    """
    Build a configuration from an optional YAML file plus overrides.

    Args:
        path: YAML file whose root is a mapping of setting names
        overrides: Values that win over the file (e.g. from --set)

    Returns:
        A fresh, frozen HostOpsConfig

    Raises:
        ConfigError: If the file is missing, not a mapping, or invalid
    """
    data: Dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise ConfigError(f"config file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(
                f"config file {path} must contain a mapping, got {type(raw).__name__}"
            )
        data.update(raw)

    data.update(overrides or {})
    try:
        return HostOpsConfig(**data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def parse_overrides(pairs: List[str]) -> Dict[str, str]:
    """
    Parse ``KEY=VALUE`` strings into a dict.

    Keys are normalized to setting names (``retention-days`` and
    ``RETENTION_DAYS`` both become ``retention_days``).

    Raises:
        ConfigError: If an item has no ``=``
    """
    result: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"expected KEY=VALUE, got {pair!r}")
        result[key.strip().lower().replace("-", "_")] = value
    return result
