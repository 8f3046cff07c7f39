"""Tests for hostops.config."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from hostops.config import (
    DEFAULT_SERVICES,
    HostOpsConfig,
    get_config,
    load_config,
    parse_overrides,
    reset_config,
)
from hostops.errors import ConfigError


# ============================================================================
# HostOpsConfig
# ============================================================================


class TestDefaults:

    def test_defaults(self):
        config = HostOpsConfig()
        assert config.backup_dir == "/var/backups/system"
        assert config.db_backup_dir == "/var/backups/databases"
        assert config.retention_days == 7
        assert config.services == DEFAULT_SERVICES
        assert config.alert_email is None
        assert config.disk_threshold == 80.0
        assert "/etc/fstab" in config.backup_paths

    def test_state_dir_expands_home(self):
        config = HostOpsConfig()
        assert not config.state_dir.startswith("~")
        assert config.get_lock_dir() == Path(os.path.expanduser("~/.hostops/state")) / "locks"

    def test_log_path(self):
        config = HostOpsConfig(log_dir="/tmp/logs")
        assert config.get_log_path("backup-system", "20260101_000000") == Path(
            "/tmp/logs/backup-system_20260101_000000.log"
        )

    def test_frozen(self):
        config = HostOpsConfig()
        with pytest.raises(ValidationError):
            config.retention_days = 1


class TestValidation:

    def test_threshold_range(self):
        with pytest.raises(ValidationError):
            HostOpsConfig(disk_threshold=150)

    def test_negative_retention(self):
        with pytest.raises(ValidationError):
            HostOpsConfig(retention_days=-1)

    def test_services_from_csv(self):
        assert HostOpsConfig(services="sshd, nginx,,cron").services == ["sshd", "nginx", "cron"]

    def test_blank_email_is_none(self):
        assert HostOpsConfig(alert_email="  ").alert_email is None

    def test_password_is_secret(self):
        config = HostOpsConfig(mysql_password="hunter2")
        assert "hunter2" not in repr(config)
        assert config.mysql_password.get_secret_value() == "hunter2"


class TestEnvironment:

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("HOSTOPS_RETENTION_DAYS", "30")
        monkeypatch.setenv("HOSTOPS_ALERT_EMAIL", "ops@example.com")
        config = HostOpsConfig()
        assert config.retention_days == 30
        assert config.alert_email == "ops@example.com"

    def test_env_list_as_json(self, monkeypatch):
        monkeypatch.setenv("HOSTOPS_SERVICES", '["sshd", "cron"]')
        assert HostOpsConfig().services == ["sshd", "cron"]

    def test_path_env_expansion(self, monkeypatch, tmp_path):
        monkeypatch.setenv("BACKUP_ROOT", str(tmp_path))
        config = HostOpsConfig(backup_dir="$BACKUP_ROOT/system")
        assert config.backup_dir == f"{tmp_path}/system"


# ============================================================================
# Singleton
# ============================================================================


class TestSingleton:

    def test_same_instance(self):
        assert get_config() is get_config()

    def test_overrides_replace_instance(self):
        first = get_config()
        second = get_config(retention_days=14)
        assert second is not first
        assert get_config().retention_days == 14

    def test_reset(self):
        first = get_config()
        reset_config()
        assert get_config() is not first


# ============================================================================
# load_config / parse_overrides
# ============================================================================


class TestLoadConfig:

    def test_without_file(self):
        assert load_config().retention_days == 7

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "hostops.yaml"
        path.write_text("retention_days: 3\nservices:\n  - sshd\n  - cron\n")
        config = load_config(path)
        assert config.retention_days == 3
        assert config.services == ["sshd", "cron"]

    def test_overrides_win_over_file(self, tmp_path):
        path = tmp_path / "hostops.yaml"
        path.write_text("retention_days: 3\n")
        assert load_config(path, {"retention_days": "9"}).retention_days == 9

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path).retention_days == 7

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("retention_days: [unclosed\n")
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_invalid_value(self):
        with pytest.raises(ConfigError):
            load_config(overrides={"cpu_threshold": "lots"})


class TestParseOverrides:

    def test_normalizes_keys(self):
        assert parse_overrides(["retention-days=3", "ALERT_EMAIL=a@b.c"]) == {
            "retention_days": "3",
            "alert_email": "a@b.c",
        }

    def test_value_may_contain_equals(self):
        assert parse_overrides(["mysql_password=a=b"]) == {"mysql_password": "a=b"}

    def test_missing_equals(self):
        with pytest.raises(ConfigError):
            parse_overrides(["retention_days"])

    def test_empty_key(self):
        with pytest.raises(ConfigError):
            parse_overrides(["=3"])
