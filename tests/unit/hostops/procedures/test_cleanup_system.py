"""Tests for the cleanup-system procedure."""

from __future__ import annotations

from dataclasses import replace

import pytest

from hostops.errors import StepFailure
from hostops.platform import PackageManager
from hostops.procedures import cleanup
from hostops.steps import Failure, Skipped, Success


def test_step_order(context):
    names = [s.name for s in cleanup.build(context)]
    assert names[0] == "disk-usage-before"
    assert names[-1] == "disk-usage-after"
    assert len(names) == len(set(names)) == 10
    assert not any(s.critical for s in cleanup.build(context))


def test_disk_usage_reports_last_line(context, fake_executor):
    fake_executor.on("df", stdout="Filesystem Size Used Avail Use% Mounted on\n/dev/sda1 40G 30G 10G 75% /\n")
    assert cleanup.disk_usage(context) == Success("/dev/sda1 40G 30G 10G 75% /")


class TestPackageCache:

    def test_apt(self, context, fake_executor):
        outcome = cleanup.clean_package_cache(context)
        assert fake_executor.commands() == [
            "apt-get autoremove -y",
            "apt-get autoclean",
            "apt-get clean",
        ]
        assert outcome == Success("apt cache cleaned")

    def test_pacman(self, make_context, fake_executor, linux_platform):
        context = make_context(platform=replace(linux_platform, package_manager=PackageManager.PACMAN))
        cleanup.clean_package_cache(context)
        assert fake_executor.commands() == ["pacman -Sc --noconfirm"]

    def test_no_package_manager(self, make_context, linux_platform):
        context = make_context(platform=replace(linux_platform, package_manager=PackageManager.NONE))
        assert isinstance(cleanup.clean_package_cache(context), Skipped)

    def test_command_failure_raises(self, context, fake_executor):
        fake_executor.on("apt-get", "autoclean", exit_code=100, stderr="lock held")
        with pytest.raises(StepFailure):
            cleanup.clean_package_cache(context)


class TestLogs:

    def test_logrotate_failure_is_nonfatal_failure(self, context, fake_executor):
        fake_executor.on("logrotate", exit_code=1, stderr="error: bad config")
        outcome = cleanup.rotate_logs(context)
        assert outcome == Failure(error="logrotate reported errors", detail="error: bad config")

    def test_logrotate_missing(self, bare_context, fake_executor):
        assert isinstance(cleanup.rotate_logs(bare_context), Skipped)
        assert fake_executor.calls == []

    def test_old_logs_counted(self, context, fake_executor):
        fake_executor.on("find", "/var/log", stdout="/var/log/syslog.2.gz\n/var/log/auth.log.1\n")
        assert cleanup.clean_old_logs(context) == Success("removed 2 rotated log file(s)")
        (call,) = fake_executor.calls
        assert "+30" in call.argv


class TestTempAndJournal:

    def test_temp_find_errors_do_not_fail(self, context, fake_executor):
        fake_executor.on("find", "/tmp", exit_code=1, stdout="/tmp/a\n")
        fake_executor.on("find", "/var/tmp", stdout="/var/tmp/b\n/var/tmp/c\n")
        assert cleanup.clean_temp_files(context) == Success("removed 3 temporary file(s)")

    def test_temp_ages(self, context, fake_executor):
        cleanup.clean_temp_files(context)
        first, second = fake_executor.calls
        assert first.argv[:2] == ("find", "/tmp") and "+7" in first.argv
        assert second.argv[:2] == ("find", "/var/tmp") and "+30" in second.argv

    def test_journal_vacuum(self, context, fake_executor):
        assert cleanup.clean_journal(context) == Success("journal vacuumed")
        assert fake_executor.commands() == [
            "journalctl --vacuum-time=7d",
            "journalctl --vacuum-size=100M",
        ]

    def test_journal_missing(self, bare_context):
        assert isinstance(cleanup.clean_journal(bare_context), Skipped)


DPKG_KERNELS = """\
linux-image-6.1.0-17-amd64 install ok installed
linux-image-6.1.0-18-amd64 install ok installed
linux-image-6.1.0-9-amd64 deinstall ok config-files
"""


class TestKernels:

    def test_purges_all_but_running(self, context, fake_executor):
        fake_executor.on("uname", "-r", stdout="6.1.0-18-amd64\n")
        fake_executor.on("dpkg-query", stdout=DPKG_KERNELS)
        outcome = cleanup.clean_old_kernels(context)
        assert outcome == Success("removed 1 old kernel package(s)")
        assert fake_executor.ran("apt-get", "purge", "-y", "linux-image-6.1.0-17-amd64")

    def test_nothing_to_remove(self, context, fake_executor):
        fake_executor.on("uname", "-r", stdout="6.1.0-18-amd64\n")
        fake_executor.on("dpkg-query", exit_code=1)
        assert cleanup.clean_old_kernels(context) == Success("no old kernels to remove")
        assert not fake_executor.ran("apt-get")

    def test_unknown_running_kernel_removes_nothing(self, context, fake_executor):
        fake_executor.on("dpkg-query", stdout=DPKG_KERNELS)
        assert cleanup.clean_old_kernels(context) == Success("no old kernels to remove")

    def test_skipped_off_debian(self, make_context, linux_platform):
        context = make_context(platform=replace(linux_platform, package_manager=PackageManager.DNF))
        assert isinstance(cleanup.clean_old_kernels(context), Skipped)


class TestOrphansAndThumbnails:

    def test_orphans_purged(self, context, fake_executor):
        fake_executor.on("deborphan", stdout="libfoo1\nlibbar2\n")
        assert cleanup.clean_orphaned_packages(context) == Success("removed 2 orphaned package(s)")
        assert fake_executor.ran("apt-get", "purge", "-y", "libfoo1", "libbar2")

    def test_no_orphans(self, context, fake_executor):
        assert cleanup.clean_orphaned_packages(context) == Success("no orphaned packages found")
        assert not fake_executor.ran("apt-get")

    def test_deborphan_missing(self, bare_context):
        assert cleanup.clean_orphaned_packages(bare_context) == Skipped("deborphan not installed")

    def test_thumbnail_caches_found(self, context, fake_executor, monkeypatch, tmp_path):
        cache = tmp_path / "home" / "alice" / ".cache" / "thumbnails"
        cache.mkdir(parents=True)
        monkeypatch.setattr(cleanup, "HOME_ROOT", tmp_path / "home")
        monkeypatch.setattr(cleanup, "ROOT_HOME", tmp_path / "root")
        fake_executor.on("find", stdout=f"{cache}/a.png\n")

        outcome = cleanup.clean_thumbnails(context)

        assert outcome == Success("removed 1 thumbnail(s) from 1 cache(s)")
        assert fake_executor.calls[0].argv == ("find", str(cache), "-type", "f", "-print", "-delete")

    def test_no_thumbnail_caches(self, context, monkeypatch, tmp_path):
        monkeypatch.setattr(cleanup, "HOME_ROOT", tmp_path / "home")
        monkeypatch.setattr(cleanup, "ROOT_HOME", tmp_path / "root")
        assert isinstance(cleanup.clean_thumbnails(context), Skipped)
