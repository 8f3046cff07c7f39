"""
backup-system: compressed archives of critical system state.

Steps:
1. create-backup-dir (critical)
2. backup-configs        tar of configured files under /etc
3. backup-package-list   dpkg/rpm/pacman selection list
4. backup-cron           tar of system crontabs and spool
5. backup-home           tar of /home
6. prune-old-backups     drop archives older than retention_days
7. list-backup-files
"""

from __future__ import annotations

from pathlib import Path
from typing import List

from hostops.platform import OSFamily, PackageManager
from hostops.preconditions import Requirements
from hostops.procedures.base import Procedure, ensure_directory, existing_relative, prune_older_than
from hostops.steps import Outcome, Skipped, Step, StepContext, Success
from hostops.timeouts import SUBPROCESS_LONG_TIMEOUT_S

CRON_PATHS = [
    "/etc/crontab",
    "/etc/cron.d",
    "/etc/cron.daily",
    "/etc/cron.hourly",
    "/etc/cron.weekly",
    "/etc/cron.monthly",
    "/var/spool/cron",
]

PACKAGE_LIST_COMMANDS = {
    PackageManager.APT: ("dpkg", ["--get-selections"]),
    PackageManager.DNF: ("rpm", ["-qa"]),
    PackageManager.YUM: ("rpm", ["-qa"]),
    PackageManager.ZYPPER: ("rpm", ["-qa"]),
    PackageManager.PACMAN: ("pacman", ["-Q"]),
}


def _backup_dir(context: StepContext) -> Path:
    return Path(context.config.backup_dir)


def _archive(context: StepContext, name: str, members: List[str], root: str = "/") -> Outcome:
    target = _backup_dir(context) / f"{name}_{context.timestamp}.tar.gz"
    context.run(
        "tar", ["-czf", str(target), "-C", root, *members],
        timeout=SUBPROCESS_LONG_TIMEOUT_S,
    ).check(f"Archiving {name}")
    return Success(f"{target} ({len(members)} item(s))")


def create_backup_dir(context: StepContext) -> Outcome:
    return ensure_directory(context, _backup_dir(context))


def backup_configs(context: StepContext) -> Outcome:
    members = existing_relative(context.config.backup_paths)
    if not members:
        return Skipped("none of the configured paths exist")
    return _archive(context, "configs", members)


def backup_package_list(context: StepContext) -> Outcome:
    command = PACKAGE_LIST_COMMANDS.get(context.platform.package_manager)
    if command is None:
        return Skipped("no supported package manager detected")
    program, args = command
    result = context.run(program, args).check("Listing installed packages")
    target = _backup_dir(context) / f"packages_{context.timestamp}.txt"
    context.write_text(target, result.stdout)
    return Success(f"{target} ({len(result.lines())} package(s))")


def backup_cron(context: StepContext) -> Outcome:
    members = existing_relative(CRON_PATHS)
    if not members:
        return Skipped("no cron configuration found")
    return _archive(context, "cron", members)


def backup_home(context: StepContext) -> Outcome:
    if not Path("/home").is_dir():
        return Skipped("/home does not exist")
    return _archive(context, "home", ["."], root="/home")


def prune_old_backups(context: StepContext) -> Outcome:
    return prune_older_than(
        context,
        _backup_dir(context),
        ["*.tar.gz", "*.txt"],
        context.config.retention_days,
    )


def list_backup_files(context: StepContext) -> Outcome:
    directory = _backup_dir(context)
    files = sorted(p for p in directory.glob(f"*{context.timestamp}*") if p.is_file())
    for path in files:
        context.info("  %s (%d bytes)", path.name, path.stat().st_size)
    return Success(f"{len(files)} file(s) in {directory}")


def build(context: StepContext) -> List[Step]:
    return [
        Step("create-backup-dir", create_backup_dir, critical=True,
             description="Create the backup directory with mode 0700"),
        Step("backup-configs", backup_configs),
        Step("backup-package-list", backup_package_list),
        Step("backup-cron", backup_cron),
        Step("backup-home", backup_home),
        Step("prune-old-backups", prune_old_backups),
        Step("list-backup-files", list_backup_files),
    ]


PROCEDURE = Procedure(
    name="backup-system",
    description="Archive system configuration, package list, cron jobs and home directories",
    requirements=Requirements(
        privileged=True,
        binaries=["tar", "find", "install"],
        os_families=[OSFamily.LINUX],
    ),
    build=build,
    lock="system-backup",
)
