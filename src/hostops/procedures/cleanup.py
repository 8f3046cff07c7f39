"""cleanup-system: reclaim disk space from caches, old logs, old kernels and temp files."""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Tuple

from hostops.parsing import parse_old_kernels
from hostops.platform import OSFamily, PackageManager
from hostops.preconditions import Requirements
from hostops.procedures.base import Procedure
from hostops.steps import Failure, Outcome, Skipped, Step, StepContext, Success
from hostops.timeouts import PACKAGE_MANAGER_TIMEOUT_S, SUBPROCESS_LONG_TIMEOUT_S

PACKAGE_CACHE_COMMANDS = {
    PackageManager.APT: [
        ("apt-get", ["autoremove", "-y"]),
        ("apt-get", ["autoclean"]),
        ("apt-get", ["clean"]),
    ],
    PackageManager.DNF: [
        ("dnf", ["autoremove", "-y"]),
        ("dnf", ["clean", "all"]),
    ],
    PackageManager.YUM: [
        ("yum", ["autoremove", "-y"]),
        ("yum", ["clean", "all"]),
    ],
    PackageManager.ZYPPER: [
        ("zypper", ["--non-interactive", "clean", "--all"]),
    ],
    PackageManager.PACMAN: [
        ("pacman", ["-Sc", "--noconfirm"]),
    ],
}

# (directory, find time test, age in days)
TEMP_LOCATIONS: Sequence[Tuple[str, str, int]] = (
    ("/tmp", "-atime", 7),
    ("/var/tmp", "-atime", 30),
)

LOG_AGE_DAYS = 30

HOME_ROOT = Path("/home")
ROOT_HOME = Path("/root")

OPTIONAL_TOOLS = ["logrotate", "journalctl", "dpkg-query", "deborphan"]


def disk_usage(context: StepContext) -> Outcome:
    result = context.run("df", ["-h", "/"]).check("Reading disk usage")
    lines = result.lines()
    return Success(lines[-1] if lines else "no output")


def clean_package_cache(context: StepContext) -> Outcome:
    manager = context.platform.package_manager
    commands = PACKAGE_CACHE_COMMANDS.get(manager)
    if not commands:
        return Skipped("no supported package manager found")
    for program, args in commands:
        context.run(program, args, timeout=PACKAGE_MANAGER_TIMEOUT_S).check(
            f"Cleaning {manager.value} cache"
        )
    return Success(f"{manager.value} cache cleaned")


def rotate_logs(context: StepContext) -> Outcome:
    if not context.platform.has("logrotate"):
        return Skipped("logrotate not installed")
    result = context.run("logrotate", ["-f", "/etc/logrotate.conf"],
                         timeout=SUBPROCESS_LONG_TIMEOUT_S)
    if not result.ok:
        return Failure(error="logrotate reported errors", detail=result.stderr.strip())
    return Success("logs rotated")


def clean_old_logs(context: StepContext) -> Outcome:
    result = context.run(
        "find",
        ["/var/log", "-type", "f",
         "(", "-name", "*.gz", "-o", "-name", "*.old", "-o", "-name", "*.1", ")",
         "-mtime", f"+{LOG_AGE_DAYS}", "-print", "-delete"],
        timeout=SUBPROCESS_LONG_TIMEOUT_S,
    ).check("Removing old log files")
    return Success(f"removed {len(result.lines())} rotated log file(s)")


def clean_temp_files(context: StepContext) -> Outcome:
    removed = 0
    for directory, test, days in TEMP_LOCATIONS:
        result = context.run(
            "find",
            [directory, "-xdev", "-type", "f", test, f"+{days}", "-print", "-delete"],
            timeout=SUBPROCESS_LONG_TIMEOUT_S,
        )
        # find exits 1 when some entries vanish or are unreadable; keep going
        removed += len(result.lines())
    return Success(f"removed {removed} temporary file(s)")


def clean_journal(context: StepContext) -> Outcome:
    if not context.platform.has("journalctl"):
        return Skipped("journalctl not available")
    context.run("journalctl", ["--vacuum-time=7d"]).check("Vacuuming journal by age")
    context.run("journalctl", ["--vacuum-size=100M"]).check("Vacuuming journal by size")
    return Success("journal vacuumed")


def clean_old_kernels(context: StepContext) -> Outcome:
    if context.platform.package_manager != PackageManager.APT or not context.platform.has("dpkg-query"):
        return Skipped("kernel cleanup needs dpkg")
    running = context.run("uname", ["-r"]).check("Reading running kernel").stdout
    listing = context.run(
        "dpkg-query", ["-W", "-f", "${Package} ${Status}\n", "linux-image-[0-9]*"]
    )
    # dpkg-query exits 1 when the pattern matches nothing
    old = parse_old_kernels(listing.stdout, running)
    if not old:
        return Success("no old kernels to remove")
    context.run("apt-get", ["purge", "-y", *old], timeout=PACKAGE_MANAGER_TIMEOUT_S).check(
        "Purging old kernels"
    )
    return Success(f"removed {len(old)} old kernel package(s)")


def clean_orphaned_packages(context: StepContext) -> Outcome:
    if context.platform.package_manager != PackageManager.APT:
        return Skipped("orphan detection needs apt")
    if not context.platform.has("deborphan"):
        return Skipped("deborphan not installed")
    orphans = context.run("deborphan").check("Listing orphaned packages").lines()
    if not orphans:
        return Success("no orphaned packages found")
    context.run("apt-get", ["purge", "-y", *orphans], timeout=PACKAGE_MANAGER_TIMEOUT_S).check(
        "Purging orphaned packages"
    )
    return Success(f"removed {len(orphans)} orphaned package(s)")


def clean_thumbnails(context: StepContext) -> Outcome:
    candidates = [*sorted(HOME_ROOT.glob("*/.cache/thumbnails")), ROOT_HOME / ".cache" / "thumbnails"]
    caches = [str(path) for path in candidates if path.is_dir()]
    if not caches:
        return Skipped("no thumbnail caches found")
    result = context.run(
        "find", [*caches, "-type", "f", "-print", "-delete"], timeout=SUBPROCESS_LONG_TIMEOUT_S
    )
    return Success(f"removed {len(result.lines())} thumbnail(s) from {len(caches)} cache(s)")


def build(context: StepContext) -> List[Step]:
    return [
        Step("disk-usage-before", disk_usage),
        Step("clean-package-cache", clean_package_cache),
        Step("rotate-logs", rotate_logs),
        Step("clean-old-logs", clean_old_logs),
        Step("clean-temp-files", clean_temp_files),
        Step("clean-old-kernels", clean_old_kernels),
        Step("clean-journal", clean_journal),
        Step("clean-thumbnails", clean_thumbnails),
        Step("clean-orphaned-packages", clean_orphaned_packages),
        Step("disk-usage-after", disk_usage),
    ]


PROCEDURE = Procedure(
    name="cleanup-system",
    description="Clean package caches, old logs and kernels, temporary files and the journal",
    requirements=Requirements(
        privileged=True,
        binaries=["find", "df"],
        optional_binaries=OPTIONAL_TOOLS,
        os_families=[OSFamily.LINUX],
    ),
    build=build,
)
