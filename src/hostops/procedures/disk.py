"""
monitor-disk-space: alert on full filesystems.

Threshold breaches are reported as non-critical failures so the summary
shows them, and mailed to ``alert_email`` when one is configured.
"""

from __future__ import annotations

from typing import List

from hostops.notify import send_alert
from hostops.parsing import FilesystemUsage, parse_df, parse_du
from hostops.platform import OSFamily
from hostops.preconditions import Requirements
from hostops.procedures.base import Procedure
from hostops.steps import Failure, Outcome, Skipped, Step, StepContext, Success
from hostops.timeouts import SUBPROCESS_LONG_TIMEOUT_S

LARGEST_DIRECTORIES = 10
LARGEST_FILES = 10
LARGE_FILE_MIN_MB = 100


def _report_breaches(
    context: StepContext,
    rows: List[FilesystemUsage],
    what: str,
) -> Outcome:
    threshold = context.config.disk_threshold
    breaches = [row for row in rows if row.exceeds(threshold)]
    for row in rows:
        if row in breaches:
            context.warning("%s usage on %s (%s) is at %d%%", what, row.filesystem, row.mount, row.percent)
        else:
            context.info("OK: %s usage on %s (%s) is at %d%%", what, row.filesystem, row.mount, row.percent)

    if not breaches:
        return Success(f"{len(rows)} filesystem(s) below {threshold:g}% {what} usage")

    lines = [f"{row.filesystem} ({row.mount}) at {row.percent}%" for row in breaches]
    send_alert(
        context,
        f"{what.capitalize()} Space Alert",
        f"{what.capitalize()} usage has reached the {threshold:g}% threshold:\n" + "\n".join(lines),
    )
    return Failure(
        error=f"{len(breaches)} filesystem(s) at or above {threshold:g}% {what} usage",
        detail="; ".join(lines),
    )


def check_disk_usage(context: StepContext) -> Outcome:
    result = context.run("df", ["-P", "-k"]).check("Reading disk usage")
    return _report_breaches(context, parse_df(result.stdout), "disk")


def check_inode_usage(context: StepContext) -> Outcome:
    result = context.run("df", ["-P", "-i"]).check("Reading inode usage")
    rows = parse_df(result.stdout)
    if not rows:
        return Skipped("no filesystems report inode counts")
    return _report_breaches(context, rows, "inode")


def largest_directories(context: StepContext) -> Outcome:
    result = context.run(
        "du", ["-x", "-k", "--max-depth=2", "/"], timeout=SUBPROCESS_LONG_TIMEOUT_S
    )
    # du exits non-zero on unreadable entries but still reports the rest
    entries = parse_du(result.stdout, limit=LARGEST_DIRECTORIES)
    if not entries:
        result.check("Measuring directory sizes")
        return Skipped("du reported nothing")
    for size_kb, path in entries:
        context.info("  %10.1f MiB  %s", size_kb / 1024, path)
    return Success(f"top {len(entries)} directories listed")


def largest_files(context: StepContext) -> Outcome:
    result = context.run(
        "find",
        ["/", "-xdev", "-type", "f", "-size", f"+{LARGE_FILE_MIN_MB}M", "-printf", "%s\t%p\n"],
        timeout=SUBPROCESS_LONG_TIMEOUT_S,
    )
    # find exits 1 on unreadable directories but still lists the rest
    entries = parse_du(result.stdout, limit=LARGEST_FILES)
    if not entries:
        result.check("Searching for large files")
        return Success(f"no files larger than {LARGE_FILE_MIN_MB} MiB")
    for size_bytes, path in entries:
        context.info("  %10.1f MiB  %s", size_bytes / 1024 / 1024, path)
    return Success(f"top {len(entries)} files listed")


def build(context: StepContext) -> List[Step]:
    return [
        Step("check-disk-usage", check_disk_usage),
        Step("check-inode-usage", check_inode_usage),
        Step("largest-files", largest_files),
        Step("largest-directories", largest_directories),
    ]


PROCEDURE = Procedure(
    name="monitor-disk-space",
    description="Warn about filesystems above the disk threshold and list the largest files and directories",
    requirements=Requirements(binaries=["df", "du", "find"], os_families=[OSFamily.LINUX]),
    build=build,
)
