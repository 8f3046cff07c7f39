"""
Parsers for the text output of common host tools.

All functions are pure: they take captured stdout and return typed
records, so procedures stay free of string slicing and the parsing can
be tested without a host.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

__all__ = [
    "FilesystemUsage",
    "MemoryUsage",
    "ZombieProcess",
    "parse_df",
    "parse_free",
    "parse_loadavg",
    "parse_top_cpu",
    "parse_failed_units",
    "parse_unit_files",
    "parse_zombies",
    "parse_os_release",
    "parse_du",
    "parse_old_kernels",
]

# Pseudo filesystems left out of usage reports.
_IGNORED_FS = re.compile(r"tmpfs|cdrom")

_TOP_IDLE = re.compile(r"([\d.]+)\s*%?\s*id\b")

_VERSIONED_KERNEL = re.compile(r"^linux-image-\d")


@dataclass(frozen=True)
class FilesystemUsage:
    """One row of ``df -P`` (blocks) or ``df -P -i`` (inodes)."""
    filesystem: str
    total: int
    used: int
    available: int
    percent: int
    mount: str

    def exceeds(self, threshold: float) -> bool:
        return self.percent >= threshold


@dataclass(frozen=True)
class MemoryUsage:
    total: int
    used: int
    available: int

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.used / self.total * 100.0


@dataclass(frozen=True)
class ZombieProcess:
    pid: int
    command: str


def parse_df(output: str, include_pseudo: bool = False) -> List[FilesystemUsage]:
    """
    Parse POSIX ``df -P`` output (works for ``-k`` and ``-i``).

    Rows whose use column is ``-`` (no inode accounting) are dropped, as
    are tmpfs/cdrom rows unless ``include_pseudo`` is set.
    """
    rows: List[FilesystemUsage] = []
    for line in output.splitlines()[1:]:
        if not line.strip():
            continue
        parts = line.split(None, 5)
        if len(parts) < 6:
            continue
        filesystem, total, used, available, percent, mount = parts
        if not include_pseudo and _IGNORED_FS.search(filesystem):
            continue
        if not percent.endswith("%"):
            continue
        try:
            rows.append(
                FilesystemUsage(
                    filesystem=filesystem,
                    total=int(total),
                    used=int(used),
                    available=int(available),
                    percent=int(percent.rstrip("%")),
                    mount=mount,
                )
            )
        except ValueError:
            continue
    return rows


def parse_free(output: str) -> Optional[MemoryUsage]:
    """Parse the ``Mem:`` row of ``free -b``."""
    for line in output.splitlines():
        if not line.startswith("Mem:"):
            continue
        fields = line.split()[1:]
        try:
            total, used = int(fields[0]), int(fields[1])
            available = int(fields[5]) if len(fields) > 5 else total - used
        except (IndexError, ValueError):
            return None
        return MemoryUsage(total=total, used=used, available=available)
    return None


def parse_loadavg(text: str) -> Optional[Tuple[float, float, float]]:
    """Parse ``/proc/loadavg`` into the 1/5/15 minute averages."""
    parts = text.split()
    if len(parts) < 3:
        return None
    try:
        return float(parts[0]), float(parts[1]), float(parts[2])
    except ValueError:
        return None


def parse_top_cpu(output: str) -> Optional[float]:
    """Busy CPU percentage from the ``Cpu(s)`` line of ``top -bn1``."""
    for line in output.splitlines():
        if "Cpu(s)" not in line and not line.lstrip().startswith("%Cpu"):
            continue
        match = _TOP_IDLE.search(line.replace(",", " "))
        if match:
            return round(100.0 - float(match.group(1)), 1)
    return None


def parse_failed_units(output: str) -> List[str]:
    """Unit names from ``systemctl list-units --state=failed --plain --no-legend``."""
    units = []
    for line in output.splitlines():
        parts = line.replace("●", " ").split()
        if parts:
            units.append(parts[0])
    return units


def parse_unit_files(output: str) -> Set[str]:
    """Service names (without ``.service``) from ``systemctl list-unit-files``."""
    names = set()
    for line in output.splitlines():
        parts = line.split()
        if parts and parts[0].endswith(".service"):
            names.add(parts[0][: -len(".service")])
    return names


def parse_zombies(output: str) -> List[ZombieProcess]:
    """Zombie rows from ``ps -eo pid=,stat=,comm=``."""
    zombies = []
    for line in output.splitlines():
        parts = line.split(None, 2)
        if len(parts) < 2 or not parts[1].startswith("Z"):
            continue
        try:
            pid = int(parts[0])
        except ValueError:
            continue
        zombies.append(ZombieProcess(pid=pid, command=parts[2] if len(parts) > 2 else "?"))
    return zombies


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse ``/etc/os-release`` KEY=value lines, unquoting values."""
    values: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key] = value.strip().strip('"').strip("'")
    return values


def parse_du(output: str, limit: int = 10) -> List[Tuple[int, str]]:
    """Largest ``<size> <path>`` rows (``du -k``, ``find -printf``), biggest first."""
    entries = []
    for line in output.splitlines():
        parts = line.split(None, 1)
        if len(parts) != 2:
            continue
        try:
            entries.append((int(parts[0]), parts[1]))
        except ValueError:
            continue
    entries.sort(key=lambda e: e[0], reverse=True)
    return entries[:limit]


def parse_old_kernels(output: str, running: str) -> List[str]:
    """
    Installed versioned kernel packages other than the running one.

    Reads ``dpkg-query -W -f '${Package} ${Status}\\n'`` output. Meta
    packages such as ``linux-image-amd64`` are never returned, and
    nothing is returned when the running release is unknown.
    """
    running = running.strip()
    if not running:
        return []
    kernels = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2 or not _VERSIONED_KERNEL.match(parts[0]):
            continue
        if parts[-1] != "installed" or running in parts[0]:
            continue
        kernels.append(parts[0])
    return kernels
