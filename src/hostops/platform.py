"""
Host capability detection.

Procedures branch on which package manager, service manager and firewall
the host has, and on which optional tools are installed.
``HostPlatform.detect`` resolves those once, during precondition
checking, and steps receive the fixed selection through
their context instead of probing again.
"""

from __future__ import annotations

import os
import platform as _platform
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, FrozenSet, Iterable, Optional

__all__ = [
    "OSFamily",
    "PackageManager",
    "ServiceManager",
    "FirewallBackend",
    "HostPlatform",
    "current_os_family",
    "is_privileged",
]

Which = Callable[[str], Optional[str]]


class OSFamily(str, Enum):
    LINUX = "linux"
    WINDOWS = "windows"
    DARWIN = "darwin"
    OTHER = "other"


class PackageManager(str, Enum):
    APT = "apt"
    DNF = "dnf"
    YUM = "yum"
    ZYPPER = "zypper"
    PACMAN = "pacman"
    NONE = "none"


class ServiceManager(str, Enum):
    SYSTEMD = "systemd"
    SCM = "scm"
    NONE = "none"


class FirewallBackend(str, Enum):
    UFW = "ufw"
    FIREWALLD = "firewalld"
    IPTABLES = "iptables"
    NETSH = "netsh"
    NONE = "none"


# Lookup order matters: the first binary found wins.
_PACKAGE_MANAGER_BINARIES = [
    ("apt-get", PackageManager.APT),
    ("dnf", PackageManager.DNF),
    ("yum", PackageManager.YUM),
    ("zypper", PackageManager.ZYPPER),
    ("pacman", PackageManager.PACMAN),
]

_FIREWALL_BINARIES = [
    ("ufw", FirewallBackend.UFW),
    ("firewall-cmd", FirewallBackend.FIREWALLD),
    ("iptables", FirewallBackend.IPTABLES),
    ("netsh", FirewallBackend.NETSH),
]


def current_os_family() -> OSFamily:
    """Map ``platform.system()`` onto an OSFamily."""
    name = _platform.system().lower()
    try:
        return OSFamily(name)
    except ValueError:
        return OSFamily.OTHER


def is_privileged() -> bool:
    """True when running as root (POSIX) or elevated Administrator (Windows)."""
    if sys.platform == "win32":
        import ctypes

        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


@dataclass(frozen=True)
class HostPlatform:
    """Capabilities of the host, resolved once per run."""

    os_family: OSFamily
    privileged: bool
    package_manager: PackageManager = PackageManager.NONE
    service_manager: ServiceManager = ServiceManager.NONE
    firewall: FirewallBackend = FirewallBackend.NONE
    tools: FrozenSet[str] = frozenset()

    def has(self, tool: str) -> bool:
        """True when ``tool`` was found on PATH during detection."""
        return tool in self.tools

    @classmethod
    def detect(
        cls,
        which: Which,
        os_family: OSFamily,
        privileged: bool,
        tools: Iterable[str] = (),
    ) -> "HostPlatform":
        """
        Detect the host's tooling.

        Args:
            which: PATH lookup (``shutil.which`` in production)
            os_family: Already-detected OS family
            privileged: Already-detected privilege level
            tools: Optional binaries whose presence steps branch on
        """
        package_manager = PackageManager.NONE
        for binary, manager in _PACKAGE_MANAGER_BINARIES:
            if which(binary):
                package_manager = manager
                break

        if os_family == OSFamily.WINDOWS:
            service_manager = ServiceManager.SCM
        elif which("systemctl"):
            service_manager = ServiceManager.SYSTEMD
        else:
            service_manager = ServiceManager.NONE

        firewall = FirewallBackend.NONE
        for binary, backend in _FIREWALL_BINARIES:
            if which(binary):
                firewall = backend
                break

        return cls(
            os_family=os_family,
            privileged=privileged,
            package_manager=package_manager,
            service_manager=service_manager,
            firewall=firewall,
            tools=frozenset(tool for tool in tools if which(tool)),
        )

    def to_dict(self) -> dict:
        return {
            "os_family": self.os_family.value,
            "privileged": self.privileged,
            "package_manager": self.package_manager.value,
            "service_manager": self.service_manager.value,
            "firewall": self.firewall.value,
            "tools": sorted(self.tools),
        }
