"""
harden-host: baseline security hardening for a Linux server.

Packages are updated and the security tooling installed first, then the
kernel, file permission and password-aging settings are applied. The
firewall is configured through whichever backend the host provides and
is the one critical step: SSH settings only change once inbound traffic
to ``ssh_port`` is admitted.

sshd_config edits are validated with ``sshd -t`` and rolled back when
sshd rejects them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Mapping, Sequence, Tuple

from hostops.platform import FirewallBackend, OSFamily, PackageManager, ServiceManager
from hostops.preconditions import Requirements
from hostops.procedures.base import Procedure
from hostops.steps import Failure, Outcome, Skipped, Step, StepContext, Success
from hostops.timeouts import PACKAGE_MANAGER_TIMEOUT_S

SYSCTL_CONF = Path("/etc/sysctl.d/99-hostops-hardening.conf")
SSHD_CONFIG = Path("/etc/ssh/sshd_config")
LOGIN_DEFS = Path("/etc/login.defs")
FAIL2BAN_JAIL = Path("/etc/fail2ban/jail.local")
AUDIT_RULES = Path("/etc/audit/rules.d/hostops.rules")
CORE_DUMP_LIMITS = Path("/etc/security/limits.d/99-hostops-core.conf")
AUTO_UPGRADES = Path("/etc/apt/apt.conf.d/20auto-upgrades")

MANAGED_MARKER = "# Managed by hostops harden-host"

NONINTERACTIVE_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

UPDATE_COMMANDS = {
    PackageManager.APT: [("apt-get", ["update"]), ("apt-get", ["upgrade", "-y"])],
    PackageManager.DNF: [("dnf", ["upgrade", "-y", "--refresh"])],
    PackageManager.YUM: [("yum", ["update", "-y"])],
    PackageManager.ZYPPER: [("zypper", ["--non-interactive", "update"])],
    PackageManager.PACMAN: [("pacman", ["-Syu", "--noconfirm"])],
}

SECURITY_PACKAGES = {
    PackageManager.APT: (
        "apt-get",
        ["fail2ban", "unattended-upgrades", "apt-listchanges", "auditd",
         "apparmor", "apparmor-utils", "libpam-pwquality", "libpam-tmpdir"],
    ),
    PackageManager.DNF: ("dnf", ["fail2ban", "audit", "dnf-automatic"]),
}

SYSCTL_SETTINGS: Dict[str, str] = {
    "net.ipv4.ip_forward": "0",
    "net.ipv4.conf.all.send_redirects": "0",
    "net.ipv4.conf.default.send_redirects": "0",
    "net.ipv4.conf.all.accept_source_route": "0",
    "net.ipv4.conf.default.accept_source_route": "0",
    "net.ipv4.conf.all.accept_redirects": "0",
    "net.ipv4.conf.default.accept_redirects": "0",
    "net.ipv4.conf.all.secure_redirects": "0",
    "net.ipv4.conf.default.secure_redirects": "0",
    "net.ipv4.conf.all.log_martians": "1",
    "net.ipv4.conf.default.log_martians": "1",
    "net.ipv4.icmp_echo_ignore_broadcasts": "1",
    "net.ipv4.icmp_ignore_bogus_error_responses": "1",
    "net.ipv4.conf.all.rp_filter": "1",
    "net.ipv4.conf.default.rp_filter": "1",
    "net.ipv4.tcp_syncookies": "1",
    "kernel.randomize_va_space": "2",
    "kernel.kptr_restrict": "2",
    "kernel.dmesg_restrict": "1",
    "fs.suid_dumpable": "0",
}

# (path, octal mode); paths that do not exist are left alone
FILE_PERMISSIONS: Sequence[Tuple[str, str]] = (
    ("/etc/passwd", "644"),
    ("/etc/group", "644"),
    ("/etc/shadow", "600"),
    ("/etc/gshadow", "600"),
    ("/boot/grub/grub.cfg", "600"),
    ("/boot/grub2/grub.cfg", "600"),
    ("/var/log/auth.log", "640"),
    ("/var/log/syslog", "640"),
)

PASSWORD_AGING = {"PASS_MAX_DAYS": "90", "PASS_MIN_DAYS": "7", "PASS_WARN_AGE": "14"}

AUDIT_WATCHES = (
    "-w /etc/passwd -p wa -k identity",
    "-w /etc/group -p wa -k identity",
    "-w /etc/shadow -p wa -k identity",
    "-w /etc/sudoers -p wa -k privilege",
    "-w /etc/sudoers.d/ -p wa -k privilege",
    "-w /etc/ssh/sshd_config -p wa -k sshd",
    "-w /var/log/auth.log -p wa -k auth_log",
)

OPTIONAL_TOOLS = ["sshd", "augenrules"]


def ssh_settings(port: int) -> Dict[str, str]:
    return {
        "Port": str(port),
        "PermitRootLogin": "no",
        "PasswordAuthentication": "no",
        "PermitEmptyPasswords": "no",
        "ChallengeResponseAuthentication": "no",
        "PubkeyAuthentication": "yes",
        "X11Forwarding": "no",
        "MaxAuthTries": "3",
        "MaxSessions": "5",
        "LoginGraceTime": "30",
        "ClientAliveInterval": "300",
        "ClientAliveCountMax": "2",
        "IgnoreRhosts": "yes",
        "HostbasedAuthentication": "no",
    }


def apply_directives(text: str, settings: Mapping[str, str], first_wins: bool = False) -> str:
    """
    Return ``text`` with each ``Key value`` directive in ``settings`` set.

    Keys match active (uncommented) lines case-insensitively, up to the
    first ``Match`` block. With ``first_wins`` (sshd_config, where the
    first value read is the one used) the settings go in a marked block
    at the top of the file, replacing any block written earlier, and
    every other occurrence is commented out. Otherwise the first
    occurrence is rewritten in place, later ones are commented out and
    missing keys are appended.
    """
    wanted = {key.lower(): key for key in settings}
    written = set()
    body: List[str] = []
    in_match = in_managed = False
    for line in text.splitlines():
        if line == MANAGED_MARKER:
            in_managed = True
            continue
        if in_managed:
            if line.strip():
                continue
            in_managed = False
            continue
        words = line.split()
        keyword = words[0].lower() if words else ""
        if keyword == "match":
            in_match = True
        if in_match or keyword not in wanted:
            body.append(line)
            continue
        key = wanted[keyword]
        if first_wins or key in written:
            body.append(f"# {line}")
        else:
            body.append(f"{key} {settings[key]}")
            written.add(key)

    if first_wins:
        block = [f"{key} {value}" for key, value in settings.items()]
        lines = [MANAGED_MARKER, *block, "", *body]
    else:
        lines = body + [f"{key} {value}" for key, value in settings.items() if key not in written]
    return "\n".join(lines) + "\n"


def render_sysctl(settings: Mapping[str, str]) -> str:
    return "\n".join([MANAGED_MARKER, *(f"{k} = {v}" for k, v in settings.items())]) + "\n"


def render_fail2ban_jail(port: int) -> str:
    return "\n".join([
        MANAGED_MARKER,
        "[DEFAULT]",
        "bantime = 3600",
        "findtime = 600",
        "maxretry = 3",
        "backend = auto",
        "",
        "[sshd]",
        "enabled = true",
        f"port = {port}",
        "maxretry = 3",
        "",
    ])


# ============================================================================
# Steps
# ============================================================================


def update_packages(context: StepContext) -> Outcome:
    manager = context.platform.package_manager
    commands = UPDATE_COMMANDS.get(manager)
    if not commands:
        return Skipped("no supported package manager found")
    for program, args in commands:
        context.run(program, args, env=NONINTERACTIVE_ENV, timeout=PACKAGE_MANAGER_TIMEOUT_S).check(
            f"Updating packages with {manager.value}"
        )
    return Success(f"{manager.value} packages updated")


def install_security_packages(context: StepContext) -> Outcome:
    manager = context.platform.package_manager
    if manager not in SECURITY_PACKAGES:
        return Skipped(f"no security package set for {manager.value}")
    program, packages = SECURITY_PACKAGES[manager]
    context.run(
        program, ["install", "-y", *packages], env=NONINTERACTIVE_ENV, timeout=PACKAGE_MANAGER_TIMEOUT_S
    ).check("Installing security packages")
    return Success(f"installed {len(packages)} security package(s)")


def harden_kernel(context: StepContext) -> Outcome:
    if not SYSCTL_CONF.parent.is_dir() and not context.dry_run:
        return Skipped(f"{SYSCTL_CONF.parent} does not exist")
    context.write_text(SYSCTL_CONF, render_sysctl(SYSCTL_SETTINGS), mode=0o644)
    result = context.run("sysctl", ["-p", str(SYSCTL_CONF)])
    if not result.ok:
        return Failure(error="sysctl rejected some kernel settings", detail=result.stderr.strip())
    return Success(f"applied {len(SYSCTL_SETTINGS)} kernel setting(s)")


def harden_file_permissions(context: StepContext) -> Outcome:
    changed = 0
    for path, mode in FILE_PERMISSIONS:
        if Path(path).exists():
            context.run("chmod", [mode, path]).check(f"Setting permissions on {path}")
            changed += 1
    if CORE_DUMP_LIMITS.parent.is_dir():
        context.write_text(CORE_DUMP_LIMITS, "* hard core 0\n", mode=0o644)
    return Success(f"permissions set on {changed} file(s)")


def configure_password_aging(context: StepContext) -> Outcome:
    if not LOGIN_DEFS.is_file():
        return Skipped(f"{LOGIN_DEFS} not found")
    current = LOGIN_DEFS.read_text()
    updated = apply_directives(current, PASSWORD_AGING)
    if updated == current:
        return Success("password aging already configured")
    context.write_text(LOGIN_DEFS, updated, mode=0o644)
    return Success("password aging: " + ", ".join(f"{k}={v}" for k, v in PASSWORD_AGING.items()))


def configure_audit(context: StepContext) -> Outcome:
    if not context.platform.has("augenrules") or not AUDIT_RULES.parent.is_dir():
        return Skipped("auditd not installed")
    context.write_text(AUDIT_RULES, "\n".join([MANAGED_MARKER, *AUDIT_WATCHES]) + "\n")
    context.run("augenrules", ["--load"]).check("Loading audit rules")
    context.run("systemctl", ["enable", "auditd"]).check("Enabling auditd")
    return Success(f"{len(AUDIT_WATCHES)} audit watch(es) loaded")


def _configure_ufw(context: StepContext, port: int) -> None:
    for args in (
        ["default", "deny", "incoming"],
        ["default", "allow", "outgoing"],
        ["allow", f"{port}/tcp"],
        ["--force", "enable"],
    ):
        context.run("ufw", args).check("Configuring ufw")


def _configure_firewalld(context: StepContext, port: int) -> None:
    context.run("systemctl", ["enable", "--now", "firewalld"]).check("Starting firewalld")
    context.run("firewall-cmd", ["--permanent", f"--add-port={port}/tcp"]).check(
        "Opening the SSH port in firewalld"
    )
    context.run("firewall-cmd", ["--reload"]).check("Reloading firewalld")


def _configure_iptables(context: StepContext, port: int) -> None:
    rules = [
        ["INPUT", "-i", "lo", "-j", "ACCEPT"],
        ["INPUT", "-m", "conntrack", "--ctstate", "ESTABLISHED,RELATED", "-j", "ACCEPT"],
        ["INPUT", "-p", "tcp", "--dport", str(port), "-j", "ACCEPT"],
    ]
    for rule in rules:
        if not context.run("iptables", ["-C", *rule]).ok:
            context.run("iptables", ["-A", *rule]).check("Adding iptables rule")
    for chain, policy in (("INPUT", "DROP"), ("FORWARD", "DROP"), ("OUTPUT", "ACCEPT")):
        context.run("iptables", ["-P", chain, policy]).check(f"Setting {chain} policy")


FIREWALL_CONFIGURATORS: Dict[FirewallBackend, Callable[[StepContext, int], None]] = {
    FirewallBackend.UFW: _configure_ufw,
    FirewallBackend.FIREWALLD: _configure_firewalld,
    FirewallBackend.IPTABLES: _configure_iptables,
}


def configure_firewall(context: StepContext) -> Outcome:
    backend = context.platform.firewall
    configure = FIREWALL_CONFIGURATORS.get(backend)
    if configure is None:
        return Skipped(f"no supported Linux firewall found ({backend.value})")
    port = context.config.ssh_port
    configure(context, port)
    return Success(f"{backend.value}: inbound denied except {port}/tcp")


def configure_fail2ban(context: StepContext) -> Outcome:
    if not FAIL2BAN_JAIL.parent.is_dir():
        return Skipped("fail2ban not installed")
    context.write_text(FAIL2BAN_JAIL, render_fail2ban_jail(context.config.ssh_port), mode=0o644)
    context.run("systemctl", ["enable", "fail2ban"]).check("Enabling fail2ban")
    context.run("systemctl", ["restart", "fail2ban"]).check("Restarting fail2ban")
    return Success(f"fail2ban guarding sshd on port {context.config.ssh_port}")


def harden_ssh(context: StepContext) -> Outcome:
    if not context.platform.has("sshd") or not SSHD_CONFIG.is_file():
        return Skipped("OpenSSH server not installed")
    port = context.config.ssh_port
    current = SSHD_CONFIG.read_text()
    updated = apply_directives(current, ssh_settings(port), first_wins=True)
    if updated == current:
        return Success("sshd already hardened")

    context.write_text(SSHD_CONFIG.with_name(SSHD_CONFIG.name + ".hostops.bak"), current)
    context.write_text(SSHD_CONFIG, updated, mode=0o644)
    validation = context.run("sshd", ["-t"])
    if not validation.ok:
        context.write_text(SSHD_CONFIG, current, mode=0o644)
        return Failure(
            error="sshd rejected the hardened configuration; previous file restored",
            detail=validation.stderr.strip(),
        )
    context.run("systemctl", ["restart", "sshd"]).check("Restarting sshd")
    return Success(f"sshd hardened on port {port}")


def disable_unneeded_services(context: StepContext) -> Outcome:
    if context.platform.service_manager != ServiceManager.SYSTEMD:
        return Skipped("systemd not available")
    disabled = []
    for service in dict.fromkeys(context.config.disable_services):
        if context.run("systemctl", ["is-active", "--quiet", service]).ok:
            context.run("systemctl", ["disable", "--now", service]).check(f"Disabling {service}")
            context.info("Disabled %s", service)
            disabled.append(service)
    if not disabled:
        return Success("no unneeded services running")
    return Success("disabled " + ", ".join(disabled))


def enable_automatic_updates(context: StepContext) -> Outcome:
    manager = context.platform.package_manager
    if manager == PackageManager.APT and AUTO_UPGRADES.parent.is_dir():
        context.write_text(
            AUTO_UPGRADES,
            'APT::Periodic::Update-Package-Lists "1";\nAPT::Periodic::Unattended-Upgrade "1";\n',
            mode=0o644,
        )
        return Success("unattended-upgrades enabled")
    if manager == PackageManager.DNF:
        context.run("systemctl", ["enable", "--now", "dnf-automatic-install.timer"]).check(
            "Enabling dnf-automatic"
        )
        return Success("dnf-automatic enabled")
    return Skipped(f"automatic updates not supported with {manager.value}")


def build(context: StepContext) -> List[Step]:
    return [
        Step("update-packages", update_packages),
        Step("install-security-packages", install_security_packages),
        Step("harden-kernel", harden_kernel),
        Step("harden-file-permissions", harden_file_permissions),
        Step("configure-password-aging", configure_password_aging),
        Step("configure-audit", configure_audit),
        Step("configure-firewall", configure_firewall, critical=True),
        Step("configure-fail2ban", configure_fail2ban),
        Step("harden-ssh", harden_ssh),
        Step("disable-unneeded-services", disable_unneeded_services),
        Step("enable-automatic-updates", enable_automatic_updates),
    ]


PROCEDURE = Procedure(
    name="harden-host",
    description="Apply baseline kernel, firewall, SSH and account hardening",
    requirements=Requirements(
        privileged=True,
        binaries=["sysctl", "chmod", "systemctl"],
        optional_binaries=OPTIONAL_TOOLS,
        os_families=[OSFamily.LINUX],
    ),
    build=build,
    lock="host-hardening",
)
