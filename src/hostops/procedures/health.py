"""
system-health-check: one pass over the usual health indicators.

Every check is non-critical: a threshold reached or exceeded, a failed unit or a
zombie process is recorded as a failure and the remaining checks still
run, so the summary gives the whole picture.
"""

from __future__ import annotations

from pathlib import Path
from typing import List

from hostops.notify import send_alert
from hostops.parsing import (
    parse_df,
    parse_failed_units,
    parse_free,
    parse_loadavg,
    parse_os_release,
    parse_top_cpu,
    parse_zombies,
)
from hostops.platform import OSFamily, ServiceManager
from hostops.preconditions import Requirements
from hostops.procedures.base import Procedure
from hostops.steps import Failure, Outcome, Skipped, Step, StepContext, Success

OS_RELEASE = Path("/etc/os-release")
LOADAVG = Path("/proc/loadavg")
PING_TARGET = "8.8.8.8"
DNS_TARGET = "google.com"


def _threshold_alert(context: StepContext, metric: str, value: float, threshold: float) -> Outcome:
    message = f"{metric} usage {value:.1f}% is at or above threshold ({threshold:g}%)"
    send_alert(context, f"Health Alert: {metric}", message)
    return Failure(error=message)


def system_info(context: StepContext) -> Outcome:
    hostname = context.run("hostname").stdout.strip()
    kernel = context.run("uname", ["-r"]).stdout.strip()
    uptime = context.run("uptime", ["-p"]).stdout.strip()
    os_name = "unknown"
    if OS_RELEASE.exists():
        os_name = parse_os_release(OS_RELEASE.read_text()).get("PRETTY_NAME", os_name)
    for label, value in (("Hostname", hostname), ("Kernel", kernel), ("OS", os_name), ("Uptime", uptime)):
        context.info("  %s: %s", label, value)
    return Success(f"{hostname} ({os_name}, kernel {kernel})")


def check_cpu(context: StepContext) -> Outcome:
    usage = parse_top_cpu(context.run("top", ["-bn1"]).check("Sampling CPU").stdout)
    if LOADAVG.exists():
        load = parse_loadavg(LOADAVG.read_text())
        if load:
            context.info("  Load average: %.2f %.2f %.2f", *load)
    if usage is None:
        return Skipped("could not parse CPU usage from top")
    threshold = context.config.cpu_threshold
    if usage >= threshold:
        return _threshold_alert(context, "CPU", usage, threshold)
    return Success(f"CPU usage {usage:.1f}%")


def check_memory(context: StepContext) -> Outcome:
    memory = parse_free(context.run("free", ["-b"]).check("Reading memory usage").stdout)
    if memory is None:
        return Skipped("could not parse memory usage from free")
    threshold = context.config.memory_threshold
    if memory.percent >= threshold:
        return _threshold_alert(context, "Memory", memory.percent, threshold)
    return Success(f"memory usage {memory.percent:.1f}%")


def check_disk(context: StepContext) -> Outcome:
    rows = parse_df(context.run("df", ["-P", "-k"]).check("Reading disk usage").stdout)
    threshold = context.config.disk_threshold
    breaches = [row for row in rows if row.exceeds(threshold)]
    if breaches:
        detail = "; ".join(f"{row.mount} at {row.percent}%" for row in breaches)
        send_alert(context, "Health Alert: Disk", f"Disk usage at or above {threshold:g}%: {detail}")
        return Failure(error=f"{len(breaches)} filesystem(s) at or above {threshold:g}%", detail=detail)
    return Success(f"{len(rows)} filesystem(s) below {threshold:g}%")


def check_network(context: StepContext) -> Outcome:
    if not context.platform.has("ping"):
        return Skipped("ping not available")
    problems = []
    if not context.run("ping", ["-c", "3", "-W", "2", PING_TARGET]).ok:
        problems.append(f"cannot reach {PING_TARGET}")
    if not context.run("ping", ["-c", "3", "-W", "2", DNS_TARGET]).ok:
        problems.append(f"cannot resolve/reach {DNS_TARGET}")
    if problems:
        return Failure(error="connectivity problems", detail="; ".join(problems))
    return Success("internet and DNS reachable")


def check_failed_units(context: StepContext) -> Outcome:
    if context.platform.service_manager != ServiceManager.SYSTEMD:
        return Skipped("systemd not available")
    result = context.run(
        "systemctl", ["list-units", "--state=failed", "--no-pager", "--no-legend", "--plain"]
    ).check("Listing failed units")
    units = parse_failed_units(result.stdout)
    if units:
        return Failure(error=f"{len(units)} failed unit(s)", detail=", ".join(units))
    return Success("no failed services")


def check_zombies(context: StepContext) -> Outcome:
    result = context.run("ps", ["-eo", "pid=,stat=,comm="]).check("Listing processes")
    zombies = parse_zombies(result.stdout)
    if zombies:
        detail = ", ".join(f"{z.command}[{z.pid}]" for z in zombies)
        return Failure(error=f"{len(zombies)} zombie process(es)", detail=detail)
    return Success("no zombie processes")


def build(context: StepContext) -> List[Step]:
    return [
        Step("system-info", system_info),
        Step("check-cpu", check_cpu),
        Step("check-memory", check_memory),
        Step("check-disk", check_disk),
        Step("check-network", check_network),
        Step("check-failed-units", check_failed_units),
        Step("check-zombies", check_zombies),
    ]


PROCEDURE = Procedure(
    name="system-health-check",
    description="Report CPU, memory, disk, network, failed units and zombie processes",
    requirements=Requirements(
        binaries=["top", "free", "df", "ps"],
        optional_binaries=["ping"],
        os_families=[OSFamily.LINUX],
    ),
    build=build,
)
