"""
monitor-services: keep configured systemd services running.

One step per configured service. A service that is not installed is
skipped; one that is down is restarted and re-checked. A restart that
does not bring the unit back is a non-critical failure.
"""

from __future__ import annotations

import time
from functools import partial
from typing import List

from hostops.notify import send_alert
from hostops.platform import OSFamily
from hostops.preconditions import Requirements
from hostops.procedures.base import Procedure
from hostops.steps import Failure, Outcome, Skipped, Step, StepContext, Success
from hostops.timeouts import SERVICE_RESTART_SETTLE_S


def is_installed(context: StepContext, service: str) -> bool:
    result = context.run(
        "systemctl", ["list-unit-files", f"{service}.service", "--no-legend", "--no-pager"]
    )
    return bool(result.lines())


def is_active(context: StepContext, service: str) -> bool:
    return context.run("systemctl", ["is-active", "--quiet", service]).ok


def check_service(context: StepContext, service: str) -> Outcome:
    if not is_installed(context, service):
        return Skipped(f"{service} is not installed")
    if is_active(context, service):
        return Success(f"{service} is running")

    context.warning("%s is not running; attempting restart", service)
    context.run("systemctl", ["restart", service])
    if not context.dry_run:
        time.sleep(SERVICE_RESTART_SETTLE_S)

    if is_active(context, service):
        send_alert(
            context,
            f"Service Alert: {service} Restarted",
            f"Service {service} was down and has been restarted.",
        )
        return Success(f"{service} was down and has been restarted")

    send_alert(
        context,
        f"CRITICAL: Service Alert - {service}",
        f"Service {service} is down and failed to restart. Manual intervention required.",
    )
    status = context.run("systemctl", ["is-active", service]).stdout.strip()
    return Failure(error=f"{service} failed to restart", detail=f"state: {status or 'unknown'}")


def service_summary(context: StepContext, services: List[str]) -> Outcome:
    states = []
    for service in services:
        if not is_installed(context, service):
            continue
        state = context.run("systemctl", ["is-active", service]).stdout.strip() or "unknown"
        context.info("  %s: %s", service, state)
        states.append(f"{service}={state}")
    if not states:
        return Skipped("none of the configured services are installed")
    return Success(", ".join(states))


def build(context: StepContext) -> List[Step]:
    services = list(context.config.services)
    steps = [
        Step(f"service:{service}", partial(check_service, service=service))
        for service in dict.fromkeys(services)
    ]
    steps.append(Step("service-summary", partial(service_summary, services=services)))
    return steps


PROCEDURE = Procedure(
    name="monitor-services",
    description="Check configured systemd services and restart any that are down",
    requirements=Requirements(
        privileged=True,
        binaries=["systemctl"],
        os_families=[OSFamily.LINUX],
    ),
    build=build,
)
