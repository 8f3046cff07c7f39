"""
Pre-flight verification of the host before a procedure runs.

Validates a procedure's ``Requirements`` against the host **before** any
step executes. Three checks, in order:

1. **Privilege** - root on POSIX, elevated Administrator on Windows.
2. **Dependencies** - every required binary resolves on PATH.
3. **Platform** - the OS family is one the procedure supports.

``check`` fails fast with the first violation and, on success, returns
the ``HostPlatform`` capabilities that steps will use for the run.
``evaluate`` runs every check and collects all violations, for reporting.

Usage::

    from hostops.preconditions import PreconditionChecker, Requirements

    checker = PreconditionChecker()
    platform = checker.check(Requirements(privileged=True, binaries=["tar"]))
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from hostops.errors import (
    InsufficientPrivilege,
    MissingDependency,
    PreconditionError,
    UnsupportedPlatform,
)
from hostops.executor import which as default_which
from hostops.platform import HostPlatform, OSFamily, current_os_family, is_privileged

__all__ = [
    "Requirements",
    "PreconditionViolation",
    "PreconditionResult",
    "PreconditionChecker",
]

logger = logging.getLogger(__name__)


class Requirements(BaseModel):
    """What a procedure needs from the host."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    privileged: bool = Field(default=False, description="Needs root/Administrator")
    binaries: list[str] = Field(default_factory=list, description="Required on PATH")
    optional_binaries: list[str] = Field(
        default_factory=list, description="Looked up once; steps skip work when absent"
    )
    os_families: Optional[list[OSFamily]] = Field(
        default=None, description="Supported OS families (any when None)"
    )


class PreconditionViolation(BaseModel):
    """A single failed precondition."""

    model_config = ConfigDict(extra="forbid")

    check_type: str = Field(..., description="privilege | dependency | platform")
    subject: Optional[str] = Field(None)
    message: str = Field(default="")


class PreconditionResult(BaseModel):
    """Aggregated precondition evaluation."""

    model_config = ConfigDict(extra="forbid")

    passed: bool
    violations: list[PreconditionViolation] = Field(default_factory=list)
    binaries_checked: int = 0


class PreconditionChecker:
    """Runs read-only checks against the host."""

    def __init__(
        self,
        which: Callable[[str], Optional[str]] = default_which,
        privilege_check: Callable[[], bool] = is_privileged,
        os_lookup: Callable[[], OSFamily] = current_os_family,
    ):
        """
        Args:
            which: PATH lookup for binaries
            privilege_check: Returns True when elevated
            os_lookup: Returns the host OS family
        """
        self._which = which
        self._privilege_check = privilege_check
        self._os_lookup = os_lookup

    def check(self, requirements: Requirements) -> HostPlatform:
        """
        Fail fast on the first unmet requirement.

        Returns:
            The host capabilities, resolved once for the run.

        Raises:
            InsufficientPrivilege, MissingDependency, UnsupportedPlatform
        """
        privileged = self._privilege_check()
        if requirements.privileged and not privileged:
            raise InsufficientPrivilege()

        for name in requirements.binaries:
            if not self._which(name):
                raise MissingDependency(name)

        os_family = self._os_lookup()
        if requirements.os_families and os_family not in requirements.os_families:
            raise UnsupportedPlatform(
                os_family.value, [f.value for f in requirements.os_families]
            )

        platform = HostPlatform.detect(
            self._which, os_family, privileged, tools=requirements.optional_binaries
        )
        logger.debug("Preconditions met; platform=%s", platform.to_dict())
        return platform

    def evaluate(self, requirements: Requirements) -> PreconditionResult:
        """Run every check and collect all violations."""
        violations: list[PreconditionViolation] = []

        if requirements.privileged and not self._privilege_check():
            violations.append(self._violation(InsufficientPrivilege()))

        for name in requirements.binaries:
            if not self._which(name):
                violations.append(self._violation(MissingDependency(name), subject=name))

        os_family = self._os_lookup()
        if requirements.os_families and os_family not in requirements.os_families:
            error = UnsupportedPlatform(
                os_family.value, [f.value for f in requirements.os_families]
            )
            violations.append(self._violation(error, subject=os_family.value))

        return PreconditionResult(
            passed=not violations,
            violations=violations,
            binaries_checked=len(requirements.binaries),
        )

    @staticmethod
    def _violation(
        error: PreconditionError, subject: Optional[str] = None
    ) -> PreconditionViolation:
        return PreconditionViolation(
            check_type=error.check_type, subject=subject, message=str(error)
        )
