"""
Exception hierarchy for hostops.

Three families matter to a run:

- ``PreconditionError``: the environment is not fit; the run never starts.
- ``ExecutionError``: a command could not be spawned or timed out.
- ``StepFailure``: a step judged a command's result unsatisfactory.

Everything derives from ``HostOpsError`` so callers can catch the whole
family at the CLI boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

__all__ = [
    "HostOpsError",
    "ConfigError",
    "PreconditionError",
    "InsufficientPrivilege",
    "MissingDependency",
    "UnsupportedPlatform",
    "ExecutionErrorKind",
    "ExecutionError",
    "StepFailure",
    "MissingInputError",
    "ResourceBusyError",
]


class HostOpsError(Exception):
    """Base error for all hostops failures."""


class ConfigError(HostOpsError):
    """Raised when a configuration file cannot be read or validated."""


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


class PreconditionError(HostOpsError):
    """Raised when the host does not satisfy a procedure's requirements."""

    check_type: str = "precondition"


class InsufficientPrivilege(PreconditionError):
    """The process lacks root/Administrator rights."""

    check_type = "privilege"

    def __init__(self, message: str = "root/Administrator privileges are required"):
        super().__init__(message)


class MissingDependency(PreconditionError):
    """A required binary is not on PATH."""

    check_type = "dependency"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"required binary not found on PATH: {name}")


class UnsupportedPlatform(PreconditionError):
    """The host OS family is not one the procedure supports."""

    check_type = "platform"

    def __init__(self, actual: str, supported: Sequence[str]):
        self.actual = actual
        self.supported = list(supported)
        super().__init__(
            f"unsupported platform {actual!r} (supported: {', '.join(self.supported)})"
        )


# ---------------------------------------------------------------------------
# Command execution
# ---------------------------------------------------------------------------


class ExecutionErrorKind(str, Enum):
    """Why a command invocation did not produce a result."""

    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    PERMISSION_DENIED = "permission_denied"
    SPAWN_FAILED = "spawn_failed"


class ExecutionError(HostOpsError):
    """Rich error for commands that never produced an exit code."""

    def __init__(
        self,
        kind: ExecutionErrorKind,
        argv: Sequence[str],
        detail: str = "",
        timeout: Optional[float] = None,
    ):
        self.kind = kind
        self.argv = list(argv)
        self.detail = detail
        self.timeout = timeout
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        cmd = " ".join(self.argv)
        if self.kind == ExecutionErrorKind.TIMEOUT:
            message = f"command timed out after {self.timeout or 0:g}s: {cmd}"
        elif self.kind == ExecutionErrorKind.NOT_FOUND:
            message = f"command not found: {self.argv[0] if self.argv else cmd}"
        elif self.kind == ExecutionErrorKind.PERMISSION_DENIED:
            message = f"permission denied spawning: {cmd}"
        else:
            message = f"failed to spawn: {cmd}"
        if self.detail:
            message = f"{message} ({self.detail})"
        return message


# ---------------------------------------------------------------------------
# Step outcomes
# ---------------------------------------------------------------------------


class StepFailure(HostOpsError):
    """A step determined that a command result was unsatisfactory."""

    def __init__(self, message: str, detail: str = ""):
        self.detail = detail
        super().__init__(message)


class MissingInputError(StepFailure):
    """An unattended run needed a value nobody supplied."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(
            f"no value supplied for {key!r}",
            detail="pass it with --set or run with --interactive",
        )


class ResourceBusyError(HostOpsError):
    """Another run holds the named resource lock."""

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"resource {resource!r} is locked by another run")
