"""
Steps, their outcomes, and the context they run against.

A procedure is an ordered list of ``Step`` objects. Each step's action
receives the run's ``StepContext`` and returns exactly one outcome:

- ``Success(detail)``
- ``Failure(error, detail)``
- ``Skipped(reason)``

Actions may also raise; the runner turns any exception into a
``Failure``.
"""

from __future__ import annotations

import gzip
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Sequence, Union

from hostops.config import HostOpsConfig
from hostops.executor import CommandExecutor, CommandResult
from hostops.platform import HostPlatform

if TYPE_CHECKING:
    from hostops.inputs import InputProvider

__all__ = [
    "OutcomeKind",
    "Success",
    "Failure",
    "Skipped",
    "Outcome",
    "Step",
    "StepContext",
]


class OutcomeKind(str, Enum):
    """Tag for the outcome variants."""
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Success:
    detail: str = ""

    @property
    def kind(self) -> OutcomeKind:
        return OutcomeKind.SUCCESS

    @property
    def message(self) -> str:
        return self.detail

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "detail": self.detail}


@dataclass(frozen=True)
class Failure:
    error: str
    detail: str = ""
    error_type: Optional[str] = None

    @property
    def kind(self) -> OutcomeKind:
        return OutcomeKind.FAILURE

    @property
    def message(self) -> str:
        if self.detail:
            return f"{self.error}: {self.detail}"
        return self.error

    @classmethod
    def from_exception(cls, exc: BaseException) -> "Failure":
        return cls(
            error=str(exc) or type(exc).__name__,
            detail=getattr(exc, "detail", "") or "",
            error_type=type(exc).__name__,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "error": self.error,
            "detail": self.detail,
            "error_type": self.error_type,
        }


@dataclass(frozen=True)
class Skipped:
    reason: str = ""

    @property
    def kind(self) -> OutcomeKind:
        return OutcomeKind.SKIPPED

    @property
    def message(self) -> str:
        return self.reason

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "reason": self.reason}


Outcome = Union[Success, Failure, Skipped]
OUTCOME_TYPES = (Success, Failure, Skipped)


@dataclass(frozen=True)
class StepContext:
    """
    Shared, read-only state for one run.

    Built once when the run starts and handed to every step. Nothing in
    it changes while the run is in progress.
    """

    procedure: str
    run_id: str
    timestamp: str
    config: HostOpsConfig
    executor: CommandExecutor
    platform: HostPlatform
    inputs: "InputProvider"
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("hostops.run"))
    dry_run: bool = False

    def run(
        self,
        program: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        """Shorthand for ``self.executor.execute``."""
        return self.executor.execute(
            program, args, env=env, timeout=timeout, input_text=input_text
        )

    def write_text(
        self,
        path: Path,
        text: str,
        compress: bool = False,
        mode: int = 0o600,
    ) -> None:
        """
        Write a file produced by a step; logged only on dry runs.

        Args:
            path: Destination, replaced if it exists
            text: Content, written as UTF-8
            compress: Gzip the content
            mode: Permissions for a newly created file
        """
        if self.dry_run:
            self.logger.info("[dry-run] would write %s (%d bytes)", path, len(text))
            return
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as raw:
            data = text.encode("utf-8")
            if compress:
                with gzip.GzipFile(fileobj=raw, mode="wb") as gz:
                    gz.write(data)
            else:
                raw.write(data)

    def info(self, message: str, *args: Any) -> None:
        self.logger.info(message, *args)

    def warning(self, message: str, *args: Any) -> None:
        self.logger.warning(message, *args)


StepAction = Callable[[StepContext], Outcome]


@dataclass(frozen=True)
class Step:
    """A named unit of work within a procedure."""

    name: str
    action: StepAction
    critical: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("step name must be a non-empty string")
