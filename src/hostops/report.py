"""
Run reports and summaries.

A ``RunReport`` is the ordered, append-only record of one run: one
``ReportEntry`` per executed step. Once the run ends the report is
sealed with its terminal ``RunState`` and no further entries can be
added.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from hostops.steps import Failure, Outcome, OutcomeKind

__all__ = ["RunState", "ReportEntry", "RunReport", "Summary"]


class RunState(str, Enum):
    """Lifecycle of a run."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.ABORTED)


@dataclass(frozen=True)
class ReportEntry:
    """Outcome of one step."""
    step_name: str
    outcome: Outcome
    critical: bool
    started_at: datetime
    duration_s: float

    @property
    def failed(self) -> bool:
        return isinstance(self.outcome, Failure)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "step": self.step_name,
            "critical": self.critical,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_s, 6),
            "outcome": self.outcome.to_dict(),
        }


@dataclass(frozen=True)
class Summary:
    """Counts per outcome category for a finished run."""
    state: RunState
    succeeded: int = 0
    failed_noncritical: int = 0
    failed_critical: int = 0
    skipped: int = 0
    total_duration_s: float = 0.0
    abort_reason: Optional[str] = None

    @property
    def total(self) -> int:
        return self.succeeded + self.failed_noncritical + self.failed_critical + self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "succeeded": self.succeeded,
            "failed_noncritical": self.failed_noncritical,
            "failed_critical": self.failed_critical,
            "skipped": self.skipped,
            "total_duration_seconds": round(self.total_duration_s, 6),
            "abort_reason": self.abort_reason,
        }


@dataclass
class RunReport:
    """Append-only log of step outcomes for one run."""
    procedure: str
    run_id: str
    state: RunState = RunState.NOT_STARTED
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    abort_reason: Optional[str] = None
    _entries: List[ReportEntry] = field(default_factory=list, repr=False)

    @property
    def entries(self) -> List[ReportEntry]:
        return list(self._entries)

    @property
    def sealed(self) -> bool:
        return self.state.is_terminal

    def __len__(self) -> int:
        return len(self._entries)

    def start(self) -> None:
        if self.state != RunState.NOT_STARTED:
            raise RuntimeError(f"run {self.run_id} already {self.state.value}")
        self.state = RunState.RUNNING
        self.started_at = datetime.now(timezone.utc)

    def append(self, entry: ReportEntry) -> None:
        if self.sealed:
            raise RuntimeError(f"run {self.run_id} is sealed; cannot record {entry.step_name!r}")
        self._entries.append(entry)

    def seal(self, state: RunState, abort_reason: Optional[str] = None) -> None:
        """Finalize the report with a terminal state."""
        if not state.is_terminal:
            raise ValueError(f"cannot seal with non-terminal state {state.value}")
        if self.sealed:
            raise RuntimeError(f"run {self.run_id} is already sealed")
        self.state = state
        self.abort_reason = abort_reason
        self.finished_at = datetime.now(timezone.utc)

    def summarize(self) -> Summary:
        succeeded = failed_noncritical = failed_critical = skipped = 0
        for entry in self._entries:
            kind = entry.outcome.kind
            if kind == OutcomeKind.SUCCESS:
                succeeded += 1
            elif kind == OutcomeKind.SKIPPED:
                skipped += 1
            elif entry.critical:
                failed_critical += 1
            else:
                failed_noncritical += 1
        end = self.finished_at or datetime.now(timezone.utc)
        return Summary(
            state=self.state,
            succeeded=succeeded,
            failed_noncritical=failed_noncritical,
            failed_critical=failed_critical,
            skipped=skipped,
            total_duration_s=max((end - self.started_at).total_seconds(), 0.0),
            abort_reason=self.abort_reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "procedure": self.procedure,
            "run_id": self.run_id,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "abort_reason": self.abort_reason,
            "entries": [e.to_dict() for e in self._entries],
            "summary": self.summarize().to_dict(),
        }
