"""
Sequential step execution.

``StepRunner.run`` walks a procedure's steps in declaration order:

- each step's action is called with the shared context and timed
- anything it raises becomes a ``Failure`` outcome
- exactly one report entry is recorded per executed step, before the
  next step starts
- a critical failure stops the run (state ABORTED); a non-critical one
  is recorded and the run continues
- a set cancellation event is honoured between steps, never mid-step

There is no rollback: steps that already ran keep their effects.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Optional, Sequence

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from hostops.report import ReportEntry, RunReport, RunState
from hostops.sink import LogSink
from hostops.steps import OUTCOME_TYPES, Failure, Outcome, Step, StepContext

__all__ = ["StepRunner", "CANCELLED", "validate_steps"]

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


def validate_steps(steps: Sequence[Step]) -> None:
    """
    Reject step lists with duplicate names.

    Raises:
        ValueError: Naming the first duplicate
    """
    seen = set()
    for step in steps:
        if step.name in seen:
            raise ValueError(f"duplicate step name: {step.name!r}")
        seen.add(step.name)


class StepRunner:
    """Executes an ordered list of steps against one context."""

    def __init__(self, sink: LogSink, tracer_name: str = "hostops.runner"):
        self.sink = sink
        self.tracer = trace.get_tracer(tracer_name)

    def run(
        self,
        steps: Sequence[Step],
        context: StepContext,
        cancel: Optional[threading.Event] = None,
    ) -> RunReport:
        """
        Run ``steps`` in order and return the sealed report.

        Args:
            steps: Ordered steps; names must be unique
            context: Shared read-only run context
            cancel: Checked before each step; when set no further step starts

        Returns:
            The sink's RunReport, sealed as COMPLETED or ABORTED
        """
        validate_steps(steps)
        report = self.sink.report
        report.start()
        self.sink.start()

        state = RunState.COMPLETED
        abort_reason = None
        with self.tracer.start_as_current_span(f"run:{context.procedure}") as run_span:
            run_span.set_attribute("hostops.procedure", context.procedure)
            run_span.set_attribute("hostops.run_id", context.run_id)
            run_span.set_attribute("hostops.step_count", len(steps))

            for step in steps:
                if cancel is not None and cancel.is_set():
                    state = RunState.ABORTED
                    abort_reason = CANCELLED
                    self.sink.log(logging.WARNING, "Cancellation requested; %s not started", step.name)
                    break

                entry = self._execute(step, context)
                self.sink.record(entry)

                if entry.failed and step.critical:
                    state = RunState.ABORTED
                    abort_reason = f"critical step {step.name!r} failed"
                    break

            run_span.set_attribute("hostops.state", state.value)
            if state == RunState.ABORTED:
                run_span.set_status(Status(StatusCode.ERROR, abort_reason))

        report.seal(state, abort_reason)
        return report

    def _execute(self, step: Step, context: StepContext) -> ReportEntry:
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        with self.tracer.start_as_current_span(f"step:{step.name}") as span:
            span.set_attribute("hostops.step", step.name)
            span.set_attribute("hostops.critical", step.critical)
            outcome = self._invoke(step, context)
            span.set_attribute("hostops.outcome", outcome.kind.value)
            if isinstance(outcome, Failure):
                span.set_status(Status(StatusCode.ERROR, outcome.error))
        return ReportEntry(
            step_name=step.name,
            outcome=outcome,
            critical=step.critical,
            started_at=started_at,
            duration_s=time.monotonic() - started,
        )

    @staticmethod
    def _invoke(step: Step, context: StepContext) -> Outcome:
        try:
            outcome = step.action(context)
        except Exception as e:
            logger.debug("Step %s raised", step.name, exc_info=True)
            return Failure.from_exception(e)
        if not isinstance(outcome, OUTCOME_TYPES):
            return Failure(
                error=f"step returned {type(outcome).__name__}, not an outcome",
                error_type="TypeError",
            )
        return outcome
