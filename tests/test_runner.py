"""
Tests for hostops.runner.StepRunner.

Covers ordering, the critical/non-critical failure policy, exception
capture, cancellation between steps, and tracing spans.
"""

from __future__ import annotations

import io
import threading

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter, SpanExportResult

from hostops.errors import ExecutionError, ExecutionErrorKind, StepFailure
from hostops.report import RunReport, RunState
from hostops.runner import CANCELLED, StepRunner, validate_steps
from hostops.sink import LogSink
from hostops.steps import Failure, OutcomeKind, Skipped, Step, Success


class CollectingExporter(SpanExporter):
    """Collects spans in memory for testing."""

    def __init__(self):
        self.spans = []

    def export(self, spans):
        self.spans.extend(spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        pass

    def force_flush(self, timeout_millis=30000):
        return True


def ok(detail="done"):
    return lambda ctx: Success(detail)


def fail(error="boom"):
    return lambda ctx: Failure(error)


def skip(reason="n/a"):
    return lambda ctx: Skipped(reason)


@pytest.fixture
def console():
    return io.StringIO()


@pytest.fixture
def sink(console):
    report = RunReport(procedure="test-procedure", run_id="test-run")
    sink = LogSink(report, stream=console)
    yield sink
    sink.close()


@pytest.fixture
def runner(sink):
    return StepRunner(sink)


def names(report):
    return [entry.step_name for entry in report.entries]


# ============================================================================
# Failure policy
# ============================================================================


class TestFailurePolicy:

    def test_all_succeed(self, runner, context):
        steps = [Step("a", ok()), Step("b", ok()), Step("c", ok())]
        report = runner.run(steps, context)

        assert report.state == RunState.COMPLETED
        assert names(report) == ["a", "b", "c"]
        summary = report.summarize()
        assert summary.succeeded == 3
        assert summary.failed_noncritical == 0
        assert summary.failed_critical == 0
        assert summary.skipped == 0

    def test_noncritical_failure_continues(self, runner, context):
        steps = [Step("a", ok()), Step("b", fail(), critical=False), Step("c", ok())]
        report = runner.run(steps, context)

        assert report.state == RunState.COMPLETED
        assert names(report) == ["a", "b", "c"]
        summary = report.summarize()
        assert summary.succeeded == 2
        assert summary.failed_noncritical == 1
        assert summary.failed_critical == 0

    def test_critical_failure_aborts(self, runner, context):
        ran = []

        def never(ctx):
            ran.append("c")
            return Success()

        steps = [Step("a", ok()), Step("b", fail(), critical=True), Step("c", never)]
        report = runner.run(steps, context)

        assert report.state == RunState.ABORTED
        assert names(report) == ["a", "b"]
        assert ran == []
        summary = report.summarize()
        assert summary.succeeded == 1
        assert summary.failed_critical == 1
        assert "'b'" in report.abort_reason

    def test_mixed_criticality_noncritical_failure(self, runner, context):
        steps = [
            Step("A", ok(), critical=True),
            Step("B", fail(), critical=False),
            Step("C", ok(), critical=True),
        ]
        report = runner.run(steps, context)
        assert [e.outcome.kind for e in report.entries] == [
            OutcomeKind.SUCCESS, OutcomeKind.FAILURE, OutcomeKind.SUCCESS,
        ]
        assert report.state == RunState.COMPLETED
        summary = report.summarize()
        assert (summary.succeeded, summary.failed_noncritical, summary.failed_critical) == (2, 1, 0)

    def test_all_critical_middle_failure(self, runner, context):
        invoked = []

        def c(ctx):
            invoked.append("C")
            return Success()

        steps = [Step("A", ok(), critical=True), Step("B", fail(), critical=True), Step("C", c, critical=True)]
        report = runner.run(steps, context)
        assert [e.outcome.kind for e in report.entries] == [OutcomeKind.SUCCESS, OutcomeKind.FAILURE]
        assert report.state == RunState.ABORTED
        assert invoked == []

    @pytest.mark.parametrize("failing_index", [0, 1, 2, 3])
    def test_critical_failure_at_index_leaves_that_many_entries(self, runner, context, failing_index):
        steps = [
            Step(f"s{i}", fail() if i == failing_index else ok(), critical=True)
            for i in range(4)
        ]
        report = runner.run(steps, context)
        assert len(report) == failing_index + 1
        assert report.state == RunState.ABORTED

    def test_skipped_step_is_counted(self, runner, context):
        report = runner.run([Step("a", skip("not installed")), Step("b", ok())], context)
        assert report.state == RunState.COMPLETED
        assert report.summarize().skipped == 1
        assert report.entries[0].outcome.kind == OutcomeKind.SKIPPED

    def test_critical_skip_does_not_abort(self, runner, context):
        report = runner.run([Step("a", skip(), critical=True), Step("b", ok())], context)
        assert report.state == RunState.COMPLETED
        assert names(report) == ["a", "b"]

    def test_empty_step_list_completes(self, runner, context):
        report = runner.run([], context)
        assert report.state == RunState.COMPLETED
        assert len(report) == 0
        assert report.summarize().total == 0

    def test_first_step_critical_failure(self, runner, context):
        report = runner.run([Step("only", fail(), critical=True), Step("next", ok())], context)
        assert report.state == RunState.ABORTED
        assert names(report) == ["only"]


# ============================================================================
# Exception capture
# ============================================================================


class TestExceptionCapture:

    def test_raised_exception_becomes_failure(self, runner, context):
        def explode(ctx):
            raise RuntimeError("disk on fire")

        report = runner.run([Step("a", explode), Step("b", ok())], context)
        outcome = report.entries[0].outcome
        assert isinstance(outcome, Failure)
        assert outcome.error == "disk on fire"
        assert outcome.error_type == "RuntimeError"
        assert report.state == RunState.COMPLETED

    def test_step_failure_detail_is_kept(self, runner, context):
        def check_fails(ctx):
            raise StepFailure("Command: tar\nExit code: 2", detail="tar: no space")

        report = runner.run([Step("a", check_fails)], context)
        outcome = report.entries[0].outcome
        assert outcome.detail == "tar: no space"
        assert outcome.error_type == "StepFailure"

    def test_execution_error_in_critical_step_aborts(self, runner, context):
        def times_out(ctx):
            raise ExecutionError(ExecutionErrorKind.TIMEOUT, ["sleep", "99"], timeout=1)

        report = runner.run([Step("a", times_out, critical=True), Step("b", ok())], context)
        assert report.state == RunState.ABORTED
        assert report.entries[0].outcome.error_type == "ExecutionError"

    def test_non_outcome_return_is_failure(self, runner, context):
        report = runner.run([Step("a", lambda ctx: "ok")], context)
        outcome = report.entries[0].outcome
        assert isinstance(outcome, Failure)
        assert outcome.error_type == "TypeError"


# ============================================================================
# Ordering and report properties
# ============================================================================


class TestOrdering:

    def test_steps_run_in_declaration_order(self, runner, context):
        order = []

        def record(name):
            def action(ctx):
                order.append(name)
                return Success()
            return action

        steps = [Step(n, record(n)) for n in ("one", "two", "three", "four")]
        report = runner.run(steps, context)
        assert order == ["one", "two", "three", "four"]
        assert names(report) == order

    def test_entry_recorded_before_next_step_starts(self, runner, sink, context):
        seen_lengths = []

        def observe(ctx):
            seen_lengths.append(len(sink.report))
            return Success()

        runner.run([Step("a", observe), Step("b", observe), Step("c", observe)], context)
        assert seen_lengths == [0, 1, 2]

    def test_entry_count_never_exceeds_steps(self, runner, context):
        steps = [Step(f"s{i}", fail() if i % 2 else ok()) for i in range(6)]
        report = runner.run(steps, context)
        assert len(report) == len(steps)
        assert report.summarize().total == len(steps)

    def test_durations_are_non_negative(self, runner, context):
        report = runner.run([Step("a", ok()), Step("b", ok())], context)
        assert all(entry.duration_s >= 0 for entry in report.entries)
        assert report.summarize().total_duration_s >= 0

    def test_report_is_sealed_after_run(self, runner, context):
        report = runner.run([Step("a", ok())], context)
        assert report.sealed
        with pytest.raises(RuntimeError):
            report.append(report.entries[0])

    def test_runner_cannot_reuse_started_report(self, runner, context):
        runner.run([Step("a", ok())], context)
        with pytest.raises(RuntimeError):
            runner.run([Step("a", ok())], context)


class TestValidateSteps:

    def test_duplicate_names_rejected(self, runner, context):
        with pytest.raises(ValueError, match="duplicate step name"):
            runner.run([Step("a", ok()), Step("a", ok())], context)

    def test_unique_names_pass(self):
        validate_steps([Step("a", ok()), Step("b", ok())])

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            Step("  ", ok())


# ============================================================================
# Cancellation
# ============================================================================


class TestCancellation:

    def test_cancel_before_start_runs_nothing(self, runner, context):
        cancel = threading.Event()
        cancel.set()
        report = runner.run([Step("a", ok()), Step("b", ok())], context, cancel=cancel)
        assert report.state == RunState.ABORTED
        assert report.abort_reason == CANCELLED
        assert len(report) == 0

    def test_cancel_mid_run_finishes_current_step(self, runner, context):
        cancel = threading.Event()

        def cancel_during(ctx):
            cancel.set()
            return Success("finished anyway")

        steps = [Step("a", ok()), Step("b", cancel_during), Step("c", ok())]
        report = runner.run(steps, context, cancel=cancel)

        assert report.state == RunState.ABORTED
        assert report.abort_reason == CANCELLED
        assert names(report) == ["a", "b"]
        assert report.entries[1].outcome == Success("finished anyway")

    def test_cancel_is_logged(self, runner, console, context):
        cancel = threading.Event()
        cancel.set()
        runner.run([Step("a", ok())], context, cancel=cancel)
        assert "Cancellation requested" in console.getvalue()


# ============================================================================
# Logging and tracing
# ============================================================================


class TestObservability:

    def test_each_entry_is_logged(self, runner, console, context):
        runner.run([Step("alpha", ok("made it")), Step("beta", fail("nope"))], context)
        output = console.getvalue()
        assert "[SUCCESS] alpha: made it" in output
        assert "[WARNING] beta: failed (continuing): nope" in output

    def test_spans_per_run_and_step(self, sink, context, monkeypatch):
        exporter = CollectingExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        monkeypatch.setattr(trace, "get_tracer", provider.get_tracer)

        StepRunner(sink).run([Step("a", ok()), Step("b", fail())], context)

        spans = {span.name: span for span in exporter.spans}
        assert set(spans) == {"run:test-procedure", "step:a", "step:b"}
        assert spans["step:b"].attributes["hostops.outcome"] == "failure"
        assert spans["run:test-procedure"].attributes["hostops.state"] == "completed"
        assert spans["step:a"].parent.span_id == spans["run:test-procedure"].context.span_id
