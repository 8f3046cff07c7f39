"""
End-to-end execution of one procedure.

Order of operations for ``Orchestrator.run``:

1. acquire the procedure's resource lock, if it declares one
2. open the run's log sink
3. check preconditions; on failure the run is aborted with zero steps
4. build the immutable step context and the step list
5. hand both to the ``StepRunner``
6. finalize the summary (and optionally persist the JSON report)
"""

from __future__ import annotations

import contextlib
import logging
import os
import stat
import tempfile
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import IO, Callable, Optional

from hostops.config import HostOpsConfig
from hostops.errors import ConfigError, PreconditionError
from hostops.executor import CommandExecutor, DryRunExecutor
from hostops.inputs import InputProvider, StaticInputProvider
from hostops.locks import resource_lock
from hostops.preconditions import PreconditionChecker
from hostops.procedures.base import Procedure
from hostops.report import RunReport, RunState, Summary
from hostops.runner import StepRunner
from hostops.sink import LogSink
from hostops.steps import StepContext

__all__ = ["RunResult", "Orchestrator", "EXIT_OK", "EXIT_ABORTED", "EXIT_PRECONDITION", "EXIT_BUSY",
           "EXIT_USAGE"]

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_PRECONDITION = 2
EXIT_BUSY = 3
EXIT_USAGE = 4

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Parent of the per-user fallback directory used when the configured one is not writable
_FALLBACK_PARENT = Path(tempfile.gettempdir())


@dataclass
class RunResult:
    """Everything a caller needs after a run."""
    report: RunReport
    summary: Summary
    log_path: Optional[Path] = None
    precondition_error: Optional[PreconditionError] = None

    @property
    def exit_code(self) -> int:
        if self.precondition_error is not None:
            return EXIT_PRECONDITION
        if self.summary.state == RunState.ABORTED:
            return EXIT_ABORTED
        return EXIT_OK


def _writable_dir(preferred: Path, fallback_name: str) -> Path:
    """Return ``preferred`` if it can be created and written, else a private fallback."""
    try:
        preferred.mkdir(parents=True, exist_ok=True)
        if os.access(preferred, os.W_OK):
            return preferred
    except OSError:
        pass
    fallback = private_fallback_dir() / fallback_name
    logger.warning("%s is not writable; using %s", preferred, fallback)
    fallback.mkdir(mode=0o700, parents=True, exist_ok=True)
    return fallback


def private_fallback_dir(parent: Optional[Path] = None) -> Path:
    """
    Per-user scratch directory under the system temp directory.

    Created with mode 0700. An existing entry is only reused when it is a
    real directory owned by the current user and closed to everyone else.

    Raises:
        ConfigError: If the entry exists but fails those checks
    """
    uid = os.geteuid() if hasattr(os, "geteuid") else None
    root = (parent or _FALLBACK_PARENT) / ("hostops" if uid is None else f"hostops-{uid}")
    try:
        os.mkdir(root, 0o700)
    except FileExistsError:
        pass
    info = os.lstat(root)
    if not stat.S_ISDIR(info.st_mode):
        raise ConfigError(f"fallback directory {root} is not a directory")
    if uid is not None and (info.st_uid != uid or stat.S_IMODE(info.st_mode) & 0o077):
        raise ConfigError(f"fallback directory {root} is not private to uid {uid}")
    return root


class Orchestrator:
    """Runs procedures against the local host."""

    def __init__(
        self,
        config: HostOpsConfig,
        executor: Optional[CommandExecutor] = None,
        checker: Optional[PreconditionChecker] = None,
        inputs: Optional[InputProvider] = None,
        stream: Optional[IO[str]] = None,
        dry_run: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            config: Frozen configuration shared by every run
            executor: Command executor (DryRunExecutor when dry_run and unset)
            checker: Precondition checker
            inputs: Operator input source (unattended when unset)
            stream: Console stream for the run log
            dry_run: Record commands instead of running them
            clock: Source of the run timestamp
        """
        self.config = config
        self.dry_run = dry_run
        if executor is None:
            executor_cls = DryRunExecutor if dry_run else CommandExecutor
            executor = executor_cls(default_timeout=config.command_timeout_s)
        self.executor = executor
        self.checker = checker or PreconditionChecker()
        self.inputs = inputs or StaticInputProvider()
        self.stream = stream
        self._clock = clock

    def run(
        self,
        procedure: Procedure,
        cancel: Optional[threading.Event] = None,
        report_json: Optional[Path] = None,
    ) -> RunResult:
        """
        Execute ``procedure`` once.

        Raises:
            ResourceBusyError: If the procedure's lock is held elsewhere
        """
        timestamp = self._clock().strftime(TIMESTAMP_FORMAT)
        run_id = f"{procedure.name}-{timestamp}-{uuid.uuid4().hex[:6]}"

        lock = contextlib.nullcontext()
        if procedure.lock:
            lock_dir = _writable_dir(self.config.get_lock_dir(), "locks")
            lock = resource_lock(lock_dir, procedure.lock)

        with lock:
            log_path = self._log_path(procedure.name, timestamp)
            report = RunReport(procedure=procedure.name, run_id=run_id)
            sink = LogSink(report, log_path=log_path, stream=self.stream)

            try:
                platform = self.checker.check(procedure.requirements)
            except PreconditionError as e:
                sink.precondition_failed(e)
                report.start()
                report.seal(RunState.ABORTED, f"precondition failed: {e}")
                summary = self._finish(sink, report_json)
                return RunResult(report, summary, log_path, precondition_error=e)

            context = StepContext(
                procedure=procedure.name,
                run_id=run_id,
                timestamp=timestamp,
                config=self.config,
                executor=self.executor,
                platform=platform,
                inputs=self.inputs,
                logger=sink.logger,
                dry_run=self.dry_run,
            )
            try:
                steps = procedure.build(context)
                StepRunner(sink).run(steps, context, cancel=cancel)
            finally:
                if not report.sealed:
                    sink.close()
            summary = self._finish(sink, report_json)
            return RunResult(report, summary, log_path)

    def _log_path(self, procedure: str, timestamp: str) -> Path:
        preferred = self.config.get_log_path(procedure, timestamp)
        directory = _writable_dir(preferred.parent, "logs")
        return directory / preferred.name

    @staticmethod
    def _finish(sink: LogSink, report_json: Optional[Path]) -> Summary:
        summary = sink.finalize()
        if report_json is not None:
            sink.write_json(report_json)
        return summary
