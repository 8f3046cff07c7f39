"""
Console and file logging for runs.

Each run gets its own logger (``hostops.run.<run_id>``) with two
handlers: one writing to stdout and one appending to the run's log file.
Both flush on every line, so a crash mid-run still leaves the steps that
completed on disk.

Line format::

    [2026-10-18T09:14:03+00:00] [SUCCESS] create-backup-dir: /var/backups/system (0.01s)

Levels used: INFO, WARNING, ERROR and a custom SUCCESS (25).
"""

from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Optional

from hostops.errors import PreconditionError
from hostops.report import ReportEntry, RunReport, RunState, Summary
from hostops.steps import OutcomeKind

__all__ = ["SUCCESS", "LOG_FORMAT", "IsoFormatter", "LogSink"]

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"


class IsoFormatter(logging.Formatter):
    """Formatter rendering ``asctime`` as an ISO-8601 timestamp."""

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        return datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="seconds")


class LogSink:
    """
    Records step outcomes into a RunReport and logs them as they happen.

    Usage:
        sink = LogSink(report, log_path=Path("/var/log/hostops/x.log"))
        sink.record(entry)
        summary = sink.finalize()
    """

    def __init__(
        self,
        report: RunReport,
        log_path: Optional[Path] = None,
        stream: Optional[IO[str]] = None,
    ):
        """
        Args:
            report: The report entries are appended to
            log_path: Per-run log file, opened in append mode
            stream: Console stream (stdout when None)
        """
        self.report = report
        self.log_path = log_path
        self._logger = logging.getLogger(f"hostops.run.{report.run_id}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        self._close_handlers()

        formatter = IsoFormatter(LOG_FORMAT)
        console = logging.StreamHandler(stream if stream is not None else sys.stdout)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
            file_handler.setFormatter(formatter)
            self._logger.addHandler(file_handler)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def log(self, level: int, message: str, *args) -> None:
        self._logger.log(level, message, *args)

    def start(self) -> None:
        """Log the run banner."""
        self._logger.info(
            "Starting %s (run %s)", self.report.procedure, self.report.run_id
        )

    def record(self, entry: ReportEntry) -> None:
        """Append one entry to the report and flush a line for it."""
        self.report.append(entry)
        outcome = entry.outcome
        if outcome.kind == OutcomeKind.SUCCESS:
            level = SUCCESS
            text = outcome.message or "done"
        elif outcome.kind == OutcomeKind.SKIPPED:
            level = logging.INFO
            text = f"skipped: {outcome.message}" if outcome.message else "skipped"
        elif entry.critical:
            level = logging.ERROR
            text = f"CRITICAL failure: {outcome.message}"
        else:
            level = logging.WARNING
            text = f"failed (continuing): {outcome.message}"
        self._logger.log(level, "%s: %s (%.2fs)", entry.step_name, text, entry.duration_s)

    def precondition_failed(self, error: PreconditionError) -> None:
        self._logger.error("Precondition failed [%s]: %s", error.check_type, error)

    def finalize(self) -> Summary:
        """
        Log the summary block and release the log file.

        Returns:
            Counts per outcome category and total duration.

        Raises:
            RuntimeError: If the report has not been sealed
        """
        if not self.report.sealed:
            raise RuntimeError("finalize() called before the run was sealed")
        summary = self.report.summarize()

        self._logger.info("=========================================")
        self._logger.info("Summary: %s", self.report.procedure)
        self._logger.info("=========================================")
        self._logger.info("Succeeded:            %d", summary.succeeded)
        self._logger.info("Failed (non-critical): %d", summary.failed_noncritical)
        self._logger.info("Failed (critical):    %d", summary.failed_critical)
        self._logger.info("Skipped:              %d", summary.skipped)
        self._logger.info("Duration:             %.2fs", summary.total_duration_s)
        if self.log_path is not None:
            self._logger.info("Log file:             %s", self.log_path)

        if summary.state == RunState.ABORTED:
            reason = f" ({summary.abort_reason})" if summary.abort_reason else ""
            self._logger.error("Run aborted%s", reason)
        elif summary.failed_noncritical:
            self._logger.warning(
                "Run completed with %d non-critical failure(s)", summary.failed_noncritical
            )
        else:
            self._logger.log(SUCCESS, "Run completed")

        self.close()
        return summary

    def write_json(self, path: Path) -> None:
        """
        Persist the report to disk atomically.

        Uses temporary file + rename so readers never see a partial file.
        Sets file permissions to 600 (owner read/write only).
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".hostops-report-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.report.to_dict(), f, indent=2)
            os.chmod(temp_path, 0o600)
            os.replace(temp_path, path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def close(self) -> None:
        self._close_handlers()

    def _close_handlers(self) -> None:
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()
