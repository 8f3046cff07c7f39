"""Tests for StepContext file writing."""

from __future__ import annotations

import gzip
import stat
import sys

import pytest


class TestWriteText:

    def test_plain(self, context, tmp_path):
        target = tmp_path / "out.txt"
        context.write_text(target, "hello\n")
        assert target.read_text() == "hello\n"

    def test_compressed(self, context, tmp_path):
        target = tmp_path / "out.sql.gz"
        context.write_text(target, "SELECT 1;\n", compress=True)
        with gzip.open(target, "rt", encoding="utf-8") as f:
            assert f.read() == "SELECT 1;\n"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_new_files_are_private_by_default(self, context, tmp_path):
        target = tmp_path / "secret"
        context.write_text(target, "x")
        assert stat.S_IMODE(target.stat().st_mode) == 0o600

    def test_existing_file_is_replaced(self, context, tmp_path):
        target = tmp_path / "out.txt"
        target.write_text("a much longer previous body\n")
        context.write_text(target, "short\n")
        assert target.read_text() == "short\n"

    def test_dry_run_only_logs(self, make_context, tmp_path, run_output):
        target = tmp_path / "out.txt"
        make_context(dry_run=True).write_text(target, "hello\n")
        assert not target.exists()
        assert f"would write {target}" in run_output.getvalue()
