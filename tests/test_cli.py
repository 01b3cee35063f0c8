"""Tests for the command-line interface."""

import os
import tempfile
from pathlib import Path

import pytest

from eml_batch_pdf.cli import create_parser, main
from eml_batch_pdf.report import REPORT_NAME


@pytest.fixture
def isolated_config(monkeypatch, tmp_path):
    """Keep the CLI away from the user's saved configuration."""
    monkeypatch.setattr("eml_batch_pdf.config.CONFIG_PATH", tmp_path / "config.json")


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        """Test default option values."""
        args = create_parser().parse_args(["-i", "emails"])
        assert args.input == ["emails"]
        assert args.batch_size == 50
        assert args.concurrency == 4
        assert args.merge == "none"
        assert args.page_size == "a4"
        assert not args.auto_print

    def test_merge_choices(self):
        """Test that only known merge strategies are accepted."""
        with pytest.raises(SystemExit):
            create_parser().parse_args(["-i", "x", "--merge", "sometimes"])


class TestRun:
    """Tests for complete CLI runs."""

    def _write_emails(self, folder, make_eml, count, corrupt=()):
        for i in range(1, count + 1):
            data = b"\x00\x01\x02 not an email \xff" if i in corrupt else make_eml(subject=f"Note {i}")
            Path(folder, f"mail_{i}.eml").write_bytes(data)

    def test_converts_folder(self, make_eml, isolated_config):
        """Test converting a folder to per-file PDFs."""
        with tempfile.TemporaryDirectory() as tmpdir:
            self._write_emails(tmpdir, make_eml, 3)
            out = os.path.join(tmpdir, "out")
            code = main(["-i", tmpdir, "-o", out, "--no-html", "--executor", "thread", "-q"])
            assert code == 0
            written = sorted(os.listdir(out))
            assert written == [
                "2024-01-15 - Note 1.pdf",
                "2024-01-15 - Note 2.pdf",
                "2024-01-15 - Note 3.pdf",
            ]

    def test_failures_reported(self, make_eml, isolated_config):
        """Test the exit code and skipped files report."""
        with tempfile.TemporaryDirectory() as tmpdir:
            self._write_emails(tmpdir, make_eml, 3, corrupt={2})
            out = os.path.join(tmpdir, "out")
            code = main(["-i", tmpdir, "-o", out, "--no-html", "--executor", "thread", "-q"])
            assert code == 1
            assert os.path.exists(os.path.join(out, REPORT_NAME))

    def test_merge_all(self, make_eml, isolated_config, pdf_pages):
        """Test writing a single merged document."""
        with tempfile.TemporaryDirectory() as tmpdir:
            self._write_emails(tmpdir, make_eml, 4)
            out = os.path.join(tmpdir, "out")
            code = main([
                "-i", tmpdir, "-o", out, "--no-html", "--executor", "thread",
                "--merge", "all", "--batch-size", "2", "-q",
            ])
            assert code == 0
            assert os.listdir(out) == ["merged_all.pdf"]
            assert pdf_pages(Path(out, "merged_all.pdf").read_bytes()) == 8

    def test_missing_input(self, isolated_config):
        """Test a path that does not exist."""
        assert main(["-i", "/nonexistent/path/for/test", "-q"]) == 1

    def test_invalid_option_value(self, make_eml, isolated_config):
        """Test that a bad batch size is reported."""
        with tempfile.TemporaryDirectory() as tmpdir:
            self._write_emails(tmpdir, make_eml, 1)
            assert main(["-i", tmpdir, "--batch-size", "0", "-q"]) == 1
