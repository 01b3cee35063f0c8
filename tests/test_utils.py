"""Tests for utility functions."""

import os
import tempfile
from datetime import datetime

from eml_batch_pdf.utils import (
    format_filename,
    format_size,
    get_unique_filepath,
    get_year_month,
    guess_extension,
    parse_email_date,
    pdf_name_for,
    sanitize_filename,
)


class TestFilenames:
    """Tests for output file naming."""

    def test_format_filename(self):
        """Test the 'DATE - Subject' format."""
        name = format_filename(datetime(2024, 1, 15), "Hello", set())
        assert name == "2024-01-15 - Hello"

    def test_unknown_date(self):
        """Test naming without a date."""
        assert format_filename(None, "Hello", set()) == "Unknown_Date - Hello"

    def test_unique_names(self):
        """Test that duplicate names get a counter."""
        used = {"2024-01-15 - Hello", "2024-01-15 - Hello (1)"}
        assert format_filename(datetime(2024, 1, 15), "Hello", used) == "2024-01-15 - Hello (2)"

    def test_sanitize(self):
        """Test removal of characters that are unsafe in filenames."""
        assert sanitize_filename('a/b:c*d?"e') == "a b c d e"
        assert sanitize_filename("   ") == "untitled"
        assert len(sanitize_filename("x" * 300)) == 100

    def test_pdf_name_for(self):
        """Test the per-file output name."""
        assert pdf_name_for("mail.eml") == "mail.pdf"
        assert pdf_name_for("/tmp/Mail.EML") == "Mail.pdf"

    def test_unique_filepath(self):
        """Test that existing files are not overwritten."""
        with tempfile.TemporaryDirectory() as tmpdir:
            first = get_unique_filepath(tmpdir, "a.pdf")
            open(first, "wb").close()
            second = get_unique_filepath(tmpdir, "a.pdf")
            assert os.path.basename(second) == "a_1.pdf"


class TestDates:
    """Tests for date helpers."""

    def test_parse_email_date(self):
        """Test a common header date format."""
        parsed = parse_email_date("Mon, 15 Jan 2024 10:30:00 +0000")
        assert parsed.year == 2024
        assert parsed.month == 1

    def test_unparseable_date(self):
        """Test that garbage returns None."""
        assert parse_email_date("yesterday") is None
        assert parse_email_date("") is None

    def test_year_month(self):
        """Test year/month folder names."""
        assert get_year_month(datetime(2023, 7, 4)) == ("2023", "07")
        assert get_year_month(None) == ("Unknown_Year", "Unknown_Month")


class TestFormatting:
    """Tests for size and extension helpers."""

    def test_format_size(self):
        """Test human-readable sizes."""
        assert format_size(512) == "512 B"
        assert format_size(1536) == "1.5 KB"
        assert format_size(5 * 1024 * 1024) == "5.0 MB"

    def test_guess_extension(self):
        """Test extension lookup."""
        assert guess_extension("application/pdf") == ".pdf"
        assert guess_extension("message/rfc822") == ".eml"
        assert guess_extension("application/x-unknown-thing") is None
