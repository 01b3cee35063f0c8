"""Shared fixtures for the test suite."""

import io

import pytest
from pypdf import PdfReader, PdfWriter

from eml_batch_pdf.config import ConversionConfig


def build_eml(
    subject="Test message",
    body="Hello there.\nSecond line.",
    sender="Alice <alice@example.com>",
    to="Bob <bob@example.com>",
    date="Mon, 15 Jan 2024 10:30:00 +0000",
    extra_headers=None,
) -> bytes:
    """A minimal single-part text/plain message."""
    lines = [
        f"From: {sender}",
        f"To: {to}",
        f"Subject: {subject}",
        f"Date: {date}",
        "MIME-Version: 1.0",
        "Content-Type: text/plain; charset=utf-8",
        "Content-Transfer-Encoding: 8bit",
    ]
    lines.extend(extra_headers or [])
    return ("\r\n".join(lines) + "\r\n\r\n" + body + "\r\n").encode("utf-8")


def build_pdf(pages: int) -> bytes:
    """A PDF with the given number of blank pages."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=200, height=200)
    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()


def page_count(data: bytes) -> int:
    return len(PdfReader(io.BytesIO(data)).pages)


@pytest.fixture
def make_eml():
    return build_eml


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def text_config():
    """Configuration that keeps all work on threads and skips HTML rendering."""
    return ConversionConfig(render_html=False, executor="thread", concurrency_per_batch=2)


@pytest.fixture
def pdf_pages():
    return page_count
