"""Concatenate PDF documents with pypdf."""

import io
import logging
from typing import List, Sequence

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError

from .errors import MergeError

logger = logging.getLogger(__name__)


def _load(data: bytes, position: int) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(data))
        # force page tree parsing so broken documents fail here
        _ = len(reader.pages)
    except (PyPdfError, ValueError, KeyError, TypeError, OSError) as e:
        raise MergeError(f"document {position + 1} is not a readable PDF: {e}") from e
    if reader.is_encrypted:
        raise MergeError(f"document {position + 1} is encrypted")
    return reader


def count_pages(data: bytes) -> int:
    """Number of pages in a PDF document."""
    return len(_load(data, 0).pages)


def merge_pdfs(documents: Sequence[bytes]) -> bytes:
    """
    Merge documents into one, keeping input order and page order.

    Every input is loaded before anything is written, so either all of
    them merge or the call fails.

    Args:
        documents: PDF documents as bytes

    Returns:
        The merged PDF as bytes

    Raises:
        MergeError: if there is nothing to merge or an input is unreadable
    """
    if not documents:
        raise MergeError("no documents to merge")

    readers: List[PdfReader] = [_load(data, i) for i, data in enumerate(documents)]

    writer = PdfWriter()
    try:
        for reader in readers:
            for page in reader.pages:
                writer.add_page(page)
        output = io.BytesIO()
        writer.write(output)
    except (PyPdfError, ValueError, KeyError, TypeError, OSError) as e:
        raise MergeError(f"could not write merged document: {e}") from e

    total = sum(len(reader.pages) for reader in readers)
    logger.debug(f"Merged {len(readers)} documents into {total} pages")
    return output.getvalue()
