"""
EML Batch PDF

Converts batches of EML email files to PDF: a header page, the message
body (HTML bodies rendered as page-height raster bands), an attachments
summary, and optional per-batch or whole-run merged documents.

Usage:
    # As a module
    python -m eml_batch_pdf --input ./emails --output ./pdfs

    # Merge each batch of 20 into one PDF
    python -m eml_batch_pdf -i ./emails --batch-size 20 --merge per-batch
"""

__version__ = "1.0.0"

from .config import ConversionConfig
from .decoder import decode_email
from .composer import compose_email
from .merge import merge_pdfs
from .files import MemoryFile, PathFile, collect_eml_files
from .models import BatchItemResult, MergedOutput, RunState, StructuredEmail
from .orchestrator import BatchOrchestrator, BatchRun, RunCallbacks, convert_files

__all__ = [
    "ConversionConfig",
    "decode_email",
    "compose_email",
    "merge_pdfs",
    "MemoryFile",
    "PathFile",
    "collect_eml_files",
    "BatchItemResult",
    "MergedOutput",
    "RunState",
    "StructuredEmail",
    "BatchOrchestrator",
    "BatchRun",
    "RunCallbacks",
    "convert_files",
    "__version__",
]
