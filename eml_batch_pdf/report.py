"""PDF report listing the files a run could not convert."""

import html
import logging
import os
from typing import Iterable, Optional

from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from .config import ConversionConfig
from .models import BatchItemResult

logger = logging.getLogger(__name__)

REPORT_NAME = "Skipped_Files_Report.pdf"


def create_skipped_files_report(
    items: Iterable[BatchItemResult],
    output_folder: str,
    config: Optional[ConversionConfig] = None,
) -> Optional[str]:
    """
    Create a PDF report of files that failed to convert.

    Args:
        items: Item results of a run; only failed ones are listed
        output_folder: Folder to save the report
        config: Supplies the page size

    Returns:
        Path to the report PDF, or None if nothing failed or the report
        could not be written
    """
    failed = [item for item in items if item.error is not None]
    if not failed:
        return None

    config = config or ConversionConfig()
    report_path = os.path.join(output_folder, REPORT_NAME)

    styles = getSampleStyleSheet()
    elements = [
        Paragraph("<b>Skipped Files Report</b>", styles["Title"]),
        Spacer(1, 20),
        Paragraph(
            f"<b>{len(failed)} file(s) could not be converted:</b>",
            styles["Normal"]
        ),
        Spacer(1, 10),
    ]

    for item in failed:
        # item.error already starts with the file name
        elements.append(Paragraph(html.escape(item.error), styles["Normal"]))
        if item.attempts > 1:
            elements.append(Paragraph(f"<i>Attempts: {item.attempts}</i>", styles["Normal"]))
        elements.append(Spacer(1, 5))

    try:
        doc = SimpleDocTemplate(report_path, pagesize=config.get_page_size())
        doc.build(elements)
    except OSError as e:
        logger.error(f"Error creating skipped files report: {e}")
        return None
    return report_path
