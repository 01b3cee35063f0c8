"""Hand finished PDFs to the system print spooler."""

import os
import platform
import subprocess
import tempfile
import logging

from .utils import sanitize_filename

logger = logging.getLogger(__name__)


def print_pdf(data: bytes, name: str) -> bool:
    """
    Send a PDF to the default printer.

    The document is written to a temporary file first. Printing problems
    are logged and reported through the return value, never raised.

    Args:
        data: PDF bytes
        name: Display name used for the temporary file

    Returns:
        True if the print command was accepted
    """
    stem = sanitize_filename(os.path.splitext(name)[0])
    fd, path = tempfile.mkstemp(prefix=f"{stem}_", suffix=".pdf")
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)

    try:
        if platform.system() == 'Windows':
            # the spooler reads the file asynchronously; it is left in %TEMP%
            os.startfile(path, "print")
            return True
        subprocess.run(['lpr', '-T', name, path], check=True, capture_output=True)
        logger.info(f"Sent {name} to the printer")
        return True
    except (OSError, subprocess.CalledProcessError) as e:
        logger.error(f"Printing {name} failed: {e}")
        return False
    finally:
        if platform.system() != 'Windows':
            os.unlink(path)
