"""Shared utility functions for EML to PDF conversion."""

import os
import re
import logging
import mimetypes
from datetime import datetime
from typing import Optional, Set, Tuple

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Set up root logging for command-line use."""
    level = logging.WARNING
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format=LOG_FORMAT)


def format_filename(date: Optional[datetime], subject: str, existing_names: Set[str]) -> str:
    """
    Format the filename as 'DATE - Subject' and ensure uniqueness.

    Args:
        date: Parsed email date, if any
        subject: Email subject
        existing_names: Set of already used filenames

    Returns:
        Unique formatted filename (without extension)
    """
    safe_subject = sanitize_filename(subject[:50])
    formatted_date = date.strftime("%Y-%m-%d") if date else "Unknown_Date"

    base_name = f"{formatted_date} - {safe_subject}".strip()

    # Ensure unique name
    unique_name = base_name
    counter = 1
    while unique_name in existing_names:
        unique_name = f"{base_name} ({counter})"
        counter += 1

    return unique_name


def sanitize_filename(filename: str) -> str:
    """
    Sanitize a string for use as a filename.

    Args:
        filename: The string to sanitize

    Returns:
        A safe filename string
    """
    # Remove or replace dangerous characters
    safe = re.sub(r'[<>:"/\\|?*\x00-\x1f]', '_', filename)
    # Replace multiple underscores/spaces with single
    safe = re.sub(r'[_\s]+', ' ', safe)
    safe = safe.strip()
    if len(safe) > 100:
        safe = safe[:100]
    return safe if safe else "untitled"


def pdf_name_for(source_name: str) -> str:
    """Output name for a source file: 'mail.eml' -> 'mail.pdf'."""
    base = sanitize_filename(os.path.basename(source_name))
    if base.lower().endswith(".eml"):
        base = base[:-4]
    return f"{base}.pdf"


def get_unique_filepath(folder: str, filename: str) -> str:
    """
    Get a unique filepath, adding numbers if file exists.

    Args:
        folder: The target directory
        filename: The desired filename

    Returns:
        A unique filepath
    """
    filepath = os.path.join(folder, filename)
    if not os.path.exists(filepath):
        return filepath

    name, ext = os.path.splitext(filename)
    counter = 1
    while os.path.exists(filepath):
        filepath = os.path.join(folder, f"{name}_{counter}{ext}")
        counter += 1

    return filepath


def parse_email_date(date_str: str) -> Optional[datetime]:
    """
    Parse an email date string into a datetime object.

    Args:
        date_str: The date string from an email header

    Returns:
        datetime object or None if parsing fails
    """
    if not date_str:
        return None

    # Common email date formats
    formats = [
        "%a, %d %b %Y %H:%M:%S %z",
        "%d %b %Y %H:%M:%S %z",
        "%a, %d %b %Y %H:%M:%S",
        "%d %b %Y %H:%M:%S",
        "%Y-%m-%d %H:%M:%S %z",
        "%Y-%m-%d %H:%M:%S",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(date_str.strip(), fmt)
        except (ValueError, TypeError):
            continue

    return None


def get_year_month(date: Optional[datetime]) -> Tuple[str, str]:
    """
    Year and month folder names for a parsed email date.

    Returns:
        Tuple of (year, month) strings
    """
    if date:
        return date.strftime("%Y"), date.strftime("%m")
    return "Unknown_Year", "Unknown_Month"


def guess_extension(content_type: str) -> Optional[str]:
    """
    Guess file extension from content type.

    Args:
        content_type: MIME content type

    Returns:
        File extension including the dot, or None
    """
    type_to_ext = {
        'application/pdf': '.pdf',
        'application/msword': '.doc',
        'application/vnd.openxmlformats-officedocument.wordprocessingml.document': '.docx',
        'application/vnd.ms-excel': '.xls',
        'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet': '.xlsx',
        'application/zip': '.zip',
        'message/rfc822': '.eml',
        'text/plain': '.txt',
        'text/html': '.html',
        'text/calendar': '.ics',
        'text/csv': '.csv',
        'image/jpeg': '.jpg',
        'image/png': '.png',
        'image/gif': '.gif',
    }

    ext = type_to_ext.get(content_type.lower())
    if ext:
        return ext
    return mimetypes.guess_extension(content_type)


def format_size(size_bytes: int) -> str:
    """
    Format a byte count in human-readable form.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"
