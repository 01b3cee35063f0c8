"""Configuration management for the EML batch converter."""

import json
from dataclasses import dataclass, asdict
from typing import Optional, Tuple
from pathlib import Path

from .errors import ConfigurationError

# Default config file location
CONFIG_PATH = Path.home() / ".eml_batch_pdf_config.json"

# Available page sizes
PAGE_SIZES = ["a4", "letter"]

# Available fonts (standard PDF fonts)
AVAILABLE_FONTS = [
    "Helvetica",
    "Times-Roman",
    "Courier",
]

BOLD_FONTS = {
    "Helvetica": "Helvetica-Bold",
    "Times-Roman": "Times-Bold",
    "Courier": "Courier-Bold",
}

# How converted files are combined
MERGE_STRATEGIES = ["none", "per_batch", "all"]

# Where the decode/compose work runs
EXECUTORS = ["process", "thread", "inline"]

# How cid: references are rewritten before rasterizing
INLINE_IMAGE_MODES = ["data", "file"]

# Width of the label column on the header page, in points
LABEL_WIDTH = 100


@dataclass
class ConversionConfig:
    """Configuration options for EML to PDF conversion."""

    # Page settings
    page_size: str = "a4"  # "a4" or "letter"
    font_family: str = "Helvetica"
    font_size: int = 11
    font_path: Optional[str] = None  # TrueType font for non-Latin text
    margin: float = 50

    # Metadata fields to include on the header page
    include_subject: bool = True
    include_from: bool = True
    include_to: bool = True
    include_cc: bool = True
    include_date: bool = True
    include_extra_headers: bool = True

    # HTML rendering
    render_html: bool = True
    viewport_width: int = 800  # CSS pixels
    raster_scale: float = 1.5
    inline_image_mode: str = "data"
    allow_remote_resources: bool = False

    # Pipeline
    batch_size: int = 50
    concurrency_per_batch: int = 4
    merge_strategy: str = "none"
    auto_print: bool = False
    executor: str = "process"
    retry_attempts: int = 0
    retry_backoff: float = 0.5  # seconds, doubled per attempt

    # MIME walk limits
    max_depth: int = 20
    max_parts: int = 1000

    # Output settings (CLI)
    organize_by_date: bool = False

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ConversionConfig":
        """
        Load configuration from file.

        Args:
            path: Optional path to config file. Uses default if not specified.

        Returns:
            ConversionConfig instance
        """
        config_path = path or CONFIG_PATH

        if config_path.exists():
            try:
                with open(config_path, 'r') as f:
                    data = json.load(f)
                return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
            except (json.JSONDecodeError, TypeError):
                # Return defaults if config is corrupted
                return cls()

        return cls()

    def save(self, path: Optional[Path] = None) -> None:
        """
        Save configuration to file.

        Args:
            path: Optional path to config file. Uses default if not specified.
        """
        config_path = path or CONFIG_PATH

        with open(config_path, 'w') as f:
            json.dump(asdict(self), f, indent=2)

    def validate(self) -> "ConversionConfig":
        """
        Check option values.

        Raises:
            ConfigurationError: if any option is out of range
        """
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.concurrency_per_batch < 1:
            raise ConfigurationError(
                f"concurrency_per_batch must be >= 1, got {self.concurrency_per_batch}"
            )
        if self.merge_strategy not in MERGE_STRATEGIES:
            raise ConfigurationError(
                f"merge_strategy must be one of {', '.join(MERGE_STRATEGIES)}, got {self.merge_strategy!r}"
            )
        if self.executor not in EXECUTORS:
            raise ConfigurationError(
                f"executor must be one of {', '.join(EXECUTORS)}, got {self.executor!r}"
            )
        if self.page_size.lower() not in PAGE_SIZES:
            raise ConfigurationError(f"Unknown page size: {self.page_size!r}")
        if self.inline_image_mode not in INLINE_IMAGE_MODES:
            raise ConfigurationError(f"Unknown inline image mode: {self.inline_image_mode!r}")
        if self.font_path is None and self.font_family not in AVAILABLE_FONTS:
            raise ConfigurationError(f"Unknown font: {self.font_family!r}")
        if self.font_size <= 0 or self.margin < 0:
            raise ConfigurationError("font_size must be positive and margin non-negative")
        width, height = self.get_page_size()
        if width <= 2 * self.margin or height <= 2 * self.margin:
            raise ConfigurationError("margin leaves no room for content")
        if width - 2 * self.margin <= LABEL_WIDTH:
            raise ConfigurationError(
                f"margin leaves no room for header values beside the {LABEL_WIDTH}pt label column"
            )
        if self.viewport_width < 1 or self.raster_scale <= 0:
            raise ConfigurationError("viewport_width and raster_scale must be positive")
        if self.retry_attempts < 0 or self.retry_backoff < 0:
            raise ConfigurationError("retry_attempts and retry_backoff must be non-negative")
        if self.max_depth < 1 or self.max_parts < 1:
            raise ConfigurationError("max_depth and max_parts must be >= 1")
        return self

    def get_page_size(self) -> Tuple[float, float]:
        """Get reportlab page size tuple."""
        from reportlab.lib.pagesizes import letter, A4

        if self.page_size.lower() == "letter":
            return letter
        return A4

    def get_bold_font(self) -> str:
        """Bold companion of the configured standard font."""
        return BOLD_FONTS.get(self.font_family, self.font_family)
