"""Lay out one StructuredEmail as a PDF document with ReportLab."""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from .config import LABEL_WIDTH, ConversionConfig
from .decoder import inline_image_scope
from .errors import ComposeError, RasterError, RenderFallbackWarning
from .layout import WidthCache, font_measure, wrap
from .models import StructuredEmail
from .rasterizer import HtmlRasterizer, extract_text_from_html, wrap_html_document
from .utils import format_size

logger = logging.getLogger(__name__)

TITLE_SIZE = 16
HEADER_SPACING = 1.5
BODY_SPACING = 1.2
ENTRY_INDENT = 20
CREATOR = "eml-batch-pdf"

EXTRA_HEADERS = [
    'message-id', 'reply-to', 'sender', 'return-path', 'importance', 'priority'
]


@dataclass(frozen=True)
class ComposedDocument:
    data: bytes
    page_count: int


def register_fonts(config: ConversionConfig) -> Tuple[str, str]:
    """
    Regular and bold font names for the configuration.

    A TrueType ``font_path`` is registered under its file stem and used
    for both weights.
    """
    if config.font_path:
        name = Path(config.font_path).stem
        if name not in pdfmetrics.getRegisteredFontNames():
            pdfmetrics.registerFont(TTFont(name, config.font_path))
        return name, name
    return config.font_family, config.get_bold_font()


class PageWriter:
    """Vertical cursor over a canvas; opens a new page when space runs out."""

    def __init__(self, canv: canvas.Canvas, config: ConversionConfig, regular: str, bold: str):
        self.canvas = canv
        self.width, self.height = config.get_page_size()
        self.margin = config.margin
        self.font_size = config.font_size
        self.regular = regular
        self.bold = bold
        # one width cache per font for this document only
        self.measure_regular = WidthCache(font_measure(regular))
        self.measure_bold = WidthCache(font_measure(bold))
        self.page_count = 0
        self.y = self.top
        self.continuation_title: Optional[str] = None

    @property
    def top(self) -> float:
        return self.height - self.margin

    @property
    def bottom(self) -> float:
        return self.margin

    @property
    def content_width(self) -> float:
        return self.width - 2 * self.margin

    @property
    def content_height(self) -> float:
        return self.height - 2 * self.margin

    def new_page(self, title: Optional[str] = None) -> None:
        if self.page_count:
            self.canvas.showPage()
        self.page_count += 1
        self.y = self.top
        if title:
            self.draw_title(title)

    def finish(self) -> None:
        if self.page_count:
            self.canvas.showPage()

    def fits(self, height: float) -> bool:
        return self.y - height >= self.bottom

    def ensure(self, height: float) -> None:
        if not self.fits(height):
            self.new_page(self.continuation_title)

    def draw_title(self, title: str) -> None:
        baseline = self.y - TITLE_SIZE
        self.canvas.setFont(self.bold, TITLE_SIZE)
        self.canvas.drawString(self.margin, baseline, title)
        rule_y = baseline - 10
        self.canvas.setLineWidth(1)
        self.canvas.line(self.margin, rule_y, self.width - self.margin, rule_y)
        self.y = rule_y - 20

    def draw_line(self, text: str, x_offset: float = 0, bold: bool = False, spacing: float = BODY_SPACING) -> None:
        line_height = self.font_size * spacing
        self.ensure(line_height)
        self.canvas.setFont(self.bold if bold else self.regular, self.font_size)
        self.canvas.drawString(self.margin + x_offset, self.y - self.font_size, text)
        self.y -= line_height

    def wrap(self, text: str, width: float, bold: bool = False) -> List[str]:
        measure = self.measure_bold if bold else self.measure_regular
        return wrap(text, width, measure, self.font_size)

    def draw_label_value(self, label: str, value: str) -> None:
        """Bold label with a value wrapped in the column to its right."""
        line_height = self.font_size * HEADER_SPACING
        lines = self.wrap(value, self.content_width - LABEL_WIDTH) or [""]
        for i, line in enumerate(lines):
            self.ensure(line_height)
            baseline = self.y - self.font_size
            if i == 0:
                self.canvas.setFont(self.bold, self.font_size)
                self.canvas.drawString(self.margin, baseline, label)
            self.canvas.setFont(self.regular, self.font_size)
            self.canvas.drawString(self.margin + LABEL_WIDTH, baseline, line)
            self.y -= line_height
        self.y -= line_height * 0.5


def _format_date(email: StructuredEmail) -> str:
    return email.date.strftime("%Y-%m-%d %H:%M:%S %z").strip()


def _header_pages(writer: PageWriter, email: StructuredEmail, config: ConversionConfig) -> None:
    writer.continuation_title = "Email Information (continued)"
    writer.new_page("Email Information")

    if config.include_subject:
        writer.draw_label_value("Subject:", email.subject)
    if config.include_from:
        writer.draw_label_value("From:", email.sender)
    if config.include_to:
        writer.draw_label_value("To:", ", ".join(email.to))
    if config.include_cc and email.cc:
        writer.draw_label_value("CC:", ", ".join(email.cc))
    if config.include_date and email.date:
        writer.draw_label_value("Date:", _format_date(email))

    count = len(email.attachments)
    writer.draw_label_value("Attachments:", f"{count} file{'s' if count != 1 else ''}")

    if not config.include_extra_headers:
        return
    present = [name for name in EXTRA_HEADERS if email.headers.get(name)]
    if present:
        writer.draw_line("Other Headers:", bold=True, spacing=HEADER_SPACING)
        for name in present:
            writer.draw_label_value(f"{name}:", email.headers[name])


def _text_body_pages(writer: PageWriter, text: str) -> None:
    writer.continuation_title = None
    writer.new_page("Email Content")
    for line in writer.wrap(text, writer.content_width):
        writer.draw_line(line)


def _raster_body_pages(writer: PageWriter, image) -> None:
    """Scale to content width and emit one page per page-height band."""
    scale = writer.content_width / image.width
    band_height = max(1, int(writer.content_height / scale))

    for top in range(0, image.height, band_height):
        band = image.crop((0, top, image.width, min(top + band_height, image.height)))
        height = band.height * scale
        writer.new_page()
        writer.canvas.drawImage(
            ImageReader(band),
            writer.margin,
            writer.top - height,
            width=writer.content_width,
            height=height,
        )
        writer.y = writer.top - height


def _body_pages(
    writer: PageWriter,
    email: StructuredEmail,
    config: ConversionConfig,
    rasterizer: Optional[HtmlRasterizer],
    warnings: Optional[List[Warning]],
) -> None:
    if not email.html_body:
        _text_body_pages(writer, email.text_body)
        return

    if rasterizer is not None:
        try:
            with inline_image_scope(email.html_body, email.attachments, config.inline_image_mode) as resolved:
                image = rasterizer.rasterize(wrap_html_document(resolved, email.subject))
        except RasterError as e:
            message = f"HTML rendering failed, using text body: {e}"
            logger.warning(message)
            if warnings is not None:
                warnings.append(RenderFallbackWarning(message))
        else:
            _raster_body_pages(writer, image)
            return

    _text_body_pages(writer, email.text_body or extract_text_from_html(email.html_body))


def _attachment_pages(writer: PageWriter, email: StructuredEmail) -> None:
    writer.continuation_title = "Attachments (continued)"
    writer.new_page("Attachments")
    line_height = writer.font_size * HEADER_SPACING

    for i, attachment in enumerate(email.attachments, start=1):
        name_lines = writer.wrap(f"{i}. {attachment.filename}", writer.content_width, bold=True)
        details = [
            f"Type: {attachment.content_type}",
            f"Size: {format_size(attachment.size)}",
        ]
        if attachment.content_id:
            details.append(f"Content ID: {attachment.content_id}")

        entry_height = (len(name_lines) + len(details)) * line_height
        if entry_height <= writer.content_height:
            # keep an entry on one page
            writer.ensure(entry_height)

        for line in name_lines:
            writer.draw_line(line, bold=True, spacing=HEADER_SPACING)
        for line in details:
            writer.draw_line(line, x_offset=ENTRY_INDENT, spacing=HEADER_SPACING)
        writer.y -= line_height * 0.5


def compose_email(
    email: StructuredEmail,
    config: Optional[ConversionConfig] = None,
    rasterizer: Optional[HtmlRasterizer] = None,
    warnings: Optional[List[Warning]] = None,
) -> ComposedDocument:
    """
    Render an email as header, body and attachment pages.

    Args:
        email: Decoded email
        config: Optional configuration
        rasterizer: Renders the HTML body; None renders text only
        warnings: Optional collector for render fallbacks

    Returns:
        ComposedDocument with the PDF bytes and its page count

    Raises:
        ComposeError: if the document could not be laid out
    """
    config = config or ConversionConfig()

    try:
        regular, bold = register_fonts(config)
        buffer = io.BytesIO()
        canv = canvas.Canvas(buffer, pagesize=config.get_page_size())
        canv.setTitle(email.subject)
        canv.setSubject(email.subject)
        canv.setAuthor(email.sender)
        canv.setCreator(CREATOR)

        writer = PageWriter(canv, config, regular, bold)
        _header_pages(writer, email, config)
        _body_pages(writer, email, config, rasterizer, warnings)
        if email.attachments:
            _attachment_pages(writer, email)
        writer.finish()
        canv.save()
    except ComposeError:
        raise
    except Exception as e:
        raise ComposeError(f"could not lay out document: {e}") from e

    return ComposedDocument(data=buffer.getvalue(), page_count=writer.page_count)
