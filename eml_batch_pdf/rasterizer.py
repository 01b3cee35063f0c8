"""HTML to raster rendering with WeasyPrint and PyMuPDF."""

import html
import io
import re
import logging
from typing import List, Optional

import pymupdf
from PIL import Image

from .config import ConversionConfig
from .errors import RasterError

logger = logging.getLogger(__name__)

# WeasyPrint needs native libraries (Pango); a missing install turns HTML
# rendering off instead of breaking imports.
WEASYPRINT_AVAILABLE = False
_WEASYPRINT_ERROR = None

try:
    from weasyprint import HTML, CSS, default_url_fetcher
    WEASYPRINT_AVAILABLE = True
except ImportError:
    HTML = CSS = default_url_fetcher = None
    _WEASYPRINT_ERROR = "not installed"
except OSError:
    HTML = CSS = default_url_fetcher = None
    _WEASYPRINT_ERROR = "missing dependencies"

if WEASYPRINT_AVAILABLE:
    logger.debug("WeasyPrint is available for HTML rendering")
else:
    logger.debug(f"WeasyPrint {_WEASYPRINT_ERROR}, HTML bodies will be rendered as text")

# CSS pixels to PDF points
PX_TO_PT = 0.75

# Page height of the intermediate document, as a multiple of the width
PAGE_ASPECT = 1.414

RASTER_CSS = """
@page {{
    size: {width}px {height}px;
    margin: 0;
}}

html, body {{
    background-color: #ffffff;
}}

body {{
    margin: 0;
    padding: 20px;
    font-family: Helvetica, Arial, sans-serif;
    font-size: 11pt;
    line-height: 1.5;
    color: #333;
    word-wrap: break-word;
}}

img {{
    max-width: 100%;
    height: auto;
}}

a {{
    color: #0066cc;
}}

pre, code {{
    font-family: Courier, monospace;
    white-space: pre-wrap;
}}

blockquote {{
    border-left: 3px solid #ccc;
    margin-left: 0;
    padding-left: 15px;
    color: #666;
}}

table {{
    border-collapse: collapse;
    max-width: 100%;
}}
"""


class HtmlRasterizer:
    """Turns HTML markup into a single RGB image."""

    def rasterize(self, markup: str) -> Image.Image:
        raise NotImplementedError


def _local_url_fetcher(url, *args, **kwargs):
    """Only allow resources that do not leave the machine."""
    if url.startswith(("data:", "file:")):
        return default_url_fetcher(url, *args, **kwargs)
    raise ValueError(f"remote resource blocked: {url}")


def stack_images(images: List[Image.Image]) -> Image.Image:
    """Stack page images top to bottom into one image."""
    width = max(image.width for image in images)
    height = sum(image.height for image in images)
    canvas = Image.new("RGB", (width, height), "white")
    top = 0
    for image in images:
        canvas.paste(image, (0, top))
        top += image.height
    return canvas


class WeasyPrintRasterizer(HtmlRasterizer):
    """
    Lay out HTML with WeasyPrint at a fixed viewport width, then
    rasterize the resulting pages with PyMuPDF and stack them.
    """

    def __init__(
        self,
        viewport_width: int = 800,
        scale: float = 1.5,
        allow_remote_resources: bool = False,
    ):
        self.viewport_width = viewport_width
        self.scale = scale
        self.allow_remote_resources = allow_remote_resources

    def render_pdf(self, markup: str) -> bytes:
        """Lay out the markup as PDF pages one viewport wide."""
        css = RASTER_CSS.format(
            width=self.viewport_width,
            height=int(self.viewport_width * PAGE_ASPECT),
        )
        fetcher = default_url_fetcher if self.allow_remote_resources else _local_url_fetcher
        document = HTML(string=markup, url_fetcher=fetcher)
        return document.write_pdf(stylesheets=[CSS(string=css)])

    def rasterize(self, markup: str) -> Image.Image:
        if not WEASYPRINT_AVAILABLE:
            raise RasterError(f"WeasyPrint {_WEASYPRINT_ERROR or 'unavailable'}")

        try:
            pdf_bytes = self.render_pdf(markup)
            zoom = self.scale / PX_TO_PT
            images = []
            with pymupdf.open(stream=pdf_bytes, filetype="pdf") as document:
                for page in document:
                    pixmap = page.get_pixmap(matrix=pymupdf.Matrix(zoom, zoom), alpha=False)
                    image = Image.open(io.BytesIO(pixmap.tobytes("png")))
                    images.append(image.convert("RGB"))
        except RasterError:
            raise
        except Exception as e:
            raise RasterError(f"HTML rendering failed: {e}") from e

        if not images:
            raise RasterError("HTML rendering produced no pages")

        logger.debug(f"Rasterized HTML into {len(images)} page image(s)")
        return stack_images(images)


def get_rasterizer(config: Optional[ConversionConfig] = None) -> Optional[HtmlRasterizer]:
    """Rasterizer for the configuration, or None when HTML rendering is off."""
    config = config or ConversionConfig()
    if not config.render_html:
        return None
    return WeasyPrintRasterizer(
        viewport_width=config.viewport_width,
        scale=config.raster_scale,
        allow_remote_resources=config.allow_remote_resources,
    )


def extract_text_from_html(html_content: str) -> str:
    """
    Extract readable text from HTML content by cleaning up HTML tags.
    Used when the HTML body cannot be rasterized and there is no text body.

    Args:
        html_content: The raw HTML content from email

    Returns:
        Cleaned, readable text content
    """
    content = html_content

    # Remove scripts, styles and head
    for tag in ['script', 'style', 'head']:
        content = re.sub(
            rf'<{tag}\b[^<]*(?:(?!</{tag}>)<[^<]*)*</{tag}>',
            '', content, flags=re.DOTALL | re.IGNORECASE
        )

    # Replace image tags with placeholders
    content = re.sub(r'<img[^>]*?alt="([^"]*)"[^>]*?>', r'[Image: \1]', content)
    content = re.sub(r'<img[^>]*?>', r'[Image]', content)

    # Replace links with text and URL
    content = re.sub(
        r'<a[^>]*?href="(?!cid:|data:)([^"]*)"[^>]*?>(.*?)</a>',
        r'\2 (\1)', content, flags=re.DOTALL
    )

    # Replace common block elements with line breaks
    for tag in ['div', 'p', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'tr', 'li', 'br']:
        if tag == 'br':
            content = re.sub(f'<{tag}[^>]*?>', '\n', content, flags=re.IGNORECASE)
        else:
            content = re.sub(f'</{tag}[^>]*?>', '\n', content, flags=re.IGNORECASE)

    # Handle lists with bullets
    content = re.sub(r'<li[^>]*?>', '* ', content)

    # Replace table cells with spacing
    content = re.sub(r'<td[^>]*?>', ' | ', content)

    # Remove all remaining HTML tags
    content = re.sub(r'<[^>]*?>', '', content)

    content = html.unescape(content)

    # Collapse whitespace
    content = re.sub(r'[ \t]+', ' ', content)
    content = re.sub(r' *\n *', '\n', content)
    content = re.sub(r'\n{3,}', '\n\n', content)

    return content.strip()


def wrap_html_document(body_html: str, title: str = "Email") -> str:
    """Give bare HTML fragments a document shell with a charset."""
    if re.search(r'<html\b', body_html, re.IGNORECASE):
        return body_html
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title></head>"
        f"<body>{body_html}</body></html>"
    )
