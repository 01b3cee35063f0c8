"""Greedy line wrapping against measured glyph widths."""

from typing import Callable, Dict, List, Tuple

from reportlab.pdfbase.pdfmetrics import stringWidth

Measure = Callable[[str, float], float]

TAB = "    "


class WidthCache:
    """
    Memoizes a measure function on (text, size).

    One instance belongs to one document build and is never shared
    between concurrently composed documents.
    """

    def __init__(self, measure: Measure):
        self._measure = measure
        self._widths: Dict[Tuple[str, float], float] = {}
        self.hits = 0
        self.misses = 0

    def __call__(self, text: str, size: float) -> float:
        key = (text, size)
        width = self._widths.get(key)
        if width is None:
            self.misses += 1
            width = self._measure(text, size)
            self._widths[key] = width
        else:
            self.hits += 1
        return width

    def __len__(self) -> int:
        return len(self._widths)


def font_measure(font_name: str) -> Measure:
    """Measure function for a registered ReportLab font."""
    def _measure(text: str, size: float) -> float:
        return stringWidth(text, font_name, size)
    return _measure


def text_width(text: str, measure: Measure, size: float) -> float:
    """Width of a line as the sum of its glyph widths."""
    return sum(measure(ch, size) for ch in text)


def _wrap_paragraph(paragraph: str, max_width: float, measure: Measure, size: float) -> List[str]:
    lines: List[str] = []
    line: List[str] = []
    widths: List[float] = []
    total = 0.0
    # index in ``line`` just past the last whitespace glyph, 0 if none
    boundary = 0

    for ch in paragraph:
        width = measure(ch, size)

        while line and total + width > max_width:
            if boundary:
                head = "".join(line[:boundary]).rstrip()
                line, widths = line[boundary:], widths[boundary:]
                total = sum(widths)
                # a word that still overflows is broken by the next pass
                boundary = 0
                if head:
                    lines.append(head)
                    continue
            else:
                # no word boundary: break mid-word
                lines.append("".join(line))
                line, widths, total = [], [], 0.0

        if not line and ch.isspace() and lines:
            # leading whitespace of a continuation line is dropped
            continue

        line.append(ch)
        widths.append(width)
        total += width
        if ch.isspace():
            boundary = len(line)

    if line or not lines:
        lines.append("".join(line).rstrip())
    return lines


def wrap(text: str, max_width: float, measure: Measure, size: float = 11) -> List[str]:
    """
    Wrap text into lines no wider than ``max_width``.

    Each input line is a paragraph; an empty paragraph yields one empty
    line. Lines break at the last whitespace that fits, mid-word when a
    word is wider than the line, and a glyph wider than the line is
    emitted on its own.

    Args:
        text: Text to wrap
        max_width: Available width in the same units as ``measure``
        measure: Callable returning the width of a string at a font size
        size: Font size passed to ``measure``

    Returns:
        Ordered list of lines
    """
    if max_width <= 0:
        raise ValueError(f"max_width must be positive, got {max_width}")

    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", TAB)
    lines: List[str] = []
    for paragraph in text.split("\n"):
        lines.extend(_wrap_paragraph(paragraph, max_width, measure, size))
    return lines
