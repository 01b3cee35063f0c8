"""Decoding of raw EML bytes into StructuredEmail records.

The standard library parser is only used to tokenize the message into
headers and MIME parts. Transfer decoding, charset handling and RFC 2047
header decoding happen here so that every fallback can be reported.
"""

import base64
import binascii
import codecs
import logging
import os
import re
import shutil
import tempfile
from contextlib import contextmanager
from email import policy
from email.message import Message
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from charset_normalizer import from_bytes

from .config import ConversionConfig
from .errors import DecodeFallbackWarning, ParseError
from .models import NO_SUBJECT, Attachment, MimeLeaf, MimeMultipart, MimeNode, StructuredEmail
from .utils import guess_extension, parse_email_date

logger = logging.getLogger(__name__)

# Only the head of large messages is sampled for envelope detection
DETECTION_SAMPLE_BYTES = 64 * 1024

# Declared charsets that are better read with a superset codec
CHARSET_ALIASES = {
    "gb2312": "gb18030",
    "gbk": "gb18030",
    "ks_c_5601-1987": "cp949",
    "iso-8859-8-i": "iso-8859-8",
    "x-sjis": "shift_jis",
}

_QP_SOFT_BREAK = re.compile(rb"=\r?\n")
_QP_ESCAPE = re.compile(rb"=([0-9A-Fa-f]{2})")
_BASE64_JUNK = re.compile(rb"[^A-Za-z0-9+/=]")
_ENCODED_WORD = re.compile(r"=\?([^?\s]+)\?([BbQq])\?([^?\s]*)\?=")
_ENCODED_WORD_GAP = re.compile(
    r"(=\?[^?\s]+\?[BbQq]\?[^?\s]*\?=)\s+(?==\?[^?\s]+\?[BbQq]\?[^?\s]*\?=)"
)
_FOLDING = re.compile(r"\r?\n(?=[ \t])")
# undecoded 8-bit bytes carried through the parser as lone surrogates
_RAW_BYTES = re.compile("[\udc80-\udcff]")

# Characters that may continue a Content-ID token after a cid: prefix
_CID_TAIL = r"(?![A-Za-z0-9.@_$%+\-])"


def _record_warning(warnings: Optional[List[Warning]], message: str) -> None:
    """Log a decode fallback and append it to the collector, if any."""
    logger.warning(message)
    if warnings is not None:
        warnings.append(DecodeFallbackWarning(message))


def normalize_charset(name: Optional[str]) -> Optional[str]:
    """Canonical codec name for a declared charset, or None if unknown."""
    if not name:
        return None
    cleaned = name.strip().strip('"\'').lower()
    cleaned = CHARSET_ALIASES.get(cleaned, cleaned)
    try:
        return codecs.lookup(cleaned).name
    except LookupError:
        return None


def detect_charset(data: bytes) -> Optional[str]:
    """
    Statistical charset detection.

    Args:
        data: Raw bytes of unknown encoding

    Returns:
        Codec name, or None if nothing plausible was found
    """
    if not data:
        return None
    try:
        data.decode("ascii")
        return "ascii"
    except UnicodeDecodeError:
        pass

    best = from_bytes(data[:DETECTION_SAMPLE_BYTES]).best()
    if best is None:
        return None
    return normalize_charset(best.encoding)


def decode_text(
    data: bytes,
    declared: Optional[str] = None,
    detected: Optional[str] = None,
    warnings: Optional[List[Warning]] = None,
    context: str = "text",
) -> str:
    """
    Decode bytes to text, never raising.

    Tries the declared charset, then the detected one, then UTF-8, and
    finally latin-1, which maps every byte.

    Args:
        data: Bytes to decode
        declared: Charset named by the message, if any
        detected: Charset already detected for this data, if any
        warnings: Optional collector for fallback warnings
        context: Label used in warning messages

    Returns:
        Decoded text
    """
    if not data:
        return ""

    tried: List[str] = []

    def _attempt(name: Optional[str]) -> Optional[str]:
        codec = normalize_charset(name)
        if codec is None or codec in tried:
            if name and codec is None and not tried:
                tried.append(name)
            return None
        tried.append(codec)
        try:
            return data.decode(codec)
        except (UnicodeDecodeError, LookupError):
            return None

    text = _attempt(declared)
    if text is None:
        text = _attempt(detected or detect_charset(data))
    if text is None:
        text = _attempt("utf-8")

    if text is not None:
        if len(tried) > 1:
            _record_warning(
                warnings,
                f"{context}: could not decode as {tried[0]}, used {tried[-1]}"
            )
        return text

    _record_warning(
        warnings,
        f"{context}: could not decode as {', '.join(tried) or 'any charset'}, used latin-1"
    )
    return data.decode("latin-1")


def decode_quoted_printable(data: bytes) -> bytes:
    """Remove soft line breaks, then substitute =XX escapes."""
    data = _QP_SOFT_BREAK.sub(b"", data)
    return _QP_ESCAPE.sub(lambda m: bytes([int(m.group(1), 16)]), data)


def decode_base64(
    data: bytes,
    warnings: Optional[List[Warning]] = None,
    context: str = "part",
) -> bytes:
    """Lenient base64 decoding. Undecodable input is passed through."""
    cleaned = _BASE64_JUNK.sub(b"", data).rstrip(b"=")
    if len(cleaned) % 4 == 1:
        cleaned = cleaned[:-1]
    cleaned += b"=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned)
    except (binascii.Error, ValueError) as e:
        _record_warning(warnings, f"{context}: invalid base64 ({e}), kept raw bytes")
        return data


def decode_transfer_encoding(
    payload: bytes,
    encoding: Optional[str],
    warnings: Optional[List[Warning]] = None,
    context: str = "part",
) -> bytes:
    """Undo the Content-Transfer-Encoding of a part body."""
    name = (encoding or "").strip().lower()
    if name == "base64":
        return decode_base64(payload, warnings, context)
    if name == "quoted-printable":
        return decode_quoted_printable(payload)
    return payload


def decode_header_value(value: str, warnings: Optional[List[Warning]] = None) -> str:
    """
    Decode RFC 2047 encoded words in a header value.

    A word that fails to decode keeps its raw text; the rest of the
    header is still decoded.
    """
    if "=?" not in value:
        return value

    value = _ENCODED_WORD_GAP.sub(r"\1", value)

    def _replace(match):
        charset, encoding, text = match.groups()
        # RFC 2231 language suffix: =?utf-8*en?Q?...?=
        codec = normalize_charset(charset.split("*", 1)[0])
        try:
            if codec is None:
                raise LookupError(charset)
            if encoding in "Bb":
                raw = base64.b64decode(text + "=" * (-len(text) % 4))
            else:
                raw = decode_quoted_printable(text.replace("_", " ").encode("ascii"))
            return raw.decode(codec)
        except (binascii.Error, UnicodeError, LookupError, ValueError) as e:
            _record_warning(warnings, f"header: could not decode encoded word {match.group(0)!r} ({e})")
            return match.group(0)

    return _ENCODED_WORD.sub(_replace, value)


def _raw_to_text(value: str, charset: Optional[str], warnings: Optional[List[Warning]]) -> str:
    """Recover 8-bit header text that the tokenizer carried as surrogates."""
    value = _FOLDING.sub("", str(value)).strip()
    try:
        value.encode("ascii")
        return value
    except UnicodeEncodeError:
        raw = value.encode("utf-8", "surrogateescape")
        return decode_text(raw, detected=charset, warnings=warnings, context="header")


def _decoded_headers(
    part: Message,
    charset: Optional[str],
    warnings: Optional[List[Warning]],
) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for name, value in part.raw_items():
        headers[name.lower()] = decode_header_value(_raw_to_text(value, charset, warnings), warnings)
    return headers


def _address_list(value: str, warnings: Optional[List[Warning]]) -> Tuple[str, ...]:
    """Split an address header into individual display strings."""
    if not value:
        return ()
    addresses = []
    for name, address in getaddresses([value]):
        name = decode_header_value(name, warnings).strip()
        if not address:
            continue
        addresses.append(f"{name} <{address}>" if name else address)
    if not addresses:
        return (decode_header_value(value, warnings).strip(),)
    return tuple(addresses)


def _parse_date(value: Optional[str]):
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return parse_email_date(value)


class _WalkState:
    """Counters shared across one recursive walk of the MIME tree."""

    def __init__(self, max_depth: int, max_parts: int, charset: Optional[str]):
        self.max_depth = max_depth
        self.max_parts = max_parts
        self.charset = charset
        self.parts = 0
        self.truncated = False


def build_mime_tree(
    part: Message,
    state: _WalkState,
    warnings: Optional[List[Warning]] = None,
    depth: int = 0,
) -> MimeNode:
    """
    Convert a tokenized message into MimeLeaf / MimeMultipart nodes.

    Parts nested deeper than ``max_depth`` or beyond ``max_parts`` are
    dropped with a warning.
    """
    state.parts += 1
    headers = _decoded_headers(part, state.charset, warnings)
    content_type = part.get_content_type()

    if part.is_multipart() and content_type != "message/rfc822":
        children = []
        for child in part.get_payload():
            if depth + 1 > state.max_depth:
                _record_warning(warnings, f"MIME nesting deeper than {state.max_depth} levels skipped")
                break
            if state.parts >= state.max_parts:
                if not state.truncated:
                    _record_warning(warnings, f"more than {state.max_parts} MIME parts, remainder skipped")
                    state.truncated = True
                break
            children.append(build_mime_tree(child, state, warnings, depth + 1))
        return MimeMultipart(
            content_type=content_type,
            headers=headers,
            children=tuple(children),
            depth=depth,
        )

    if content_type == "message/rfc822":
        payload = _serialized_message(part)
    else:
        if content_type.startswith("multipart/"):
            # multipart without a usable boundary: keep the text
            _record_warning(warnings, f"{content_type} part without boundary read as text/plain")
            content_type = "text/plain"
        body = part.get_payload()
        raw = body.encode("utf-8", "surrogateescape") if isinstance(body, str) else b""
        payload = decode_transfer_encoding(
            raw,
            part.get("content-transfer-encoding"),
            warnings,
            context=content_type,
        )

    filename = part.get_filename()
    if filename:
        if _RAW_BYTES.search(filename):
            filename = _raw_to_text(filename, state.charset, warnings)
        filename = decode_header_value(filename, warnings).strip()

    params = {}
    charset = part.get_content_charset()
    if charset:
        params["charset"] = charset
    disposition = part.get_content_disposition()
    if disposition:
        params["disposition"] = disposition

    return MimeLeaf(
        content_type=content_type,
        params=params,
        headers=headers,
        payload=payload,
        depth=depth,
        filename=filename or None,
    )


def _serialized_message(part: Message) -> bytes:
    payload = part.get_payload()
    if isinstance(payload, list) and payload:
        try:
            return payload[0].as_bytes()
        except (UnicodeError, LookupError, ValueError):
            return str(payload[0]).encode("utf-8", "surrogateescape")
    if isinstance(payload, str):
        return payload.encode("utf-8", "surrogateescape")
    return b""


class _BodyCollector:
    def __init__(self, charset: Optional[str], warnings: Optional[List[Warning]]):
        self.charset = charset
        self.warnings = warnings
        self.text: List[str] = []
        self.html: List[str] = []
        self.attachments: List[Attachment] = []
        self.unnamed = 0

    def placeholder_name(self, content_type: str) -> str:
        self.unnamed += 1
        if content_type == "message/rfc822":
            return f"forwarded-message-{self.unnamed}.eml"
        ext = guess_extension(content_type) or ".bin"
        return f"attachment-{self.unnamed}{ext}"

    def add_attachment(self, leaf: MimeLeaf, disposition: str) -> None:
        content_id = leaf.headers.get("content-id", "").strip().strip("<>").strip() or None
        self.attachments.append(Attachment(
            filename=leaf.filename or self.placeholder_name(leaf.content_type),
            content_type=leaf.content_type,
            content=leaf.payload,
            content_id=content_id,
            disposition=disposition,
        ))

    def text_of(self, leaf: MimeLeaf) -> str:
        return decode_text(
            leaf.payload,
            declared=leaf.params.get("charset"),
            warnings=self.warnings,
            context=leaf.content_type,
        )

    def collect(self, node: MimeNode) -> None:
        if isinstance(node, MimeMultipart):
            for child in node.children:
                self.collect(child)
            return

        disposition = node.params.get("disposition")
        has_cid = bool(node.headers.get("content-id", "").strip())
        content_type = node.content_type

        if disposition == "attachment":
            self.add_attachment(node, "attachment")
        elif content_type.startswith("image/") and has_cid:
            self.add_attachment(node, "inline")
        elif node.filename:
            self.add_attachment(node, "attachment")
        elif content_type == "text/plain":
            self.text.append(self.text_of(node))
        elif content_type == "text/html":
            self.html.append(self.text_of(node))
        else:
            self.add_attachment(node, "attachment")


def decode_email(
    raw: bytes,
    config: Optional[ConversionConfig] = None,
    warnings: Optional[List[Warning]] = None,
) -> StructuredEmail:
    """
    Decode raw EML bytes.

    Args:
        raw: Complete message bytes
        config: Optional configuration (MIME walk limits)
        warnings: Optional collector for DecodeFallbackWarning entries

    Returns:
        StructuredEmail

    Raises:
        ParseError: if no header structure can be recognised at all
    """
    config = config or ConversionConfig()

    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    if not raw or not raw.strip():
        raise ParseError("empty message")

    try:
        msg = BytesParser(policy=policy.compat32).parsebytes(raw)
    except Exception as e:
        raise ParseError(f"unreadable message: {e}") from e

    if not list(msg.raw_items()):
        raise ParseError("no header fields found; not an email message")

    envelope_charset = detect_charset(raw)
    state = _WalkState(config.max_depth, config.max_parts, envelope_charset)
    tree = build_mime_tree(msg, state, warnings)

    collector = _BodyCollector(envelope_charset, warnings)
    collector.collect(tree)

    headers = tree.headers
    # address headers are split before RFC 2047 decoding so that an encoded
    # comma stays inside its display name
    raw_headers = {name.lower(): value for name, value in msg.raw_items()}

    def _addresses(name: str) -> Tuple[str, ...]:
        # 8-bit fallbacks were already reported with the decoded headers
        raw = _raw_to_text(raw_headers.get(name, ""), envelope_charset, None)
        return _address_list(raw, warnings)

    subject = headers.get("subject", "").strip() or NO_SUBJECT
    html_body = "\n".join(collector.html) if collector.html else None

    return StructuredEmail(
        subject=subject,
        sender=", ".join(_addresses("from")),
        to=_addresses("to"),
        cc=_addresses("cc"),
        date=_parse_date(headers.get("date")),
        text_body="\n".join(collector.text),
        html_body=html_body,
        attachments=tuple(collector.attachments),
        headers=headers,
    )


def data_url(attachment: Attachment) -> str:
    encoded = base64.b64encode(attachment.content).decode("ascii")
    return f"data:{attachment.content_type};base64,{encoded}"


def resolve_inline_images(
    html: str,
    attachments: Sequence[Attachment],
    url_for: Optional[Callable[[Attachment], str]] = None,
) -> str:
    """
    Replace cid: references with renderable URLs.

    Args:
        html: HTML body with cid: references
        attachments: Attachments of the same email
        url_for: Maps an inline attachment to a URL (data URL by default)

    Returns:
        HTML with every matching cid: reference replaced
    """
    url_for = url_for or data_url
    inline = sorted(
        (att for att in attachments if att.is_inline),
        key=lambda att: len(att.content_id),
        reverse=True,
    )
    for att in inline:
        url = url_for(att)
        pattern = re.compile("cid:" + re.escape(att.content_id) + _CID_TAIL, re.IGNORECASE)
        html = pattern.sub(lambda _m: url, html)
        logger.debug(f"Resolved inline image {att.content_id} ({att.size} bytes)")
    return html


@contextmanager
def inline_image_scope(
    html: str,
    attachments: Sequence[Attachment],
    mode: str = "data",
) -> Iterator[str]:
    """
    Resolve inline images for the duration of a rendering call.

    In "file" mode the images are written to a temporary directory that
    is removed on exit, including when rendering fails.
    """
    if mode != "file" or not any(att.is_inline for att in attachments):
        yield resolve_inline_images(html, attachments)
        return

    temp_dir = tempfile.mkdtemp(prefix="eml_inline_")
    try:
        written: Dict[str, str] = {}

        def _file_url(att: Attachment) -> str:
            if att.content_id not in written:
                ext = guess_extension(att.content_type) or ".bin"
                path = Path(temp_dir) / f"image_{len(written)}{ext}"
                path.write_bytes(att.content)
                written[att.content_id] = path.as_uri()
            return written[att.content_id]

        yield resolve_inline_images(html, attachments, _file_url)
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)
        logger.debug(f"Removed inline image directory {os.path.basename(temp_dir)}")
