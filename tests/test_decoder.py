"""Tests for EML decoding, charset fallbacks and inline image resolution."""

from pathlib import Path
from urllib.parse import unquote, urlparse

import pytest

from eml_batch_pdf.config import ConversionConfig
from eml_batch_pdf.decoder import (
    decode_base64,
    decode_email,
    decode_header_value,
    decode_quoted_printable,
    decode_text,
    inline_image_scope,
    normalize_charset,
    resolve_inline_images,
)
from eml_batch_pdf.errors import DecodeFallbackWarning, ParseError
from eml_batch_pdf.models import NO_SUBJECT, Attachment


MULTIPART = b"""From: =?UTF-8?B?5L2g5aW9?= <sender@example.com>
To: one@example.com, Two <two@example.com>
Cc: three@example.com
Subject: =?UTF-8?Q?Caf=C3=A9_menu?=
Date: Tue, 02 Apr 2024 08:00:00 +0200
Message-ID: <abc@example.com>
MIME-Version: 1.0
Content-Type: multipart/mixed; boundary="outer"

--outer
Content-Type: multipart/related; boundary="inner"

--inner
Content-Type: text/html; charset=utf-8
Content-Transfer-Encoding: quoted-printable

<p>Logo: <img src=3D"cid:logo@x"></p>
--inner
Content-Type: image/png
Content-ID: <logo@x>
Content-Transfer-Encoding: base64

iVBORw0KGgo=
--inner--
--outer
Content-Type: application/pdf; name="report.pdf"
Content-Disposition: attachment; filename="report.pdf"
Content-Transfer-Encoding: base64

JVBERi0xLjQK
--outer
Content-Type: application/octet-stream
Content-Transfer-Encoding: base64

AAEC
--outer--
"""


class TestDecodeEmail:
    """Tests for decode_email."""

    def test_plain_message(self, make_eml):
        """Test decoding a single-part text message."""
        email = decode_email(make_eml(subject="Hello", body="Body text"))
        assert email.subject == "Hello"
        assert email.sender == "Alice <alice@example.com>"
        assert email.to == ("Bob <bob@example.com>",)
        assert email.cc == ()
        assert email.date.year == 2024
        assert "Body text" in email.text_body
        assert email.html_body is None
        assert email.attachments == ()
        assert email.primary_body == "text"

    def test_missing_subject(self, make_eml):
        """Test that an empty subject gets the placeholder."""
        email = decode_email(make_eml(subject=""))
        assert email.subject == NO_SUBJECT

    def test_multipart_structure(self):
        """Test bodies, addresses and attachment classification."""
        email = decode_email(MULTIPART)
        assert email.subject == "Café menu"
        assert email.sender == "你好 <sender@example.com>"
        assert email.to == ("one@example.com", "Two <two@example.com>")
        assert email.cc == ("three@example.com",)
        assert email.primary_body == "html"
        assert 'cid:logo@x' in email.html_body

        names = [att.filename for att in email.attachments]
        assert "report.pdf" in names
        assert len(email.attachments) == 3

        inline = email.inline_attachments()
        assert len(inline) == 1
        assert inline[0].content_id == "logo@x"
        assert inline[0].content.startswith(b"\x89PNG")

        report = next(att for att in email.attachments if att.filename == "report.pdf")
        assert report.content == b"%PDF-1.4\n"
        assert report.disposition == "attachment"

    def test_unnamed_attachment_gets_placeholder(self):
        """Test that a part without a filename is still listed."""
        email = decode_email(MULTIPART)
        unnamed = [att for att in email.attachments if att.content_type == "application/octet-stream"]
        assert len(unnamed) == 1
        assert unnamed[0].filename.startswith("attachment-")
        assert unnamed[0].content == b"\x00\x01\x02"

    def test_headers_are_kept(self):
        """Test that decoded headers are available by lowercase name."""
        email = decode_email(MULTIPART)
        assert email.headers["message-id"] == "<abc@example.com>"

    def test_latin1_quoted_printable(self):
        """Test the Caf=E9 body with a latin-1 charset."""
        raw = (
            b"Subject: qp\r\n"
            b"Content-Type: text/plain; charset=iso-8859-1\r\n"
            b"Content-Transfer-Encoding: quoted-printable\r\n\r\n"
            b"Caf=E9\r\n"
        )
        email = decode_email(raw)
        assert email.text_body.strip() == "Café"

    def test_wrong_declared_charset_warns(self):
        """Test that undecodable text falls back with a warning."""
        raw = (
            b"Subject: bad charset\r\n"
            b"Content-Type: text/plain; charset=utf-8\r\n\r\n"
            b"Caf\xe9 au lait\r\n"
        )
        warnings = []
        email = decode_email(raw, warnings=warnings)
        assert "Caf" in email.text_body
        assert any(isinstance(w, DecodeFallbackWarning) for w in warnings)

    def test_forwarded_message_is_attachment(self, make_eml):
        """Test that message/rfc822 parts are kept as .eml attachments."""
        inner = make_eml(subject="Inner")
        raw = (
            b"Subject: Fwd\r\n"
            b"MIME-Version: 1.0\r\n"
            b"Content-Type: multipart/mixed; boundary=b1\r\n\r\n"
            b"--b1\r\nContent-Type: text/plain\r\n\r\nsee below\r\n"
            b"--b1\r\nContent-Type: message/rfc822\r\n\r\n" + inner +
            b"--b1--\r\n"
        )
        email = decode_email(raw)
        assert "see below" in email.text_body
        assert len(email.attachments) == 1
        assert email.attachments[0].filename == "forwarded-message-1.eml"
        assert b"Subject: Inner" in email.attachments[0].content

    def test_depth_limit(self):
        """Test that parts nested beyond max_depth are skipped with a warning."""
        raw = b"Subject: deep\r\nMIME-Version: 1.0\r\nContent-Type: multipart/mixed; boundary=b0\r\n\r\n"
        closing = b""
        for level in range(1, 5):
            raw += f"--b{level - 1}\r\nContent-Type: multipart/mixed; boundary=b{level}\r\n\r\n".encode()
            closing = f"--b{level - 1}--\r\n".encode() + closing
        raw += b"--b4\r\nContent-Type: text/plain\r\n\r\ndeepest\r\n--b4--\r\n" + closing

        warnings = []
        email = decode_email(raw, ConversionConfig(max_depth=2), warnings)
        assert "deepest" not in email.text_body
        assert any("deeper than 2" in str(w) for w in warnings)

        email = decode_email(raw, ConversionConfig(max_depth=20))
        assert "deepest" in email.text_body

    def test_corrupt_input_raises(self):
        """Test that bytes without any header structure are rejected."""
        with pytest.raises(ParseError):
            decode_email(b"\x00\x01\x02 not an email \xff")

    def test_empty_input_raises(self):
        """Test that empty input is rejected."""
        with pytest.raises(ParseError):
            decode_email(b"")
        with pytest.raises(ParseError):
            decode_email(b"   \r\n")


class TestTextDecoding:
    """Tests for transfer and charset decoding helpers."""

    def test_quoted_printable(self):
        """Test soft line breaks and escapes."""
        assert decode_quoted_printable(b"Caf=E9") == b"Caf\xe9"
        assert decode_quoted_printable(b"long=\r\nline") == b"longline"
        assert decode_quoted_printable(b"soft=\nbreak") == b"softbreak"

    def test_plain_text_unchanged(self):
        """Test that text without escapes passes through."""
        assert decode_quoted_printable(b"just text") == b"just text"
        assert decode_text(b"just text", declared="us-ascii") == "just text"

    def test_lenient_base64(self):
        """Test base64 with line breaks and missing padding."""
        assert decode_base64(b"SGVs\r\nbG8") == b"Hello"
        assert decode_base64(b"SGVsbG8=") == b"Hello"

    def test_fallback_to_latin1(self):
        """Test that decode_text never raises."""
        warnings = []
        text = decode_text(b"\xff\xfe\xfa", declared="utf-8", detected="utf-8", warnings=warnings)
        assert isinstance(text, str)
        assert len(text) == 3

    def test_unknown_declared_charset(self):
        """Test that an unknown charset name falls back."""
        assert normalize_charset("x-unknown-charset") is None
        assert decode_text(b"hello", declared="x-unknown-charset") == "hello"

    def test_charset_aliases(self):
        """Test that legacy Chinese charsets map to gb18030."""
        assert normalize_charset("GB2312") == "gb18030"
        assert normalize_charset('"UTF-8"') == "utf-8"


class TestDecodeHeaderValue:
    """Tests for RFC 2047 header decoding."""

    def test_base64_word(self):
        """Test a B-encoded UTF-8 word."""
        assert decode_header_value("=?UTF-8?B?5L2g5aW9?=") == "你好"

    def test_q_word(self):
        """Test a Q-encoded word with underscores."""
        assert decode_header_value("=?iso-8859-1?Q?Caf=E9_cr=E8me?=") == "Café crème"

    def test_adjacent_words_joined(self):
        """Test that whitespace between encoded words is dropped."""
        value = "=?UTF-8?Q?Hello_?= =?UTF-8?Q?World?="
        assert decode_header_value(value) == "Hello World"

    def test_mixed_text(self):
        """Test encoded words inside plain text."""
        assert decode_header_value("Re: =?UTF-8?B?5L2g5aW9?= again") == "Re: 你好 again"

    def test_bad_word_kept_raw(self):
        """Test that a word with an unknown charset is kept as-is."""
        warnings = []
        value = "=?x-bogus?Q?abc?= ok"
        assert decode_header_value(value, warnings) == value
        assert len(warnings) == 1


class TestInlineImages:
    """Tests for cid: resolution."""

    def _logo(self, cid="abc123"):
        return Attachment(
            filename="logo.png",
            content_type="image/png",
            content=b"\x89PNG fake",
            content_id=cid,
            disposition="inline",
        )

    def test_data_url(self):
        """Test that cid references become data URLs."""
        html = '<img src="cid:abc123"><img src="CID:abc123">'
        resolved = resolve_inline_images(html, [self._logo()])
        assert "cid:" not in resolved.lower()
        assert resolved.count("data:image/png;base64,") == 2

    def test_prefix_ids_not_confused(self):
        """Test that cid:abc does not match inside cid:abc123."""
        html = '<img src="cid:abc123"><img src="cid:abc">'
        resolved = resolve_inline_images(html, [self._logo("abc")])
        assert 'cid:abc123' in resolved
        assert resolved.count("data:image/png") == 1

    def test_attachments_not_inline_are_ignored(self):
        """Test that regular attachments are not substituted."""
        att = Attachment("a.png", "image/png", b"x", content_id="abc123", disposition="attachment")
        assert resolve_inline_images('<img src="cid:abc123">', [att]) == '<img src="cid:abc123">'

    def test_file_mode_cleans_up(self):
        """Test that file mode removes its temporary directory."""
        html = '<img src="cid:abc123">'
        with inline_image_scope(html, [self._logo()], mode="file") as resolved:
            assert "file://" in resolved
            path = resolved.split('src="')[1].split('"')[0]
        assert not Path(unquote(urlparse(path).path)).exists()

    def test_file_mode_cleans_up_on_error(self):
        """Test cleanup when rendering raises."""
        html = '<img src="cid:abc123">'
        captured = {}
        with pytest.raises(RuntimeError):
            with inline_image_scope(html, [self._logo()], mode="file") as resolved:
                captured["html"] = resolved
                raise RuntimeError("render failed")
        assert "file://" in captured["html"]


class TestAddressesAndFilenames:
    """Tests for encoded display names and RFC 2231 filenames."""

    def test_encoded_comma_stays_in_display_name(self):
        """Test that a 'Last, First' encoded name is one recipient."""
        raw = (
            b"From: =?UTF-8?Q?Doe=2C_John?= <john@example.com>\r\n"
            b"To: =?UTF-8?Q?Smith=2C_Ann?= <ann@example.com>, bob@example.com\r\n"
            b"Subject: names\r\n\r\n"
            b"body\r\n"
        )
        email = decode_email(raw)
        assert email.sender == "Doe, John <john@example.com>"
        assert email.to == ("Smith, Ann <ann@example.com>", "bob@example.com")
        assert email.headers["to"].startswith("Smith, Ann")

    def test_rfc2231_filename_in_latin1_message(self):
        """Test that an RFC 2231 filename is not re-decoded with the body charset."""
        raw = (
            b"Subject: menu\r\n"
            b"MIME-Version: 1.0\r\n"
            b"Content-Type: multipart/mixed; boundary=b1\r\n\r\n"
            b"--b1\r\n"
            b"Content-Type: text/plain; charset=iso-8859-1\r\n"
            b"Content-Transfer-Encoding: 8bit\r\n\r\n"
            b"Caf\xe9 cr\xe8me br\xfbl\xe9e\r\n"
            b"--b1\r\n"
            b"Content-Type: application/pdf\r\n"
            b"Content-Disposition: attachment; filename*=UTF-8''caf%C3%A9.pdf\r\n"
            b"Content-Transfer-Encoding: base64\r\n\r\n"
            b"JVBERi0xLjQK\r\n"
            b"--b1--\r\n"
        )
        email = decode_email(raw)
        assert email.attachments[0].filename == "café.pdf"
        assert "Café" in email.text_body

    def test_rfc2231_filename_without_warnings(self):
        """Test that an already decoded filename records no fallback."""
        raw = (
            b"Subject: menu\r\n"
            b"MIME-Version: 1.0\r\n"
            b"Content-Type: multipart/mixed; boundary=b1\r\n\r\n"
            b"--b1\r\nContent-Type: text/plain\r\n\r\nsee attached\r\n"
            b"--b1\r\n"
            b"Content-Type: application/pdf\r\n"
            b"Content-Disposition: attachment; filename*=UTF-8''caf%C3%A9.pdf\r\n"
            b"Content-Transfer-Encoding: base64\r\n\r\n"
            b"JVBERi0xLjQK\r\n"
            b"--b1--\r\n"
        )
        warnings = []
        email = decode_email(raw, warnings=warnings)
        assert email.attachments[0].filename == "café.pdf"
        assert not any(isinstance(w, DecodeFallbackWarning) for w in warnings)
