import base64
import binascii
import re

# Keep tab, LF, CR and printable ASCII; drop everything else (legacy .doc and
# unknown binaries carry long runs of formatting bytes between text fragments).
_NON_PRINTABLE_ASCII_RE = re.compile(r"[^\t\n\r\x20-\x7e]+")

# Control characters and U+FFFD left behind by a lossy UTF-8 decode. Real text
# files never contain them, binary noise renamed to .txt is full of them.
_CONTROL_AND_REPLACEMENT_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\ufffd]+")

# "data:application/pdf;base64,JVBERi0x..."
_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+\-/]+)?(?:;[\w\-]+=[\w\-]+)*;base64,", re.IGNORECASE)


def strip_non_printable(text: str) -> str:
    return _NON_PRINTABLE_ASCII_RE.sub("", text)


def strip_control_characters(text: str) -> str:
    return _CONTROL_AND_REPLACEMENT_RE.sub("", text)


def decode_utf8(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def to_data_url(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def split_data_url(value: str) -> tuple[str | None, str]:
    """Return ``(mime_type, base64_payload)``; mime is None when there is no prefix."""
    match = _DATA_URL_RE.match(value)
    if not match:
        return None, value
    return match.group("mime"), value[match.end():]


def decode_file_payload(value: str | bytes) -> bytes:
    """Accept raw bytes, bare base64 or a base64 data URL."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not value:
        return b""
    _, payload = split_data_url(value.strip())
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"File payload is not valid base64: {e}") from e
