"""
Content sniffing.

Classifies a byte buffer by its leading magic bytes and, for images, pulls the
pixel dimensions out of the format header. Every read is bounds-checked so a
truncated or hostile buffer degrades to "MIME type without dimensions" instead
of raising.
"""
import struct
from typing import Optional, Tuple

from pastebox.models import ContentInfo

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
GIF_SIGNATURE = b"GIF8"
JPEG_SIGNATURE = b"\xff\xd8\xff"

# Start-Of-Frame markers, minus DHT (C4), JPG (C8) and DAC (CC)
JPEG_SOF_MARKERS = frozenset(range(0xFFC0, 0xFFD0)) - {0xFFC4, 0xFFC8, 0xFFCC}
# Markers that stand alone without a length field: TEM, RST0-7, SOI
JPEG_STANDALONE_MARKERS = frozenset([0xFF01, *range(0xFFD0, 0xFFD9)])
JPEG_EOI = 0xFFD9
JPEG_SOS = 0xFFDA

# Content-Type hints accepted when sniffing finds nothing better
HINTABLE_TYPES = {
    "application/json": ".json",
    "text/markdown": ".md",
    "text/csv": ".csv",
}

Dimensions = Tuple[Optional[int], Optional[int]]


def _unpack(fmt: str, data: bytes, offset: int) -> Optional[tuple]:
    if offset < 0 or offset + struct.calcsize(fmt) > len(data):
        return None
    return struct.unpack_from(fmt, data, offset)


def _png_dimensions(data: bytes) -> Dimensions:
    values = _unpack(">II", data, 16)
    return values if values else (None, None)


def _gif_dimensions(data: bytes) -> Dimensions:
    values = _unpack("<HH", data, 6)
    return values if values else (None, None)


def _jpeg_dimensions(data: bytes) -> Dimensions:
    offset = 2
    while offset + 2 <= len(data):
        if data[offset] != 0xFF:
            break
        (marker,) = _unpack(">H", data, offset)
        if marker == 0xFFFF:
            # fill byte
            offset += 1
            continue
        if marker in JPEG_STANDALONE_MARKERS:
            offset += 2
            continue
        if marker in (JPEG_EOI, JPEG_SOS):
            break
        length = _unpack(">H", data, offset + 2)
        if length is None or length[0] < 2:
            break
        if marker in JPEG_SOF_MARKERS:
            # payload: precision (1 byte), height, width
            values = _unpack(">HH", data, offset + 5)
            if values is None:
                break
            height, width = values
            return width, height
        offset += 2 + length[0]
    return None, None


def _webp_dimensions(data: bytes) -> Dimensions:
    chunk = data[12:16]
    if chunk == b"VP8 ":
        # 3-byte frame tag and 3-byte start code precede the size fields
        values = _unpack("<HH", data, 26)
        if values:
            return values[0] & 0x3FFF, values[1] & 0x3FFF
    elif chunk == b"VP8L":
        values = _unpack("<I", data, 21)
        if values:
            bits = values[0]
            return 1 + (bits & 0x3FFF), 1 + ((bits >> 14) & 0x3FFF)
    elif chunk == b"VP8X":
        if len(data) >= 30:
            width = int.from_bytes(data[24:27], "little")
            height = int.from_bytes(data[27:30], "little")
            return width + 1, height + 1
    return None, None


def _is_webp(data: bytes) -> bool:
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP"


# (predicate, mime, extension, dimension reader), tried in order
FORMATS = (
    (lambda d: d.startswith(PNG_SIGNATURE), "image/png", ".png", _png_dimensions),
    (lambda d: d.startswith(GIF_SIGNATURE), "image/gif", ".gif", _gif_dimensions),
    (lambda d: d.startswith(JPEG_SIGNATURE), "image/jpeg", ".jpg", _jpeg_dimensions),
    (_is_webp, "image/webp", ".webp", _webp_dimensions),
)


def sniff(data: bytes) -> ContentInfo:
    """
    Classify raw bytes into a MIME type, extension and optional dimensions.

    Args:
        data: Content buffer

    Returns:
        ContentInfo, defaulting to text/plain with no extension
    """
    for matches, mime, extension, read_dimensions in FORMATS:
        if matches(data):
            width, height = read_dimensions(data)
            return ContentInfo(mime=mime, extension=extension, width=width, height=height)
    return ContentInfo()


def apply_type_hint(info: ContentInfo, content_type: Optional[str]) -> ContentInfo:
    """Use the request Content-Type when sniffing found only plain text."""
    if info.mime != "text/plain" or not content_type:
        return info
    mime = content_type.split(";", 1)[0].strip().lower()
    extension = HINTABLE_TYPES.get(mime)
    if extension is None:
        return info
    return ContentInfo(mime=mime, extension=extension)
