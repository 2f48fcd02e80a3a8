import struct

import pytest

from pastebox.models import ContentInfo
from pastebox.sniffer import apply_type_hint, sniff

from conftest import make_png


def make_gif(width, height):
    return b"GIF89a" + struct.pack("<HH", width, height) + b"\x00\x00\x00;"


def make_jpeg(width, height, with_dht=True):
    data = b"\xff\xd8"
    # APP0 (JFIF)
    data += b"\xff\xe0" + struct.pack(">H", 16) + b"JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
    if with_dht:
        # DHT shares the C-range with SOF markers but must be skipped
        data += b"\xff\xc4" + struct.pack(">H", 5) + b"\x00\x00\x00"
    data += b"\xff\xc0" + struct.pack(">HBHHB", 11, 8, height, width, 1) + b"\x01\x11\x00"
    return data + b"\xff\xd9"


def riff(chunk, payload):
    body = b"WEBP" + chunk + struct.pack("<I", len(payload)) + payload
    return b"RIFF" + struct.pack("<I", len(body)) + body


def make_webp_lossy(width, height):
    return riff(b"VP8 ", b"\x30\x01\x00" + b"\x9d\x01\x2a" + struct.pack("<HH", width, height))


def make_webp_lossless(width, height):
    return riff(b"VP8L", b"\x2f" + struct.pack("<I", (width - 1) | ((height - 1) << 14)))


def make_webp_extended(width, height):
    payload = b"\x00\x00\x00\x00" + (width - 1).to_bytes(3, "little") + (height - 1).to_bytes(3, "little")
    return riff(b"VP8X", payload)


@pytest.mark.parametrize("data, mime, extension, width, height", [
    (make_png(640, 480), "image/png", ".png", 640, 480),
    (make_gif(32, 16), "image/gif", ".gif", 32, 16),
    (make_jpeg(1024, 768), "image/jpeg", ".jpg", 1024, 768),
    (make_jpeg(7, 9, with_dht=False), "image/jpeg", ".jpg", 7, 9),
    (make_webp_lossy(300, 200), "image/webp", ".webp", 300, 200),
    (make_webp_lossless(4000, 1), "image/webp", ".webp", 4000, 1),
    (make_webp_extended(70000, 3), "image/webp", ".webp", 70000, 3),
])
def test_sniff_images(data, mime, extension, width, height):
    info = sniff(data)
    assert info == ContentInfo(mime=mime, extension=extension, width=width, height=height)


def test_sniff_plain_text_default():
    assert sniff(b"Hello World") == ContentInfo(mime="text/plain", extension="")
    assert sniff(b"") == ContentInfo()


@pytest.mark.parametrize("data, mime", [
    (make_png(10, 10)[:20], "image/png"),
    (b"GIF89a\x01", "image/gif"),
    (make_jpeg(10, 10)[:30], "image/jpeg"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (make_webp_lossy(5, 5)[:27], "image/webp"),
    (make_webp_extended(5, 5)[:28], "image/webp"),
    (b"RIFF\x00\x00\x00\x00WEBP", "image/webp"),
])
def test_sniff_truncated_headers_keep_mime(data, mime):
    info = sniff(data)
    assert info.mime == mime
    assert info.width is None and info.height is None


def test_sniff_short_magic_falls_through():
    assert sniff(b"\x89PN").mime == "text/plain"
    assert sniff(b"RIFF\x00\x00\x00\x00WEB").mime == "text/plain"


def test_sniff_unknown_webp_chunk():
    info = sniff(riff(b"ALPH", b"\x00" * 16))
    assert info.mime == "image/webp"
    assert info.extension == ".webp"
    assert info.width is None


def test_sniff_jpeg_without_sof():
    data = b"\xff\xd8" + b"\xff\xe0" + struct.pack(">H", 4) + b"\x00\x00" + b"\xff\xd9"
    info = sniff(data)
    assert info.mime == "image/jpeg"
    assert info.width is None


def test_sniff_jpeg_segment_length_past_end():
    data = b"\xff\xd8\xff\xe0" + struct.pack(">H", 60000) + b"\x00"
    assert sniff(data).mime == "image/jpeg"


def test_type_hint_only_for_plain_text():
    text = sniff(b'{"a": 1}')
    assert apply_type_hint(text, "application/json; charset=utf-8") == ContentInfo(
        mime="application/json", extension=".json"
    )
    assert apply_type_hint(text, "text/html").mime == "text/plain"
    assert apply_type_hint(text, None).mime == "text/plain"

    png = sniff(make_png(1, 1))
    assert apply_type_hint(png, "text/markdown").mime == "image/png"
