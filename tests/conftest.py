import io
import sys
import zlib
import struct
from pathlib import Path

import pytest
from PIL import Image

# Ensure the repo root is on sys.path for direct pytest runs
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


def png_bytes(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def solid_png():
    """PNG bytes of a flat 400x600 image in the given colour."""
    def make(color=(40, 90, 200), size=(400, 600)):
        return png_bytes(Image.new("RGB", size, color))
    return make


@pytest.fixture
def quadrant_png():
    img = Image.new("RGB", (200, 200), (230, 40, 40))
    img.paste((30, 160, 60), (100, 0, 200, 100))
    img.paste((250, 250, 250), (0, 100, 100, 200))
    img.paste((10, 10, 20), (100, 100, 200, 200))
    return png_bytes(img)


def _png_chunk(kind: bytes, payload: bytes) -> bytes:
    crc = zlib.crc32(kind + payload) & 0xFFFFFFFF
    return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", crc)


@pytest.fixture
def broken_png():
    """A PNG whose pixel data is cut short and followed by a garbage chunk header.

    The header parses, so Image.open succeeds; Pillow only fails with
    SyntaxError("broken PNG file") once load() reads past the truncated data.
    """
    width, height = 64, 48
    rows = b"".join(b"\x00" + bytes((x * 4) % 256 for x in range(width * 3)) for _ in range(height))
    pixels = zlib.compress(rows)
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", ihdr)
        + _png_chunk(b"IDAT", pixels[: len(pixels) // 2])
        + struct.pack(">I", 0) + b"\x84END"
        + b"\x00" * 16
    )
