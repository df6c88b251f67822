import io
import struct
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

from PIL import Image, ImageOps, UnidentifiedImageError

from card_style import CardCanvas, StyleParameters
from compositor import composite
from config import settings
from errors import CardGenerationError, InputError
from palette import extract_palette

logger = logging.getLogger(__name__)

__all__ = ["build_card", "build_card_async", "decode_image", "extract_palette"]

# At most RENDER_WORKERS full-size rasters are alive at once
_executor = ThreadPoolExecutor(max_workers=settings.RENDER_WORKERS, thread_name_prefix="card-render")


def decode_image(data: bytes) -> Image.Image:
    """Decode PNG/JPEG/WebP bytes into an upright RGB image."""
    if not data:
        raise InputError("Image buffer is empty")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            upright = ImageOps.exif_transpose(img)
            return upright.convert("RGB")
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, EOFError, struct.error, Image.DecompressionBombError) as e:
        logger.error(f"Could not decode source image ({len(data)} bytes): {e}")
        raise CardGenerationError("card generation failed", cause=e) from e


def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def build_card(image_bytes: bytes, style: StyleParameters, scale: int = 1) -> bytes:
    """Decode, composite onto the nominal canvas times ``scale`` and return PNG bytes."""
    canvas = CardCanvas(settings.CARD_WIDTH, settings.CARD_HEIGHT, scale)
    source = decode_image(image_bytes)
    logger.info(
        f"Rendering card {canvas.pixel_size[0]}x{canvas.pixel_size[1]} "
        f"from {source.width}x{source.height} source (safe_zone={style.safe_zone}, model={style.model})"
    )
    card = composite(source, style, canvas)
    return encode_png(card)


async def build_card_async(image_bytes: bytes, style: StyleParameters, scale: int = 1, timeout: float | None = None) -> bytes:
    """Run ``build_card`` on the render pool without blocking the event loop."""
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(_executor, build_card, image_bytes, style, scale)
    return await asyncio.wait_for(future, timeout=timeout or settings.RENDER_TIMEOUT)
