import io
import logging

from PIL import Image, ImageOps

from card_style import ColorSwatch, SWATCH_LABELS
from config import settings

logger = logging.getLogger(__name__)

ANALYSIS_SIZE = 100
BRAND_COLOR = settings.BRAND_COLOR
MAX_SWATCHES = 5

# Pixels outside this brightness band are too close to black/white to count as vibrant
VIBRANT_MIN_BRIGHTNESS = 40
VIBRANT_MAX_BRIGHTNESS = 220

FALLBACK_PALETTE = (
    ColorSwatch(BRAND_COLOR, SWATCH_LABELS["brand"]),
    ColorSwatch("#FFFFFF", SWATCH_LABELS["brightest"]),
    ColorSwatch("#333333", SWATCH_LABELS["darkest"]),
)


def rgb_to_hex(r, g, b):
    return f"#{r:02X}{g:02X}{b:02X}"


def _round_half_up(value):
    return int(value + 0.5)


def extract_palette(image_bytes: bytes) -> list[ColorSwatch]:
    """Extract up to five theme colours from raw image bytes.

    Never raises: anything that cannot be decoded yields the fixed fallback
    palette so card creation is never blocked by colour analysis.
    """
    if not image_bytes:
        logger.warning("Color analysis skipped: empty image buffer")
        return list(FALLBACK_PALETTE)
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img.load()
            return extract_palette_from_image(img)
    except Exception as e:
        logger.warning(f"Color analysis error, using fallback palette: {e}")
        return list(FALLBACK_PALETTE)


def extract_palette_from_image(image: Image.Image) -> list[ColorSwatch]:
    sample = ImageOps.fit(image.convert("RGB"), (ANALYSIS_SIZE, ANALYSIS_SIZE))
    data = sample.tobytes()

    total_r = total_g = total_b = 0
    brightest, brightest_val = (0, 0, 0), -1.0
    darkest, darkest_val = (255, 255, 255), 999.0
    vibrant, vibrant_score = None, -1

    for i in range(0, len(data), 3):
        r, g, b = data[i], data[i + 1], data[i + 2]
        total_r += r
        total_g += g
        total_b += b

        brightness = (r + g + b) / 3
        if brightness > brightest_val:
            brightest, brightest_val = (r, g, b), brightness
        if brightness < darkest_val:
            darkest, darkest_val = (r, g, b), brightness

        if not VIBRANT_MIN_BRIGHTNESS < brightness < VIBRANT_MAX_BRIGHTNESS:
            continue
        chroma = max(r, g, b) - min(r, g, b)
        if chroma > vibrant_score:
            vibrant, vibrant_score = (r, g, b), chroma

    count = len(data) // 3
    average = (
        _round_half_up(total_r / count),
        _round_half_up(total_g / count),
        _round_half_up(total_b / count),
    )

    candidates = []
    if vibrant is not None:
        candidates.append(ColorSwatch(rgb_to_hex(*vibrant), SWATCH_LABELS["vibrant"]))
    candidates.append(ColorSwatch(rgb_to_hex(*average), SWATCH_LABELS["dominant"]))
    candidates.append(ColorSwatch(rgb_to_hex(*brightest), SWATCH_LABELS["brightest"]))
    candidates.append(ColorSwatch(rgb_to_hex(*darkest), SWATCH_LABELS["darkest"]))
    candidates.append(ColorSwatch(BRAND_COLOR, SWATCH_LABELS["brand"]))

    palette = []
    seen = set()
    for swatch in candidates:
        if swatch.color in seen:
            continue
        seen.add(swatch.color)
        palette.append(swatch)
    return palette[:MAX_SWATCHES]
