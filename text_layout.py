import re
import math
import logging
import unicodedata

import arabic_reshaper
from bidi.algorithm import get_display

logger = logging.getLogger(__name__)

# Both renderers estimate glyph width as font_size * CHAR_WIDTH_RATIO
CHAR_WIDTH_RATIO = 0.55
MAX_LINES = 15
PLACEHOLDER_TEXT = "Enter text..."

# Emoji, pictographs, dingbats, variation selectors, ZWJ, keycap combiner,
# anything outside the BMP and lone surrogates
_UNSUPPORTED_CHARS = re.compile(
    "["
    "\U00010000-\U0010FFFF"
    "\u2600-\u27BF"
    "\u2B00-\u2BFF"
    "\uFE00-\uFE0F"
    "\u200D"
    "\u20E3"
    "\uD800-\uDFFF"
    "]"
)


def is_rtl_text(s: str) -> bool:
    return any('\u0590' <= ch <= '\u08FF' for ch in s)  # Hebrew+Arabic ranges


def clean_text(text: str) -> str:
    """Drop characters the raster text renderer cannot shape and normalise spacing."""
    if not text:
        return ""
    stripped = _UNSUPPORTED_CHARS.sub("", text)
    kept = []
    for ch in stripped:
        if ch.isspace():
            kept.append(" ")
        elif unicodedata.category(ch) == "Cc":
            continue
        else:
            kept.append(ch)
    cleaned = " ".join("".join(kept).split())
    if cleaned != " ".join(text.split()):
        logger.debug(f"Removed unsupported characters from prompt text ({len(text)} -> {len(cleaned)} chars)")
    return cleaned


def shape_for_display(line: str) -> str:
    """Reshape and reorder RTL lines so they draw correctly left to right."""
    if not is_rtl_text(line):
        return line
    reshaped = arabic_reshaper.reshape(line)
    return get_display(reshaped)


def max_chars_per_line(available_width: float, font_size: float) -> int:
    return max(1, math.floor(available_width / (font_size * CHAR_WIDTH_RATIO)))


def wrap_text(text: str, max_chars: int, max_lines: int = MAX_LINES) -> list[str]:
    """Greedy word wrap by character count.

    Words are never split: a word longer than ``max_chars`` gets a line of its
    own. Lines past ``max_lines`` are dropped without an ellipsis. Blank input
    yields a single empty line.
    """
    words = (text or "").split()
    if not words:
        return [""]

    lines = []
    curr = ""
    for w in words:
        test = f"{curr} {w}" if curr else w
        if len(test) <= max_chars or not curr:
            curr = test
        else:
            lines.append(curr)
            curr = w
            if len(lines) >= max_lines:
                break
    if curr and len(lines) < max_lines:
        lines.append(curr)

    return lines[:max_lines]
