import os
import math
import logging
import dataclasses
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from PIL import Image, ImageDraw, ImageEnhance, ImageFilter, ImageFont, ImageOps, features

from card_style import CardCanvas, StyleParameters
from config import settings
from errors import InputError, RenderError
from text_layout import (
    MAX_LINES,
    PLACEHOLDER_TEXT,
    clean_text,
    max_chars_per_line,
    shape_for_display,
    wrap_text,
)

logger = logging.getLogger(__name__)

FONT_DIR = Path(__file__).resolve().parent

# Geometry in nominal (1x) canvas pixels; multiplied by the export scale at render time
BASE_PADDING = 60
TEXT_AREA_RATIO = 0.8
LINE_HEIGHT_RATIO = 1.4
LABEL_TEXT = "PROMPT"
LABEL_FONT_SIZE = 56
LABEL_GAP = 24
BADGE_HEIGHT = 42
BADGE_FONT_SIZE = 22
BADGE_PADDING_X = 16
BADGE_GAP = 28
BADGE_RADIUS = 8
WORDMARK = ("PROMT", "HUBS")
WORDMARK_FONT_SIZE = 32
WORDMARK_OFFSET_Y = 40
BORDER_INSET = 20
BORDER_RADIUS = 24
BORDER_WIDTH = 2

BLUR_FILL_RADIUS = 30
BLUR_FILL_BRIGHTNESS = 0.5
BLUR_FILL_SATURATION = 1.1
MAIN_BLUR_RADIUS = 12
SHADOW_BLUR_RADIUS = 8
SHADOW_OFFSET = 2
SHADOW_OPACITY = 0.9

# (height fraction measured from the bottom, fraction of peak opacity)
GRADIENT_STOPS = ((0.0, 1.0), (0.35, 0.7), (1.0, 0.0))

WHITE = (255, 255, 255, 255)
BLACK = (0, 0, 0)


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def safe_zone_margin(canvas_width: int, safe_zone_scale: int) -> int:
    """Inset of the main image on every side: width * scale / 400, rounded half up."""
    return _round_half_up(canvas_width * safe_zone_scale / 400)


@lru_cache(maxsize=None)
def resolve_font_path(family: str) -> str | None:
    for candidate in settings.FONTS.get(family, []):
        path = Path(candidate)
        if not path.is_absolute():
            path = FONT_DIR / path
        if os.path.exists(path):
            logger.info(f"Using font {path} for '{family}'")
            return str(path)
    logger.warning(f"No font file found for '{family}', falling back to Pillow's default font")
    return None


def load_font(family: str, size: int):
    path = resolve_font_path(family)
    if path is None:
        return ImageFont.load_default(size=size)

    layout_engine = ImageFont.Layout.RAQM if features.check_feature("raqm") else ImageFont.Layout.BASIC
    try:
        return ImageFont.truetype(path, size=size, layout_engine=layout_engine)
    except OSError as e:
        logger.error(f"Failed to load font {path}: {e}")
        return ImageFont.load_default(size=size)


@dataclass(frozen=True)
class CardLayout:
    """Resolved geometry of one card, in output pixels."""

    width: int
    height: int
    scale: int
    margin: int
    padding: int
    lines: tuple
    font_size: int
    line_height: int
    text_box: tuple
    label_baseline: int
    wordmark_anchor: tuple
    badge_box: tuple | None
    border_box: tuple | None

    @property
    def inner_box(self):
        return (self.margin, self.margin, self.width - self.margin, self.height - self.margin)

    @property
    def inner_size(self):
        left, top, right, bottom = self.inner_box
        return right - left, bottom - top

    def anchor_x(self, alignment: str) -> int:
        """x of the text anchor point for the given alignment."""
        if alignment == "center":
            return self.width // 2
        if alignment == "right":
            return self.width - self.padding
        return self.padding

    def x_for_alignment(self, alignment: str, item_width: int = 0) -> int:
        if alignment == "center":
            return (self.width - item_width) // 2
        if alignment == "right":
            return self.width - self.padding - item_width
        return self.padding


def compute_layout(style: StyleParameters, canvas: CardCanvas) -> CardLayout:
    width, height = canvas.pixel_size
    s = canvas.scale

    def px(value):
        return _round_half_up(value * s)

    safe_zone_active = style.safe_zone and not style.show_original_only
    margin = safe_zone_margin(width, style.safe_zone_scale) if safe_zone_active else 0

    # Line breaks come from nominal sizes so they do not change with the export scale
    nominal_margin = canvas.width * style.safe_zone_scale / 400 if safe_zone_active else 0
    nominal_inner_width = canvas.width - 2 * nominal_margin
    max_chars = max_chars_per_line(nominal_inner_width * TEXT_AREA_RATIO, style.font_size)
    text = clean_text(style.prompt_text) or PLACEHOLDER_TEXT
    lines = tuple(wrap_text(text, max_chars, MAX_LINES))

    padding = px(BASE_PADDING) + margin
    line_height = px(style.font_size * LINE_HEIGHT_RATIO)
    text_bottom = height - padding - px(style.text_position)
    text_top = text_bottom - line_height * len(lines)
    text_box = (padding, text_top, width - padding, text_bottom)
    label_baseline = text_top - px(LABEL_GAP)

    layout = CardLayout(
        width=width,
        height=height,
        scale=s,
        margin=margin,
        padding=padding,
        lines=lines,
        font_size=px(style.font_size),
        line_height=line_height,
        text_box=text_box,
        label_baseline=label_baseline,
        wordmark_anchor=(width - padding, padding + px(WORDMARK_OFFSET_Y)),
        badge_box=None,
        border_box=None,
    )

    badge_box = None
    if style.has_badge:
        badge_font = load_font("bold", px(BADGE_FONT_SIZE))
        badge_width = math.ceil(badge_font.getlength(style.model.upper())) + 2 * px(BADGE_PADDING_X)
        badge_bottom = label_baseline - px(LABEL_FONT_SIZE) - px(BADGE_GAP)
        badge_left = layout.x_for_alignment(style.alignment, badge_width)
        badge_box = (badge_left, badge_bottom - px(BADGE_HEIGHT), badge_left + badge_width, badge_bottom)

    border_box = None
    if style.show_border and not style.show_original_only:
        inset = margin + px(BORDER_INSET)
        border_box = (inset, inset, width - inset - 1, height - inset - 1)

    return dataclasses.replace(layout, badge_box=badge_box, border_box=border_box)


@contextmanager
def _layer(name):
    try:
        yield
    except (OSError, ValueError) as e:
        logger.error(f"Layer '{name}' failed: {e}")
        raise RenderError(f"failed to render {name} layer: {e}", layer=name) from e


def gradient_opacity(fraction_from_bottom: float) -> float:
    """Piecewise-linear opacity (0..1 of peak) along GRADIENT_STOPS."""
    t = min(max(fraction_from_bottom, 0.0), 1.0)
    for (t0, a0), (t1, a1) in zip(GRADIENT_STOPS, GRADIENT_STOPS[1:]):
        if t <= t1:
            return a0 + (a1 - a0) * (t - t0) / (t1 - t0)
    return GRADIENT_STOPS[-1][1]


def gradient_mask(width: int, height: int, intensity: int) -> Image.Image:
    peak = intensity / 100
    denom = max(1, height - 1)
    values = [
        _round_half_up(255 * peak * gradient_opacity((height - 1 - y) / denom))
        for y in range(height)
    ]
    column = Image.new("L", (1, height))
    column.putdata(values)
    return column.resize((width, height), Image.Resampling.NEAREST)


def _render_background(source, canvas, layout):
    width, height = layout.width, layout.height
    # Fully hidden behind the main image when there is no margin
    if layout.margin == 0:
        return Image.new("RGB", (width, height), BLACK)

    # Blurred at nominal size so the look does not depend on the export scale
    fill = ImageOps.fit(source, (canvas.width, canvas.height), method=Image.Resampling.LANCZOS)
    fill = fill.filter(ImageFilter.GaussianBlur(BLUR_FILL_RADIUS))
    fill = ImageEnhance.Brightness(fill).enhance(BLUR_FILL_BRIGHTNESS)
    fill = ImageEnhance.Color(fill).enhance(BLUR_FILL_SATURATION)
    if fill.size != (width, height):
        fill = fill.resize((width, height), Image.Resampling.BICUBIC)
    return fill


def _paste_main_image(card, source, style, layout):
    main = ImageOps.fit(source, layout.inner_size, method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))
    if style.blur_background and not style.show_original_only:
        main = main.filter(ImageFilter.GaussianBlur(MAIN_BLUR_RADIUS * layout.scale))
    card.paste(main, (layout.margin, layout.margin))


def _apply_gradient(card, layout, intensity):
    inner_w, inner_h = layout.inner_size
    card.paste(BLACK, layout.inner_box, gradient_mask(inner_w, inner_h, intensity))


def _draw_wordmark(layer, style, layout):
    draw = ImageDraw.Draw(layer)
    bold = load_font("bold", _round_half_up(WORDMARK_FONT_SIZE * layout.scale))
    x_right, baseline = layout.wordmark_anchor
    tail_width = draw.textlength(WORDMARK[1], font=bold)
    draw.text((x_right, baseline), WORDMARK[1], font=bold, fill=style.theme_rgb + (255,), anchor="rs")
    draw.text((x_right - tail_width, baseline), WORDMARK[0], font=bold, fill=WHITE, anchor="rs")


def _draw_text_block(layer, style, layout):
    s = layout.scale
    draw = ImageDraw.Draw(layer)

    anchors = {"left": ("ls", "la"), "center": ("ms", "ma"), "right": ("rs", "ra")}
    label_anchor, line_anchor = anchors[style.alignment]
    x = layout.anchor_x(style.alignment)

    label_font = load_font("bold", _round_half_up(LABEL_FONT_SIZE * s))
    draw.text((x, layout.label_baseline), LABEL_TEXT, font=label_font, fill=WHITE, anchor=label_anchor)

    prompt_font = load_font(style.font_family, layout.font_size)
    y = layout.text_box[1]
    for line in layout.lines:
        if line:
            draw.text((x, y), shape_for_display(line), font=prompt_font, fill=WHITE, anchor=line_anchor)
        y += layout.line_height


def _draw_badge(layer, style, layout):
    s = layout.scale
    left, top, right, bottom = layout.badge_box
    draw = ImageDraw.Draw(layer)
    draw.rounded_rectangle(
        (left, top, right - 1, bottom - 1),
        radius=_round_half_up(BADGE_RADIUS * s),
        fill=style.theme_rgb + (255,),
    )
    font = load_font("bold", _round_half_up(BADGE_FONT_SIZE * s))
    draw.text(
        (left + _round_half_up(BADGE_PADDING_X * s), (top + bottom) // 2),
        style.model.upper(),
        font=font,
        fill=BLACK + (255,),
        anchor="lm",
    )


def _drop_shadow(layer, scale):
    alpha = layer.getchannel("A").point(lambda a: int(a * SHADOW_OPACITY))
    alpha = alpha.filter(ImageFilter.GaussianBlur(SHADOW_BLUR_RADIUS * scale))
    shifted = Image.new("L", layer.size, 0)
    shifted.paste(alpha, (0, _round_half_up(SHADOW_OFFSET * scale)))
    shadow = Image.new("RGBA", layer.size, (0, 0, 0, 0))
    shadow.putalpha(shifted)
    return shadow


def _flatten_overlay(card, layer, scale):
    base = card.convert("RGBA")
    base = Image.alpha_composite(base, _drop_shadow(layer, scale))
    base = Image.alpha_composite(base, layer)
    return base.convert("RGB")


def _draw_border(card, style, layout):
    draw = ImageDraw.Draw(card)
    draw.rounded_rectangle(
        layout.border_box,
        radius=_round_half_up(BORDER_RADIUS * layout.scale),
        outline=style.theme_rgb,
        width=max(1, _round_half_up(BORDER_WIDTH * layout.scale)),
    )


def composite(image: Image.Image, style: StyleParameters, canvas: CardCanvas | None = None) -> Image.Image:
    """Flatten the card layers into one RGB image of ``canvas.pixel_size``.

    Bottom to top: blurred fill (or black), cover-fitted main image inside the
    safe zone, bottom-up gradient, one overlay holding the wordmark, the
    prompt text and the model badge (all sharing a drop shadow), and the
    rounded border.
    """
    if canvas is None:
        canvas = CardCanvas(settings.CARD_WIDTH, settings.CARD_HEIGHT)
    if image is None or image.width == 0 or image.height == 0:
        raise InputError("Source image is empty")

    layout = compute_layout(style, canvas)
    source = image if image.mode == "RGB" else image.convert("RGB")

    with _layer("blur-fill"):
        card = _render_background(source, canvas, layout)
    with _layer("main-image"):
        _paste_main_image(card, source, style, layout)

    if style.show_original_only:
        return card

    if style.gradient_intensity > 0:
        with _layer("gradient"):
            _apply_gradient(card, layout, style.gradient_intensity)

    overlay = Image.new("RGBA", card.size, (0, 0, 0, 0))
    with _layer("wordmark"):
        _draw_wordmark(overlay, style, layout)
    if style.show_text:
        with _layer("text"):
            _draw_text_block(overlay, style, layout)
    if layout.badge_box is not None:
        with _layer("badge"):
            _draw_badge(overlay, style, layout)
    with _layer("shadow"):
        card = _flatten_overlay(card, overlay, layout.scale)

    if layout.border_box is not None:
        with _layer("border"):
            _draw_border(card, style, layout)
    return card
