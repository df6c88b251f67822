import re
import dataclasses
from dataclasses import dataclass

from errors import InvalidStyleError

MODELS = ("Gemini", "GPT-4", "None")
FONT_FAMILIES = ("mono", "sans", "serif")
ALIGNMENTS = ("left", "center", "right")

FONT_SIZE_RANGE = (10, 72)
MAX_EXPORT_SCALE = 4

SWATCH_LABELS = {
    "vibrant": "Canlı",
    "dominant": "Baskın",
    "brightest": "Açık",
    "darkest": "Koyu",
    "brand": "Marka",
}

_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")

# camelCase keys used by the web editor and the bot session
_FIELD_ALIASES = {
    "promptText": "prompt_text",
    "prompt": "prompt_text",
    "themeColor": "theme_color",
    "model": "model",
    "fontFamily": "font_family",
    "fontSize": "font_size",
    "alignment": "alignment",
    "showBorder": "show_border",
    "showText": "show_text",
    "blurBackground": "blur_background",
    "safeZone": "safe_zone",
    "showOriginalOnly": "show_original_only",
    "gradientIntensity": "gradient_intensity",
    "safeZoneScale": "safe_zone_scale",
    "textPosition": "text_position",
}


def hex_to_rgb(color: str) -> tuple[int, int, int]:
    value = color.lstrip("#")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


@dataclass(frozen=True)
class StyleParameters:
    """Everything the compositor needs to know about how a card should look."""

    prompt_text: str = ""
    theme_color: str = "#FFD700"
    model: str = "Gemini"
    font_family: str = "mono"
    font_size: int = 36
    alignment: str = "left"
    show_border: bool = True
    show_text: bool = True
    blur_background: bool = False
    safe_zone: bool = True
    show_original_only: bool = False
    gradient_intensity: int = 100
    safe_zone_scale: int = 25
    text_position: int = 0

    def __post_init__(self):
        if not isinstance(self.theme_color, str) or not _HEX_COLOR.match(self.theme_color):
            raise InvalidStyleError(f"themeColor must be a #RRGGBB hex string, got {self.theme_color!r}")
        object.__setattr__(self, "theme_color", self.theme_color.upper())
        object.__setattr__(self, "prompt_text", self.prompt_text or "")

        if self.model not in MODELS:
            raise InvalidStyleError(f"model must be one of {', '.join(MODELS)}")
        if self.font_family not in FONT_FAMILIES:
            raise InvalidStyleError(f"fontFamily must be one of {', '.join(FONT_FAMILIES)}")
        if self.alignment not in ALIGNMENTS:
            raise InvalidStyleError(f"alignment must be one of {', '.join(ALIGNMENTS)}")

        low, high = FONT_SIZE_RANGE
        _check_int("fontSize", self.font_size, low, high)
        _check_int("gradientIntensity", self.gradient_intensity, 0, 100)
        _check_int("safeZoneScale", self.safe_zone_scale, 0, 100)
        _check_int("textPosition", self.text_position, -2000, 2000)

    @property
    def theme_rgb(self) -> tuple[int, int, int]:
        return hex_to_rgb(self.theme_color)

    @property
    def has_badge(self) -> bool:
        return self.model != "None"

    def replace(self, **changes) -> "StyleParameters":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_mapping(cls, data: dict) -> "StyleParameters":
        """Build from camelCase (or snake_case) keys; unknown keys are ignored."""
        field_names = {f.name for f in dataclasses.fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _FIELD_ALIASES.get(key, key)
            if name in field_names and value is not None:
                kwargs[name] = value
        return cls(**kwargs)


def _check_int(name, value, low, high):
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidStyleError(f"{name} must be an integer")
    if not low <= value <= high:
        raise InvalidStyleError(f"{name} must be between {low} and {high}")


@dataclass(frozen=True)
class CardCanvas:
    width: int = 1080
    height: int = 1920
    scale: int = 1

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise InvalidStyleError("canvas dimensions must be positive")
        if isinstance(self.scale, bool) or not isinstance(self.scale, int) or not 1 <= self.scale <= MAX_EXPORT_SCALE:
            raise InvalidStyleError(f"export scale must be an integer between 1 and {MAX_EXPORT_SCALE}")

    @property
    def pixel_size(self) -> tuple[int, int]:
        return self.width * self.scale, self.height * self.scale


@dataclass(frozen=True)
class ColorSwatch:
    color: str
    label: str

    def to_dict(self) -> dict:
        return {"color": self.color, "label": self.label}
