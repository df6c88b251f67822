import os
import json
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).resolve().with_name("config.json")

DEFAULT_CONFIG = {
    "card": {"width": 1080, "height": 1920, "export_scale": 4, "brand_color": "#FFD700"},
    "fonts": {"mono": [], "sans": [], "serif": [], "bold": []},
    "default_style": {
        "themeColor": "#FFD700",
        "model": "Gemini",
        "fontFamily": "mono",
        "fontSize": 36,
        "showBorder": True,
        "safeZone": True,
        "safeZoneScale": 25,
        "gradientIntensity": 100,
    },
}


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    try:
        return int(val)
    except ValueError:
        logger.warning(f"Ignoring non-integer setting value {val!r}, using {default}")
        return default


def load_card_config(path: Path = CONFIG_PATH) -> dict:
    """Read config.json, falling back to built-in defaults when it is unusable."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load {path}: {e}")
        return DEFAULT_CONFIG

    merged = {}
    for section, defaults in DEFAULT_CONFIG.items():
        merged[section] = {**defaults, **data.get(section, {})}
    logger.info("Configuration loaded successfully")
    return merged


class Settings:
    def __init__(self) -> None:
        card_config = load_card_config()
        card = card_config["card"]

        self.TELEGRAM_BOT_TOKEN: str | None = os.getenv("TELEGRAM_BOT_TOKEN")
        self.TELEGRAM_CHANNEL_ID: str | None = os.getenv("TELEGRAM_CHANNEL_ID")
        self.WEBHOOK_URL: str | None = os.getenv("WEBHOOK_URL")
        if not self.WEBHOOK_URL and os.getenv("RAILWAY_STATIC_URL"):
            self.WEBHOOK_URL = f"{os.getenv('RAILWAY_STATIC_URL')}/telegram-webhook"

        self.SET_WEBHOOK_ON_STARTUP: bool = _as_bool(os.getenv("SET_WEBHOOK_ON_STARTUP"), True)
        self.PORT: int = _as_int(os.getenv("PORT"), 8000)
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
        origins = os.getenv("CORS_ORIGINS")
        self.CORS_ORIGINS: list[str] = (
            [o.strip().rstrip("/") for o in origins.split(",") if o.strip()]
            if origins
            else ["http://localhost:3000", "http://127.0.0.1:3000"]
        )

        self.RENDER_WORKERS: int = max(1, _as_int(os.getenv("RENDER_WORKERS"), 2))
        self.RENDER_TIMEOUT: int = max(1, _as_int(os.getenv("RENDER_TIMEOUT"), 30))
        self.SESSION_TTL: int = max(60, _as_int(os.getenv("SESSION_TTL"), 30 * 60))
        self.MAX_PAYLOAD_MB: int = max(1, _as_int(os.getenv("MAX_PAYLOAD_MB"), 50))
        self.RATE_LIMIT_MAX: int = max(1, _as_int(os.getenv("RATE_LIMIT_MAX"), 100))
        self.RATE_LIMIT_WINDOW: int = max(1, _as_int(os.getenv("RATE_LIMIT_WINDOW"), 15 * 60))

        self.CARD_WIDTH: int = int(card["width"])
        self.CARD_HEIGHT: int = int(card["height"])
        self.EXPORT_SCALE: int = int(card["export_scale"])
        self.BRAND_COLOR: str = card["brand_color"]
        self.FONTS: dict[str, list[str]] = card_config["fonts"]
        self.DEFAULT_STYLE: dict = card_config["default_style"]

    @property
    def telegram_enabled(self) -> bool:
        token = self.TELEGRAM_BOT_TOKEN
        return bool(token) and not token.startswith("your_") and len(token) >= 20


settings = Settings()
