from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from card_style import MAX_EXPORT_SCALE, StyleParameters

HEX_COLOR_PATTERN = r"^#([A-Fa-f0-9]{6})$"


class CardStyleIn(BaseModel):
    # field names follow the web editor's camelCase state
    promptText: Optional[str] = Field(None, validation_alias=AliasChoices("promptText", "prompt"))
    themeColor: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)
    model: Optional[str] = None
    fontFamily: Optional[str] = None
    fontSize: Optional[int] = Field(None, ge=10, le=72)
    alignment: Optional[str] = None
    showBorder: Optional[bool] = None
    showText: Optional[bool] = None
    blurBackground: Optional[bool] = None
    safeZone: Optional[bool] = None
    showOriginalOnly: Optional[bool] = None
    gradientIntensity: Optional[int] = Field(None, ge=0, le=100)
    safeZoneScale: Optional[int] = Field(None, ge=0, le=100)
    textPosition: Optional[int] = None

    def to_style(self) -> StyleParameters:
        """Unset fields keep their StyleParameters defaults."""
        return StyleParameters.from_mapping(self.model_dump(exclude_none=True))


class RenderJsonIn(CardStyleIn):
    imageBase64: str = Field(..., min_length=1)
    scale: int = Field(1, ge=1, le=MAX_EXPORT_SCALE)
    returnFile: bool = False


class SendTelegramIn(CardStyleIn):
    imageBase64: str = Field(..., min_length=1)
    # when true the image is a source photo to render, otherwise a finished card
    render: bool = False
    scale: int = Field(1, ge=1, le=MAX_EXPORT_SCALE)


class ColorSwatchOut(BaseModel):
    color: str
    label: str


class PaletteOut(BaseModel):
    palette: list[ColorSwatchOut]
