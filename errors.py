"""Error types raised by the card rendering core."""


class CardError(Exception):
    """Base class for every card rendering failure."""


class InputError(CardError):
    """The caller supplied an unusable image or style."""


class InvalidStyleError(InputError):
    pass


class CardGenerationError(InputError):
    """Decoding the source image failed; ``cause`` keeps the original exception."""

    def __init__(self, message: str = "card generation failed", cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        base = super().__str__()
        if self.cause is not None:
            return f"{base}: {self.cause}"
        return base


class RenderError(CardError):
    """A compositing layer failed; ``layer`` names which one."""

    def __init__(self, message: str, layer: str | None = None):
        super().__init__(message)
        self.layer = layer

    def __str__(self) -> str:
        base = super().__str__()
        if self.layer:
            return f"[{self.layer}] {base}"
        return base
