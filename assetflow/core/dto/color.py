from dataclasses import dataclass

BRIGHTNESS_THRESHOLD = 165


@dataclass(frozen=True, slots=True)
class DominantColor:
    r: int
    g: int
    b: int

    @property
    def luminance(self) -> float:
        return 0.299 * self.r + 0.587 * self.g + 0.114 * self.b

    @property
    def is_bright(self) -> bool:
        return self.luminance > BRIGHTNESS_THRESHOLD

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)


NEUTRAL_GRAY = DominantColor(128, 128, 128)


@dataclass(frozen=True, slots=True)
class DisplayStyle:
    title_background: str
    text_color: str
    border_color: str
    description_background: str
