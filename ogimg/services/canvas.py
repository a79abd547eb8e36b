"""
Drawing surface used by the composer.

`Canvas` is the capability the composer draws through; `PillowCanvas` is
the production implementation on top of an RGB Pillow image. Every draw
call blends RGBA colours into the surface.
"""
from typing import List, Protocol, Tuple

from PIL import Image, ImageDraw

from ogimg.services.font_cache import CompositeFont

RGB = Tuple[int, int, int]
RGBA = Tuple[int, int, int, int]

# Vertical text anchors: baseline, ascender (top) and middle.
ANCHOR_BASELINE = "ls"
ANCHOR_TOP = "la"
ANCHOR_MIDDLE = "lm"


class Canvas(Protocol):
    width: int
    height: int

    def fill(self, color: RGB) -> None: ...

    def fill_rect(self, x: float, y: float, w: float, h: float, color: RGBA) -> None: ...

    def fill_circle(self, cx: float, cy: float, r: float, color: RGBA) -> None: ...

    def draw_image(self, img: Image.Image, x: int, y: int) -> None: ...

    def measure(self, text: str, font: CompositeFont) -> float: ...

    def draw_text(self, text: str, x: float, y: float, font: CompositeFont, color: RGBA, anchor: str = ANCHOR_BASELINE) -> None: ...

    def image(self) -> Image.Image: ...


class PillowCanvas:
    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self._img = Image.new("RGB", (width, height), (0, 0, 0))
        self._draw = ImageDraw.Draw(self._img, "RGBA")

    def fill(self, color: RGB) -> None:
        self._img.paste(tuple(color), (0, 0, self.width, self.height))

    def fill_rect(self, x: float, y: float, w: float, h: float, color: RGBA) -> None:
        if w <= 0 or h <= 0:
            return
        # Pillow rectangles include their right/bottom edge.
        self._draw.rectangle((x, y, x + w - 1, y + h - 1), fill=color)

    def fill_circle(self, cx: float, cy: float, r: float, color: RGBA) -> None:
        self._draw.ellipse((cx - r, cy - r, cx + r, cy + r), fill=color)

    def draw_image(self, img: Image.Image, x: int, y: int) -> None:
        if img.mode == "RGBA":
            self._img.paste(img, (x, y), img)
        else:
            self._img.paste(img.convert("RGB"), (x, y))

    def measure(self, text: str, font: CompositeFont) -> float:
        return font.getlength(text)

    def draw_text(self, text: str, x: float, y: float, font: CompositeFont, color: RGBA, anchor: str = ANCHOR_BASELINE) -> None:
        baseline = text_baseline(y, font, anchor)
        cursor = float(x)
        for run, face in font.runs(text):
            self._draw.text((cursor, baseline), run, font=face, fill=color, anchor=ANCHOR_BASELINE)
            cursor += face.getlength(run)

    def image(self) -> Image.Image:
        return self._img


def text_baseline(y: float, font: CompositeFont, anchor: str) -> float:
    """Baseline position for text anchored at `y`, using the primary face metrics."""
    ascent, descent = font.getmetrics()
    if anchor == ANCHOR_TOP:
        return y + ascent
    if anchor == ANCHOR_MIDDLE:
        return y + (ascent - descent) / 2.0
    return y


def wrap_words(text: str, font: CompositeFont, max_width: float) -> List[str]:
    """
    Greedy word wrap. A single word wider than `max_width` gets a line of
    its own rather than being split.
    """
    lines: List[str] = []
    for paragraph in text.split("\n"):
        words = paragraph.split()
        if not words:
            lines.append("")
            continue
        line = words[0]
        for word in words[1:]:
            candidate = f"{line} {word}"
            if font.getlength(candidate) <= max_width:
                line = candidate
            else:
                lines.append(line)
                line = word
        lines.append(line)
    return lines
