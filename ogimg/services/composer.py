"""
Preview card composer.

Draws one card in a fixed sequence of passes:

  1. background  flat hex colour, default colour, or an attention-cropped image
  2. overlay     translucent black rectangle inset by MARGIN
  3. avatar      white border disk + circular avatar, top-left (optional)
  4. author      text right of the avatar (optional)
  5. title       word-wrapped, truncated to MAX_TITLE_LENGTH codepoints
  6. logo        scaled to the logo height, bottom-right
  7. label       text immediately left of the logo (optional)

All remote/local images for one render are fetched in a single batch
before the first pass. Any failure aborts the render; errors carry the
pass name in `stage`.
"""
import contextlib
import logging
import re
from typing import Callable, Dict, Iterator, Optional, Protocol, Tuple

from PIL import Image

from ogimg.domain.models import RenderSpec, ResourceBundle
from ogimg.errors import ConfigError, PreviewError, TransformError
from ogimg.services import image_transform
from ogimg.services.cancel import CancelToken
from ogimg.services.canvas import (
    ANCHOR_BASELINE,
    ANCHOR_MIDDLE,
    ANCHOR_TOP,
    RGB,
    Canvas,
    PillowCanvas,
    wrap_words,
)
from ogimg.services.font_cache import CompositeFont
from ogimg.services.resource_fetcher import ResourceFetcher

logger = logging.getLogger(__name__)

# Geometry shared by every pass (px)
MARGIN = 20
PADDING = 48
AVATAR_BORDER = 8
LABEL_GAP = MARGIN // 2

MAX_TITLE_LENGTH = 90
ELLIPSIS = "…"
TITLE_LINE_SPACING = 1.6

DEFAULT_BACKGROUND: RGB = (34, 34, 34)
AVATAR_BORDER_COLOR = (255, 255, 255, 255)
AUTHOR_COLOR = (255, 255, 255, 204)
TITLE_COLOR = (255, 255, 255, 255)
LABEL_COLOR = (255, 255, 255, 255)

HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


class FontSource(Protocol):
    def load(self, size: float) -> CompositeFont: ...


def parse_hex_color(value: str) -> RGB:
    """Parse `#rgb` or `#rrggbb` into an RGB tuple."""
    if not HEX_COLOR_RE.match(value or ""):
        raise ConfigError(f"malformed hex color: {value!r}")
    digits = value[1:]
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))


def truncate_title(text: str, limit: int = MAX_TITLE_LENGTH) -> str:
    """Cut `text` to `limit` codepoints, appending an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def background_color(spec: RenderSpec) -> Optional[RGB]:
    """
    Flat fill colour for the background pass, or None when the background
    is an image locator that has to be fetched.
    """
    if not spec.background:
        return DEFAULT_BACKGROUND
    if spec.background.startswith("#"):
        return parse_hex_color(spec.background)
    return None


@contextlib.contextmanager
def _stage(name: str, resource: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except PreviewError as exc:
        raise exc.with_context(stage=name, resource=resource)
    except (OSError, ValueError) as exc:
        raise TransformError(f"drawing failed: {exc}", stage=name, resource=resource) from exc


class Composer:
    """
    Renders RenderSpecs into images.

    Args:
        fetcher: Batch resource fetcher.
        fonts: Composite font provider shared across renders.
        canvas_factory: Creates a fresh drawing surface per render.
    """

    def __init__(
        self,
        fetcher: ResourceFetcher,
        fonts: FontSource,
        canvas_factory: Callable[[int, int], Canvas] = PillowCanvas,
    ):
        self.fetcher = fetcher
        self.fonts = fonts
        self.canvas_factory = canvas_factory

    def render(self, spec: RenderSpec, cancel: Optional[CancelToken] = None) -> Image.Image:
        spec.validate()
        fill = background_color(spec)

        locators: Dict[str, str] = {}
        if fill is None:
            locators["background"] = spec.background
        if spec.has_avatar:
            locators["avatar"] = spec.avatar
        locators["logo"] = spec.logo

        with _stage("fetch"):
            bundle = self.fetcher.fetch_all(locators, cancel)

        canvas = self.canvas_factory(spec.width, spec.height)

        with _stage("background", locators.get("background")):
            self._draw_background(canvas, spec, fill, bundle)
        with _stage("overlay"):
            self._draw_overlay(canvas, spec)
        if spec.has_avatar:
            with _stage("avatar", spec.avatar):
                self._draw_avatar(canvas, spec, bundle["avatar"])
        if spec.author:
            with _stage("author"):
                self._draw_author(canvas, spec)
        with _stage("title"):
            self._draw_title(canvas, spec)
        with _stage("logo", spec.logo):
            logo_x, _ = self._draw_logo(canvas, spec, bundle["logo"])
        if spec.label:
            with _stage("label"):
                self._draw_label(canvas, spec, logo_x)

        return canvas.image()

    def _draw_background(self, canvas: Canvas, spec: RenderSpec, fill: Optional[RGB], bundle: ResourceBundle) -> None:
        if fill is not None:
            canvas.fill(fill)
            return
        buf = image_transform.fit_resize(bundle["background"], spec.width, spec.height)
        canvas.draw_image(image_transform.decode(buf), 0, 0)

    def _draw_overlay(self, canvas: Canvas, spec: RenderSpec) -> None:
        alpha = int(round(255 * spec.opacity))
        if alpha == 0:
            return
        canvas.fill_rect(
            MARGIN,
            MARGIN,
            spec.width - MARGIN * 2,
            spec.height - MARGIN * 2,
            (0, 0, 0, alpha),
        )

    def _avatar_center(self, spec: RenderSpec) -> Tuple[float, float]:
        offset = PADDING + (spec.avatar_diameter + AVATAR_BORDER) / 2
        return offset, offset

    def _draw_avatar(self, canvas: Canvas, spec: RenderSpec, buf: bytes) -> None:
        d = spec.avatar_diameter
        cx, cy = self._avatar_center(spec)
        canvas.fill_circle(cx, cy, (d + AVATAR_BORDER) // 2, AVATAR_BORDER_COLOR)

        avatar = image_transform.circular_mask(image_transform.decode(image_transform.fit_resize(buf, d, d)))
        canvas.draw_image(avatar, int(cx) - d // 2, int(cy) - d // 2)

    def _draw_author(self, canvas: Canvas, spec: RenderSpec) -> None:
        font = self.fonts.load(spec.author_size)
        x = PADDING + spec.avatar_diameter + PADDING / 2 if spec.has_avatar else PADDING
        y = PADDING + spec.avatar_diameter / 2
        canvas.draw_text(spec.author, x, y, font, AUTHOR_COLOR, anchor=ANCHOR_MIDDLE)

    def _draw_title(self, canvas: Canvas, spec: RenderSpec) -> None:
        font = self.fonts.load(spec.title_size)
        x = PADDING
        y = PADDING
        if spec.has_avatar or spec.author:
            y += PADDING + spec.avatar_diameter
        max_width = spec.width - PADDING - MARGIN * 2
        line_height = font.size * TITLE_LINE_SPACING

        for i, line in enumerate(wrap_words(truncate_title(spec.title), font, max_width)):
            if line:
                canvas.draw_text(line, x, y + i * line_height, font, TITLE_COLOR, anchor=ANCHOR_TOP)

    def _draw_logo(self, canvas: Canvas, spec: RenderSpec, buf: bytes) -> Tuple[int, int]:
        logo = image_transform.decode(image_transform.scale_to_height(buf, spec.logo_height))
        x = spec.width - PADDING - logo.width
        y = spec.height - PADDING - logo.height
        canvas.draw_image(logo, x, y)
        return x, y

    def _draw_label(self, canvas: Canvas, spec: RenderSpec, logo_x: int) -> None:
        font = self.fonts.load(spec.label_size)
        width = canvas.measure(spec.label, font)
        x = logo_x - LABEL_GAP - width
        canvas.draw_text(spec.label, x, spec.height - PADDING, font, LABEL_COLOR, anchor=ANCHOR_BASELINE)
