import pytest
from PIL import ImageFont

from ogimg.domain.models import RenderSpec, ResourceBundle
from ogimg.errors import ConfigError, DecodeError, FetchError, FontError
from ogimg.services import composer as comp
from ogimg.services.canvas import ANCHOR_BASELINE, ANCHOR_MIDDLE, ANCHOR_TOP, PillowCanvas
from ogimg.services.composer import Composer, parse_hex_color, truncate_title
from ogimg.services.font_cache import CompositeFont, FontCache
from ogimg.services.resource_fetcher import RemoteFetcher
from ogimg.settings import ASSETS_DIR

from conftest import make_png

TEXT_FONTS = [ASSETS_DIR / "fonts" / "Lato-Regular.ttf", ASSETS_DIR / "fonts" / "DejaVuSans.ttf"]


class FakeFetcher:
    def __init__(self, payloads=None, error=None):
        self.payloads = payloads or {}
        self.error = error
        self.batches = []

    def fetch_all(self, locators, cancel=None):
        self.batches.append(dict(locators))
        if self.error is not None:
            raise self.error
        return ResourceBundle({key: self.payloads[key] for key in locators})


class FakeFonts:
    def __init__(self):
        self.sizes = []

    def load(self, size):
        self.sizes.append(size)
        return CompositeFont([ImageFont.load_default(size=size)])


class RecordingCanvas:
    def __init__(self, width, height):
        self.width = width
        self.height = height
        self.ops = []

    def fill(self, color):
        self.ops.append(("fill", color))

    def fill_rect(self, x, y, w, h, color):
        self.ops.append(("rect", (x, y, w, h), color))

    def fill_circle(self, cx, cy, r, color):
        self.ops.append(("circle", (cx, cy, r), color))

    def draw_image(self, img, x, y):
        self.ops.append(("image", (x, y), img.size))

    def measure(self, text, font):
        return font.getlength(text)

    def draw_text(self, text, x, y, font, color, anchor=ANCHOR_BASELINE):
        self.ops.append(("text", text, (x, y), color, anchor))

    def image(self):
        return self


PAYLOADS = {
    "avatar": make_png((128, 128), (0, 200, 0)),
    "logo": make_png((96, 96), (0, 0, 255)),
    "background": make_png((300, 200), (250, 10, 10)),
}


def _spec(**overrides):
    fields = dict(title="Hello world", author="@a", avatar="ava.png", logo="logo.png")
    fields.update(overrides)
    return RenderSpec(**fields)


def test_truncate_title_by_codepoints():
    assert truncate_title("a" * 90) == "a" * 90
    assert truncate_title("a" * 91) == "a" * 90 + "…"
    cyrillic = "ж" * 91
    out = truncate_title(cyrillic)
    assert out == "ж" * 90 + "…"
    assert len(out) == 91
    emoji = "🙂" * 90
    assert truncate_title(emoji) == emoji


@pytest.mark.parametrize(
    "value,expected",
    [("#ffaa00", (255, 170, 0)), ("#FA0", (255, 170, 0)), ("#000", (0, 0, 0)), ("#1a2B3c", (26, 43, 60))],
)
def test_parse_hex_color(value, expected):
    assert parse_hex_color(value) == expected


@pytest.mark.parametrize("value", ["#ggg", "#ffff", "ffaa00", "#", "#ffaa00 "])
def test_parse_hex_color_rejects_malformed(value):
    with pytest.raises(ConfigError):
        parse_hex_color(value)


def test_hex_background_is_flat_fill_without_fetch():
    fetcher = FakeFetcher(PAYLOADS)
    img = Composer(fetcher, FakeFonts()).render(_spec(background="#ffaa00"))
    assert len(fetcher.batches) == 1
    assert "background" not in fetcher.batches[0]
    assert img.getpixel((5, 5)) == (255, 170, 0)


def test_empty_background_is_default_fill_without_fetch():
    fetcher = FakeFetcher(PAYLOADS)
    img = Composer(fetcher, FakeFonts()).render(_spec(background=""))
    assert "background" not in fetcher.batches[0]
    assert img.getpixel((5, 5)) == comp.DEFAULT_BACKGROUND


def test_url_background_is_fetched_once_and_fitted(monkeypatch):
    calls = []
    real_fit = comp.image_transform.fit_resize

    def spy(buf, w, h):
        calls.append((buf, w, h))
        return real_fit(buf, w, h)

    monkeypatch.setattr(comp.image_transform, "fit_resize", spy)
    fetcher = FakeFetcher(PAYLOADS)
    img = Composer(fetcher, FakeFonts()).render(_spec(background="https://x/y.jpg"))

    assert len(fetcher.batches) == 1
    assert fetcher.batches[0]["background"] == "https://x/y.jpg"
    assert (PAYLOADS["background"], 1200, 630) in calls
    r, g, b = img.getpixel((5, 5))
    assert r > 230 and g < 30 and b < 30


def test_malformed_hex_background_fails_before_fetch():
    fetcher = FakeFetcher(PAYLOADS)
    with pytest.raises(ConfigError):
        Composer(fetcher, FakeFonts()).render(_spec(background="#12345"))
    assert fetcher.batches == []


def test_passes_run_in_order_with_shared_geometry():
    fetcher = FakeFetcher(PAYLOADS)
    canvas_holder = {}

    def factory(w, h):
        canvas_holder["c"] = RecordingCanvas(w, h)
        return canvas_holder["c"]

    Composer(fetcher, FakeFonts(), canvas_factory=factory).render(_spec(label="Blog"))
    ops = canvas_holder["c"].ops
    kinds = [op[0] for op in ops]
    assert kinds == ["fill", "rect", "circle", "image", "text", "text", "image", "text"]

    _, rect, overlay_color = ops[1]
    assert rect == (comp.MARGIN, comp.MARGIN, 1200 - 2 * comp.MARGIN, 630 - 2 * comp.MARGIN)
    assert overlay_color == (0, 0, 0, 153)

    _, (cx, cy, r), _ = ops[2]
    assert cx == cy == comp.PADDING + (64 + comp.AVATAR_BORDER) / 2
    assert r == (64 + comp.AVATAR_BORDER) // 2
    assert ops[3][1:] == ((int(cx) - 32, int(cy) - 32), (64, 64))

    author = ops[4]
    assert author[1] == "@a"
    assert author[2] == (comp.PADDING + 64 + comp.PADDING / 2, comp.PADDING + 32)
    assert author[3] == comp.AUTHOR_COLOR
    assert author[4] == ANCHOR_MIDDLE

    title = ops[5]
    assert title[2] == (comp.PADDING, comp.PADDING * 2 + 64)
    assert title[4] == ANCHOR_TOP

    logo = ops[6]
    logo_x, logo_y = 1200 - comp.PADDING - 48, 630 - comp.PADDING - 48
    assert logo[1:] == ((logo_x, logo_y), (48, 48))

    label = ops[7]
    assert label[1] == "Blog"
    font = FakeFonts().load(40)
    assert label[2] == (pytest.approx(logo_x - comp.LABEL_GAP - font.getlength("Blog")), 630 - comp.PADDING)
    assert label[4] == ANCHOR_BASELINE


def test_optional_passes_are_skipped():
    fetcher = FakeFetcher(PAYLOADS)
    canvas_holder = {}

    def factory(w, h):
        canvas_holder["c"] = RecordingCanvas(w, h)
        return canvas_holder["c"]

    fonts = FakeFonts()
    Composer(fetcher, fonts, canvas_factory=factory).render(_spec(avatar="", author="", label=""))
    assert set(fetcher.batches[0]) == {"logo"}
    kinds = [op[0] for op in canvas_holder["c"].ops]
    assert kinds == ["fill", "rect", "text", "image"]
    assert fonts.sizes == [76]


def test_zero_opacity_skips_overlay():
    canvas_holder = {}

    def factory(w, h):
        canvas_holder["c"] = RecordingCanvas(w, h)
        return canvas_holder["c"]

    Composer(FakeFetcher(PAYLOADS), FakeFonts(), canvas_factory=factory).render(_spec(opacity=0.0))
    assert "rect" not in [op[0] for op in canvas_holder["c"].ops]


def test_long_title_is_truncated_and_wrapped():
    canvas_holder = {}

    def factory(w, h):
        canvas_holder["c"] = RecordingCanvas(w, h)
        return canvas_holder["c"]

    title = " ".join(["word"] * 40)
    Composer(FakeFetcher(PAYLOADS), FakeFonts(), canvas_factory=factory).render(_spec(title=title))
    lines = [op for op in canvas_holder["c"].ops if op[0] == "text" and op[1] != "@a"]
    assert len(lines) > 1
    assert " ".join(op[1] for op in lines) == truncate_title(title)
    assert lines[1][2][1] - lines[0][2][1] == pytest.approx(76 * comp.TITLE_LINE_SPACING)


def test_fetch_failure_aborts_render():
    fetcher = FakeFetcher(error=FetchError("boom", stage="avatar"))
    with pytest.raises(FetchError) as info:
        Composer(fetcher, FakeFonts()).render(_spec())
    assert info.value.stage == "avatar"


def test_undecodable_logo_names_the_pass():
    payloads = dict(PAYLOADS, logo=b"garbage")
    with pytest.raises(DecodeError) as info:
        Composer(FakeFetcher(payloads), FakeFonts()).render(_spec())
    assert info.value.stage == "logo"
    assert info.value.resource == "logo.png"


def test_font_failure_names_the_pass():
    class BrokenFonts:
        def load(self, size):
            raise FontError("cannot parse")

    with pytest.raises(FontError) as info:
        Composer(FakeFetcher(PAYLOADS), BrokenFonts()).render(_spec(author=""))
    assert info.value.stage == "title"


def test_end_to_end_render(assets_dir):
    spec = RenderSpec(
        width=1200,
        height=630,
        title="T",
        author="@a",
        avatar="ava.png",
        logo="logo.png",
        logo_height=48,
        opacity=0.6,
    )
    composer = Composer(RemoteFetcher(assets_dir=assets_dir), FontCache(TEXT_FONTS))
    img = composer.render(spec)

    assert img.size == (1200, 630)
    pad = comp.PADDING

    # logo: bottom-right, inset by the padding
    assert img.getpixel((1200 - pad - 24, 630 - pad - 24)) == (0, 0, 255)
    assert img.getpixel((1200 - pad - 1, 630 - pad - 1)) == (0, 0, 255)
    assert img.getpixel((1200 - pad + 2, 630 - pad - 24)) != (0, 0, 255)

    # avatar: circle top-left, inset by the padding, with a white border ring
    centre = int(pad + (64 + comp.AVATAR_BORDER) / 2)
    assert img.getpixel((centre, centre)) == (0, 200, 0)
    assert img.getpixel((centre, pad + 1)) == (255, 255, 255)
    assert img.getpixel((pad + 1, centre)) == (255, 255, 255)
    assert img.getpixel((pad + 2, pad + 2)) != (255, 255, 255)

    # default background outside the overlay, darkened inside it
    assert img.getpixel((5, 5)) == comp.DEFAULT_BACKGROUND
    dark = img.getpixel((30, 600))
    assert all(12 <= c <= 16 for c in dark)


def test_canvases_are_independent_per_render():
    composer = Composer(FakeFetcher(PAYLOADS), FakeFonts(), canvas_factory=PillowCanvas)
    first = composer.render(_spec(background="#ffffff"))
    second = composer.render(_spec(background="#000000"))
    assert first is not second
    assert first.getpixel((5, 5)) == (255, 255, 255)
    assert second.getpixel((5, 5)) == (0, 0, 0)


def _close(pixel, expected, tolerance):
    return all(abs(a - b) <= tolerance for a, b in zip(pixel, expected))


def test_shipped_assets_render_with_default_fetcher():
    spec = RenderSpec(title="T", author="@a", avatar="ava.png", logo="logo.png")
    img = Composer(RemoteFetcher(), FontCache(TEXT_FONTS)).render(spec)
    pad = comp.PADDING

    # default avatar: light silhouette head at the disk centre
    centre = int(pad + (64 + comp.AVATAR_BORDER) / 2)
    assert _close(img.getpixel((centre, centre)), (214, 222, 230), 12)

    # default logo: orange mark, transparent corners show the overlay
    logo_x, logo_y = 1200 - pad - 48, 630 - pad - 48
    assert _close(img.getpixel((logo_x + 24, logo_y + 24)), (242, 122, 26), 16)
    assert max(img.getpixel((logo_x, logo_y))) < 30

