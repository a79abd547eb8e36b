import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from ogimg.domain.models import RenderSpec
from ogimg.errors import PreviewError
from ogimg.services.cancel import CancelToken
from ogimg.services.composer import Composer
from ogimg.services.font_assets import provision_fonts
from ogimg.services.font_cache import FontCache
from ogimg.services.image_transform import encode_jpeg
from ogimg.services.resource_fetcher import RemoteFetcher
from ogimg.settings import settings

DEFAULTS = RenderSpec(title="", logo="")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Render a social preview card.")
    parser.add_argument("--title", required=True, help="Card title.")
    parser.add_argument("--logo", required=True, help="Logo URL or asset filename.")
    parser.add_argument("--author", default="", help="Author label.")
    parser.add_argument("--avatar", default="", help="Avatar URL or asset filename.")
    parser.add_argument("--background", default="", help="Hex color, URL or asset filename.")
    parser.add_argument("--label", default="", help="Text drawn left of the logo.")
    parser.add_argument("--width", type=int, default=DEFAULTS.width, help="Canvas width.")
    parser.add_argument("--height", type=int, default=DEFAULTS.height, help="Canvas height.")
    parser.add_argument("--opacity", type=float, default=DEFAULTS.opacity, help="Overlay opacity, 0..1.")
    parser.add_argument("--avatar-diameter", type=int, default=DEFAULTS.avatar_diameter)
    parser.add_argument("--logo-height", type=int, default=DEFAULTS.logo_height)
    parser.add_argument("--title-size", type=float, default=DEFAULTS.title_size)
    parser.add_argument("--author-size", type=float, default=DEFAULTS.author_size)
    parser.add_argument("--label-size", type=float, default=DEFAULTS.label_size)
    parser.add_argument("--quality", type=int, default=DEFAULTS.quality, help="JPEG quality.")
    parser.add_argument("--out", default="out.jpg", help="Output filename.")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")

    spec = RenderSpec(
        title=args.title,
        logo=args.logo,
        author=args.author,
        avatar=args.avatar,
        background=args.background,
        label=args.label,
        width=args.width,
        height=args.height,
        opacity=args.opacity,
        avatar_diameter=args.avatar_diameter,
        logo_height=args.logo_height,
        title_size=args.title_size,
        author_size=args.author_size,
        label_size=args.label_size,
        quality=args.quality,
    )
    composer = Composer(fetcher=RemoteFetcher(), fonts=FontCache())
    try:
        img = composer.render(spec, CancelToken.with_timeout(settings.RENDER_TIMEOUT))
        body = encode_jpeg(img, spec.quality)
    except PreviewError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    with open(args.out, "wb") as fh:
        fh.write(body)
    print(f"Wrote {args.out}")
    return 0


def fonts_main(argv: Optional[list[str]] = None) -> int:
    """Download configured font faces that are not shipped with the package."""
    parser = argparse.ArgumentParser(description="Download missing font faces.")
    parser.add_argument("--fonts-dir", default=str(settings.FONTS_DIR), help="Directory to store font files in.")
    args = parser.parse_args(argv)
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")

    try:
        written = provision_fonts(Path(args.fonts_dir))
    except PreviewError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    for path in written:
        print(f"Wrote {path}")
    if not written:
        print("All font faces are present")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
