"""
Font files that are downloaded instead of shipped.

The text and symbol faces are bundled with the package. The emoji face is
fetched once from the Google Fonts repository into the fonts directory,
where FontCache picks it up like any other configured face.
"""
import logging
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Sequence

import requests
from PIL import ImageFont

from ogimg.errors import FontError
from ogimg.services.font_cache import glyph_coverage
from ogimg.services.resource_fetcher import RemoteFetcher
from ogimg.settings import settings

logger = logging.getLogger(__name__)

# Paths under the Google Fonts `ofl/` tree, keyed by the local file name.
FONT_SOURCES = {
    "Lato-Regular.ttf": "lato/Lato-Regular.ttf",
    "NotoEmoji-Regular.ttf": "notoemoji/NotoEmoji%5Bwght%5D.ttf",
}
FONT_DOWNLOAD_LIMIT = 32 * 1024 * 1024


def font_source_url(name: str, base_url: Optional[str] = None) -> str:
    path = FONT_SOURCES.get(name)
    if path is None:
        raise FontError("no download source is known for this font", resource=name)
    return f"{(base_url or settings.FONT_SOURCES_URL).rstrip('/')}/{path}"


def provision_fonts(
    fonts_dir: Optional[Path] = None,
    names: Optional[Sequence[str]] = None,
    session: Optional[requests.Session] = None,
    base_url: Optional[str] = None,
) -> List[Path]:
    """
    Download every configured font file that is missing from `fonts_dir`.

    Files already present are left alone. A download is only written once it
    parses as a font with a usable cmap. Returns the paths written.
    """
    fonts_dir = Path(fonts_dir or settings.FONTS_DIR)
    names = list(names if names is not None else settings.FONT_FILES)
    fetcher = RemoteFetcher(session=session, body_limit=FONT_DOWNLOAD_LIMIT)

    written: List[Path] = []
    for name in names:
        target = fonts_dir / name
        if target.exists():
            continue
        url = font_source_url(name, base_url)
        logger.info("downloading font %s from %s", name, url)
        data = fetcher.fetch(url)
        try:
            ImageFont.truetype(BytesIO(data), size=12)
        except (OSError, ValueError) as exc:
            raise FontError(f"downloaded data is not a font: {exc}", resource=url) from exc
        glyph_coverage(data, target)

        partial = target.with_name(target.name + ".part")
        try:
            fonts_dir.mkdir(parents=True, exist_ok=True)
            partial.write_bytes(data)
            partial.replace(target)
        except OSError as exc:
            raise FontError(f"could not store font: {exc}", resource=str(target)) from exc
        written.append(target)
    return written
