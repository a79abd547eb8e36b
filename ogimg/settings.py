import os
from pathlib import Path
from typing import List

# Basic settings helper to read environment configuration.

PACKAGE_DIR = Path(__file__).resolve().parent
ASSETS_DIR = PACKAGE_DIR / "assets"


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_list(val: str | None, default: List[str]) -> List[str]:
    if not val:
        return list(default)
    return [part.strip() for part in val.split(",") if part.strip()]


class Settings:
    def __init__(self) -> None:
        self.ASSETS_DIR: Path = Path(os.getenv("OGIMG_ASSETS_DIR", str(ASSETS_DIR / "images")))
        self.FONTS_DIR: Path = Path(os.getenv("OGIMG_FONTS_DIR", str(ASSETS_DIR / "fonts")))
        # Order matters: glyphs missing from a face fall through to the next one.
        self.FONT_FILES: List[str] = _as_list(
            os.getenv("OGIMG_FONT_FILES"), ["Lato-Regular.ttf", "DejaVuSans.ttf", "NotoEmoji-Regular.ttf"]
        )
        self.FONT_SOURCES_URL: str = os.getenv(
            "OGIMG_FONT_SOURCES_URL", "https://github.com/google/fonts/raw/main/ofl"
        )
        self.FETCH_TIMEOUT: float = float(os.getenv("OGIMG_FETCH_TIMEOUT", "10"))
        self.RENDER_TIMEOUT: float = float(os.getenv("OGIMG_RENDER_TIMEOUT", "30"))
        self.FETCH_BODY_LIMIT: int = int(os.getenv("OGIMG_FETCH_BODY_LIMIT", str(10 * 1024 * 1024)))
        self.FETCH_WORKERS: int = int(os.getenv("OGIMG_FETCH_WORKERS", "8"))
        self.USER_AGENT: str = os.getenv("OGIMG_USER_AGENT", "ogimg/0.1 (+preview)")
        self.LOG_LEVEL: str = os.getenv("OGIMG_LOG_LEVEL", "INFO").upper()
        self.DEBUG_CROPS: bool = _as_bool(os.getenv("OGIMG_DEBUG_CROPS"), False)

    @property
    def font_paths(self) -> List[Path]:
        return [self.FONTS_DIR / name for name in self.FONT_FILES]


settings = Settings()
