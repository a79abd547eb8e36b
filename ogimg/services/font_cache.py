"""
Composite font faces keyed by point size.

A composite face is an ordered list of FreeType faces (primary text face
first, then symbol and emoji faces). Each character is drawn with the first
face whose cmap contains it, so mixed-script titles do not render as
missing-glyph boxes.
"""
import logging
import threading
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from fontTools.ttLib import TTFont
from PIL import ImageFont

from ogimg.errors import FontError
from ogimg.settings import settings

logger = logging.getLogger(__name__)


class CompositeFont:
    """
    Immutable multi-face font of one point size.

    `charsets[i]` is the set of codepoints covered by `faces[i]`; None
    means the face is assumed to cover everything.
    """

    def __init__(
        self,
        faces: Sequence[ImageFont.FreeTypeFont],
        charsets: Optional[Sequence[Optional[FrozenSet[int]]]] = None,
    ):
        if not faces:
            raise FontError("a composite font needs at least one face")
        self.faces: Tuple[ImageFont.FreeTypeFont, ...] = tuple(faces)
        if charsets is None:
            charsets = [None] * len(self.faces)
        self.charsets: Tuple[Optional[FrozenSet[int]], ...] = tuple(charsets)

    @property
    def primary(self) -> ImageFont.FreeTypeFont:
        return self.faces[0]

    @property
    def size(self) -> float:
        return self.primary.size

    def face_for(self, ch: str) -> ImageFont.FreeTypeFont:
        """First face that has a glyph for `ch`; the primary face otherwise."""
        code = ord(ch)
        for face, charset in zip(self.faces, self.charsets):
            if charset is None or code in charset:
                return face
        return self.primary

    def runs(self, text: str) -> List[Tuple[str, ImageFont.FreeTypeFont]]:
        """Split `text` into maximal runs drawn with the same face."""
        runs: List[Tuple[str, ImageFont.FreeTypeFont]] = []
        for ch in text:
            face = self.primary if ch.isspace() else self.face_for(ch)
            if runs and runs[-1][1] is face:
                runs[-1] = (runs[-1][0] + ch, face)
            else:
                runs.append((ch, face))
        return runs

    def getlength(self, text: str) -> float:
        return sum(face.getlength(run) for run, face in self.runs(text))

    def getmetrics(self) -> Tuple[int, int]:
        """(ascent, descent) of the primary face."""
        return self.primary.getmetrics()


def _read_bytes(path: Path) -> bytes:
    return Path(path).read_bytes()


class FontCache:
    """
    Process-wide cache of composite fonts, one per point size.

    Faces are built lazily and never evicted. Concurrent first builds of
    the same size may both run; the first one stored wins and every caller
    gets that instance.
    """

    def __init__(self, paths: Optional[Sequence[Path]] = None, reader: Optional[Callable[[Path], bytes]] = None):
        self.paths: Tuple[Path, ...] = tuple(Path(p) for p in (paths if paths is not None else settings.font_paths))
        if not self.paths:
            raise FontError("no font files configured")
        self._reader = reader or _read_bytes
        self._lock = threading.Lock()
        self._fonts: Dict[float, CompositeFont] = {}

    def load(self, size: float) -> CompositeFont:
        key = float(size)
        if key <= 0:
            raise FontError(f"font size must be positive, got {size}")
        with self._lock:
            cached = self._fonts.get(key)
        if cached is not None:
            return cached

        built = self._build(key)
        with self._lock:
            return self._fonts.setdefault(key, built)

    def _build(self, size: float) -> CompositeFont:
        logger.info("building composite font of %s pt from %d faces", size, len(self.paths))
        faces: List[ImageFont.FreeTypeFont] = []
        charsets: List[Optional[FrozenSet[int]]] = []
        for path in self.paths:
            try:
                data = self._reader(path)
            except FileNotFoundError as exc:
                raise FontError(
                    f"font file is missing (ogimg-fonts downloads the default faces): {exc}",
                    resource=str(path),
                ) from exc
            except OSError as exc:
                raise FontError(f"could not read font: {exc}", resource=str(path)) from exc
            try:
                faces.append(ImageFont.truetype(BytesIO(data), size=size))
            except (OSError, ValueError) as exc:
                raise FontError(f"could not parse font: {exc}", resource=str(path)) from exc
            charsets.append(glyph_coverage(data, path))
        return CompositeFont(faces, charsets)

    def __len__(self) -> int:
        with self._lock:
            return len(self._fonts)


def glyph_coverage(data: bytes, path: Path) -> FrozenSet[int]:
    """Codepoints the font in `data` has glyphs for."""
    try:
        with TTFont(BytesIO(data), lazy=True) as tt:
            cmap = tt.getBestCmap()
    except Exception as exc:
        raise FontError(f"could not read font cmap: {exc}", resource=str(path)) from exc
    if not cmap:
        raise FontError("font has no usable cmap", resource=str(path))
    return frozenset(cmap)
