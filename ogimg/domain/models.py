"""
Core domain models for the preview renderer.
These are framework-agnostic and shared by the services, API and CLI.
"""
import ntpath
import posixpath
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator
from urllib.parse import urlsplit

from ogimg.errors import ConfigError, LocatorError

REMOTE_SCHEMES = ("http", "https")


class LocatorKind(str, Enum):
    """Where a resource lives."""
    REMOTE = "remote"
    LOCAL = "local"


@dataclass(frozen=True)
class ResourceLocator:
    """
    A caller-supplied image location.

    Remote locators carry an absolute http(s) URL. Local locators carry a
    bare filename that is resolved under the sandboxed asset root; any
    directory components of the raw value are dropped.
    """
    kind: LocatorKind
    value: str
    raw: str = ""

    @classmethod
    def parse(cls, raw: str) -> "ResourceLocator":
        if raw is None or not raw.strip():
            raise LocatorError("empty locator")
        raw = raw.strip()

        try:
            parts = urlsplit(raw)
        except ValueError as exc:
            raise LocatorError(f"malformed URL: {exc}", resource=raw) from exc
        if parts.scheme or "://" in raw:
            if parts.scheme.lower() not in REMOTE_SCHEMES:
                raise LocatorError(f"unsupported URL scheme: {parts.scheme or '(none)'}", resource=raw)
            if not parts.netloc or not parts.hostname:
                raise LocatorError("URL has no host", resource=raw)
            try:
                parts.port
            except ValueError as exc:
                raise LocatorError(f"malformed URL port: {exc}", resource=raw) from exc
            return cls(LocatorKind.REMOTE, raw, raw)

        # Not an absolute URL: keep only the final path component.
        cleaned = raw.replace("../", "").replace("..\\", "")
        filename = posixpath.basename(ntpath.basename(cleaned))
        if not filename or filename in (".", ".."):
            raise LocatorError("locator has no filename", resource=raw)
        return cls(LocatorKind.LOCAL, filename, raw)

    @property
    def is_remote(self) -> bool:
        return self.kind == LocatorKind.REMOTE

    def __str__(self) -> str:
        return self.value


class ResourceBundle(Mapping):
    """Read-only mapping of resource key -> raw bytes for one render."""

    def __init__(self, items: Dict[str, bytes]):
        self._items = dict(items)

    def __getitem__(self, key: str) -> bytes:
        return self._items[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        sizes = ", ".join(f"{k}={len(v)}B" for k, v in self._items.items())
        return f"ResourceBundle({sizes})"


@dataclass(frozen=True)
class RenderSpec:
    """
    Everything needed to draw one card.

    `background` is a hex color (`#fa0`, `#ffaa00`), a locator, or empty for
    the default fill. `avatar` may be empty, in which case the avatar pass
    is skipped. `quality` is only passed through to the encoder.
    """
    title: str
    logo: str
    author: str = ""
    avatar: str = ""
    background: str = ""
    label: str = ""
    width: int = 1200
    height: int = 630
    opacity: float = 0.6
    avatar_diameter: int = 64
    logo_height: int = 48
    title_size: float = 76
    author_size: float = 36
    label_size: float = 40
    quality: int = 84

    def validate(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ConfigError(f"canvas size must be positive, got {self.width}x{self.height}")
        if not 0.0 <= self.opacity <= 1.0:
            raise ConfigError(f"opacity must be within [0, 1], got {self.opacity}")
        if self.avatar and self.avatar_diameter <= 0:
            raise ConfigError(f"avatar diameter must be positive, got {self.avatar_diameter}")
        if not self.logo:
            raise ConfigError("logo locator is required")
        if self.logo_height <= 0:
            raise ConfigError(f"logo height must be positive, got {self.logo_height}")
        for name in ("title_size", "author_size", "label_size"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if not 1 <= self.quality <= 100:
            raise ConfigError(f"quality must be within 1..100, got {self.quality}")

    @property
    def has_avatar(self) -> bool:
        return bool(self.avatar)
