"""
Error kinds raised while rendering a preview card.

Every failure aborts the render. Errors carry the drawing pass (`stage`) and
the locator or key (`resource`) they happened on so callers can report them
without re-interpreting the message.
"""
from typing import Optional


class PreviewError(Exception):
    """Base class for all render failures."""

    def __init__(self, message: str, *, stage: Optional[str] = None, resource: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.resource = resource

    def with_context(self, stage: Optional[str] = None, resource: Optional[str] = None) -> "PreviewError":
        """Fill in context that is still missing and return the same error."""
        if self.stage is None and stage is not None:
            self.stage = stage
        if self.resource is None and resource is not None:
            self.resource = resource
        return self

    def __str__(self) -> str:
        prefix = ""
        if self.stage:
            prefix = self.stage
        if self.resource:
            prefix = f"{prefix} [{self.resource}]" if prefix else f"[{self.resource}]"
        return f"{prefix}: {self.message}" if prefix else self.message


class LocatorError(PreviewError):
    """Malformed or unsafe resource locator."""


class FetchError(PreviewError):
    """Network or file I/O failure, or an oversized body."""


class DecodeError(PreviewError):
    """Bytes are not a valid image."""


class TransformError(PreviewError):
    """Resize, crop or scale failure."""


class ConfigError(PreviewError):
    """Invalid RenderSpec field."""


class FontError(PreviewError):
    """A required glyph resource failed to load."""
