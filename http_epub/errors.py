"""Exception hierarchy shared by the conversion stages."""

from __future__ import annotations

from typing import Optional


class ConversionError(Exception):
    """Base class for failures that abort or degrade a conversion job."""

    stage = "convert"

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class FetchError(ConversionError):
    """Network failure, non-success status or non-HTML response."""

    stage = "fetch"


class ExtractionError(ConversionError):
    """Markup that cannot be turned into a content tree."""

    stage = "extract"


class NoContentFound(ExtractionError):
    """No candidate sub-tree scored above the minimum threshold."""


class ImageError(ConversionError):
    """A single image could not be fetched or decoded; never fatal."""

    stage = "images"

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class AssemblyError(ConversionError):
    """The container could not be serialized."""

    stage = "assemble"


class ConversionCancelled(ConversionError):
    """The job was cancelled at a stage boundary or during image fetches."""
