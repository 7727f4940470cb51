"""Convert a single web page into a self-contained EPUB."""

from .config import ConvertConfig
from .errors import (
    AssemblyError,
    ConversionCancelled,
    ConversionError,
    ExtractionError,
    FetchError,
    ImageError,
    NoContentFound,
)
from .pipeline import ConversionResult, convert, url_to_epub

__all__ = [
    "AssemblyError",
    "ConversionCancelled",
    "ConversionError",
    "ConversionResult",
    "ConvertConfig",
    "ExtractionError",
    "FetchError",
    "ImageError",
    "NoContentFound",
    "convert",
    "url_to_epub",
]
