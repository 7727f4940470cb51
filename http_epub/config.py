"""Configuration objects and constants for the converter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_AUTHOR = "http-epub"
DEFAULT_LANGUAGE = "en"
FALLBACK_TITLE = "Untitled"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36 http-epub/0.1"
)
MIN_CONTENT_SCORE = 1.0
MAX_IMAGE_BYTES = 10 * 1024 * 1024


@dataclass
class ConvertConfig:
    """Top-level settings that control fetching, extraction and packaging."""

    timeout: float = 30.0
    image_timeout: float = 15.0
    image_workers: int = 4
    user_agent: str = DEFAULT_USER_AGENT
    language: Optional[str] = None
    min_content_score: float = MIN_CONTENT_SCORE
    max_image_bytes: int = MAX_IMAGE_BYTES
