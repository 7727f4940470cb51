"""Utility helpers for string normalization and path handling."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional
from urllib.parse import urljoin, urlsplit

WHITESPACE_PATTERN = re.compile(r"\s+")
FILENAME_RESERVED_PATTERN = re.compile(r'[\x00-\x1f\x7f/\\:*?"<>|]')
XML_ILLEGAL_PATTERN = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")
MAX_FILENAME_CHARS = 200


def collapse_whitespace(value: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", value).strip()


def strip_xml_illegal(value: str) -> str:
    """Drop characters that cannot appear in an XML 1.0 document."""
    return XML_ILLEGAL_PATTERN.sub("", value)


def safe_filename(value: str, fallback: str = "untitled") -> str:
    """Turn a title into a portable file name, keeping non-ASCII letters."""
    cleaned = FILENAME_RESERVED_PATTERN.sub("", value)
    cleaned = collapse_whitespace(cleaned).strip(". ")
    cleaned = cleaned[:MAX_FILENAME_CHARS].rstrip(". ")
    return cleaned or fallback


def unique_path(path: Path) -> Path:
    """Return ``path`` or the first free ``name (N).ext`` sibling."""
    if not path.exists():
        return path
    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem} ({counter}){path.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


def resolve_url(base: str, reference: str) -> Optional[str]:
    """Resolve ``reference`` against ``base``; None when it cannot be parsed."""
    reference = reference.strip()
    try:
        resolved = urljoin(base, reference)
        # port raises ValueError when out of range
        urlsplit(resolved).port
    except ValueError:
        return None
    return resolved


def is_http_url(value: str) -> bool:
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)
