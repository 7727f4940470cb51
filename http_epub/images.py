"""Image downloading, validation and embedding utilities."""

from __future__ import annotations

import io
import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import requests
from filetype import guess
from PIL import Image, UnidentifiedImageError

from .config import ConvertConfig
from .errors import ConversionCancelled, ImageError
from .fetcher import media_type, new_session
from .models import ContentNode, ImageAsset, ImageDiagnostic
from .utils import is_http_url

logger = logging.getLogger("http_epub")

IMAGE_DIR = "images"
IDENTIFIER_PREFIX = "image"
# Formats stored unchanged; everything else Pillow can read becomes PNG.
NATIVE_FORMATS = {
    "JPEG": ("image/jpeg", "jpg"),
    "PNG": ("image/png", "png"),
    "GIF": ("image/gif", "gif"),
}
TRANSCODED_FORMAT = "PNG"
PNG_MODES = {"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"}


@dataclass
class DecodedImage:
    """Payload normalized to one of the natively supported formats."""

    format: str
    media_type: str
    extension: str
    data: bytes


@dataclass
class ImageEmbedResult:
    """Assets embedded into the tree and references that had to be dropped."""

    assets: List[ImageAsset] = field(default_factory=list)
    diagnostics: List[ImageDiagnostic] = field(default_factory=list)
    cover: Optional[ImageAsset] = None


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def decode_image(url: str, data: bytes, content_type: Optional[str] = None) -> DecodedImage:
    """Validate ``data`` and transcode it to a supported raster format."""
    declared = media_type(content_type)
    looks_like_markup = detect_image_format(data) is None and data.lstrip().startswith(b"<")
    if declared == "image/svg+xml" or looks_like_markup:
        raise ImageError(url, "vector and markup images are not supported")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.width <= 1 and img.height <= 1:
                raise ImageError(url, "tracking pixel")
            if img.format in NATIVE_FORMATS:
                mime, ext = NATIVE_FORMATS[img.format]
                return DecodedImage(img.format, mime, ext, data)

            converted = img if img.mode in PNG_MODES else img.convert("RGBA")
            out = io.BytesIO()
            converted.save(out, format=TRANSCODED_FORMAT)
            logger.debug("Transcoded %s from %s to PNG", url, img.format)
            mime, ext = NATIVE_FORMATS[TRANSCODED_FORMAT]
            return DecodedImage(TRANSCODED_FORMAT, mime, ext, out.getvalue())
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise ImageError(url, f"cannot decode image: {exc}") from exc


def download_image(
    session: requests.Session,
    url: str,
    config: ConvertConfig,
    cancel_event: Optional[threading.Event] = None,
) -> DecodedImage:
    """Fetch and decode one image; raises ``ImageError`` on any failure."""
    if cancel_event is not None and cancel_event.is_set():
        raise ImageError(url, "cancelled")
    try:
        resp = session.get(url, timeout=config.image_timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise ImageError(url, f"fetch failed: {exc}") from exc

    data = resp.content
    if not data:
        raise ImageError(url, "empty response")
    if len(data) > config.max_image_bytes:
        raise ImageError(url, f"image larger than {config.max_image_bytes} bytes")
    return decode_image(url, data, resp.headers.get("Content-Type"))


def collect_image_urls(root: ContentNode) -> List[str]:
    """Distinct absolute image addresses in first-seen document order."""
    seen: Dict[str, None] = {}
    for node in root.iter_elements("img"):
        if "unresolved" in node.flags:
            continue
        src = node.attrs.get("src", "").strip()
        if is_http_url(src):
            seen.setdefault(src, None)
    return list(seen)


def _fetch_all(
    urls: List[str],
    session: requests.Session,
    config: ConvertConfig,
    cancel_event: Optional[threading.Event],
) -> Dict[str, Tuple[Optional[DecodedImage], Optional[ImageError]]]:
    results: Dict[str, Tuple[Optional[DecodedImage], Optional[ImageError]]] = {}
    workers = max(1, min(config.image_workers, len(urls)))
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="http-epub-image")
    try:
        pending: Dict[Future, str] = {
            executor.submit(download_image, session, url, config, cancel_event): url
            for url in urls
        }
        while pending:
            done, _ = wait(pending, timeout=0.25, return_when=FIRST_COMPLETED)
            if cancel_event is not None and cancel_event.is_set():
                raise ConversionCancelled("cancelled while fetching images", stage="images")
            for future in done:
                url = pending.pop(future)
                try:
                    results[url] = (future.result(), None)
                except ImageError as exc:
                    results[url] = (None, exc)
    finally:
        executor.shutdown(wait=True, cancel_futures=True)
    return results


def embed_images(
    root: ContentNode,
    session: Optional[requests.Session] = None,
    config: Optional[ConvertConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    cover_url: Optional[str] = None,
) -> ImageEmbedResult:
    """Download every image referenced by ``root`` and point it at the package copy.

    Each distinct address is fetched once, concurrently, and identifiers are
    assigned in document order once all downloads have finished. Image nodes
    whose download or decoding failed are removed from the tree.
    ``cover_url`` is fetched alongside the content images, sharing their asset
    when it is also referenced in the tree, and becomes ``result.cover``.
    """
    config = config or ConvertConfig()
    result = ImageEmbedResult()
    urls = collect_image_urls(root)
    if cover_url and is_http_url(cover_url) and cover_url not in urls:
        urls.append(cover_url)
    if urls:
        logger.info("Fetching %d image%s", len(urls), "s" if len(urls) != 1 else "")
        fetched = _fetch_all(urls, session or new_session(config), config, cancel_event)
    else:
        fetched = {}

    local_paths: Dict[str, str] = {}
    for url in urls:
        decoded, error = fetched[url]
        if decoded is None:
            reason = error.reason if error is not None else "unknown failure"
            logger.warning("Dropping image %s: %s", url, reason)
            result.diagnostics.append(ImageDiagnostic(url=url, reason=reason))
            continue
        number = len(result.assets) + 1
        identifier = f"{IDENTIFIER_PREFIX}-{number:03d}"
        path = f"{IMAGE_DIR}/{identifier}.{decoded.extension}"
        result.assets.append(
            ImageAsset(
                url=url,
                identifier=identifier,
                path=path,
                media_type=decoded.media_type,
                data=decoded.data,
                format=decoded.format,
            )
        )
        local_paths[url] = path
        if url == cover_url:
            result.cover = result.assets[-1]

    def _drop(node: ContentNode) -> bool:
        if node.tag != "img":
            return False
        src = node.attrs.get("src", "").strip()
        if src in local_paths and "unresolved" not in node.flags:
            node.attrs["src"] = local_paths[src]
            node.attrs.setdefault("alt", "")
            return False
        if src not in fetched:
            reason = "unresolvable reference" if "unresolved" in node.flags or src else "missing src"
            logger.warning("Dropping image %r: %s", src, reason)
            result.diagnostics.append(ImageDiagnostic(url=src, reason=reason))
        return True

    root.remove_where(_drop)
    return result
