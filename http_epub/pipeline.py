"""High-level orchestration: fetch, extract, embed images, assemble, publish."""

from __future__ import annotations

import datetime as dt
import enum
import logging
import os
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import requests

from .config import DEFAULT_AUTHOR, DEFAULT_LANGUAGE, FALLBACK_TITLE, ConvertConfig
from .content import extract_content
from .epub import build_epub
from .errors import ConversionCancelled, ConversionError
from .fetcher import fetch_page, new_session
from .images import embed_images
from .models import Document, ExtractedContent, FetchedPage, ImageAsset, ImageDiagnostic
from .scoring import ContentScorer
from .utils import safe_filename, strip_xml_illegal, unique_path

logger = logging.getLogger("http_epub")

EPUB_SUFFIX = ".epub"


class JobState(enum.Enum):
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    EMBEDDING_IMAGES = "embedding images"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ConversionResult:
    """Everything produced by one successful conversion."""

    document: Document
    package: bytes
    assets: List[ImageAsset] = field(default_factory=list)
    diagnostics: List[ImageDiagnostic] = field(default_factory=list)
    total_seconds: float = 0.0


class ConversionJob:
    """Runs the four stages for one URL and tracks the job state.

    Stages run strictly one after another; each consumes the value produced by
    the previous one. A failure moves the job to ``FAILED`` and propagates the
    stage error unchanged; nothing is retried.
    """

    def __init__(
        self,
        url: str,
        title: Optional[str] = None,
        config: Optional[ConvertConfig] = None,
        session: Optional[requests.Session] = None,
        scorer: Optional[ContentScorer] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.url = url
        self.title = title
        self.config = config or ConvertConfig()
        self.session = session
        self.scorer = scorer
        self.cancel_event = cancel_event
        self.state = JobState.FETCHING

    def _advance(self, state: JobState) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ConversionCancelled(
                f"cancelled before {state.value}", stage=self.state.name.lower()
            )
        logger.debug("%s -> %s", self.state.value, state.value)
        self.state = state

    def build_document(
        self,
        page: FetchedPage,
        extracted: ExtractedContent,
        identifier: Optional[str] = None,
        created: Optional[dt.datetime] = None,
    ) -> Document:
        title = strip_xml_illegal(extracted.title).strip() or FALLBACK_TITLE
        return Document(
            source_url=page.requested_url,
            url=page.url,
            title=title,
            author=strip_xml_illegal(extracted.author or "") or DEFAULT_AUTHOR,
            language=self.config.language or extracted.language or DEFAULT_LANGUAGE,
            identifier=identifier or f"urn:uuid:{uuid.uuid4()}",
            created=created or dt.datetime.now(dt.timezone.utc).replace(microsecond=0),
            description=strip_xml_illegal(extracted.description or "") or None,
            published=extracted.published,
        )

    def run(
        self,
        identifier: Optional[str] = None,
        created: Optional[dt.datetime] = None,
    ) -> ConversionResult:
        start = time.perf_counter()
        session = self.session or new_session(self.config)
        try:
            self.state = JobState.FETCHING
            page = fetch_page(self.url, session, self.config)

            self._advance(JobState.EXTRACTING)
            extracted = extract_content(
                page.body,
                page.url,
                title=self.title,
                encoding=page.encoding,
                scorer=self.scorer,
                config=self.config,
            )
            logger.info("Extracted %r from %s", extracted.title, page.url)

            self._advance(JobState.EMBEDDING_IMAGES)
            images = embed_images(
                extracted.root,
                session,
                self.config,
                self.cancel_event,
                cover_url=extracted.thumbnail,
            )

            self._advance(JobState.ASSEMBLING)
            document = self.build_document(page, extracted, identifier, created)
            package = build_epub(document, extracted.root, images.assets, cover=images.cover)
            self._advance(JobState.DONE)
        except ConversionError as exc:
            logger.debug("%s failed: %s", self.state.value, exc)
            self.state = JobState.FAILED
            raise
        finally:
            if self.session is None:
                session.close()

        elapsed = time.perf_counter() - start
        logger.info(
            "Converted %s in %.2fs (%d image%s embedded, %d dropped)",
            self.url,
            elapsed,
            len(images.assets),
            "" if len(images.assets) == 1 else "s",
            len(images.diagnostics),
        )
        return ConversionResult(
            document=document,
            package=package,
            assets=images.assets,
            diagnostics=images.diagnostics,
            total_seconds=elapsed,
        )


def convert(
    url: str,
    title: Optional[str] = None,
    config: Optional[ConvertConfig] = None,
    session: Optional[requests.Session] = None,
    scorer: Optional[ContentScorer] = None,
    cancel_event: Optional[threading.Event] = None,
    identifier: Optional[str] = None,
    created: Optional[dt.datetime] = None,
) -> ConversionResult:
    """Convert one web page into EPUB bytes without touching the filesystem."""
    job = ConversionJob(url, title, config, session, scorer, cancel_event)
    return job.run(identifier=identifier, created=created)


def default_output_path(title: str, directory: Optional[Path] = None) -> Path:
    """``<title>.epub`` in ``directory``, numbered when the name is taken."""
    directory = directory or Path.cwd()
    name = safe_filename(title, fallback=safe_filename(FALLBACK_TITLE))
    return unique_path(directory / f"{name}{EPUB_SUFFIX}")


def publish(data: bytes, destination: Path) -> Path:
    """Write ``data`` to ``destination`` atomically.

    The bytes go to a temporary file next to the destination which then
    replaces it in one step, so readers never observe a partial package and a
    failed write leaves any previous file untouched.
    """
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=".http-epub-", suffix=".part", dir=str(destination.parent)
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, destination)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    return destination


def url_to_epub(
    url: str,
    output: Optional[Path] = None,
    title: Optional[str] = None,
    config: Optional[ConvertConfig] = None,
    session: Optional[requests.Session] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Path:
    """Convert ``url`` and save the EPUB; returns the path written."""
    result = convert(url, title=title, config=config, session=session, cancel_event=cancel_event)
    destination = Path(output) if output else default_output_path(result.document.title)
    publish(result.package, destination)
    logger.info("Saved EPUB to %s", destination)
    return destination
