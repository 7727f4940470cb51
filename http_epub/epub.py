"""EPUB 3 assembly on top of ebooklib."""

from __future__ import annotations

import datetime as dt
import io
import logging
import zipfile
from collections import OrderedDict
from typing import Optional, Sequence
from urllib.parse import urlsplit

from ebooklib import epub
from lxml import etree

from .config import DEFAULT_AUTHOR
from .errors import AssemblyError
from .models import ContentNode, Document, ImageAsset
from .sanitize import find_violations

logger = logging.getLogger("http_epub")

CONTENT_DIR = "OEBPS"
ARTICLE_ID = "article"
ARTICLE_HREF = "article.xhtml"
# Fixed so that archives only differ by identifier and modification time.
ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
# Selected containers that are only valid inside a table or list.
CELL_TAGS = frozenset({"td", "th", "li", "dd", "dt"})


def _utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(dt.timezone.utc).replace(tzinfo=None)


def _append_text(target: etree._Element, text: str) -> None:
    if len(target):
        last = target[-1]
        last.tail = (last.tail or "") + text
    else:
        target.text = (target.text or "") + text


def append_content(
    target: etree._Element,
    node: ContentNode,
    include_root: bool = True,
    root_tag: Optional[str] = None,
) -> None:
    """Copy a ``ContentNode`` tree below ``target`` as lxml elements."""
    if include_root:
        element = etree.SubElement(target, root_tag or node.tag)
        for name, value in node.attrs.items():
            element.set(name, value)
        stack = [(element, node)]
    else:
        stack = [(target, node)]

    while stack:
        element, source = stack.pop()
        for child in source.children:
            if child.is_text:
                _append_text(element, child.text or "")
                continue
            sub = etree.SubElement(element, child.tag)
            for name, value in child.attrs.items():
                sub.set(name, value)
            stack.append((sub, child))


def _source_header(body: etree._Element, document: Document) -> None:
    header = etree.SubElement(body, "header", {"class": "source"})
    etree.SubElement(header, "h1").text = document.title
    if document.author and document.author != DEFAULT_AUTHOR:
        etree.SubElement(header, "p", {"class": "byline"}).text = document.author
    origin = etree.SubElement(header, "p", {"class": "origin"})
    link = etree.SubElement(origin, "a", href=document.url)
    link.text = urlsplit(document.url).hostname or document.url
    if document.published:
        published = etree.SubElement(header, "p", {"class": "published"})
        published.text = "Published "
        etree.SubElement(published, "time", datetime=document.published).text = document.published


def render_article(document: Document, root: ContentNode) -> bytes:
    """Body markup for the content document; ebooklib adds the XHTML wrapper."""
    body = etree.Element("body")
    _source_header(body, document)
    if root.tag in ("body", "html"):
        append_content(body, root, include_root=False)
    elif root.tag in CELL_TAGS:
        append_content(body, root, root_tag="div")
    else:
        append_content(body, root)
    # HTML serialization: ebooklib re-parses the body with lxml.html.
    return etree.tostring(body, method="html", encoding="utf-8")


def _image_item(asset: ImageAsset, cover: Optional[ImageAsset]) -> epub.EpubItem:
    if cover is not None and asset.identifier == cover.identifier:
        item = epub.EpubCover(uid=asset.identifier, file_name=asset.path)
        item.media_type = asset.media_type
        item.content = asset.data
        return item
    return epub.EpubImage(
        uid=asset.identifier,
        file_name=asset.path,
        media_type=asset.media_type,
        content=asset.data,
    )


def build_book(
    document: Document,
    root: ContentNode,
    assets: Sequence[ImageAsset],
    cover: Optional[ImageAsset] = None,
) -> epub.EpubBook:
    """Describe the package as an ``EpubBook``: metadata, items, nav and spine."""
    book = epub.EpubBook()
    book.FOLDER_NAME = CONTENT_DIR
    book.set_identifier(document.identifier)
    book.set_title(document.title)
    book.set_language(document.language)
    book.add_author(document.author)
    book.add_metadata("DC", "source", document.url)
    if document.published:
        book.add_metadata("DC", "date", document.published)
    if document.description:
        book.add_metadata("DC", "description", document.description)

    article = epub.EpubHtml(
        uid=ARTICLE_ID,
        title=document.title,
        file_name=ARTICLE_HREF,
        lang=document.language,
    )
    article.content = render_article(document, root)
    book.add_item(article)

    for asset in assets:
        book.add_item(_image_item(asset, cover))
    if cover is not None:
        book.add_metadata(
            None, "meta", "", OrderedDict([("name", "cover"), ("content", cover.identifier)])
        )

    book.toc = [epub.Link(ARTICLE_HREF, document.title, ARTICLE_ID)]
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = [article]
    return book


def normalize_archive(data: bytes) -> bytes:
    """Rewrite the archive with fixed entry dates, keeping order and compression."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(data)) as source, zipfile.ZipFile(buffer, "w") as archive:
        for info in source.infolist():
            payload = source.read(info)
            if info.filename.endswith(f"/{ARTICLE_HREF}") and not payload:
                raise AssemblyError("the content document could not be rendered")
            entry = zipfile.ZipInfo(info.filename, date_time=ZIP_TIMESTAMP)
            entry.compress_type = info.compress_type
            entry.external_attr = 0o644 << 16
            archive.writestr(entry, payload)
    return buffer.getvalue()


def build_epub(
    document: Document,
    root: ContentNode,
    assets: Sequence[ImageAsset],
    cover: Optional[ImageAsset] = None,
) -> bytes:
    """Assemble the finished EPUB archive in memory."""
    if not root.has_content():
        raise AssemblyError("nothing to package: the content tree is empty")
    if not document.title.strip():
        raise AssemblyError("the package title is empty")
    violations = find_violations(root)
    if violations:
        raise AssemblyError(f"unsanitized content: {', '.join(violations)}")

    buffer = io.BytesIO()
    try:
        book = build_book(document, root, assets, cover)
        epub.write_epub(
            buffer,
            book,
            {"mtime": _utc(document.created), "raise_exceptions": True},
        )
    except (ValueError, TypeError, etree.LxmlError) as exc:
        raise AssemblyError(f"cannot serialize package: {exc}") from exc

    data = normalize_archive(buffer.getvalue())
    logger.debug("Packaged %d image%s", len(assets), "" if len(assets) == 1 else "s")
    return data
