"""HTML extraction and metadata parsing utilities."""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup, Tag
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction

from .config import ConvertConfig, FALLBACK_TITLE
from .errors import ExtractionError, NoContentFound
from .models import ContentNode, ExtractedContent
from .sanitize import sanitize
from .scoring import ContentScorer, select_candidate
from .utils import collapse_whitespace, is_http_url, resolve_url

logger = logging.getLogger("http_epub")

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
REFERENCE_ATTRIBUTES = {"a": "href", "img": "src"}
SKIPPED_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)
ISO_DATE_PATTERN = re.compile(r"^\s*(\d{4}-\d{2}-\d{2})")
LANGUAGE_PATTERN = re.compile(r"^[A-Za-z]{2,3}(-[A-Za-z0-9]{1,8})*$")


def parse_html(body: bytes, encoding: Optional[str] = None) -> BeautifulSoup:
    """Parse markup with lxml's forgiving HTML parser."""
    if not body or not body.strip():
        raise ExtractionError("document is empty")
    try:
        return BeautifulSoup(body, "lxml", from_encoding=encoding)
    except Exception as exc:  # noqa: BLE001 - bs4 raises ParserRejectedMarkup and friends
        raise ExtractionError(f"unparsable markup: {exc}") from exc


def _attribute_text(value) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(item) for item in value)
    return str(value)


def tree_from_soup(element: Tag) -> ContentNode:
    """Convert a BeautifulSoup element into a ``ContentNode`` tree."""
    root = ContentNode(tag=(element.name or "body").lower())
    if isinstance(element, BeautifulSoup):
        root.tag = "body"
    else:
        root.attrs = {name: _attribute_text(value) for name, value in element.attrs.items()}

    stack: List[Tuple[Tag, ContentNode]] = [(element, root)]
    while stack:
        source, target = stack.pop()
        for child in source.children:
            if isinstance(child, SKIPPED_STRINGS):
                continue
            if isinstance(child, NavigableString):
                target.append(ContentNode.text_node(str(child)))
            elif isinstance(child, Tag):
                node = target.append(
                    ContentNode(
                        tag=child.name.lower(),
                        attrs={
                            name: _attribute_text(value)
                            for name, value in child.attrs.items()
                        },
                    )
                )
                stack.append((child, node))
    return root


def _meta_content(soup: BeautifulSoup, *selectors: Tuple[str, str]) -> Optional[str]:
    for attribute, value in selectors:
        tag = soup.find("meta", attrs={attribute: value})
        if tag and tag.get("content"):
            content = collapse_whitespace(_attribute_text(tag["content"]))
            if content:
                return content
    return None


def find_author(soup: BeautifulSoup) -> Optional[str]:
    author = _meta_content(soup, ("name", "author"))
    if author:
        return author
    candidate = _meta_content(soup, ("property", "article:author"))
    # Facebook-style profile links are not names.
    if candidate and not is_http_url(candidate):
        return candidate
    link = soup.find(attrs={"rel": "author"})
    if link:
        text = collapse_whitespace(link.get_text(" "))
        if text:
            return text
    return None


def find_language(soup: BeautifulSoup) -> Optional[str]:
    candidates = []
    html = soup.find("html")
    if html and html.get("lang"):
        candidates.append(_attribute_text(html["lang"]))
    candidates.append(_meta_content(soup, ("http-equiv", "content-language")))
    locale = _meta_content(soup, ("property", "og:locale"))
    if locale:
        candidates.append(locale.replace("_", "-"))
    for value in candidates:
        if not value:
            continue
        value = value.split(",")[0].strip()
        if LANGUAGE_PATTERN.match(value):
            return value
    return None


def find_published(soup: BeautifulSoup) -> Optional[str]:
    values = [
        _meta_content(
            soup,
            ("property", "article:published_time"),
            ("name", "date"),
            ("itemprop", "datePublished"),
        )
    ]
    time_tag = soup.find("time", attrs={"datetime": True})
    if time_tag:
        values.append(_attribute_text(time_tag["datetime"]))
    for value in values:
        match = ISO_DATE_PATTERN.match(value or "")
        if match:
            return match.group(1)
    return None


def find_thumbnail(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    """Absolute address of the page's preview image, used as the book cover."""
    value = _meta_content(
        soup,
        ("property", "og:image"),
        ("property", "og:image:url"),
        ("name", "twitter:image"),
        ("property", "twitter:image"),
    )
    if not value:
        return None
    resolved = resolve_url(base_url, value)
    if resolved and is_http_url(resolved):
        return resolved
    return None


def find_document_title(soup: BeautifulSoup) -> Optional[str]:
    if soup.title and soup.title.string:
        title = collapse_whitespace(soup.title.string)
        if title:
            return title
    return None


def resolve_title(
    override: Optional[str],
    soup: BeautifulSoup,
    content: ContentNode,
) -> str:
    """Pick the title: override, <title>, first heading in content, fallback."""
    if override and override.strip():
        return collapse_whitespace(override)
    title = find_document_title(soup)
    if title:
        return title
    heading = content.find(*HEADING_TAGS)
    if heading is not None:
        text = collapse_whitespace(heading.text_content())
        if text:
            return text
    logger.warning("No title found; using %r", FALLBACK_TITLE)
    return FALLBACK_TITLE


def normalize_references(root: ContentNode, base_url: str) -> int:
    """Make links and image sources absolute; returns the unresolved count."""
    unresolved = 0
    for node in root.iter_elements(*REFERENCE_ATTRIBUTES):
        attribute = REFERENCE_ATTRIBUTES[node.tag]
        value = node.attrs.get(attribute)
        if value is None:
            continue
        if node.tag == "a" and value.strip().startswith("#"):
            continue
        resolved = resolve_url(base_url, value)
        if resolved is None:
            node.flags.add("unresolved")
            unresolved += 1
            logger.debug("Leaving unparsable %s=%r untouched", attribute, value)
            continue
        node.attrs[attribute] = resolved
    return unresolved


def extract_content(
    body: bytes,
    url: str,
    title: Optional[str] = None,
    encoding: Optional[str] = None,
    scorer: Optional[ContentScorer] = None,
    config: Optional[ConvertConfig] = None,
) -> ExtractedContent:
    """Extract the sanitized main content and page metadata from markup."""
    config = config or ConvertConfig()
    soup = parse_html(body, encoding)
    document_root = tree_from_soup(soup.body or soup)
    sanitize(document_root)

    selected, score = select_candidate(document_root, scorer)
    if score < config.min_content_score:
        raise NoContentFound(
            f"no content candidate scored above {config.min_content_score:g} "
            f"(best: <{selected.tag}> with {score:.2f})"
        )
    if not selected.has_content():
        raise NoContentFound(f"best candidate <{selected.tag}> has no text or images")
    logger.debug("Selected <%s> with score %.2f", selected.tag, score)

    normalize_references(selected, url)
    return ExtractedContent(
        title=resolve_title(title, soup, selected),
        root=selected,
        author=find_author(soup),
        language=find_language(soup),
        description=_meta_content(
            soup, ("name", "description"), ("property", "og:description")
        ),
        published=find_published(soup),
        thumbnail=find_thumbnail(soup, url),
    )
