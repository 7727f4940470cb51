"""Data models used throughout the conversion pipeline."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

TEXT = "#text"


@dataclass
class ContentNode:
    """A node of the extracted markup tree.

    Element nodes carry a lower-case ``tag`` and ``attrs``; text nodes use the
    ``#text`` tag and keep their payload in ``text``. ``flags`` holds
    processing markers that are never serialized.
    """

    tag: str
    attrs: Dict[str, str] = field(default_factory=dict)
    children: List["ContentNode"] = field(default_factory=list)
    text: Optional[str] = None
    flags: Set[str] = field(default_factory=set)

    @classmethod
    def text_node(cls, text: str) -> "ContentNode":
        return cls(tag=TEXT, text=text)

    @property
    def is_text(self) -> bool:
        return self.tag == TEXT

    def append(self, child: "ContentNode") -> "ContentNode":
        self.children.append(child)
        return child

    def iter(self) -> Iterator["ContentNode"]:
        """Yield this node and its descendants in document order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def iter_elements(self, *tags: str) -> Iterator["ContentNode"]:
        for node in self.iter():
            if node.is_text:
                continue
            if not tags or node.tag in tags:
                yield node

    def find(self, *tags: str) -> Optional["ContentNode"]:
        return next(self.iter_elements(*tags), None)

    def text_content(self) -> str:
        return "".join(node.text or "" for node in self.iter() if node.is_text)

    def has_content(self) -> bool:
        """True when the tree holds visible text or at least one image."""
        return bool(self.text_content().strip()) or self.find("img") is not None

    def remove_where(self, predicate) -> int:
        """Detach every descendant matching ``predicate``; returns the count."""
        removed = 0
        stack = [self]
        while stack:
            node = stack.pop()
            kept = []
            for child in node.children:
                if predicate(child):
                    removed += 1
                    continue
                kept.append(child)
                stack.append(child)
            node.children = kept
        return removed


@dataclass
class Document:
    """Metadata describing one conversion job."""

    source_url: str
    url: str
    title: str
    author: str
    language: str
    identifier: str
    created: dt.datetime
    description: Optional[str] = None
    published: Optional[str] = None


@dataclass
class FetchedPage:
    """Raw markup returned by the variant fetcher."""

    requested_url: str
    url: str
    body: bytes
    encoding: Optional[str] = None
    variant: Optional[str] = None


@dataclass
class ExtractedContent:
    """Sanitized main content together with page metadata."""

    title: str
    root: ContentNode
    author: Optional[str] = None
    language: Optional[str] = None
    description: Optional[str] = None
    published: Optional[str] = None
    thumbnail: Optional[str] = None


@dataclass
class ImageAsset:
    """Downloaded and validated image embedded into the package."""

    url: str
    identifier: str
    path: str
    media_type: str
    data: bytes
    format: str


@dataclass
class ImageDiagnostic:
    """Why a single image reference was dropped."""

    url: str
    reason: str
