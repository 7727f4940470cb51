"""Removal of active and non-portable markup from a content tree."""

from __future__ import annotations

import re
from typing import List

from .models import ContentNode
from .utils import strip_xml_illegal

# Removed together with everything they contain.
DISALLOWED_TAGS = frozenset(
    {
        "script",
        "style",
        "noscript",
        "iframe",
        "frame",
        "frameset",
        "object",
        "embed",
        "applet",
        "param",
        "form",
        "input",
        "button",
        "select",
        "textarea",
        "option",
        "optgroup",
        "datalist",
        "dialog",
        "template",
        "canvas",
        "svg",
        "math",
        "link",
        "meta",
        "base",
        "head",
        "title",
        "audio",
        "video",
        "source",
        "track",
        "portal",
    }
)

DISALLOWED_ATTRIBUTES = frozenset(
    {"style", "srcset", "sizes", "formaction", "nonce", "xmlns", "is", "autofocus"}
)
URL_ATTRIBUTES = ("href", "src", "action", "background", "cite", "longdesc", "poster")
LAZY_SOURCE_ATTRIBUTES = ("data-src", "data-original", "data-lazy-src")

XML_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9._-]*$")
SCRIPT_SCHEME_PATTERN = re.compile(r"^\s*(javascript|vbscript|data\s*:\s*text/html)", re.IGNORECASE)
CONTROL_IN_SCHEME_PATTERN = re.compile(r"[\x00-\x20]+")


def is_disallowed_attribute(name: str) -> bool:
    lowered = name.lower()
    return (
        lowered.startswith("on")
        or lowered in DISALLOWED_ATTRIBUTES
        or not XML_NAME_PATTERN.match(name)
    )


def is_script_url(value: str) -> bool:
    """True for URLs that would execute code when followed."""
    # Browsers ignore control characters and spaces inside the scheme.
    compact = CONTROL_IN_SCHEME_PATTERN.sub("", value)
    return bool(SCRIPT_SCHEME_PATTERN.match(compact))


def _promote_lazy_source(node: ContentNode) -> None:
    src = node.attrs.get("src", "").strip()
    if src and not src.startswith("data:"):
        return
    for name in LAZY_SOURCE_ATTRIBUTES:
        candidate = node.attrs.get(name, "").strip()
        if candidate:
            node.attrs["src"] = candidate
            return


def _clean_attributes(node: ContentNode) -> None:
    if node.tag == "img":
        _promote_lazy_source(node)
    cleaned = {}
    for name, value in node.attrs.items():
        if is_disallowed_attribute(name):
            continue
        if node.tag == "img" and name in LAZY_SOURCE_ATTRIBUTES:
            continue
        value = strip_xml_illegal(value)
        if name.lower() in URL_ATTRIBUTES and is_script_url(value):
            continue
        cleaned[name.lower()] = value
    node.attrs = cleaned


def _clean_children(node: ContentNode) -> List[ContentNode]:
    children: List[ContentNode] = []
    for child in node.children:
        if child.is_text:
            text = strip_xml_illegal(child.text or "")
            if text:
                child.text = text
                children.append(child)
            continue
        if child.tag in DISALLOWED_TAGS:
            continue
        if not XML_NAME_PATTERN.match(child.tag):
            # Unknown element: keep its content.
            children.extend(_clean_children(child))
            continue
        children.append(child)
    return children


def sanitize(root: ContentNode) -> ContentNode:
    """Strip disallowed elements and attributes from ``root`` in place.

    Elements listed in ``DISALLOWED_TAGS`` are dropped with their subtree,
    event handlers, inline styles and script URLs are removed from every
    remaining element, and characters that XML cannot carry are deleted from
    text. Applying it twice yields the same tree.
    """
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_text:
            continue
        _clean_attributes(node)
        node.children = _clean_children(node)
        stack.extend(node.children)
    return root


def find_violations(root: ContentNode) -> List[str]:
    """Describe every node that sanitization should have removed."""
    problems = []
    for node in root.iter_elements():
        if node.tag in DISALLOWED_TAGS:
            problems.append(f"<{node.tag}> element")
        for name, value in node.attrs.items():
            if is_disallowed_attribute(name):
                problems.append(f"{name} attribute on <{node.tag}>")
            elif name in URL_ATTRIBUTES and is_script_url(value):
                problems.append(f"script URL in {name} on <{node.tag}>")
    return problems
