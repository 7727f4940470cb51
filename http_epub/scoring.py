"""Main-content scoring over a sanitized content tree.

The selection walks every block-level container in document order and asks a
``ContentScorer`` for a number; the best one wins and ties keep the earliest
node. ``HeuristicScorer`` is the default strategy: it rewards prose (text that
is not nested in further blocks, paragraph-like children) and uses the
``class``/``id`` vocabulary of common site templates to push boilerplate
regions down and article regions up.
"""

from __future__ import annotations

import re
from typing import List, Optional, Protocol, Tuple

from .models import ContentNode

BLOCK_TAGS = frozenset(
    {
        "address",
        "article",
        "aside",
        "blockquote",
        "body",
        "dd",
        "details",
        "div",
        "dl",
        "dt",
        "figcaption",
        "figure",
        "footer",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "header",
        "hr",
        "li",
        "main",
        "nav",
        "ol",
        "p",
        "pre",
        "section",
        "table",
        "tbody",
        "td",
        "tfoot",
        "th",
        "thead",
        "tr",
        "ul",
    }
)
CANDIDATE_TAGS = frozenset(
    {"article", "aside", "blockquote", "body", "div", "footer", "header", "main", "nav", "section", "td"}
)
PARAGRAPH_TAGS = frozenset(
    {"p", "pre", "blockquote", "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "table", "figure"}
)

POSITIVE_PATTERN = re.compile(r"article|content|main|post|entry|story|body|text", re.IGNORECASE)
NEGATIVE_PATTERN = re.compile(
    r"nav|sidebar|footer|header|comment|advertis|\bad-|\bads?\b|banner|menu|share|social"
    r"|related|promo|sponsor|cookie|popup|widget",
    re.IGNORECASE,
)
POSITIVE_TAGS = frozenset({"article", "main"})
NEGATIVE_TAGS = frozenset({"nav", "aside", "footer", "header"})

CHARS_PER_POINT = 25.0
PARAGRAPH_POINTS = 3.0
CLASS_WEIGHT = 25.0


class ContentScorer(Protocol):
    """Strategy deciding how likely a node is to be the main content."""

    def score(self, node: ContentNode) -> float:
        ...


def own_text_length(node: ContentNode) -> int:
    """Length of the text in ``node`` that is not inside a nested block."""
    total = 0
    stack = list(node.children)
    while stack:
        child = stack.pop()
        if child.is_text:
            total += len((child.text or "").strip())
        elif child.tag not in BLOCK_TAGS:
            stack.extend(child.children)
    return total


def class_weight(node: ContentNode) -> float:
    """Weight from the tag name and the ``class``/``id`` vocabulary."""
    weight = 0.0
    if node.tag in POSITIVE_TAGS:
        weight += CLASS_WEIGHT
    elif node.tag in NEGATIVE_TAGS:
        weight -= CLASS_WEIGHT

    signature = " ".join(
        value for value in (node.attrs.get("class", ""), node.attrs.get("id", "")) if value
    )
    if signature:
        if NEGATIVE_PATTERN.search(signature):
            weight -= CLASS_WEIGHT
        elif POSITIVE_PATTERN.search(signature):
            weight += CLASS_WEIGHT
    return weight


class HeuristicScorer:
    """Score by prose density with class/id hints.

    The class/id weight only applies to nodes that carry prose, so an empty
    ``<main>`` or a ``<div id="content">`` shell never wins.
    """

    def score(self, node: ContentNode) -> float:
        value = own_text_length(node) / CHARS_PER_POINT
        for child in node.children:
            if child.is_text or child.tag not in PARAGRAPH_TAGS:
                continue
            text_length = len(child.text_content().strip())
            if not text_length:
                continue
            value += PARAGRAPH_POINTS
            value += text_length / CHARS_PER_POINT / 3
        if not value:
            return 0.0
        return value + class_weight(node)


def iter_candidates(root: ContentNode) -> List[ContentNode]:
    """Block-level containers of ``root`` in document order, root included."""
    return [
        node
        for node in root.iter_elements()
        if node is root or node.tag in CANDIDATE_TAGS
    ]


def select_candidate(
    root: ContentNode,
    scorer: Optional[ContentScorer] = None,
) -> Tuple[ContentNode, float]:
    """Return the best-scoring candidate and its score."""
    scorer = scorer or HeuristicScorer()
    best: Optional[ContentNode] = None
    best_score = float("-inf")
    for node in iter_candidates(root):
        value = scorer.score(node)
        # Strictly greater keeps the first of equal candidates.
        if value > best_score:
            best, best_score = node, value
    assert best is not None
    return best, best_score
