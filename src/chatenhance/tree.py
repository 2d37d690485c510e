"""Helpers over the BeautifulSoup content tree.

Node identity is ``id(node)``; bs4 compares tags structurally, so identity is
never checked with ``==`` or ``in``. Attachment means the parent chain reaches
the observed root object.
"""

from __future__ import annotations

from typing import Iterator, Optional

import soupsieve as sv
from bs4 import BeautifulSoup
from bs4.element import NavigableString, PageElement, PreformattedString, Tag

# Markers written into the tree by the enhancer
COPY_CONTROL_CLASS = "ce-copy-button"
FEEDBACK_COPY_CLASS = "ce-feedback-copy"
DIAGRAM_CONTAINER_CLASS = "ce-diagram-container"
DIAGRAM_SOURCE_ATTR = "data-ce-diagram-source"
DIAGRAM_RENDERED_ATTR = "data-ce-diagram"
MATH_WRAPPER_CLASS = "ce-math"
MATH_SOURCE_ATTR = "data-ce-math-source"
HIDDEN_ATTR = "data-ce-hidden"

SKIP_TAGS = frozenset({"script", "style", "noscript", "template"})

CONTROL_SELECTOR = sv.compile(
    f".{COPY_CONTROL_CLASS}, .{FEEDBACK_COPY_CLASS}, .custom-copy-btn"
)
EDITABLE_SELECTOR = sv.compile('[contenteditable="true"], textarea, input')
INJECTED_SELECTOR = sv.compile(
    f".{COPY_CONTROL_CLASS}, .{FEEDBACK_COPY_CLASS}, .custom-copy-btn, "
    f".{MATH_WRAPPER_CLASS}, .{DIAGRAM_CONTAINER_CLASS}, .katex, mjx-container"
)


def compile_selector(pattern: str) -> sv.SoupSieve:
    """Compile a CSS pattern once for repeated matching."""
    return sv.compile(pattern)


def node_key(node: PageElement) -> int:
    return id(node)


def is_element(node: object) -> bool:
    return isinstance(node, Tag)


def is_text(node: object) -> bool:
    """Plain character data, excluding comments, doctypes and the like."""
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def element_of(node: Optional[PageElement]) -> Optional[Tag]:
    """The node itself if it is an element, else its parent element."""
    if node is None:
        return None
    if isinstance(node, Tag):
        return node
    return node.parent


def is_attached(node: Optional[PageElement], root: Optional[Tag]) -> bool:
    """Whether ``node`` is still reachable from ``root``."""
    if node is None or root is None:
        return False
    if node is root:
        return True
    for parent in node.parents:
        if parent is root:
            return True
    return False


def matches(node: object, selector: sv.SoupSieve) -> bool:
    return isinstance(node, Tag) and selector.match(node)


def closest(node: Optional[PageElement], selector: sv.SoupSieve) -> Optional[Tag]:
    """Nearest element, starting at ``node`` itself, matching ``selector``."""
    element = element_of(node)
    if element is None:
        return None
    return selector.closest(element)


def select_with_self(root: Tag, selector: sv.SoupSieve) -> list[Tag]:
    """``root`` (if it matches) followed by matching descendants."""
    found = [root] if not isinstance(root, BeautifulSoup) and selector.match(root) else []
    found.extend(selector.select(root))
    return found


def class_string(node: Tag) -> str:
    classes = node.get("class") or []
    if isinstance(classes, str):
        return classes
    return " ".join(classes)


class PreorderWalk:
    """Iterative pre-order traversal with subtree pruning.

    Yields ``(node, leaving)`` pairs: every element is yielded once on entry
    and once on exit, text nodes only on entry. Calling :meth:`skip` right
    after an entry prevents descent into that node (and its exit event).
    Children are captured when a node is entered, so mutations made while
    walking do not derail the traversal.
    """

    def __init__(self, root: Tag, include_root: bool = False):
        self.root = root
        self.include_root = include_root
        self._pruned = False

    def skip(self) -> None:
        self._pruned = True

    def __iter__(self) -> Iterator[tuple[PageElement, bool]]:
        if self.include_root:
            stack: list[tuple[PageElement, bool]] = [(self.root, False)]
        else:
            stack = [(child, False) for child in reversed(self.root.contents)]

        while stack:
            node, leaving = stack.pop()
            self._pruned = False
            yield node, leaving
            if leaving or not isinstance(node, Tag) or self._pruned:
                continue
            stack.append((node, True))
            stack.extend((child, False) for child in reversed(node.contents))


def text_content(
    root: Tag,
    exclude: Optional[sv.SoupSieve] = None,
) -> str:
    """Concatenated text of ``root``, skipping script-like and excluded subtrees."""
    parts: list[str] = []
    walk = PreorderWalk(root)
    for node, leaving in walk:
        if leaving:
            continue
        if isinstance(node, Tag):
            if node.name in SKIP_TAGS or (exclude is not None and exclude.match(node)):
                walk.skip()
            continue
        if is_text(node):
            parts.append(str(node))
    return "".join(parts)


def observed_text(node: Tag) -> str:
    """Text of ``node`` ignoring enhancer-injected and engine-rendered markup.

    An equation rendered by the enhancer counts as the delimited source it
    replaced, so rendering alone never changes the observed text.
    """
    parts: list[str] = []
    walk = PreorderWalk(node)
    for current, leaving in walk:
        if leaving:
            continue
        if isinstance(current, Tag):
            if current.name in SKIP_TAGS:
                walk.skip()
            elif INJECTED_SELECTOR.match(current):
                parts.append(current.get(MATH_SOURCE_ATTR, ""))
                walk.skip()
            continue
        if is_text(current):
            parts.append(str(current))
    return "".join(parts)


def parse_fragment(markup: str) -> list[PageElement]:
    """Parse ``markup`` into detached nodes ready for insertion."""
    fragment = BeautifulSoup(markup, "html.parser")
    return [child.extract() for child in list(fragment.contents)]


def hide(node: Tag) -> None:
    node[HIDDEN_ATTR] = "1"
    node["style"] = "display: none"


def unhide(node: Tag) -> None:
    if node.has_attr(HIDDEN_ATTR):
        del node[HIDDEN_ATTR]
        if node.get("style") == "display: none":
            del node["style"]


def is_hidden(node: Tag) -> bool:
    return node.has_attr(HIDDEN_ATTR)
