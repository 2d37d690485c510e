"""Content Extraction - serialize a rendered region back to Markdown.

Rendering replaces source with visual structure: tables become grids, code
becomes highlighted line segments, diagrams become SVG, equations become
engine markup. The extractor walks a region once, in document order, and
rebuilds the source of every structure it recognizes.

Flow:
1. Prose-only regions return their cached raw-text snapshot
2. Otherwise a pre-order walk emits plain text and, for each rich node, its
   Markdown form; the walk then prunes that subtree so nested matches are
   never emitted twice
3. Blank-line runs are collapsed and the result trimmed
"""

import logging
import re
from typing import Iterable, Optional

from bs4.element import PageElement, Tag

from chatenhance.config import Settings
from chatenhance.models import (
    CodeBlockNode,
    DiagramNode,
    EquationNode,
    HeadingNode,
    ListItem,
    ListNode,
    RichContentNode,
    RichNodeKind,
    TableNode,
)
from chatenhance.pipeline.registry import RenderStateRegistry
from chatenhance.tree import (
    CONTROL_SELECTOR,
    DIAGRAM_CONTAINER_CLASS,
    DIAGRAM_RENDERED_ATTR,
    DIAGRAM_SOURCE_ATTR,
    MATH_WRAPPER_CLASS,
    SKIP_TAGS,
    PreorderWalk,
    class_string,
    closest,
    compile_selector,
    is_hidden,
    is_text,
    text_content,
)

logger = logging.getLogger(__name__)

# Labels that renderers put next to code blocks
COMMON_LANGS = frozenset({
    "xml", "html", "css", "javascript", "typescript", "python", "java",
    "json", "bash", "shell", "sql", "yaml", "markdown", "md", "go", "rust",
    "c", "cpp", "csharp", "php", "ruby", "swift", "kotlin",
})

RICH_SELECTOR = compile_selector(
    "table, pre, ol, ul, h1, h2, h3, h4, h5, h6, .code-block, "
    '[class*="language-"], [aria-label^="highlighted-code"], '
    f".katex, .katex-display, mjx-container, .{MATH_WRAPPER_CLASS}, "
    f".{DIAGRAM_CONTAINER_CLASS}"
)
RENDER_INTERNALS = compile_selector(
    f".katex, mjx-container, .MathJax, .{MATH_WRAPPER_CLASS}, .{DIAGRAM_CONTAINER_CLASS}"
)
CODE_INTERNALS = compile_selector('pre, .code-block, [class*="language-"]:not(code)')
KATEX_DISPLAY = compile_selector(".katex-display")
TEX_ANNOTATION = compile_selector('annotation[encoding="application/x-tex"]')
LANGUAGE_HINT_CHILD = compile_selector(
    '[class*="language-"], [class*="lang-"], [data-language], [data-lang], [data-code-language]'
)

HEADING_TAGS = {f"h{level}": level for level in range(1, 7)}
PARAGRAPH_TAGS = frozenset({"p", "blockquote"} | set(HEADING_TAGS))
LINE_TAGS = frozenset({"div", "li", "tr", "section", "article", "header", "footer"})
PROSE_TAGS = PARAGRAPH_TAGS | {"li", "td", "th"}
CELL_TAGS = frozenset({"td", "th"})

_LANG_CLASS_RE = re.compile(r"(?:^|\s)(?:language|lang)-([\w+#.-]+)")
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def _is_code_block(node: Tag) -> bool:
    if node.name == "pre":
        return True
    classes = class_string(node)
    if "code-block" in classes.split():
        return True
    if "language-" in classes and node.name != "code":
        return True
    return (node.get("aria-label") or "").startswith("highlighted-code")


def _language_hint(node: Optional[Tag]) -> Optional[str]:
    if node is None:
        return None
    for attr in ("data-language", "data-lang", "data-code-language"):
        value = node.get(attr)
        if value and str(value).strip():
            return str(value).strip().lower()
    match = _LANG_CLASS_RE.search(class_string(node))
    if match:
        return match.group(1).lower()
    return None


def _squash(text: str) -> str:
    return " ".join(text.split())


def _own_rows(table: Tag) -> list[Tag]:
    """Rows of ``table`` itself, leaving rows of tables nested in its cells."""
    rows: list[Tag] = []
    for child in table.find_all(True, recursive=False):
        if child.name == "tr":
            rows.append(child)
        elif child.name in ("thead", "tbody", "tfoot"):
            rows.extend(child.find_all("tr", recursive=False))
    return rows


class _Output:
    """Accumulates emitted text with line-break bookkeeping."""

    def __init__(self):
        self.parts: list[str] = []
        self.nodes: list[RichContentNode] = []
        self._tail = ""

    def text(self, value: str) -> None:
        if not value:
            return
        self.parts.append(value)
        self._tail = (self._tail + value)[-2:]

    def ensure_break(self) -> None:
        if self._tail and not self._tail.endswith("\n"):
            self.text("\n")

    def ensure_blank_line(self) -> None:
        if not self._tail:
            return
        if not self._tail.endswith("\n"):
            self.text("\n\n")
        elif self._tail != "\n\n":
            self.text("\n")

    def space(self) -> None:
        if self._tail and not self._tail[-1].isspace():
            self.text(" ")

    def rich(self, node: RichContentNode) -> None:
        self.nodes.append(node)
        markdown = node.to_markdown().rstrip("\n")
        if not node.is_block:
            self.text(markdown)
            return
        self.ensure_blank_line()
        self.text(markdown)
        self.text("\n\n")

    def render(self) -> str:
        return _BLANK_RUN_RE.sub("\n\n", "".join(self.parts)).strip()


class ContentExtractor:
    """Serializes content regions to normalized Markdown text.

    A pure function of the current subtree: two calls without an intervening
    mutation return the same string.
    """

    def __init__(self, settings: Settings, registry: RenderStateRegistry):
        """Initialize extractor.

        Args:
            settings: Session settings.
            registry: Source of cached raw-text snapshots.
        """
        self.settings = settings
        self.registry = registry

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def has_rich_content(self, region: Tag) -> bool:
        """Whether any recognized rich node exists below ``region``."""
        return RICH_SELECTOR.select_one(region) is not None

    def extract(self, region: Tag, use_raw_text: bool = True) -> str:
        """Serialize ``region`` to text.

        Args:
            region: Content region root.
            use_raw_text: Allow the snapshot fast path for prose-only regions.

        Returns:
            Trimmed text; empty when nothing usable was found.
        """
        if use_raw_text and not self.has_rich_content(region):
            raw = self.registry.raw_text(region)
            if raw is not None:
                return raw.strip()

        return self._walk(region).render()

    def extract_group(self, regions: Iterable[Tag]) -> str:
        """Serialize several regions of one message, separated by blank lines."""
        texts = [self.extract(region) for region in regions]
        return "\n\n".join(text for text in texts if text)

    def collect(self, region: Tag) -> list[RichContentNode]:
        """Top-level rich nodes of ``region`` in emission order."""
        return self._walk(region).nodes

    def rich_node(self, node: Tag, depth: int = 0) -> Optional[RichContentNode]:
        """Model for ``node`` if it is the root of a recognized structure."""
        classes = class_string(node)

        if DIAGRAM_CONTAINER_CLASS in classes.split():
            source = node.get(DIAGRAM_SOURCE_ATTR)
            return DiagramNode(source=source) if source else None

        equation = self._equation(node, classes)
        if equation is not None:
            return equation

        if node.name == "table":
            return self._table(node)
        if node.name in HEADING_TAGS:
            return HeadingNode(
                level=HEADING_TAGS[node.name], text=_squash(self._inline_text(node))
            )
        if node.name in ("ol", "ul"):
            return self._list(node, depth)
        if _is_code_block(node):
            return self._code_block(node)
        return None

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def _is_silent(self, node: Tag) -> bool:
        """Subtrees that never contribute text."""
        if node.name in SKIP_TAGS or is_hidden(node):
            return True
        if node.get(DIAGRAM_RENDERED_ATTR) == "rendered":
            return True
        return CONTROL_SELECTOR.match(node)

    def _walk(self, region: Tag) -> _Output:
        out = _Output()
        walk = PreorderWalk(region)

        for node, leaving in walk:
            if isinstance(node, Tag):
                if leaving:
                    self._block_break(node, out)
                    continue
                if self._is_silent(node):
                    walk.skip()
                    continue
                if node.name == "br":
                    out.text("\n")
                    continue
                rich = self.rich_node(node)
                if rich is not None:
                    out.rich(rich)
                    walk.skip()
                    continue
                if DIAGRAM_CONTAINER_CLASS in class_string(node).split():
                    # Container without cached source: nothing to recover
                    walk.skip()
                    continue
                self._block_break(node, out)
            elif is_text(node):
                self._plain_text(node, out)

        return out

    def _block_break(self, node: Tag, out: _Output) -> None:
        if node.name in PARAGRAPH_TAGS:
            out.ensure_blank_line()
        elif node.name in LINE_TAGS:
            out.ensure_break()

    def _plain_text(self, node: PageElement, out: _Output) -> None:
        text = str(node)
        if not text.strip():
            if "\n" not in text:
                out.space()
            return
        if self._is_suppressed_text(node):
            return
        out.text(text)

    def _is_suppressed_text(self, node: PageElement) -> bool:
        parent = node.parent
        if parent is None:
            return True
        if closest(parent, RENDER_INTERNALS) is not None:
            return True
        if closest(parent, CODE_INTERNALS) is not None:
            return True
        if closest(parent, CONTROL_SELECTOR) is not None:
            return True
        label = str(node).strip().lower()
        return label in COMMON_LANGS and self._is_code_label(parent, label)

    @staticmethod
    def _is_code_label(element: Tag, label: str, levels: int = 3) -> bool:
        """Whether ``element`` is a bare language label heading a code block.

        The label must be the only text of every element climbed through, and
        none of them may be prose, so ``<p>Install <b>python</b></p>`` keeps
        its word even when a code block follows.
        """
        current: Optional[Tag] = element
        for _ in range(levels):
            if current is None or current.name in PROSE_TAGS:
                return False
            if text_content(current).strip().lower() != label:
                return False
            sibling = current.find_next_sibling()
            if sibling is not None:
                return _is_code_block(sibling)
            current = current.parent
        return False

    # ------------------------------------------------------------------
    # Rich node builders
    # ------------------------------------------------------------------

    def _inline_text(self, root: Tag) -> str:
        """Text of ``root`` with equations restored to their notation."""
        parts: list[str] = []
        walk = PreorderWalk(root)
        for node, leaving in walk:
            if leaving:
                continue
            if isinstance(node, Tag):
                if self._is_silent(node):
                    walk.skip()
                    continue
                if node.name in CELL_TAGS:
                    # Cells of a nested table read as separate words
                    parts.append(" ")
                equation = self._equation(node, class_string(node))
                if equation is not None:
                    parts.append(equation.to_markdown())
                    walk.skip()
            elif is_text(node) and closest(node.parent, RENDER_INTERNALS) is None:
                parts.append(str(node))
        return "".join(parts)

    def _table(self, node: Tag) -> TableNode:
        rows: list[list[str]] = []
        has_header = False
        for index, row in enumerate(_own_rows(node)):
            cells = row.find_all(["th", "td"], recursive=False)
            if index == 0:
                has_header = any(cell.name == "th" for cell in cells)
            rows.append([TableNode.clean_cell(_squash(self._inline_text(cell))) for cell in cells])
        return TableNode(rows=rows, has_header=has_header)

    def _code_block(self, node: Tag) -> CodeBlockNode:
        line_nodes = node.select(".line-content")
        if line_nodes:
            lines = [text_content(line) for line in line_nodes]
        else:
            code = node if node.name == "code" else node.find("code")
            source = text_content(code or node, exclude=CONTROL_SELECTOR).rstrip()
            lines = source.split("\n")
        return CodeBlockNode(lines=lines, language=self._code_language(node))

    def _code_language(self, node: Tag) -> Optional[str]:
        for candidate in (node, LANGUAGE_HINT_CHILD.select_one(node), node.parent):
            language = _language_hint(candidate)
            if language:
                return language

        previous = node.find_previous_sibling()
        if previous is not None and previous.name not in PROSE_TAGS:
            label = previous.get_text().strip().lower()
            if label in COMMON_LANGS:
                return label
        return None

    def _equation(self, node: Tag, classes: str) -> Optional[EquationNode]:
        class_names = classes.split()
        notation: Optional[str] = None
        display = False

        if MATH_WRAPPER_CLASS in class_names:
            notation = node.get("aria-label") or self._tex_annotation(node)
            display = node.get("data-display") == "true"
        elif "katex-display" in class_names:
            notation = self._tex_annotation(node)
            display = True
        elif "katex" in class_names:
            notation = self._tex_annotation(node)
            display = closest(node.parent, KATEX_DISPLAY) is not None
        elif node.name == "mjx-container":
            notation = node.get("aria-label")
            display = node.get("display") == "true" or "MathJax_Display" in class_names

        if not notation:
            return None
        return EquationNode(notation=notation, display=display)

    @staticmethod
    def _tex_annotation(node: Tag) -> Optional[str]:
        annotation = TEX_ANNOTATION.select_one(node)
        return annotation.get_text() if annotation is not None else None

    def _list(self, node: Tag, depth: int) -> ListNode:
        kind = RichNodeKind.ORDERED_LIST if node.name == "ol" else RichNodeKind.UNORDERED_LIST
        try:
            start = int(node.get("start", 1))
        except (TypeError, ValueError):
            start = 1

        items = [self._list_item(li, depth) for li in node.find_all("li", recursive=False)]
        return ListNode(kind=kind, items=items, depth=depth, start=start)

    def _list_item(self, li: Tag, depth: int) -> ListItem:
        """Marker-line text and nested blocks of one list item.

        Inline text is gathered before the nested blocks are emitted, so text
        written after a nested list or code block inside ``li`` moves up onto
        the marker line. ``<li>a<ul><li>b</li></ul>c</li>`` extracts as
        ``- a c`` followed by ``    - b``.
        """
        parts: list[str] = []
        blocks: list[RichContentNode] = []
        walk = PreorderWalk(li)

        for node, leaving in walk:
            if isinstance(node, Tag):
                if leaving:
                    if node.name in PARAGRAPH_TAGS or node.name in LINE_TAGS:
                        parts.append(" ")
                    continue
                if self._is_silent(node):
                    walk.skip()
                    continue
                rich = self.rich_node(node, depth + 1)
                if rich is None:
                    continue
                if rich.is_block:
                    blocks.append(rich)
                    parts.append(" ")
                else:
                    parts.append(rich.to_markdown())
                walk.skip()
            elif is_text(node) and not self._is_suppressed_text(node):
                parts.append(str(node))

        return ListItem(text=_squash("".join(parts)), blocks=blocks)
