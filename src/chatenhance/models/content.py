"""Rich content models recovered from rendered regions.

Each model carries the data needed to rebuild its Markdown source and knows
how to serialize itself. The extractor builds these from the tree; nothing
here touches the tree.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .base import RichNodeKind

LIST_INDENT = "    "


class RichContentNode(BaseModel):
    """Base class for structures with special serialization."""

    kind: RichNodeKind

    @property
    def is_block(self) -> bool:
        """Whether the node renders on lines of its own."""
        return True

    def to_markdown(self) -> str:
        raise NotImplementedError


class TableNode(RichContentNode):
    """Table recovered as a cell grid."""

    kind: RichNodeKind = RichNodeKind.TABLE
    rows: list[list[str]] = Field(default_factory=list)
    has_header: bool = Field(default=False, description="First row holds header cells")

    @staticmethod
    def clean_cell(text: str) -> str:
        """Trim, collapse newlines and escape pipes."""
        return text.strip().replace("\n", " ").replace("|", "\\|")

    def to_markdown(self) -> str:
        """Convert table to markdown format."""
        if not self.rows:
            return ""

        lines = []
        for i, row in enumerate(self.rows):
            lines.append("| " + " | ".join(row) + " |")
            if i == 0 and self.has_header:
                lines.append("| " + " | ".join(["---"] * len(row)) + " |")

        return "\n".join(lines) + "\n"


class CodeBlockNode(RichContentNode):
    """Fenced code recovered from per-line segments."""

    kind: RichNodeKind = RichNodeKind.CODE_BLOCK
    lines: list[str] = Field(default_factory=list)
    language: Optional[str] = None

    @property
    def source(self) -> str:
        return "\n".join(self.lines)

    def to_markdown(self) -> str:
        return f"```{self.language or ''}\n{self.source}\n```"


class DiagramNode(RichContentNode):
    """Diagram whose source was cached before rendering."""

    kind: RichNodeKind = RichNodeKind.DIAGRAM
    source: str
    language: str = "mermaid"

    def to_markdown(self) -> str:
        return f"```{self.language}\n{self.source}\n```"


class EquationNode(RichContentNode):
    """Equation with its recovered notation."""

    kind: RichNodeKind = RichNodeKind.EQUATION
    notation: str
    display: bool = False

    @property
    def is_block(self) -> bool:
        return self.display

    def to_markdown(self) -> str:
        if self.display:
            return f"$${self.notation}$$"
        return f"${self.notation}$"


class HeadingNode(RichContentNode):
    """Heading of level 1-6."""

    kind: RichNodeKind = RichNodeKind.HEADING
    level: int = Field(..., ge=1, le=6)
    text: str = ""

    def to_markdown(self) -> str:
        return f"{'#' * self.level} {self.text.strip()}"


class ListItem(BaseModel):
    """One list entry: its inline text and any nested blocks."""

    text: str = ""
    blocks: list[RichContentNode] = Field(default_factory=list)


class ListNode(RichContentNode):
    """Ordered or unordered list, possibly nested."""

    kind: RichNodeKind = RichNodeKind.UNORDERED_LIST
    items: list[ListItem] = Field(default_factory=list)
    depth: int = Field(default=0, ge=0)
    start: int = Field(default=1, description="First number of an ordered list")

    @property
    def ordered(self) -> bool:
        return self.kind == RichNodeKind.ORDERED_LIST

    def marker(self, index: int) -> str:
        """Marker for the item at position ``index``."""
        if self.ordered:
            return f"{self.start + index}."
        return "-"

    def to_markdown(self) -> str:
        indent = LIST_INDENT * self.depth
        child_indent = LIST_INDENT * (self.depth + 1)
        lines: list[str] = []

        for index, item in enumerate(self.items):
            lines.append(f"{indent}{self.marker(index)} {item.text}".rstrip())
            for block in item.blocks:
                if isinstance(block, ListNode):
                    # Nested lists carry their own depth
                    lines.append(block.to_markdown())
                    continue
                for line in block.to_markdown().rstrip("\n").split("\n"):
                    lines.append(f"{child_indent}{line}" if line else "")

        return "\n".join(lines)
