"""Models for the content enhancer.

Two families live here:

- Rich content models (tables, code, diagrams, equations, lists, headings)
  that the extractor builds from a rendered region and serializes back to
  Markdown.
- Per-node state models (regions, diagram blocks, schedule entries) kept in
  side tables keyed by node identity and pruned when nodes detach.
"""

from .base import (
    ChangeKind,
    CopyOutcome,
    DiagramStatus,
    MathStatus,
    RichNodeKind,
    ScheduleStatus,
)
from .content import (
    LIST_INDENT,
    CodeBlockNode,
    DiagramNode,
    EquationNode,
    HeadingNode,
    ListItem,
    ListNode,
    RichContentNode,
    TableNode,
)
from .state import (
    ChangeRecord,
    ContentRegion,
    DiagramBlockState,
    DiagramRenderResult,
    ScheduleEntry,
)

__all__ = [
    # Base types
    "ChangeKind",
    "CopyOutcome",
    "DiagramStatus",
    "MathStatus",
    "RichNodeKind",
    "ScheduleStatus",
    # Rich content
    "LIST_INDENT",
    "CodeBlockNode",
    "DiagramNode",
    "EquationNode",
    "HeadingNode",
    "ListItem",
    "ListNode",
    "RichContentNode",
    "TableNode",
    # Node state
    "ChangeRecord",
    "ContentRegion",
    "DiagramBlockState",
    "DiagramRenderResult",
    "ScheduleEntry",
]
