"""Per-node state models kept in side tables keyed by node identity."""

from typing import Any, Callable, Optional

from bs4.element import PageElement, Tag
from pydantic import BaseModel, ConfigDict, Field

from .base import ChangeKind, DiagramStatus, MathStatus, ScheduleStatus


class NodeStateModel(BaseModel):
    """Base for models that hold a live tree node."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    key: int = Field(..., description="id() of the node")
    node: Tag


class ContentRegion(NodeStateModel):
    """A node holding enhanceable generated content."""

    raw_text: Optional[str] = Field(
        None, description="Text snapshot taken before rendering altered the region"
    )
    bound: bool = Field(default=False, description="Copy control injected")
    math_status: MathStatus = Field(default=MathStatus.UNRENDERED)

    @property
    def has_snapshot(self) -> bool:
        return self.raw_text is not None


class DiagramBlockState(NodeStateModel):
    """Render state of a code block holding diagram source."""

    status: DiagramStatus = Field(default=DiagramStatus.UNRENDERED)
    source: Optional[str] = Field(None, description="Source of the last successful render")
    error_source: Optional[str] = Field(None, description="Source that last failed to parse")

    def should_render(self, source: str) -> bool:
        """Apply the retry rules for ``source``."""
        if not source:
            return False
        if self.status == DiagramStatus.RENDERING:
            return False
        if self.status == DiagramStatus.RENDERED:
            return source != self.source
        if self.error_source is not None and self.error_source == source:
            return False
        return True


class ScheduleEntry(NodeStateModel):
    """Transient scheduling state of one pending target."""

    snapshot: str = ""
    last_change: float = 0.0
    first_pending: float = 0.0
    timer: Any = Field(None, description="Handle returned by loop.call_later")
    status: ScheduleStatus = Field(default=ScheduleStatus.PENDING)

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class ChangeRecord(BaseModel):
    """One tree-change notification from the host."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: ChangeKind
    target: Optional[PageElement] = None
    added_nodes: list[PageElement] = Field(default_factory=list)

    @classmethod
    def added(cls, *nodes: PageElement) -> "ChangeRecord":
        parent = nodes[0].parent if nodes else None
        return cls(kind=ChangeKind.CHILD_LIST, target=parent, added_nodes=list(nodes))

    @classmethod
    def text_changed(cls, text_node: PageElement) -> "ChangeRecord":
        return cls(kind=ChangeKind.CHARACTER_DATA, target=text_node)

    def changed_nodes(self) -> list[PageElement]:
        """Nodes that should be resolved to scan roots."""
        if self.kind == ChangeKind.CHARACTER_DATA:
            return [self.target] if self.target is not None else []
        return list(self.added_nodes)


class DiagramRenderResult(BaseModel):
    """Output of a diagram engine render call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    markup: str
    bind: Optional[Callable[[Tag], None]] = None
