"""Base models and common types for the content enhancer."""

from enum import Enum


class RichNodeKind(str, Enum):
    """Sub-structures that need their own serialization."""

    TABLE = "table"
    CODE_BLOCK = "code_block"
    DIAGRAM = "diagram"
    EQUATION = "equation"
    ORDERED_LIST = "ordered_list"
    UNORDERED_LIST = "unordered_list"
    HEADING = "heading"


class ScheduleStatus(str, Enum):
    """Readiness of a region in the stability scheduler."""

    UNSCHEDULED = "unscheduled"
    PENDING = "pending"
    RENDERED = "rendered"


class MathStatus(str, Enum):
    """Equation rendering state of a content region."""

    UNRENDERED = "unrendered"
    RENDERING = "rendering"
    RENDERED = "rendered"


class DiagramStatus(str, Enum):
    """Render state of a diagram source block."""

    UNRENDERED = "unrendered"
    RENDERING = "rendering"
    RENDERED = "rendered"
    ERRORED = "errored"


class ChangeKind(str, Enum):
    """Kinds of tree-change notifications delivered by the host."""

    CHILD_LIST = "child_list"
    CHARACTER_DATA = "character_data"


class CopyOutcome(str, Enum):
    """Result of a copy action."""

    COPIED = "copied"
    MISSING = "missing"  # no usable text found
    FAILED = "failed"  # clipboard and legacy fallback both refused
