"""Render State Registry - idempotence flags for every mutating action.

Copy binding, math rendering and diagram rendering all check this registry
before touching the tree, so scans can invoke them repeatedly. State lives in
side tables keyed by ``id(node)``; each entry holds its node, and
:meth:`RenderStateRegistry.prune` drops entries whose nodes left the tree.
"""

import logging
from typing import Optional

from bs4.element import PageElement, Tag

from chatenhance.models import (
    ContentRegion,
    DiagramBlockState,
    DiagramStatus,
    MathStatus,
)
from chatenhance.tree import is_attached, node_key

logger = logging.getLogger(__name__)


class RenderStateRegistry:
    """Per-node flags for regions, diagram blocks and copy controls."""

    def __init__(self, root: Optional[Tag] = None):
        """Initialize registry.

        Args:
            root: Observed tree root. Mutators refuse nodes detached from it.
                When unset, every node counts as attached.
        """
        self.root = root
        self._regions: dict[int, ContentRegion] = {}
        self._diagrams: dict[int, DiagramBlockState] = {}
        self._controls: dict[int, tuple[Tag, list[Tag]]] = {}

    def attach(self, root: Tag) -> None:
        self.root = root

    def is_live(self, node: PageElement) -> bool:
        if self.root is None:
            return True
        return is_attached(node, self.root)

    # ------------------------------------------------------------------
    # Regions
    # ------------------------------------------------------------------

    def region(self, node: Tag) -> Optional[ContentRegion]:
        """Existing state for ``node``, if any."""
        return self._regions.get(node_key(node))

    def _ensure_region(self, node: Tag) -> Optional[ContentRegion]:
        if not self.is_live(node):
            return None
        key = node_key(node)
        region = self._regions.get(key)
        if region is None:
            region = ContentRegion(key=key, node=node)
            self._regions[key] = region
        return region

    def is_bound(self, node: Tag) -> bool:
        region = self.region(node)
        return region is not None and region.bound

    def mark_bound(self, node: Tag) -> bool:
        """Flag ``node`` as copy-bound. Returns False if it already was."""
        region = self._ensure_region(node)
        if region is None or region.bound:
            return False
        region.bound = True
        return True

    def raw_text(self, node: Tag) -> Optional[str]:
        region = self.region(node)
        return region.raw_text if region is not None else None

    def capture_raw_text(self, node: Tag, text: str) -> bool:
        """Store the pre-render snapshot of a region.

        The snapshot keeps following the content until math rendering of the
        region starts; from then on the tree no longer holds the source.
        """
        region = self._ensure_region(node)
        if region is None or region.math_status != MathStatus.UNRENDERED:
            return False
        region.raw_text = text
        return True

    def math_state(self, node: Tag) -> MathStatus:
        region = self.region(node)
        return region.math_status if region is not None else MathStatus.UNRENDERED

    def set_math_state(self, node: Tag, status: MathStatus) -> bool:
        region = self._ensure_region(node)
        if region is None:
            return False
        region.math_status = status
        return True

    # ------------------------------------------------------------------
    # Diagram blocks
    # ------------------------------------------------------------------

    def diagram_state(self, block: Tag) -> DiagramBlockState:
        """State of ``block``; unknown blocks report a fresh unrendered state."""
        key = node_key(block)
        state = self._diagrams.get(key)
        if state is None:
            return DiagramBlockState(key=key, node=block)
        return state

    def should_render_diagram(self, block: Tag, source: str) -> bool:
        return self.diagram_state(block).should_render(source)

    def _ensure_diagram(self, block: Tag) -> Optional[DiagramBlockState]:
        if not self.is_live(block):
            return None
        key = node_key(block)
        state = self._diagrams.get(key)
        if state is None:
            state = DiagramBlockState(key=key, node=block)
            self._diagrams[key] = state
        return state

    def begin_diagram(self, block: Tag, source: str) -> bool:
        """Claim ``block`` for rendering ``source``; False if not allowed."""
        state = self._ensure_diagram(block)
        if state is None or not state.should_render(source):
            return False
        state.status = DiagramStatus.RENDERING
        return True

    def diagram_rendered(self, block: Tag, source: str) -> bool:
        state = self._ensure_diagram(block)
        if state is None:
            return False
        state.status = DiagramStatus.RENDERED
        state.source = source
        state.error_source = None
        return True

    def diagram_failed(self, block: Tag, source: str) -> bool:
        state = self._ensure_diagram(block)
        if state is None:
            return False
        state.status = DiagramStatus.ERRORED
        state.error_source = source
        return True

    def diagram_abandoned(self, block: Tag) -> None:
        """Release a claim without recording an outcome (engine unavailable)."""
        state = self._diagrams.get(node_key(block))
        if state is not None and state.status == DiagramStatus.RENDERING:
            state.status = (
                DiagramStatus.RENDERED if state.source is not None else DiagramStatus.UNRENDERED
            )

    # ------------------------------------------------------------------
    # Copy controls
    # ------------------------------------------------------------------

    def bind_control(self, control: Tag, regions: list[Tag]) -> None:
        self._controls[node_key(control)] = (control, list(regions))

    def regions_for_control(self, control: Tag) -> list[Tag]:
        entry = self._controls.get(node_key(control))
        if entry is None or entry[0] is not control:
            return []
        return list(entry[1])

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def forget(self, node: PageElement) -> None:
        key = node_key(node)
        self._regions.pop(key, None)
        self._diagrams.pop(key, None)
        self._controls.pop(key, None)

    def prune(self) -> int:
        """Drop state of nodes no longer attached to the root."""
        if self.root is None:
            return 0

        removed = 0
        for table in (self._regions, self._diagrams):
            for key in [k for k, state in table.items() if not self.is_live(state.node)]:
                del table[key]
                removed += 1
        for key in [k for k, (control, _) in self._controls.items() if not self.is_live(control)]:
            del self._controls[key]
            removed += 1

        if removed:
            logger.debug("Pruned %d detached registry entries", removed)
        return removed

    def __len__(self) -> int:
        return len(self._regions) + len(self._diagrams)
