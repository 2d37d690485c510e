"""Diagram rendering - turn diagram source blocks into rendered containers.

Flow:
1. Find source blocks: anything classed ``language-mermaid``, or a code
   block whose text opens with a known diagram keyword
2. Recover the source from the block's line segments
3. Ask the registry whether this source may be rendered (retry rules)
4. Parse, then render into a ``div.ce-diagram-container`` right after the
   block; the container caches the source for extraction
5. On success hide the block; on failure remember the failing source,
   restore the block and hide the container
"""

import itertools
import logging
import re
from typing import Optional

from bs4.element import Tag

from chatenhance.config import Settings
from chatenhance.delegates import DiagramEngine, EngineLoader
from chatenhance.errors import ParseFailure
from chatenhance.pipeline.registry import RenderStateRegistry
from chatenhance.tree import (
    DIAGRAM_CONTAINER_CLASS,
    DIAGRAM_RENDERED_ATTR,
    DIAGRAM_SOURCE_ATTR,
    class_string,
    compile_selector,
    hide,
    parse_fragment,
    select_with_self,
    text_content,
    unhide,
)

logger = logging.getLogger(__name__)

DIAGRAM_SOURCE_RE = re.compile(
    r"^(graph|flowchart|sequenceDiagram|classDiagram|stateDiagram|erDiagram|"
    r"gantt|pie|journey|gitGraph)",
    re.MULTILINE,
)

DIAGRAM_CLASS_SELECTOR = compile_selector('[class*="language-mermaid"]')
LINE_SELECTOR = compile_selector(".line-content")

_render_ids = itertools.count(1)


def is_diagram_source(text: str) -> bool:
    return DIAGRAM_SOURCE_RE.search(text.strip()) is not None


def diagram_source(block: Tag) -> str:
    """Source text of a diagram block, trimmed."""
    lines = LINE_SELECTOR.select(block)
    if lines:
        return "\n".join(text_content(line) for line in lines).strip()
    code = block if block.name == "code" else block.find("code")
    return text_content(code or block).strip()


class DiagramRenderer:
    """Detects diagram source blocks and renders them through the engine."""

    def __init__(
        self,
        settings: Settings,
        registry: RenderStateRegistry,
        engines: EngineLoader[DiagramEngine],
    ):
        self.settings = settings
        self.registry = registry
        self.engines = engines
        self.selector = compile_selector(settings.diagram_selector)

    def is_diagram_block(self, node: Tag) -> bool:
        """Whether ``node`` is the outermost element of a diagram source block."""
        if DIAGRAM_CONTAINER_CLASS in class_string(node).split():
            return False
        for parent in node.parents:
            if DIAGRAM_CLASS_SELECTOR.match(parent):
                return False
            if DIAGRAM_CONTAINER_CLASS in class_string(parent).split():
                return False
        if DIAGRAM_CLASS_SELECTOR.match(node):
            return True
        return is_diagram_source(diagram_source(node))

    def blocks(self, root: Tag) -> list[Tag]:
        """Diagram source blocks at or below ``root``."""
        if not self.settings.diagrams_enabled:
            return []
        return [node for node in select_with_self(root, self.selector) if self.is_diagram_block(node)]

    def should_render(self, block: Tag) -> bool:
        return self.registry.should_render_diagram(block, diagram_source(block))

    async def render_all(self, root: Tag) -> int:
        rendered = 0
        for block in self.blocks(root):
            if await self.render(block):
                rendered += 1
        return rendered

    async def render(self, block: Tag) -> bool:
        """Render one block if its source is new.

        Returns:
            True if the block now shows a freshly rendered diagram.
        """
        if not self.settings.diagrams_enabled:
            return False

        source = diagram_source(block)
        if not self.registry.begin_diagram(block, source):
            return False

        engine = await self.engines.get()
        if engine is None:
            logger.warning("Diagram engine unavailable")
            self.registry.diagram_abandoned(block)
            return False

        container: Optional[Tag] = None
        try:
            await engine.parse(source)
            container = self._container(block)
            render_id = f"ce-diagram-{next(_render_ids)}"
            result = await engine.render(render_id, source, container)

            if not self.registry.is_live(block):
                self.registry.diagram_abandoned(block)
                return False

            container.clear()
            for node in parse_fragment(result.markup):
                container.append(node)
            container[DIAGRAM_SOURCE_ATTR] = source
            unhide(container)
            if result.bind is not None:
                result.bind(container)

            hide(block)
            block[DIAGRAM_RENDERED_ATTR] = "rendered"
            self.registry.diagram_rendered(block, source)
            logger.debug("Rendered diagram %s", render_id)
            return True
        except Exception as exc:
            failure = ParseFailure(str(exc), source=source)
            logger.warning("Diagram failed to render: %s", failure)
            self.registry.diagram_failed(block, source)
            self._restore(block)
            return False

    def _container(self, block: Tag) -> Tag:
        sibling = block.find_next_sibling()
        if sibling is not None and DIAGRAM_CONTAINER_CLASS in class_string(sibling).split():
            return sibling
        container = parse_fragment(f'<div class="{DIAGRAM_CONTAINER_CLASS}"></div>')[0]
        block.insert_after(container)
        return container

    def _restore(self, block: Tag) -> None:
        if block.has_attr(DIAGRAM_RENDERED_ATTR):
            del block[DIAGRAM_RENDERED_ATTR]
        unhide(block)

        sibling = block.find_next_sibling()
        if sibling is not None and DIAGRAM_CONTAINER_CLASS in class_string(sibling).split():
            sibling.clear()
            if sibling.has_attr(DIAGRAM_SOURCE_ATTR):
                del sibling[DIAGRAM_SOURCE_ATTR]
            hide(sibling)
