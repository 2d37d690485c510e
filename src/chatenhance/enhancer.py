"""Content enhancer - wires the pipeline components to one observed tree.

Flow:
1. ``attach`` scans the whole tree once
2. ``notify`` feeds host change records to the scanner, which flushes one
   batched scan per loop cycle
3. Each scan binds copy controls and lets the scheduler look at every
   region and standalone diagram block
4. When the scheduler declares a target ready, a background task renders
   its diagrams and equations, then reports back through ``settle``
"""

import asyncio
import logging
from typing import Iterable, Optional

from bs4.element import Tag

from chatenhance.config import Settings
from chatenhance.delegates import (
    ClipboardWriter,
    DiagramEngine,
    EngineLoader,
    MathEngine,
    ResourceLoader,
)
from chatenhance.delegates.engines import EngineFactory
from chatenhance.models import ChangeRecord, CopyOutcome
from chatenhance.pipeline import (
    CompletionLocator,
    ContentExtractor,
    CopyBinder,
    DiagramRenderer,
    MathRenderer,
    RenderStateRegistry,
    StabilityScheduler,
    TreeScanner,
    has_math_hint,
)
from chatenhance.tree import closest, compile_selector, matches, observed_text, select_with_self

logger = logging.getLogger(__name__)


class ContentEnhancer:
    """Enhances generated content in one observed tree."""

    def __init__(
        self,
        settings: Settings,
        *,
        diagram_engines: Optional[EngineLoader[DiagramEngine]] = None,
        math_engines: Optional[EngineLoader[MathEngine]] = None,
        clipboard: Optional[ClipboardWriter] = None,
        resources: Optional[ResourceLoader] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """Initialize enhancer.

        Args:
            settings: Session settings shared by every component.
            diagram_engines: Diagram engine loader; diagrams stay unrendered
                without one.
            math_engines: Math engine loader; equations stay unrendered
                without one.
            clipboard: Clipboard writer used by copy controls.
            resources: Resource loader closed together with the enhancer.
            loop: Event loop for timers and render tasks. Defaults to the
                running loop.
        """
        self.settings = settings
        self.loop = loop or asyncio.get_running_loop()
        self.resources = resources
        self.root: Optional[Tag] = None
        self.content_selector = compile_selector(settings.content_selector)

        self.registry = RenderStateRegistry()
        self.extractor = ContentExtractor(settings, self.registry)
        self.locator = CompletionLocator(settings)
        self.binder = CopyBinder(
            settings,
            self.registry,
            self.extractor,
            self.locator,
            clipboard or ClipboardWriter(),
            loop=self.loop,
        )
        self.diagrams = (
            DiagramRenderer(settings, self.registry, diagram_engines)
            if diagram_engines is not None
            else None
        )
        self.math = (
            MathRenderer(settings, self.registry, math_engines)
            if math_engines is not None
            else None
        )
        self.scheduler = StabilityScheduler(
            settings,
            self.registry,
            self._on_ready,
            loop=self.loop,
            locator=self.locator,
            needs_render=self._needs_render,
        )
        self.scanner = TreeScanner(
            settings,
            self.scan_root,
            loop=self.loop,
            after_flush=self._after_flush,
        )
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def with_engines(
        cls,
        settings: Settings,
        *,
        diagram_factory: Optional[EngineFactory] = None,
        math_factory: Optional[EngineFactory] = None,
        clipboard: Optional[ClipboardWriter] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> "ContentEnhancer":
        """Build an enhancer whose engines load from the configured URLs."""
        resources = ResourceLoader(timeout=settings.resource_timeout_s)
        diagram_engines = None
        if diagram_factory is not None and settings.diagrams_enabled:
            diagram_engines = EngineLoader(
                "Diagram", diagram_factory, url=settings.mermaid_url, resources=resources
            )
        math_engines = None
        if math_factory is not None and settings.math_enabled:
            math_engines = EngineLoader(
                "Math", math_factory, url=settings.katex_url, resources=resources
            )
        return cls(
            settings,
            diagram_engines=diagram_engines,
            math_engines=math_engines,
            clipboard=clipboard,
            resources=resources,
            loop=loop,
        )

    # ------------------------------------------------------------------
    # Host entry points
    # ------------------------------------------------------------------

    def attach(self, root: Tag) -> None:
        """Start observing ``root`` and scan it once."""
        self.root = root
        self.registry.attach(root)
        self.scanner.root = root
        self.scan_root(root)
        self._after_flush()
        logger.info("Attached to <%s>", root.name)

    def notify(self, records: Iterable[ChangeRecord]) -> int:
        """Forward a batch of host change records."""
        if self.root is None:
            return 0
        return self.scanner.handle_changes(records)

    def scan_root(self, root: Tag) -> None:
        """Bind, snapshot and schedule everything at or below ``root``."""
        for region in select_with_self(root, self.content_selector):
            self.binder.ensure_bound(region)
            self.scheduler.observe(region)

        if self.diagrams is not None:
            for block in self.diagrams.blocks(root):
                if closest(block, self.content_selector) is None:
                    self.scheduler.observe(block)

    def copy(self, region: Tag) -> CopyOutcome:
        return self.binder.copy(region)

    def click(self, control: Tag) -> CopyOutcome:
        return self.binder.click(control)

    def extract(self, region: Tag) -> str:
        return self.extractor.extract(region)

    async def drain(self) -> None:
        """Wait for render tasks started so far (and any they lead to)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self.resources is not None:
            await self.resources.aclose()

    @property
    def pending_renders(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_region(self, node: Tag) -> bool:
        return matches(node, self.content_selector)

    def _needs_render(self, node: Tag) -> bool:
        if not self._is_region(node):
            return self.diagrams is not None
        if self.diagrams is not None and self.diagrams.blocks(node):
            return True
        return self.math is not None and has_math_hint(observed_text(node))

    def _after_flush(self) -> None:
        if self.root is None:
            return
        self.binder.add_feedback_controls(self.root)
        self.scheduler.check_completion()
        self.registry.prune()
        self.scheduler.prune()

    def _on_ready(self, node: Tag) -> None:
        task = self.loop.create_task(self._render(node))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _render(self, node: Tag) -> None:
        try:
            if self._is_region(node):
                if self.diagrams is not None:
                    await self.diagrams.render_all(node)
                if self.math is not None:
                    await self.math.render(node)
            elif self.diagrams is not None:
                await self.diagrams.render(node)
        except Exception:
            logger.exception("Rendering failed for <%s>", node.name)
        finally:
            self.scheduler.settle(node)
