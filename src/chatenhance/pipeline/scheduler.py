"""Stability Scheduler - decide when a streaming region is done enough to render.

Generated content arrives token by token. Rendering diagrams or equations on
every mutation would run the engines on incomplete source and flash error
states, so each region moves through a small state machine instead:

    Unscheduled -> Pending -> Rendered
                      ^           |
                      +-----------+  (text changed after the render settled)

While pending, a timer re-reads the region every ``delay`` seconds:

1. Text changed within the last ``delay``: remember it and wait again
2. A completion affordance resolves to this region: render now
3. No affordance exists anywhere yet: render once idle for ``delay``
4. Affordances exist but none resolves here: keep checking, and render
   once the region is idle and ``max_wait`` has passed since it first
   became pending

A render reports back through ``settle``. If the text moved on while the
render ran, the region is pending again right away.
"""

import asyncio
import logging
from typing import Callable, Optional

from bs4.element import Tag

from chatenhance.config import Settings
from chatenhance.models import ScheduleEntry, ScheduleStatus
from chatenhance.pipeline.completion import CompletionLocator
from chatenhance.pipeline.registry import RenderStateRegistry
from chatenhance.tree import node_key, observed_text

logger = logging.getLogger(__name__)

# Timers may fire up to one clock tick early
CLOCK_SLACK = 0.001


class StabilityScheduler:
    """Per-region readiness state machine driven by loop timers."""

    def __init__(
        self,
        settings: Settings,
        registry: RenderStateRegistry,
        on_ready: Callable[[Tag], None],
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        locator: Optional[CompletionLocator] = None,
        read_text: Callable[[Tag], str] = observed_text,
        needs_render: Optional[Callable[[Tag], bool]] = None,
    ):
        """Initialize scheduler.

        Args:
            settings: Session settings (``delay`` and ``max_wait``).
            registry: Liveness source; its root is the observed tree.
            on_ready: Called once per transition to Rendered.
            loop: Event loop providing ``time``/``call_later``. Defaults to
                the running loop.
            locator: Completion affordance lookup. Without it every region
                is treated as having no affordance.
            read_text: Snapshot function for change detection.
            needs_render: Filter for regions worth scheduling at all.
        """
        self.settings = settings
        self.registry = registry
        self.on_ready = on_ready
        self.loop = loop or asyncio.get_running_loop()
        self.locator = locator
        self.read_text = read_text
        self.needs_render = needs_render or (lambda node: True)
        self.delay = settings.delay
        self.max_wait = settings.max_wait

        self._entries: dict[int, ScheduleEntry] = {}
        # key -> (node, text when the render fired, text once it settled or None)
        self._rendered: dict[int, tuple[Tag, str, Optional[str]]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def observe(self, node: Tag) -> ScheduleStatus:
        """Record a look at ``node`` and schedule it if it needs processing."""
        if not self.registry.is_live(node):
            self.cancel(node)
            return ScheduleStatus.UNSCHEDULED

        key = node_key(node)
        now = self.loop.time()
        text = self.read_text(node)

        rendered = self._rendered.get(key)
        if rendered is not None:
            settled_text = rendered[2]
            if settled_text is None or settled_text == text:
                return ScheduleStatus.RENDERED
            del self._rendered[key]
            logger.debug("Region %x changed after render, rescheduling", key)

        entry = self._entries.get(key)
        if entry is not None:
            if entry.snapshot != text:
                entry.snapshot = text
                entry.last_change = now
            return ScheduleStatus.PENDING

        if not self.needs_render(node):
            return ScheduleStatus.UNSCHEDULED

        entry = ScheduleEntry(
            key=key,
            node=node,
            snapshot=text,
            last_change=now,
            first_pending=now,
        )
        self._entries[key] = entry
        self._arm(entry, self.delay)
        logger.debug("Region %x pending", key)
        return ScheduleStatus.PENDING

    def check_completion(self) -> int:
        """Render every pending region whose completion affordance attached."""
        root = self.registry.root
        if self.locator is None or root is None or not self._entries:
            return 0

        completed = self.locator.completed(root)
        fired = 0
        for key, entry in list(self._entries.items()):
            region = completed.get(key)
            if region is None or region is not entry.node:
                continue
            if not self.registry.is_live(entry.node):
                self._discard(entry)
                continue
            self._render(entry, "completion")
            fired += 1
        return fired

    def settle(self, node: Tag) -> None:
        """Record the post-render text so later edits can reschedule.

        Content that arrived while the render was running was never seen by
        it, so the target goes straight back to Pending.
        """
        key = node_key(node)
        rendered = self._rendered.get(key)
        if rendered is None or rendered[0] is not node:
            return

        text = self.read_text(node)
        if text == rendered[1]:
            self._rendered[key] = (node, rendered[1], text)
            return

        del self._rendered[key]
        logger.debug("Region %x changed while rendering, rescheduling", key)
        self.observe(node)

    def cancel(self, node: Tag) -> None:
        key = node_key(node)
        entry = self._entries.get(key)
        if entry is not None and entry.node is node:
            self._discard(entry)
        rendered = self._rendered.get(key)
        if rendered is not None and rendered[0] is node:
            del self._rendered[key]

    def status(self, node: Tag) -> ScheduleStatus:
        key = node_key(node)
        entry = self._entries.get(key)
        if entry is not None and entry.node is node:
            return entry.status
        rendered = self._rendered.get(key)
        if rendered is not None and rendered[0] is node:
            return ScheduleStatus.RENDERED
        return ScheduleStatus.UNSCHEDULED

    def prune(self) -> int:
        """Forget targets that left the tree."""
        removed = 0
        for entry in list(self._entries.values()):
            if not self.registry.is_live(entry.node):
                self._discard(entry)
                removed += 1
        for key, (node, _, _) in list(self._rendered.items()):
            if not self.registry.is_live(node):
                del self._rendered[key]
                removed += 1
        return removed

    @property
    def pending(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Timer handling
    # ------------------------------------------------------------------

    def _arm(self, entry: ScheduleEntry, delay: float) -> None:
        entry.cancel_timer()
        entry.timer = self.loop.call_later(max(delay, 0.0), self._fire, entry.key)

    def _fire(self, key: int) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.timer = None
        try:
            self._evaluate(entry)
        except Exception:
            logger.exception("Scheduling failed for region %x", key)
            self._discard(entry)

    def _evaluate(self, entry: ScheduleEntry) -> None:
        node = entry.node
        if not self.registry.is_live(node):
            logger.debug("Region %x detached before render, discarding", entry.key)
            self._discard(entry)
            return

        now = self.loop.time()
        text = self.read_text(node)
        changed = text != entry.snapshot
        if changed:
            entry.snapshot = text
            entry.last_change = now
        elif self._is_completed(node):
            self._render(entry, "completion")
            return

        idle = now - entry.last_change
        if changed or idle + CLOCK_SLACK < self.delay:
            # Still streaming
            self._arm(entry, self.delay - idle)
            return

        if not self._affordance_exists():
            self._render(entry, "idle")
            return

        waited = now - entry.first_pending
        if waited + CLOCK_SLACK >= self.max_wait:
            self._render(entry, "max-wait")
            return
        self._arm(entry, min(self.delay, self.max_wait - waited))

    def _affordance_exists(self) -> bool:
        root = self.registry.root
        if self.locator is None or root is None:
            return False
        return self.locator.has_affordance(root)

    def _is_completed(self, node: Tag) -> bool:
        root = self.registry.root
        if self.locator is None or root is None:
            return False
        return any(
            self.locator.resolve(affordance) is node
            for affordance in self.locator.affordances(root)
        )

    def _discard(self, entry: ScheduleEntry) -> None:
        entry.cancel_timer()
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]

    def _render(self, entry: ScheduleEntry, reason: str) -> None:
        self._discard(entry)
        entry.status = ScheduleStatus.RENDERED
        self._rendered[entry.key] = (entry.node, self.read_text(entry.node), None)
        logger.debug("Region %x ready (%s)", entry.key, reason)
        try:
            self.on_ready(entry.node)
        except Exception:
            logger.exception("Render action failed for region %x", entry.key)
