"""Tree Scanner - turn change notifications into one batched scan per cycle.

Hosts deliver changes in bursts while a reply streams in. The scanner maps
each changed node to a scan root, collects roots in an insertion-ordered
dict keyed by node identity (overlapping batches dedupe for free), and arms
a single flush for the next loop iteration. Nothing touches the tree inside
the notification call itself.
"""

import asyncio
import logging
from typing import Callable, Iterable, Optional

from bs4.element import PageElement, Tag

from chatenhance.config import Settings
from chatenhance.models import ChangeRecord
from chatenhance.tree import closest, compile_selector, element_of, is_attached, node_key

logger = logging.getLogger(__name__)


class TreeScanner:
    """Deduplicates scan roots and flushes them once per loop cycle."""

    def __init__(
        self,
        settings: Settings,
        scan: Callable[[Tag], None],
        *,
        root: Optional[Tag] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        after_flush: Optional[Callable[[], None]] = None,
    ):
        """Initialize scanner.

        Args:
            settings: Session settings (content pattern, ancestor cap).
            scan: Full region scan invoked for each live root at flush time.
            root: Observed tree root used for liveness checks.
            loop: Event loop providing ``call_soon``. Defaults to the running loop.
            after_flush: Called once after every flush.
        """
        self.settings = settings
        self.scan = scan
        self.root = root
        self.loop = loop or asyncio.get_running_loop()
        self.after_flush = after_flush
        self.content_selector = compile_selector(settings.content_selector)
        self.ancestor_limit = settings.scan_ancestor_limit

        self._pending: dict[int, Tag] = {}
        self._scheduled = False

    def resolve_scan_root(self, node: Optional[PageElement]) -> Optional[Tag]:
        """Map a changed node to the root worth scanning.

        Prefers the nearest enclosing content region. Otherwise walks up at
        most ``ancestor_limit`` levels looking for an element that contains
        a region, and falls back to the node's own element.
        """
        element = element_of(node)
        if element is None:
            return None

        region = closest(element, self.content_selector)
        if region is not None:
            return region

        candidate: Optional[Tag] = element
        for _ in range(self.ancestor_limit + 1):
            if candidate is None:
                break
            if self.content_selector.select_one(candidate) is not None:
                return candidate
            candidate = candidate.parent
        return element

    def enqueue(self, nodes: Iterable[PageElement]) -> int:
        """Add scan roots for ``nodes``; arm a flush if none is pending."""
        was_empty = not self._pending
        added = 0
        for node in nodes:
            scan_root = self.resolve_scan_root(node)
            if scan_root is None:
                continue
            key = node_key(scan_root)
            if key not in self._pending:
                self._pending[key] = scan_root
                added += 1

        if was_empty and self._pending and not self._scheduled:
            self._scheduled = True
            self.loop.call_soon(self.flush)
        return added

    def handle_changes(self, records: Iterable[ChangeRecord]) -> int:
        """Entry point for host change batches."""
        nodes: list[PageElement] = []
        for record in records:
            nodes.extend(record.changed_nodes())
        if not nodes:
            return 0
        return self.enqueue(nodes)

    def flush(self) -> int:
        """Drain pending roots and scan those still attached."""
        self._scheduled = False
        roots = list(self._pending.values())
        self._pending.clear()

        scanned = 0
        for scan_root in roots:
            if self.root is not None and not is_attached(scan_root, self.root):
                continue
            try:
                self.scan(scan_root)
                scanned += 1
            except Exception:
                logger.exception("Scan failed for <%s>", scan_root.name)

        if self.after_flush is not None:
            try:
                self.after_flush()
            except Exception:
                logger.exception("Post-flush hook failed")
        return scanned

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def scheduled(self) -> bool:
        return self._scheduled
