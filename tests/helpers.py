"""Test helpers: a manually advanced event loop and fake engines."""

import heapq
import itertools
from typing import Any, Callable, Optional

from chatenhance.models import DiagramRenderResult


class FakeHandle:
    def __init__(self, when: float, callback: Callable, args: tuple):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """The ``time``/``call_later``/``call_soon`` surface of an event loop,
    driven by hand."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self._timers: list[tuple[float, int, FakeHandle]] = []
        self._ready: list[FakeHandle] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable, *args: Any) -> FakeHandle:
        handle = FakeHandle(self.now + delay, callback, args)
        heapq.heappush(self._timers, (handle.when, next(self._seq), handle))
        return handle

    def call_soon(self, callback: Callable, *args: Any) -> FakeHandle:
        handle = FakeHandle(self.now, callback, args)
        self._ready.append(handle)
        return handle

    def run_ready(self) -> int:
        ran = 0
        while self._ready:
            batch, self._ready = self._ready, []
            for handle in batch:
                if not handle.cancelled:
                    handle.callback(*handle.args)
                    ran += 1
        return ran

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self.now + seconds
        while self._timers and self._timers[0][0] <= target:
            when, _, handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self.now = max(self.now, when)
            handle.callback(*handle.args)
            self.run_ready()
        self.now = target
        self.run_ready()

    @property
    def timers(self) -> int:
        return sum(1 for _, _, handle in self._timers if not handle.cancelled)


class FakeMathEngine:
    """Renders ``x`` as ``<span class="katex">x</span>``; fails on ``bad``."""

    def __init__(self):
        self.calls: list[tuple[str, bool]] = []

    async def render(self, source: str, display_mode: bool) -> str:
        self.calls.append((source, display_mode))
        if "bad" in source:
            raise ValueError(f"cannot parse {source!r}")
        return f'<span class="katex">{source}</span>'


class FakeDiagramEngine:
    """Accepts sources starting with ``graph``; records every call."""

    def __init__(self, bind: Optional[Callable] = None):
        self.parsed: list[str] = []
        self.rendered: list[str] = []
        self.bind = bind

    async def parse(self, source: str) -> None:
        self.parsed.append(source)
        if not source.startswith("graph"):
            raise ValueError("Syntax error in graph")

    async def render(self, render_id: str, source: str, container) -> DiagramRenderResult:
        self.rendered.append(source)
        return DiagramRenderResult(
            markup=f'<svg id="{render_id}"><text>{len(source)}</text></svg>',
            bind=self.bind,
        )
