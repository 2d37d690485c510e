"""Rendering engine boundaries and their lazy loader.

The actual diagram and math engines live outside this package. Hosts supply
a factory that builds an engine, optionally from a resource fetched by URL
(a script bundle, a binary, a model). The loader builds each engine once; if
that fails the feature stays disabled for the rest of the session.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Generic, Optional, Protocol, TypeVar, Union

from bs4.element import Tag

from chatenhance.delegates.resources import ResourceLoader
from chatenhance.models import DiagramRenderResult

logger = logging.getLogger(__name__)


class DiagramEngine(Protocol):
    """Diagram renderer (for example a Mermaid bridge)."""

    async def parse(self, source: str) -> None:
        """Raise if ``source`` is not a valid diagram."""
        ...

    async def render(self, render_id: str, source: str, container: Tag) -> DiagramRenderResult:
        """Render ``source`` and return the visual markup."""
        ...


class MathEngine(Protocol):
    """Equation renderer (for example a KaTeX bridge)."""

    async def render(self, source: str, display_mode: bool) -> str:
        """Return markup for ``source``; raise if it does not parse."""
        ...


E = TypeVar("E")

EngineFactory = Callable[[Optional[bytes]], Union[Awaitable[E], E]]


class EngineLoader(Generic[E]):
    """Builds an engine on first use and remembers the outcome."""

    def __init__(
        self,
        name: str,
        factory: EngineFactory,
        *,
        url: Optional[str] = None,
        resources: Optional[ResourceLoader] = None,
    ):
        """Initialize loader.

        Args:
            name: Feature name used in log messages.
            factory: Builds the engine from the fetched resource (or None
                when no URL is configured).
            url: Resource to fetch before building.
            resources: Shared resource loader for ``url``.
        """
        self.name = name
        self.factory = factory
        self.url = url
        self.resources = resources
        self._engine: Optional[E] = None
        self._disabled = False
        self._lock: Optional[asyncio.Lock] = None

    @classmethod
    def ready(cls, name: str, engine: E) -> "EngineLoader[E]":
        """Loader around an engine that already exists."""
        loader = cls(name, lambda _resource: engine)
        loader._engine = engine
        return loader

    @property
    def disabled(self) -> bool:
        return self._disabled

    async def get(self) -> Optional[E]:
        """Return the engine, or None if it is unavailable this session."""
        if self._engine is not None:
            return self._engine
        if self._disabled:
            return None

        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._engine is None and not self._disabled:
                await self._load()
        return self._engine

    async def _load(self) -> None:
        try:
            resource: Any = None
            if self.url and self.resources is not None:
                resource = await self.resources.load(self.url)
            engine = self.factory(resource)
            if inspect.isawaitable(engine):
                engine = await engine
            if engine is None:
                raise RuntimeError("factory returned no engine")
        except Exception as exc:
            logger.warning("%s engine failed to load, disabling: %s", self.name, exc)
            self._disabled = True
            return
        logger.info("%s engine loaded", self.name)
        self._engine = engine
