"""Math rendering - replace delimited notation with engine markup.

Flow:
1. Cheap hint test on the region text; regions without notation are skipped
2. Snapshot the raw text, then claim the region in the registry
3. Split each eligible text node on ``$$``, ``\\[ \\]``, ``\\( \\)`` and ``$``
4. Render every equation through the math engine into a ``span.ce-math``
   that keeps the notation in ``aria-label`` and the delimited source in
   ``data-ce-math-source``
5. Replace the text node, unless it changed or detached while rendering
"""

import html
import logging
import re
from typing import Optional

from bs4.element import NavigableString, PageElement, Tag
from pydantic import BaseModel

from chatenhance.config import Settings
from chatenhance.delegates import EngineLoader, MathEngine
from chatenhance.errors import ParseFailure
from chatenhance.models import MathStatus
from chatenhance.pipeline.registry import RenderStateRegistry
from chatenhance.tree import (
    CONTROL_SELECTOR,
    DIAGRAM_CONTAINER_CLASS,
    EDITABLE_SELECTOR,
    MATH_SOURCE_ATTR,
    MATH_WRAPPER_CLASS,
    SKIP_TAGS,
    PreorderWalk,
    closest,
    compile_selector,
    is_text,
    observed_text,
    parse_fragment,
)

logger = logging.getLogger(__name__)

MATH_HINT_RE = re.compile(r"\$\$|\\\(|\\\[|\\begin\{|\$(?!\s)([^$\n]+?)\$")

# (left, right, display); longer openers win ties at the same index
DELIMITERS = (
    ("$$", "$$", True),
    ("\\[", "\\]", True),
    ("\\(", "\\)", False),
    ("$", "$", False),
)

NO_MATH = compile_selector(
    f"pre, code, .code-block, .line-content, .no-math, .{MATH_WRAPPER_CLASS}, "
    f".{DIAGRAM_CONTAINER_CLASS}, .katex, .katex-display, mjx-container"
)


class MathToken(BaseModel):
    """A piece of text split on math delimiters."""

    text: str
    is_math: bool = False
    display: bool = False
    left: str = ""
    right: str = ""

    @property
    def original(self) -> str:
        return f"{self.left}{self.text}{self.right}"


def has_math_hint(text: str) -> bool:
    return MATH_HINT_RE.search(text) is not None


def _is_escaped(text: str, index: int) -> bool:
    slashes = 0
    i = index - 1
    while i >= 0 and text[i] == "\\":
        slashes += 1
        i -= 1
    return slashes % 2 == 1


def _find_opener(text: str, start: int) -> Optional[tuple[int, tuple[str, str, bool]]]:
    best: Optional[tuple[int, tuple[str, str, bool]]] = None
    for delimiter in DELIMITERS:
        left = delimiter[0]
        index = text.find(left, start)
        while index != -1 and left == "$":
            following = text[index + 1:index + 2]
            if not _is_escaped(text, index) and not following.isspace():
                break
            index = text.find(left, index + 1)
        if index == -1:
            continue
        if best is None or index < best[0] or (
            index == best[0] and len(left) > len(best[1][0])
        ):
            best = (index, delimiter)
    return best


def _find_closer(text: str, start: int, right: str) -> int:
    index = text.find(right, start)
    while index != -1:
        if not _is_escaped(text, index):
            if right != "$":
                return index
            before = text[index - 1:index]
            after = text[index + 1:index + 2]
            if not before.isspace() and after != "$":
                return index
        index = text.find(right, index + len(right))
    return -1


def split_with_delimiters(text: str) -> list[MathToken]:
    """Split ``text`` into plain and math tokens.

    A ``$`` opener must not be escaped or followed by whitespace; a ``$``
    closer must not follow whitespace or precede another ``$``. An opener
    without a closer leaves the rest of the text plain.
    """
    tokens: list[MathToken] = []
    pos = 0
    while pos < len(text):
        found = _find_opener(text, pos)
        if found is None:
            tokens.append(MathToken(text=text[pos:]))
            break

        index, (left, right, display) = found
        if index > pos:
            tokens.append(MathToken(text=text[pos:index]))

        start = index + len(left)
        end = _find_closer(text, start, right)
        if end == -1:
            tokens.append(MathToken(text=text[index:]))
            break

        tokens.append(
            MathToken(
                text=text[start:end], is_math=True, display=display, left=left, right=right
            )
        )
        pos = end + len(right)
    return tokens


class MathRenderer:
    """Renders delimited equations inside content regions."""

    def __init__(
        self,
        settings: Settings,
        registry: RenderStateRegistry,
        engines: EngineLoader[MathEngine],
    ):
        self.settings = settings
        self.registry = registry
        self.engines = engines

    def _candidates(self, region: Tag) -> list[NavigableString]:
        found: list[NavigableString] = []
        walk = PreorderWalk(region)
        for node, leaving in walk:
            if leaving:
                continue
            if isinstance(node, Tag):
                if node.name in SKIP_TAGS or NO_MATH.match(node) or CONTROL_SELECTOR.match(node):
                    walk.skip()
                continue
            if is_text(node) and has_math_hint(str(node)):
                found.append(node)
        return found

    async def render(self, region: Tag) -> int:
        """Render equations in ``region``.

        Returns:
            Number of equations replaced by engine markup.
        """
        if not self.settings.math_enabled:
            return 0
        if closest(region, EDITABLE_SELECTOR) is not None:
            return 0
        if self.registry.math_state(region) == MathStatus.RENDERING:
            return 0
        if not has_math_hint(observed_text(region)):
            return 0

        self.registry.capture_raw_text(region, observed_text(region))
        if not self.registry.set_math_state(region, MathStatus.RENDERING):
            return 0

        rendered = 0
        engine_ready = False
        try:
            engine = await self.engines.get()
            if engine is None:
                return 0
            engine_ready = True
            for text_node in self._candidates(region):
                rendered += await self._render_text(engine, text_node)
        finally:
            self.registry.set_math_state(
                region, MathStatus.RENDERED if engine_ready else MathStatus.UNRENDERED
            )
        return rendered

    async def _render_text(self, engine: MathEngine, text_node: NavigableString) -> int:
        original = str(text_node)
        tokens = split_with_delimiters(original)
        if not any(token.is_math for token in tokens):
            return 0

        replacement: list[PageElement] = []
        rendered = 0
        for token in tokens:
            if not token.is_math:
                if token.text:
                    replacement.append(NavigableString(token.text))
                continue
            wrapper = await self._render_equation(engine, token)
            if wrapper is None:
                replacement.append(NavigableString(token.original))
            else:
                replacement.append(wrapper)
                rendered += 1

        if not rendered:
            return 0
        if not self.registry.is_live(text_node) or str(text_node) != original:
            logger.debug("Text changed while rendering math, discarding result")
            return 0
        text_node.replace_with(*replacement)
        return rendered

    async def _render_equation(self, engine: MathEngine, token: MathToken) -> Optional[Tag]:
        try:
            markup = await engine.render(token.text, token.display)
        except Exception as exc:
            failure = ParseFailure(str(exc), source=token.text)
            logger.warning("Equation failed to render: %s", failure)
            return None

        display = "true" if token.display else "false"
        label = html.escape(token.text, quote=True)
        source = html.escape(token.original, quote=True)
        return parse_fragment(
            f'<span class="{MATH_WRAPPER_CLASS}" aria-label="{label}" '
            f'{MATH_SOURCE_ATTR}="{source}" data-display="{display}">{markup}</span>'
        )[0]
