"""Copy controls - one-click copy of a region's content as Markdown.

Flow:
1. A scan binds each region once: snapshot its raw text, inject the
   control(s) for the configured placement, remember control -> region
2. Each completion affordance gets a feedback-area control beside it that
   copies every region of its message
3. A click extracts the text and writes it through the clipboard writer
"""

import asyncio
import html
import logging
from typing import Optional

from bs4.element import Tag

from chatenhance.config import Settings
from chatenhance.delegates import ClipboardWriter
from chatenhance.models import CopyOutcome
from chatenhance.pipeline.completion import CompletionLocator
from chatenhance.pipeline.extract import ContentExtractor
from chatenhance.pipeline.registry import RenderStateRegistry
from chatenhance.tree import (
    COPY_CONTROL_CLASS,
    EDITABLE_SELECTOR,
    FEEDBACK_COPY_CLASS,
    class_string,
    closest,
    compile_selector,
    observed_text,
    parse_fragment,
)

logger = logging.getLogger(__name__)

COPIED_LABEL = "Copied!"
COPIED_CLASS = "copied"
COPIED_DURATION = 1.2
FEEDBACK_COPIED_DURATION = 2.0

FEEDBACK_PRESENT = compile_selector(f".{FEEDBACK_COPY_CLASS}, .custom-copy-btn")


class CopyBinder:
    """Injects copy controls and runs the copy flow."""

    def __init__(
        self,
        settings: Settings,
        registry: RenderStateRegistry,
        extractor: ContentExtractor,
        locator: CompletionLocator,
        clipboard: ClipboardWriter,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """Initialize binder.

        Args:
            settings: Session settings (copy style, placement, toggle).
            registry: Bound flags, snapshots and control routing.
            extractor: Region serializer.
            locator: Resolves feedback controls to their message regions.
            clipboard: Destination of copied text.
            loop: Used to reset the "Copied!" label. Without it the label
                stays until the next click.
        """
        self.settings = settings
        self.registry = registry
        self.extractor = extractor
        self.locator = locator
        self.clipboard = clipboard
        self.loop = loop
        self._resets: dict[int, tuple[Tag, asyncio.TimerHandle]] = {}

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def label(self, position: str, copied: bool = False) -> str:
        """Control label for ``position`` ("top" or "bottom")."""
        if copied:
            return COPIED_LABEL

        style = self.settings.copy_button_style
        if style == "icon":
            return ""
        if style == "text":
            return "Copy"
        if style == "custom":
            return self.settings.copy_button_custom_text or "Copy"
        return "↓Copy" if position == "top" else "↑Copy"

    def set_state(self, control: Tag, copied: bool) -> None:
        position = control.get("data-copy-position", "top")
        label = self.label(position, copied)
        control.clear()
        if label:
            control.append(parse_fragment(f"<span>{html.escape(label)}</span>")[0])
        control["aria-label"] = label or "Copy"

        classes = [c for c in class_string(control).split() if c != COPIED_CLASS]
        if copied:
            classes.append(COPIED_CLASS)
        control["class"] = classes

    def _control(self, class_name: str, position: str, tag: str = "button") -> Tag:
        if tag == "button":
            markup = f'<button type="button" class="{class_name}"></button>'
        else:
            markup = f'<{tag} role="button" tabindex="0" class="{class_name}"></{tag}>'
        control = parse_fragment(markup)[0]
        control["data-copy-position"] = position
        self.set_state(control, False)
        return control

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def is_editable(self, region: Tag) -> bool:
        return closest(region, EDITABLE_SELECTOR) is not None

    def snapshot(self, region: Tag) -> bool:
        """Refresh the raw-text snapshot of ``region`` if still allowed."""
        if self.is_editable(region):
            return False
        return self.registry.capture_raw_text(region, observed_text(region))

    def ensure_bound(self, region: Tag) -> bool:
        """Inject copy control(s) into ``region`` once.

        Returns:
            True if controls were injected by this call.
        """
        if self.is_editable(region):
            return False
        self.snapshot(region)
        if not self.settings.copy_button_enabled:
            return False
        if not self.registry.mark_bound(region):
            return False

        placement = self.settings.copy_button_placement
        positions = ["top", "bottom"] if placement == "both" else [placement]
        for position in positions:
            control = self._control(COPY_CONTROL_CLASS, position)
            if position == "top":
                region.insert(0, control)
            else:
                region.append(control)
            self.registry.bind_control(control, [region])
        return True

    def add_feedback_controls(self, root: Tag) -> int:
        """Put a message copy control beside each completion affordance."""
        if not self.settings.copy_button_enabled:
            return 0

        added = 0
        for affordance in self.locator.affordances(root):
            container = affordance.parent
            if container is None or FEEDBACK_PRESENT.select_one(container) is not None:
                continue
            control = self._control(f"{FEEDBACK_COPY_CLASS} custom-copy-btn", "bottom", tag="div")
            affordance.insert_before(control)
            added += 1
        return added

    # ------------------------------------------------------------------
    # Copy flow
    # ------------------------------------------------------------------

    def text_for(self, control: Tag) -> str:
        """Text a click on ``control`` would copy."""
        if FEEDBACK_COPY_CLASS in class_string(control).split():
            return self.extractor.extract_group(self.locator.message_regions(control)).strip()

        regions = self.registry.regions_for_control(control)
        if not regions:
            return ""
        return self.extractor.extract_group(regions).strip()

    def copy(self, region: Tag) -> CopyOutcome:
        """Copy one region."""
        return self._write(self.extractor.extract(region))

    def click(self, control: Tag) -> CopyOutcome:
        """Run the copy flow for a control and update its label."""
        outcome = self._write(self.text_for(control))
        if outcome == CopyOutcome.MISSING:
            logger.error("No message content found to copy")
        elif outcome == CopyOutcome.FAILED:
            logger.error("Copy to clipboard failed")
        else:
            self._show_copied(control)
        return outcome

    def _write(self, text: str) -> CopyOutcome:
        if not text or not text.strip():
            return CopyOutcome.MISSING
        if not self.clipboard.write(text):
            return CopyOutcome.FAILED
        return CopyOutcome.COPIED

    def _show_copied(self, control: Tag) -> None:
        self.set_state(control, True)
        if self.loop is None:
            return

        key = id(control)
        previous = self._resets.pop(key, None)
        if previous is not None:
            previous[1].cancel()

        duration = (
            FEEDBACK_COPIED_DURATION
            if FEEDBACK_COPY_CLASS in class_string(control).split()
            else COPIED_DURATION
        )
        handle = self.loop.call_later(duration, self._reset_label, key)
        self._resets[key] = (control, handle)

    def _reset_label(self, key: int) -> None:
        entry = self._resets.pop(key, None)
        if entry is not None:
            self.set_state(entry[0], False)
