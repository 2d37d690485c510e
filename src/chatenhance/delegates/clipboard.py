"""Clipboard writing with a legacy fallback."""

import logging
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class Clipboard(Protocol):
    def write(self, text: str) -> bool:
        ...


class ClipboardWriter:
    """Tries the primary clipboard, then the legacy mechanism.

    Either side may be a plain callable returning a bool. Exceptions count
    as failure.
    """

    def __init__(
        self,
        primary: Optional[Callable[[str], bool]] = None,
        fallback: Optional[Callable[[str], bool]] = None,
    ):
        self.primary = primary
        self.fallback = fallback

    def write(self, text: str) -> bool:
        if not text:
            return False

        for label, writer in (("clipboard", self.primary), ("legacy copy", self.fallback)):
            if writer is None:
                continue
            try:
                if writer(text):
                    return True
            except Exception as exc:
                logger.debug("%s write failed: %s", label, exc)
        return False
