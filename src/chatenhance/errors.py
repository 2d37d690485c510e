"""Error types shared by the enhancer components."""

from typing import Optional


class EnhanceError(Exception):
    """Base class for enhancer errors."""


class LoadFailure(EnhanceError):
    """A remote resource or rendering engine could not be loaded."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ParseFailure(EnhanceError):
    """Diagram or equation source was rejected by its engine."""

    def __init__(self, message: str, source: str = ""):
        super().__init__(message)
        self.source = source
