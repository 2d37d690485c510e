"""External collaborators: rendering engines, resources, clipboard.

Everything here sits at the package boundary. The core only ever talks to
these through the protocols and loaders below.
"""

from .clipboard import Clipboard, ClipboardWriter
from .engines import DiagramEngine, EngineLoader, MathEngine
from .resources import ResourceLoader

__all__ = [
    "Clipboard",
    "ClipboardWriter",
    "DiagramEngine",
    "EngineLoader",
    "MathEngine",
    "ResourceLoader",
]
