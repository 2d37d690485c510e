"""Enhancement pipeline for streamed chat content.

Components, in the order a change flows through them:
1. scanner - Batch change notifications into one scan per loop cycle
2. registry - Idempotence flags and snapshots per node
3. scheduler - Wait until a streaming region is stable or complete
4. completion - Locate completion affordances and their regions
5. math / diagram - Render equations and diagrams through engines
6. extract - Serialize rendered regions back to Markdown
7. copy - Copy controls and the copy flow

Components take their collaborators explicitly and can be used separately
or wired together through ``chatenhance.enhancer.ContentEnhancer``.
"""

from .completion import CompletionLocator
from .copy import CopyBinder
from .diagram import DiagramRenderer, diagram_source, is_diagram_source
from .extract import ContentExtractor
from .math import MathRenderer, MathToken, has_math_hint, split_with_delimiters
from .registry import RenderStateRegistry
from .scanner import TreeScanner
from .scheduler import StabilityScheduler

__all__ = [
    # Scanning
    "TreeScanner",
    # State
    "RenderStateRegistry",
    # Scheduling
    "CompletionLocator",
    "StabilityScheduler",
    # Rendering
    "DiagramRenderer",
    "diagram_source",
    "is_diagram_source",
    "MathRenderer",
    "MathToken",
    "has_math_hint",
    "split_with_delimiters",
    # Extraction
    "ContentExtractor",
    # Copy
    "CopyBinder",
]
