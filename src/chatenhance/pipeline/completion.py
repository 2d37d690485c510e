"""Completion affordance lookup.

Hosts render feedback controls (rating buttons and the like) once a reply
has finished generating. Their presence is the earliest reliable signal that
the content region above them is complete.
"""

from typing import Optional

from bs4.element import Tag

from chatenhance.config import Settings
from chatenhance.tree import compile_selector, node_key


class CompletionLocator:
    """Finds completion affordances and the regions they belong to."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.affordance_selector = compile_selector(settings.completion_selector)
        self.content_selector = compile_selector(settings.content_selector)
        self.ancestor_limit = settings.scan_ancestor_limit

    def affordances(self, root: Tag) -> list[Tag]:
        return self.affordance_selector.select(root)

    def has_affordance(self, root: Tag) -> bool:
        return self.affordance_selector.select_one(root) is not None

    def message_regions(self, affordance: Tag) -> list[Tag]:
        """Content regions of the message an affordance belongs to.

        Walks up from the affordance's container at most ``ancestor_limit``
        levels and returns the regions found under the first ancestor that
        has any.
        """
        node: Optional[Tag] = affordance.parent
        for _ in range(self.ancestor_limit):
            if node is None:
                break
            regions = self.content_selector.select(node)
            if regions:
                return regions
            node = node.parent
        return []

    def resolve(self, affordance: Tag) -> Optional[Tag]:
        """Most recent content region preceding ``affordance``."""
        regions = self.message_regions(affordance)
        return regions[-1] if regions else None

    def completed(self, root: Tag) -> dict[int, Tag]:
        """Regions with an attached affordance, keyed by node identity."""
        done: dict[int, Tag] = {}
        for affordance in self.affordances(root):
            region = self.resolve(affordance)
            if region is not None:
                done[node_key(region)] = region
        return done
