"""Tests for the render state registry."""

import pytest

from chatenhance.models import DiagramStatus, MathStatus
from chatenhance.pipeline import RenderStateRegistry


@pytest.fixture
def tree(make_tree):
    return make_tree(
        '<div id="chat"><div class="prose" id="a"><p>A</p></div>'
        '<div class="prose" id="b"><div class="code-block language-mermaid">graph TD</div></div></div>'
    )


@pytest.fixture
def attached(tree):
    return RenderStateRegistry(tree)


class TestRegions:
    """Tests for region flags and snapshots."""

    def test_bound_once(self, attached, tree):
        region = tree.select_one("#a")

        assert attached.mark_bound(region) is True
        assert attached.mark_bound(region) is False
        assert attached.is_bound(region)

    def test_equal_regions_are_distinct(self, attached, make_tree):
        """Structurally equal nodes still get separate state."""
        tree = make_tree('<div class="prose">x</div><div class="prose">x</div>')
        attached.attach(tree)
        first, second = tree.select(".prose")

        attached.mark_bound(first)

        assert attached.is_bound(first)
        assert not attached.is_bound(second)

    def test_detached_region_refused(self, attached, tree):
        region = tree.select_one("#a").extract()

        assert attached.mark_bound(region) is False
        assert attached.capture_raw_text(region, "text") is False
        assert attached.region(region) is None

    def test_snapshot_frozen_once_math_starts(self, attached, tree):
        region = tree.select_one("#a")

        assert attached.capture_raw_text(region, "$x$ draft")
        assert attached.capture_raw_text(region, "$x$ final")
        attached.set_math_state(region, MathStatus.RENDERING)

        assert attached.capture_raw_text(region, "x final") is False
        assert attached.raw_text(region) == "$x$ final"


class TestDiagramRetry:
    """Tests for diagram retry rules."""

    def test_failed_source_not_retried(self, attached, tree):
        block = tree.select_one(".code-block")

        assert attached.begin_diagram(block, "graph TD")
        attached.diagram_failed(block, "graph TD")

        assert attached.diagram_state(block).status == DiagramStatus.ERRORED
        assert attached.should_render_diagram(block, "graph TD") is False
        assert attached.should_render_diagram(block, "graph TD\nA-->B") is True

    def test_rendered_source_not_repeated(self, attached, tree):
        block = tree.select_one(".code-block")

        attached.begin_diagram(block, "graph TD")
        attached.diagram_rendered(block, "graph TD")

        assert attached.should_render_diagram(block, "graph TD") is False
        assert attached.should_render_diagram(block, "graph LR") is True

    def test_in_flight_blocks_second_claim(self, attached, tree):
        block = tree.select_one(".code-block")

        assert attached.begin_diagram(block, "graph TD")
        assert attached.begin_diagram(block, "graph LR") is False

    def test_empty_source_never_rendered(self, attached, tree):
        block = tree.select_one(".code-block")

        assert attached.begin_diagram(block, "") is False

    def test_abandon_restores_previous_state(self, attached, tree):
        block = tree.select_one(".code-block")

        attached.begin_diagram(block, "graph TD")
        attached.diagram_abandoned(block)

        assert attached.diagram_state(block).status == DiagramStatus.UNRENDERED


class TestLifetime:
    """Tests for pruning detached state."""

    def test_prune_detached(self, attached, tree):
        region_a = tree.select_one("#a")
        region_b = tree.select_one("#b")
        block = tree.select_one(".code-block")
        attached.mark_bound(region_a)
        attached.mark_bound(region_b)
        attached.begin_diagram(block, "graph TD")
        assert len(attached) == 3

        region_b.extract()

        assert attached.prune() == 2
        assert len(attached) == 1
        assert attached.is_bound(region_a)

    def test_control_routing(self, attached, tree, make_tree):
        region = tree.select_one("#a")
        control = make_tree("<button>copy</button>").button.extract()
        region.append(control)

        attached.bind_control(control, [region])

        assert attached.regions_for_control(control)[0] is region
        control.extract()
        attached.prune()
        assert attached.regions_for_control(control) == []
