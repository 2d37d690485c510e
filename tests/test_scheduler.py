"""Tests for the stability scheduler."""

import pytest
from bs4 import BeautifulSoup

from chatenhance.models import ScheduleStatus
from chatenhance.pipeline import (
    CompletionLocator,
    RenderStateRegistry,
    StabilityScheduler,
)


@pytest.fixture
def tree():
    return BeautifulSoup(
        '<div id="chat">'
        '<div class="message" id="m1"><div class="prose"><p>Done</p></div>'
        '<div class="feedback" id="f1"></div></div>'
        '<div class="message" id="m2"><div class="prose"><p>token 0</p></div>'
        '<div class="feedback" id="f2"></div></div>'
        "</div>",
        "html.parser",
    )


@pytest.fixture
def renders():
    return []


@pytest.fixture
def scheduler(settings, tree, fake_loop, renders):
    registry = RenderStateRegistry(tree)
    return StabilityScheduler(
        settings,
        registry,
        lambda node: renders.append((node, fake_loop.time())),
        loop=fake_loop,
        locator=CompletionLocator(settings),
    )


def stream_region(tree):
    return tree.select_one("#m2 .prose")


def add_affordance(tree, feedback_id):
    button = tree.new_tag("button")
    button["data-tooltip-id"] = f"up-{feedback_id}"
    tree.select_one(f"#{feedback_id}").append(button)
    return button


class TestIdlePath:
    """Tests for rendering when no affordance exists anywhere."""

    def test_renders_after_delay(self, scheduler, tree, fake_loop, renders):
        region = stream_region(tree)

        assert scheduler.observe(region) == ScheduleStatus.PENDING
        fake_loop.advance(0.3)
        assert renders == []

        fake_loop.advance(0.2)

        assert len(renders) == 1
        assert renders[0][0] is region
        assert renders[0][1] == pytest.approx(0.4, abs=0.01)
        assert scheduler.status(region) == ScheduleStatus.RENDERED

    def test_thrash_renders_once(self, scheduler, tree, fake_loop, renders):
        """Text changing every 100 ms for 1.2 s renders once, about D after
        the last change."""
        region = stream_region(tree)
        scheduler.observe(region)

        for step in range(1, 13):
            fake_loop.advance(0.1)
            region.p.string = f"token {step}"
            scheduler.observe(region)

        fake_loop.advance(0.3)
        assert renders == []

        fake_loop.advance(2.0)

        assert len(renders) == 1
        assert renders[0][1] == pytest.approx(1.6, abs=0.01)

    def test_unobserved_changes_still_defer(self, scheduler, tree, fake_loop, renders):
        """Changes seen only by the timer re-arm it as well."""
        region = stream_region(tree)
        scheduler.observe(region)

        fake_loop.advance(0.35)
        region.p.string = "token 1"
        fake_loop.advance(0.1)

        assert renders == []
        fake_loop.advance(0.5)
        assert len(renders) == 1
        assert renders[0][1] == pytest.approx(0.8, abs=0.01)

    def test_observing_again_does_not_duplicate(self, scheduler, tree, fake_loop, renders):
        region = stream_region(tree)

        scheduler.observe(region)
        scheduler.observe(region)
        scheduler.observe(region)
        fake_loop.advance(1.0)

        assert len(renders) == 1
        assert scheduler.pending == 0


class TestCompletion:
    """Tests for the completion affordance paths."""

    def test_immediate_completion(self, scheduler, tree, fake_loop, renders):
        region = stream_region(tree)
        scheduler.observe(region)
        fake_loop.advance(0.1)

        add_affordance(tree, "f2")
        fired = scheduler.check_completion()

        assert fired == 1
        assert renders[0][0] is region
        assert renders[0][1] == pytest.approx(0.1)

    def test_timer_sees_completion(self, scheduler, tree, fake_loop, renders):
        """An affordance found by the timer renders without waiting for M."""
        region = stream_region(tree)
        scheduler.observe(region)
        add_affordance(tree, "f2")

        fake_loop.advance(0.4)

        assert len(renders) == 1
        assert renders[0][1] == pytest.approx(0.4, abs=0.01)

    def test_affordance_elsewhere_waits(self, scheduler, tree, fake_loop, renders):
        region = stream_region(tree)
        add_affordance(tree, "f1")
        scheduler.observe(region)

        fake_loop.advance(1.0)

        assert renders == []
        assert scheduler.status(region) == ScheduleStatus.PENDING

    def test_starvation_cap(self, scheduler, tree, fake_loop, renders):
        """Never resolving here, a quiet region renders at first-pending + M."""
        region = stream_region(tree)
        add_affordance(tree, "f1")
        scheduler.observe(region)

        for step in range(1, 11):
            fake_loop.advance(0.1)
            region.p.string = f"token {step}"
            scheduler.observe(region)

        fake_loop.advance(1.7)
        assert renders == []

        fake_loop.advance(0.2)

        assert len(renders) == 1
        assert renders[0][1] == pytest.approx(2.8, abs=0.01)

    def test_cap_waits_for_streaming_to_stop(self, scheduler, tree, fake_loop, renders):
        """Streaming well past M with an affordance elsewhere renders only
        after the region goes idle."""
        region = stream_region(tree)
        add_affordance(tree, "f1")
        scheduler.observe(region)

        for step in range(1, 61):
            fake_loop.advance(0.1)
            region.p.string = f"token {step}"
            scheduler.observe(region)

        assert renders == []

        fake_loop.advance(1.0)

        assert len(renders) == 1
        assert 6.4 - 0.01 <= renders[0][1] <= 6.5


class TestLifecycle:
    """Tests for detachment and re-entry."""

    def test_detached_region_discarded(self, scheduler, tree, fake_loop, renders):
        region = stream_region(tree)
        scheduler.observe(region)

        region.extract()
        fake_loop.advance(1.0)

        assert renders == []
        assert scheduler.pending == 0

    def test_rendered_region_reenters_pending(self, scheduler, tree, fake_loop, renders):
        region = stream_region(tree)
        scheduler.observe(region)
        fake_loop.advance(0.5)
        scheduler.settle(region)

        assert scheduler.observe(region) == ScheduleStatus.RENDERED

        region.p.string = "edited"
        assert scheduler.observe(region) == ScheduleStatus.PENDING
        fake_loop.advance(0.5)

        assert len(renders) == 2

    def test_unsettled_render_ignores_changes(self, scheduler, tree, fake_loop, renders):
        """While the render action runs, observations do not reschedule."""
        region = stream_region(tree)
        scheduler.observe(region)
        fake_loop.advance(0.5)

        region.p.string = "late token"

        assert scheduler.observe(region) == ScheduleStatus.RENDERED
        assert scheduler.pending == 0

    def test_content_arriving_during_render_reschedules(
        self, scheduler, tree, fake_loop, renders
    ):
        """Text that changed before settle sends the region back to Pending."""
        region = stream_region(tree)
        scheduler.observe(region)
        fake_loop.advance(0.5)

        region.p.string = "late token with $x$"
        scheduler.settle(region)

        assert scheduler.status(region) == ScheduleStatus.PENDING
        fake_loop.advance(0.5)

        assert len(renders) == 2
        assert renders[1][1] == pytest.approx(0.9, abs=0.01)

    def test_settle_after_rendering_math_stays_rendered(
        self, scheduler, tree, fake_loop, renders
    ):
        """Equations swapped in by the render do not count as new content."""
        region = stream_region(tree)
        region.p.string = "token $x$"
        scheduler.observe(region)
        fake_loop.advance(0.5)

        wrapper = tree.new_tag(
            "span", attrs={"class": ["ce-math"], "data-ce-math-source": "$x$"}
        )
        wrapper.string = "x"
        region.p.string = "token "
        region.p.append(wrapper)
        scheduler.settle(region)

        assert scheduler.status(region) == ScheduleStatus.RENDERED
        assert scheduler.pending == 0

    def test_filter_skips_regions(self, settings, tree, fake_loop, renders):
        scheduler = StabilityScheduler(
            settings,
            RenderStateRegistry(tree),
            renders.append,
            loop=fake_loop,
            needs_render=lambda node: False,
        )

        assert scheduler.observe(stream_region(tree)) == ScheduleStatus.UNSCHEDULED
        assert scheduler.pending == 0

    def test_render_failure_contained(self, settings, tree, fake_loop):
        def explode(node):
            raise RuntimeError("boom")

        scheduler = StabilityScheduler(
            settings, RenderStateRegistry(tree), explode, loop=fake_loop
        )
        scheduler.observe(stream_region(tree))

        fake_loop.advance(1.0)

        assert scheduler.status(stream_region(tree)) == ScheduleStatus.RENDERED
