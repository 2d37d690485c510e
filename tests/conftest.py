"""Pytest configuration and fixtures."""

import pytest
from bs4 import BeautifulSoup

from chatenhance.config import Settings
from chatenhance.pipeline import (
    CompletionLocator,
    ContentExtractor,
    RenderStateRegistry,
)
from helpers import FakeLoop


@pytest.fixture
def settings():
    """Settings with the production timing defaults."""
    return Settings(stable_delay_ms=400, max_wait_ms=2800)


@pytest.fixture
def make_tree():
    """Parse markup into a tree rooted at a BeautifulSoup document."""

    def _make(markup: str) -> BeautifulSoup:
        return BeautifulSoup(markup, "html.parser")

    return _make


@pytest.fixture
def registry():
    return RenderStateRegistry()


@pytest.fixture
def extractor(settings, registry):
    return ContentExtractor(settings, registry)


@pytest.fixture
def locator(settings):
    return CompletionLocator(settings)


@pytest.fixture
def fake_loop():
    return FakeLoop()


@pytest.fixture
def chat_page():
    """Two finished messages and one still streaming."""
    return """
    <div id="chat">
      <div class="message" id="m1">
        <div class="prose prose-sm"><p>First answer.</p></div>
        <div class="feedback"><button data-tooltip-id="up-1">+1</button></div>
      </div>
      <div class="message" id="m2">
        <div class="prose prose-sm"><p>Second answer, part one.</p></div>
        <div class="prose prose-sm"><p>Second answer, part two.</p></div>
        <div class="feedback"><button data-tooltip-id="up-2">+1</button></div>
      </div>
      <div class="message" id="m3">
        <div class="prose prose-sm"><p>Streaming</p></div>
      </div>
    </div>
    """
