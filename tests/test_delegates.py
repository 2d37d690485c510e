"""Tests for resource loading, engine loading and clipboard writing."""

import asyncio

import httpx
import pytest

from chatenhance.delegates import ClipboardWriter, EngineLoader, ResourceLoader
from chatenhance.errors import LoadFailure

BUNDLE_URL = "https://cdn.example.test/engine.min.js"


def make_transport(calls, fail_first=False):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        if fail_first and len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, content=b"window.engine = {};")

    return httpx.MockTransport(handler)


class TestResourceLoader:
    """Tests for memoized resource loading."""

    def test_concurrent_loads_share_fetch(self):
        calls = []

        async def run():
            async with httpx.AsyncClient(transport=make_transport(calls)) as client:
                loader = ResourceLoader(client)
                results = await asyncio.gather(*(loader.load(BUNDLE_URL) for _ in range(3)))
                again = await loader.load(BUNDLE_URL)
                return results, again, loader.is_cached(BUNDLE_URL)

        results, again, cached = asyncio.run(run())

        assert calls == [BUNDLE_URL]
        assert results == [b"window.engine = {};"] * 3
        assert again == b"window.engine = {};"
        assert cached

    def test_failure_evicted_and_retried(self):
        calls = []

        async def run():
            async with httpx.AsyncClient(transport=make_transport(calls, fail_first=True)) as client:
                loader = ResourceLoader(client)
                with pytest.raises(LoadFailure) as excinfo:
                    await loader.load(BUNDLE_URL)
                assert excinfo.value.url == BUNDLE_URL
                assert not loader.is_cached(BUNDLE_URL)
                return await loader.load(BUNDLE_URL)

        assert asyncio.run(run()) == b"window.engine = {};"
        assert len(calls) == 2

    def test_missing_url(self):
        with pytest.raises(LoadFailure):
            asyncio.run(ResourceLoader().load(""))


class TestEngineLoader:
    """Tests for lazy engine construction."""

    def test_builds_once_from_resource(self):
        calls = []
        built = []

        def factory(resource):
            built.append(resource)
            return {"engine": resource}

        async def run():
            async with httpx.AsyncClient(transport=make_transport(calls)) as client:
                loader = EngineLoader(
                    "Diagram", factory, url=BUNDLE_URL, resources=ResourceLoader(client)
                )
                first, second = await asyncio.gather(loader.get(), loader.get())
                return first, second

        first, second = asyncio.run(run())

        assert first is second
        assert built == [b"window.engine = {};"]
        assert calls == [BUNDLE_URL]

    def test_async_factory(self):
        async def factory(resource):
            return "engine"

        assert asyncio.run(EngineLoader("Math", factory).get()) == "engine"

    def test_load_failure_disables_feature(self):
        calls = []

        async def run():
            transport = httpx.MockTransport(
                lambda request: calls.append(request) or httpx.Response(404)
            )
            async with httpx.AsyncClient(transport=transport) as client:
                loader = EngineLoader(
                    "Math", lambda resource: "engine", url=BUNDLE_URL,
                    resources=ResourceLoader(client),
                )
                first = await loader.get()
                second = await loader.get()
                return loader, first, second

        loader, first, second = asyncio.run(run())

        assert first is None and second is None
        assert loader.disabled
        assert len(calls) == 1

    def test_ready_engine(self):
        engine = object()

        assert asyncio.run(EngineLoader.ready("Math", engine).get()) is engine


class TestClipboardWriter:
    """Tests for clipboard fallback."""

    def test_primary_first(self):
        written = []
        writer = ClipboardWriter(primary=lambda text: written.append(text) or True)

        assert writer.write("hello")
        assert written == ["hello"]

    def test_fallback_after_failure(self):
        written = []
        writer = ClipboardWriter(
            primary=lambda text: False,
            fallback=lambda text: written.append(text) or True,
        )

        assert writer.write("hello")
        assert written == ["hello"]

    def test_exception_counts_as_failure(self):
        def denied(text):
            raise OSError("no clipboard")

        assert ClipboardWriter(primary=denied, fallback=denied).write("hello") is False

    def test_empty_text_not_written(self):
        written = []
        writer = ClipboardWriter(primary=lambda text: written.append(text) or True)

        assert writer.write("") is False
        assert written == []
