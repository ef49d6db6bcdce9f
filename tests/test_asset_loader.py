"""Tests for the asset loader: load-once, ordering, failures, watchdog."""
import asyncio

import pytest

from _fakes import GatedInjector, settle
from page_runtime.errors import AssetLoadError, AssetTimeoutError
from page_runtime.loader import AssetLoader, AssetStatus
from page_runtime.manifest import AssetDescriptor


def _assets(*urls):
    return [AssetDescriptor(url) for url in urls]


@pytest.mark.asyncio
async def test_load_marks_assets_loaded(injector):
    loader = AssetLoader(injector)
    await loader.async_load(_assets("/a.js", "/b.js"))

    assert injector.calls == ["/a.js", "/b.js"]
    assert loader.status("/a.js") is AssetStatus.LOADED
    assert loader.status("/b.js") is AssetStatus.LOADED
    assert loader.status("/never.js") is AssetStatus.UNREQUESTED


@pytest.mark.asyncio
async def test_loaded_asset_is_not_requested_again(injector):
    loader = AssetLoader(injector)
    await loader.async_load(_assets("/a.js"))
    await loader.async_load(_assets("/a.js", "/b.js"))

    assert injector.calls == ["/a.js", "/b.js"]


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_fetch(manifest, injector):
    """Two concurrent loads of one bundle fetch each URL exactly once."""
    injector.hold("/v.js")
    loader = AssetLoader(injector)

    first = asyncio.ensure_future(loader.async_load(manifest.resolve("b")))
    second = asyncio.ensure_future(loader.async_load(manifest.resolve("b")))
    await settle()
    assert loader.status("/v.js") is AssetStatus.PENDING

    injector.release("/v.js")
    await asyncio.gather(first, second)

    assert injector.calls.count("/v.js") == 1
    assert injector.calls.count("/m.js") == 1


@pytest.mark.asyncio
async def test_late_waiter_attaches_to_inflight_task(injector):
    injector.hold("/a.js")
    loader = AssetLoader(injector)

    first = asyncio.ensure_future(loader.async_load(_assets("/a.js")))
    await settle()
    task = loader.records()[0].task
    first.cancel()
    await settle()

    second = asyncio.ensure_future(loader.async_load(_assets("/a.js")))
    await settle()
    assert loader.records()[0].task is task
    assert not task.done()

    injector.release("/a.js")
    await second
    assert injector.calls == ["/a.js"]
    assert loader.status("/a.js") is AssetStatus.LOADED


@pytest.mark.asyncio
async def test_dependent_waits_for_dependency():
    """The dependent asset never starts before its dependency has loaded."""
    log = []
    injector = GatedInjector(log=log)
    injector.hold("/dep.js", "/app.js")
    loader = AssetLoader(injector)
    loader.add_listener(lambda url, status: log.append((status.value, url)))

    task = asyncio.ensure_future(loader.async_load(_assets("/dep.js", "/app.js")))
    await settle()
    assert injector.calls == ["/dep.js"]

    # The dependent's "network" finishes first; it still has not been requested.
    injector.release("/app.js")
    await settle()
    assert injector.calls == ["/dep.js"]

    injector.release("/dep.js")
    await task

    assert log.index(("loaded", "/dep.js")) < log.index(("start", "/app.js"))
    assert log.index(("loaded", "/dep.js")) < log.index(("loaded", "/app.js"))


@pytest.mark.asyncio
async def test_end_to_end_two_bundles(manifest):
    """Bundle ``b`` while ``a`` loads concurrently: /v.js once, /m.js after it."""
    log = []
    injector = GatedInjector(log=log)
    injector.hold("/v.js")
    loader = AssetLoader(injector)
    loader.add_listener(lambda url, status: log.append((status.value, url)))

    load_b = asyncio.ensure_future(loader.async_load(manifest.resolve("b")))
    load_a = asyncio.ensure_future(loader.async_load(manifest.resolve("a")))
    await settle()
    assert "/m.js" not in injector.calls

    injector.release("/v.js")
    await asyncio.gather(load_a, load_b)

    assert injector.calls == ["/v.js", "/m.js"]
    assert log.index(("loaded", "/v.js")) < log.index(("start", "/m.js"))


@pytest.mark.asyncio
async def test_failed_asset_fails_bundle_without_retry():
    injector = GatedInjector(fail={"/broken.js"})
    loader = AssetLoader(injector)

    with pytest.raises(AssetLoadError) as exc_info:
        await loader.async_load(_assets("/broken.js", "/after.js"))

    assert exc_info.value.url == "/broken.js"
    assert "network down" in exc_info.value.reason
    assert loader.status("/broken.js") is AssetStatus.FAILED
    assert "/after.js" not in injector.calls

    with pytest.raises(AssetLoadError):
        await loader.async_load(_assets("/broken.js"))
    assert injector.calls.count("/broken.js") == 1


@pytest.mark.asyncio
async def test_waiters_on_failed_inflight_asset_all_fail():
    injector = GatedInjector(fail={"/x.js"})
    injector.hold("/x.js")
    loader = AssetLoader(injector)

    first = asyncio.ensure_future(loader.async_load(_assets("/x.js")))
    second = asyncio.ensure_future(loader.async_load(_assets("/x.js")))
    await settle()
    injector.release("/x.js")

    results = await asyncio.gather(first, second, return_exceptions=True)
    assert all(isinstance(r, AssetLoadError) for r in results)
    assert injector.calls == ["/x.js"]


@pytest.mark.asyncio
async def test_timeout_does_not_abort_inflight_load(injector):
    injector.hold("/slow.js")
    loader = AssetLoader(injector)

    with pytest.raises(AssetTimeoutError) as exc_info:
        await loader.async_load(_assets("/slow.js"), timeout=0.01)
    assert exc_info.value.url == "/slow.js"
    assert loader.status("/slow.js") is AssetStatus.PENDING

    injector.release("/slow.js")
    await settle()
    assert loader.status("/slow.js") is AssetStatus.LOADED


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_loading(injector):
    loader = AssetLoader(injector)

    def _bad_listener(url, status):
        raise RuntimeError("listener bug")

    loader.add_listener(_bad_listener)
    await loader.async_load(_assets("/a.js"))
    assert loader.status("/a.js") is AssetStatus.LOADED


@pytest.mark.asyncio
async def test_unsubscribe_listener(injector):
    seen = []
    loader = AssetLoader(injector)
    remove = loader.add_listener(lambda url, status: seen.append(status))
    remove()
    await loader.async_load(_assets("/a.js"))
    assert seen == []


@pytest.mark.asyncio
async def test_as_dict_counts(injector):
    injector.fail.add("/bad.js")
    loader = AssetLoader(injector)
    await loader.async_load(_assets("/ok.js"))
    with pytest.raises(AssetLoadError):
        await loader.async_load(_assets("/bad.js"))

    summary = loader.as_dict()
    assert summary["counts"] == {"pending": 0, "loaded": 1, "failed": 1}
    assert {a["url"] for a in summary["assets"]} == {"/ok.js", "/bad.js"}
