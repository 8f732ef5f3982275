import asyncio

import pytest

from assetflow.core.cache import CacheStore
from assetflow.core.dto import AssetRef, BinaryPayload, CacheTier, DisplayHint, DominantColor
from assetflow.core.thumbnails import LoadQueue, MemoryHandleFactory, ThumbnailManager
from assetflow.media.color import DominantColorExtractor

from conftest import FakeFetcher, encode, solid_image


def png_payload(rgb):
    return BinaryPayload(encode(solid_image(rgb, (40, 40)), "PNG"), "image/png")


@pytest.fixture
def factory():
    return MemoryHandleFactory()


@pytest.fixture
def cache(factory):
    return CacheStore(factory)


@pytest.fixture
def queue():
    return LoadQueue(max_concurrent=2)


def build_manager(fetcher, cache, queue, *, colors=True):
    extractor = DominantColorExtractor(cache) if colors else None
    return ThumbnailManager(fetcher, cache=cache, queue=queue, color_extractor=extractor)


async def test_single_flight_per_asset(cache, queue):
    fetcher = FakeFetcher({"a1": png_payload((1, 2, 3))})
    fetcher.gate = asyncio.Event()
    manager = build_manager(fetcher, cache, queue)
    asset = AssetRef("a1", "a1_thumbnail.png")

    for _ in range(5):
        manager.load(asset)
    await asyncio.sleep(0)
    assert manager.is_loading("a1")

    fetcher.gate.set()
    await queue.join()

    assert fetcher.calls == ["a1"]
    assert not manager.is_loading("a1")
    assert cache.get("a1").source == CacheTier.HANDLE


async def test_single_flight_across_managers_sharing_a_cache(cache, queue):
    fetcher = FakeFetcher({"a1": png_payload((1, 2, 3))})
    fetcher.gate = asyncio.Event()
    grid = build_manager(fetcher, cache, queue)
    detail = build_manager(fetcher, cache, queue, colors=False)
    asset = AssetRef("a1", "a1_thumbnail.png")

    grid.load(asset)
    detail.load(asset)
    await asyncio.sleep(0)
    assert detail.is_loading("a1")

    fetcher.gate.set()
    await queue.join()

    assert fetcher.calls == ["a1"]
    assert not grid.is_loading("a1")
    assert cache.get("a1") is not None


async def test_cached_asset_is_not_fetched_again(cache, queue):
    fetcher = FakeFetcher({"a1": png_payload((1, 2, 3))})
    manager = build_manager(fetcher, cache, queue, colors=False)
    asset = AssetRef("a1", "a1_thumbnail.png")

    manager.load(asset)
    await queue.join()
    manager.load(asset)
    await queue.join()

    assert fetcher.calls == ["a1"]


async def test_concurrency_is_bounded_across_managers(cache):
    queue = LoadQueue(max_concurrent=2)
    fetcher = FakeFetcher({f"a{i}": png_payload((i, i, i)) for i in range(10)}, delay=0.02)
    managers = [build_manager(fetcher, cache, queue, colors=False) for _ in range(3)]

    for i in range(10):
        managers[i % 3].load(AssetRef(f"a{i}", f"a{i}_thumbnail.png"))
    await queue.join()

    assert len(fetcher.calls) == 10
    assert fetcher.peak <= 2


async def test_fetch_failure_leaves_placeholder(cache, queue):
    fetcher = FakeFetcher({})
    manager = build_manager(fetcher, cache, queue)

    manager.load(AssetRef("missing", "missing_thumbnail.png"))
    await queue.join()

    assert cache.get("missing") is None
    assert not manager.is_loading("missing")
    assert queue.in_flight == 0


async def test_fetch_failure_falls_back_to_cached_bytes(cache, factory, queue):
    asset = AssetRef("a1", "a1_thumbnail.png")
    payload = png_payload((9, 9, 9))
    old = cache.store_payload(asset, payload, thumbnail=True)
    factory.revoke(old)
    manager = build_manager(FakeFetcher({}), cache, queue, colors=False)

    manager.load(asset)
    await queue.join()

    entry = cache.get("a1")
    assert entry is not None
    assert factory.read(entry.handle) == payload


async def test_thumbnail_gets_dominant_color(cache, queue):
    fetcher = FakeFetcher({"a1": png_payload((200, 40, 10))})
    manager = build_manager(fetcher, cache, queue)

    manager.load(AssetRef("a1", "a1_thumbnail.png", signature="v1"))
    await queue.join()

    entry = cache.get("a1", "v1")
    assert entry.color == DominantColor(200, 40, 10)
    assert entry.style.title_background == "rgba(200, 40, 10, 0.85)"


async def test_full_size_asset_skips_color_extraction(cache, queue):
    fetcher = FakeFetcher({"p1": png_payload((200, 40, 10))})
    manager = build_manager(fetcher, cache, queue)

    manager.load(AssetRef("p1", "photo.png"), DisplayHint(thumbnail=False))
    await queue.join()

    assert cache.get("p1").color is None


async def test_render_error_refetches_when_nothing_to_resurrect(cache, queue):
    fetcher = FakeFetcher({"p1": png_payload((5, 5, 5))})
    manager = build_manager(fetcher, cache, queue, colors=False)
    asset = AssetRef("p1", "photo.png")

    manager.load(asset)
    await queue.join()
    manager.report_render_error(asset)
    await queue.join()

    assert fetcher.calls == ["p1", "p1"]
