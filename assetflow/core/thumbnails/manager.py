from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from assetflow.core.dto import AssetRef, BinaryPayload, DisplayHint
from assetflow.core.file_service import AssetFetcher
from assetflow.core.thumbnails.queue import LoadQueue, get_load_queue
from assetflow.media.color import DominantColorExtractor

if TYPE_CHECKING:
    from assetflow.core.cache import CacheStore

logger = logging.getLogger(__name__)


class ThumbnailManager:
    """
    Central thumbnail pipeline.

    Responsibilities:
    - Request deduplication (one fetch per asset id in flight, process-wide
      through the shared CacheStore)
    - Global throttling through LoadQueue
    - Populating CacheStore (handle + payload tiers)
    - Triggering dominant color extraction for thumbnails

    Results are never returned; callers observe them through CacheStore.get().
    """

    def __init__(
        self,
        fetcher: AssetFetcher,
        *,
        cache: Optional[CacheStore] = None,
        queue: Optional[LoadQueue] = None,
        color_extractor: Optional[DominantColorExtractor] = None,
    ):
        if cache is None:
            from assetflow.core.cache import get_cache_store
            cache = get_cache_store()
        self._fetcher = fetcher
        self._cache = cache
        self._queue = queue or get_load_queue()
        self._colors = color_extractor

    @property
    def cache(self) -> CacheStore:
        return self._cache

    # --------------------------------------------------------

    def load(self, asset: AssetRef, display_hint: Optional[DisplayHint] = None) -> None:
        """
        Entry point used by UI.

        Always returns immediately; the result lands in the cache.
        """
        hint = display_hint or DisplayHint()
        key = asset.asset_id

        # Deduplicates against every manager sharing this cache, and skips
        # assets that already have a live handle.
        if not self._cache.try_begin_load(key):
            logger.debug(f"Load skipped for {key}: in flight or already displayed")
            return

        logger.debug(f"Queueing thumbnail load for {key}")
        self._queue.enqueue(lambda: self._run(asset, hint))

    def is_loading(self, asset_id: str) -> bool:
        return self._cache.is_loading(asset_id)

    def report_render_error(self, asset: AssetRef, display_hint: Optional[DisplayHint] = None) -> None:
        """
        A previously issued handle failed to render. Resurrect it from the
        payload tier, or fetch again when there is nothing to resurrect from.
        """
        handle = self._cache.report_render_error(asset.asset_id)
        if handle is None:
            logger.info(f"No cached bytes to resurrect {asset.asset_id}, re-fetching")
            self.load(asset, display_hint)

    # --------------------------------------------------------

    async def _run(self, asset: AssetRef, hint: DisplayHint) -> None:
        key = asset.asset_id
        thumbnail = hint.is_thumbnail(asset)
        payload: Optional[BinaryPayload] = None
        try:
            payload = await self._fetcher.fetch_asset(key)
            self._cache.store_payload(asset, payload, thumbnail=thumbnail)
        except Exception as e:
            payload = None
            logger.warning(f"Thumbnail fetch failed for {key}: {e}")
            if self._cache.resolve_display_handle(key) is None:
                logger.debug(f"No cached fallback for {key}, leaving placeholder")
        finally:
            self._cache.end_load(key)
            self._queue.on_complete()

        if payload is not None and thumbnail and self._colors is not None:
            await self._extract_color(asset, payload)

    async def _extract_color(self, asset: AssetRef, payload: BinaryPayload) -> None:
        entry = await self._colors.extract_for_payload(asset, payload)
        logger.debug(f"Dominant color for {asset.asset_id}: {entry.color.as_tuple()}")
