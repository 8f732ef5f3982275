from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional, Set, Tuple

from assetflow.core.dto import (
    AssetRef,
    BinaryPayload,
    CacheEntry,
    CacheTier,
    DisplayHandle,
    StyleEntry,
)
from assetflow.core.thumbnails.handle import HandleFactory, MemoryHandleFactory

logger = logging.getLogger(__name__)

STYLE_CACHE_LIMIT = 256


# ------------------------------------------------------------
# Style tier backend
# ------------------------------------------------------------

class StyleCache:
    """
    Deterministic FIFO cache for derived style entries.
    Keyed by signature when one exists, else by asset id.
    """
    def __init__(self, limit: int = STYLE_CACHE_LIMIT):
        self._limit = max(1, limit)
        self._store: Dict[str, StyleEntry] = {}

    @staticmethod
    def key_for(asset_id: str, signature: Optional[str]) -> str:
        return f"sig:{signature}" if signature else f"id:{asset_id}"

    def get(self, key: str) -> Optional[StyleEntry]:
        return self._store.get(key)

    def set(self, key: str, entry: StyleEntry) -> Optional[StyleEntry]:
        """Store an entry; returns whatever FIFO eviction pushed out."""
        evicted = None
        if key not in self._store and len(self._store) >= self._limit:
            oldest = next(iter(self._store))
            evicted = self._store.pop(oldest, None)
        self._store[key] = entry
        return evicted

    def drop_asset(self, asset_id: str) -> List[StyleEntry]:
        keys = [k for k, v in self._store.items() if v.asset_id == asset_id]
        return [self._store.pop(k) for k in keys]

    def entries(self) -> List[Tuple[str, StyleEntry]]:
        return list(self._store.items())

    def pop(self, key: str) -> Optional[StyleEntry]:
        return self._store.pop(key, None)

    def __len__(self) -> int:
        return len(self._store)

    def clear(self) -> None:
        self._store.clear()


# ------------------------------------------------------------
# Combined cache facade
# ------------------------------------------------------------

class CacheStore:
    """
    Three-tier cache shared by every thumbnail consumer in the process.

    Tiers, in lookup order:
    - handle:  asset id -> live DisplayHandle
    - payload: asset id -> last BinaryPayload (thumbnail-class assets only)
    - style:   signature -> StyleEntry (dominant color + derived strings)

    Handle and payload hits ignore signatures on purpose: a stale thumbnail
    beats a guaranteed re-fetch. Style hits require the signature to match.
    """

    def __init__(
        self,
        handle_factory: Optional[HandleFactory] = None,
        *,
        style_limit: int = STYLE_CACHE_LIMIT,
    ):
        self._factory: HandleFactory = handle_factory or MemoryHandleFactory()
        self._lock = threading.Lock()
        self._handles: Dict[str, DisplayHandle] = {}
        self._payloads: Dict[str, BinaryPayload] = {}
        self._signatures: Dict[str, Optional[str]] = {}
        self._styles = StyleCache(limit=style_limit)
        self._loading: Set[str] = set()

    @property
    def handle_factory(self) -> HandleFactory:
        return self._factory

    # --------------------------------------------------------
    # Lookup
    # --------------------------------------------------------

    def get(self, asset_id: str, signature: Optional[str] = None) -> Optional[CacheEntry]:
        to_release: List[DisplayHandle] = []
        try:
            with self._lock:
                payload = self._payloads.get(asset_id)
                sig = signature if signature is not None else self._signatures.get(asset_id)
                style = self._style_locked(asset_id, sig)

                # Tier 1: live handle
                handle = self._handles.get(asset_id)
                if handle is not None:
                    if self._factory.is_valid(handle):
                        return self._entry(asset_id, handle, payload, style, sig, CacheTier.HANDLE)
                    self._handles.pop(asset_id, None)
                    to_release.append(handle)

                # Tier 2: resurrect from stored bytes
                if payload is not None:
                    handle = self._factory.resurrect(asset_id, payload)
                    self._handles[asset_id] = handle
                    logger.debug(f"Resurrected display handle for {asset_id}")
                    return self._entry(asset_id, handle, payload, style, sig, CacheTier.PAYLOAD)

                # Tier 3: style entry still holding a usable handle
                if style is not None and style.handle is not None and self._factory.is_valid(style.handle):
                    self._handles[asset_id] = style.handle
                    return self._entry(asset_id, style.handle, None, style, sig, CacheTier.STYLE)
                return None
        finally:
            self._release_all(to_release)

    def has_live_handle(self, asset_id: str) -> bool:
        with self._lock:
            handle = self._handles.get(asset_id)
            return handle is not None and self._factory.is_valid(handle)

    # --------------------------------------------------------
    # In-flight loads, shared by every ThumbnailManager
    # --------------------------------------------------------

    def try_begin_load(self, asset_id: str) -> bool:
        """Claim the fetch for asset_id. False when one is in flight or a live handle exists."""
        with self._lock:
            if asset_id in self._loading:
                return False
            handle = self._handles.get(asset_id)
            if handle is not None and self._factory.is_valid(handle):
                return False
            self._loading.add(asset_id)
            return True

    def end_load(self, asset_id: str) -> None:
        with self._lock:
            self._loading.discard(asset_id)

    def is_loading(self, asset_id: str) -> bool:
        with self._lock:
            return asset_id in self._loading

    # --------------------------------------------------------

    def resolve_display_handle(self, asset_id: str) -> Optional[DisplayHandle]:
        entry = self.get(asset_id)
        return entry.handle if entry else None

    def report_render_error(self, asset_id: str) -> Optional[DisplayHandle]:
        """
        A renderer could not use the current handle. Drop it and try to
        resurrect from the payload tier.
        """
        with self._lock:
            handle = self._handles.pop(asset_id, None)
            # the style tier may hold the very same dead handle
            for key, style in self._styles.entries():
                if style.asset_id == asset_id and style.handle is handle and handle is not None:
                    self._styles.set(key, StyleEntry(style.asset_id, style.signature, None, style.color, style.style))
        if handle is not None:
            self._release(handle)
        return self.resolve_display_handle(asset_id)

    # --------------------------------------------------------
    # Mutation
    # --------------------------------------------------------

    def store_payload(
        self,
        asset: AssetRef,
        payload: BinaryPayload,
        *,
        thumbnail: bool = False,
    ) -> DisplayHandle:
        """Mint a handle for freshly fetched bytes and record both."""
        handle = self._factory.create(asset.asset_id, payload)
        to_release: List[DisplayHandle] = []
        with self._lock:
            old = self._handles.get(asset.asset_id)
            if old is not None and old is not handle:
                to_release.append(old)
            self._handles[asset.asset_id] = handle

            previous = self._payloads.get(asset.asset_id)
            payload_changed = previous is not None and previous.digest() != payload.digest()
            signature_changed = (
                asset.asset_id in self._signatures
                and self._signatures[asset.asset_id] != asset.signature
            )
            if payload_changed or signature_changed:
                self._styles.drop_asset(asset.asset_id)

            if thumbnail:
                self._payloads[asset.asset_id] = payload
            self._signatures[asset.asset_id] = asset.signature
        self._release_all(to_release)
        return handle

    def put(self, asset_id: str, entry: CacheEntry) -> None:
        to_release: List[DisplayHandle] = []
        with self._lock:
            old = self._handles.get(asset_id)
            if old is not None and old is not entry.handle:
                to_release.append(old)
            self._handles[asset_id] = entry.handle
            if entry.payload is not None:
                self._payloads[asset_id] = entry.payload
            if entry.signature is not None:
                self._signatures[asset_id] = entry.signature
            if entry.color is not None and entry.style is not None:
                self._put_style_locked(
                    StyleEntry(asset_id, entry.signature, entry.handle, entry.color, entry.style)
                )
        self._release_all(to_release)

    def put_style(self, entry: StyleEntry) -> None:
        with self._lock:
            self._put_style_locked(entry)

    def get_style(self, asset_id: str, signature: Optional[str] = None) -> Optional[StyleEntry]:
        with self._lock:
            return self._style_locked(asset_id, signature)

    def invalidate(self, asset_id: str) -> None:
        """The asset's authoritative metadata changed; forget everything about it."""
        with self._lock:
            handle = self._handles.pop(asset_id, None)
            self._payloads.pop(asset_id, None)
            self._signatures.pop(asset_id, None)
            self._styles.drop_asset(asset_id)
        if handle is not None:
            self._release(handle)
        logger.debug(f"Invalidated cache entries for {asset_id}")

    def cleanup(self, keep: Iterable[str]) -> int:
        """
        Evict everything not in ``keep``, releasing handles before dropping them.

        Returns the number of evicted asset ids.
        """
        keep_set = set(keep)
        to_release: List[DisplayHandle] = []
        with self._lock:
            known = set(self._handles) | set(self._payloads) | set(self._signatures)
            known |= {entry.asset_id for _, entry in self._styles.entries()}
            evicted = known - keep_set
            for asset_id in evicted:
                handle = self._handles.pop(asset_id, None)
                if handle is not None:
                    to_release.append(handle)
                self._payloads.pop(asset_id, None)
                self._signatures.pop(asset_id, None)
                for style in self._styles.drop_asset(asset_id):
                    if style.handle is not None and style.handle is not handle:
                        to_release.append(style.handle)
        self._release_all(to_release)
        if evicted:
            logger.info(f"Cache cleanup evicted {len(evicted)} asset(s), kept {len(keep_set)}")
        return len(evicted)

    def clear(self) -> None:
        self.cleanup(())

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "handles": len(self._handles),
                "payloads": len(self._payloads),
                "styles": len(self._styles),
                "loading": len(self._loading),
            }

    # --------------------------------------------------------
    # Internals (call with self._lock held unless noted)
    # --------------------------------------------------------

    def _style_locked(self, asset_id: str, signature: Optional[str]) -> Optional[StyleEntry]:
        entry = self._styles.get(StyleCache.key_for(asset_id, signature))
        if entry is None or entry.asset_id != asset_id or entry.signature != signature:
            return None
        return entry

    def _put_style_locked(self, entry: StyleEntry) -> None:
        self._styles.set(StyleCache.key_for(entry.asset_id, entry.signature), entry)

    @staticmethod
    def _entry(
        asset_id: str,
        handle: DisplayHandle,
        payload: Optional[BinaryPayload],
        style: Optional[StyleEntry],
        signature: Optional[str],
        source: CacheTier,
    ) -> CacheEntry:
        return CacheEntry(
            asset_id=asset_id,
            handle=handle,
            payload=payload,
            color=style.color if style else None,
            style=style.style if style else None,
            signature=signature,
            source=source,
        )

    def _release(self, handle: DisplayHandle) -> None:
        # lock not held
        try:
            self._factory.release(handle)
        except Exception as e:
            logger.warning(f"Failed to release display handle {handle.url}: {e}")

    def _release_all(self, handles: Iterable[DisplayHandle]) -> None:
        for handle in handles:
            self._release(handle)


_cache_store: CacheStore | None = None
_cache_store_lock = threading.Lock()


def get_cache_store(
    handle_factory: Optional[HandleFactory] = None,
    *,
    style_limit: int = STYLE_CACHE_LIMIT,
) -> CacheStore:
    """
    Get the process-wide CacheStore.

    Args:
        handle_factory: Only used on first initialization.
        style_limit: Only used on first initialization.
    """
    global _cache_store
    with _cache_store_lock:
        if _cache_store is None:
            _cache_store = CacheStore(handle_factory, style_limit=style_limit)
        return _cache_store


def reset_cache_store() -> None:
    global _cache_store
    with _cache_store_lock:
        if _cache_store is not None:
            _cache_store.clear()
        _cache_store = None
