from __future__ import annotations

import logging
import threading
import uuid
from pathlib import Path
from typing import Dict, Optional, Protocol
from urllib.parse import urlparse
from urllib.request import url2pathname

from assetflow.core.dto import BinaryPayload, DisplayHandle

logger = logging.getLogger(__name__)

_MIME_SUFFIX = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


class HandleFactory(Protocol):
    """
    Capability that turns payload bytes into something a renderer can show.

    Handles are backed by memory (object-URL style) or by files. They can die
    out of band; is_valid() must reflect that.
    """

    def create(self, asset_id: str, payload: BinaryPayload) -> DisplayHandle: ...

    def release(self, handle: DisplayHandle) -> None: ...

    def is_valid(self, handle: DisplayHandle) -> bool: ...

    def resurrect(self, asset_id: str, payload: BinaryPayload) -> DisplayHandle: ...


class MemoryHandleFactory:
    """
    Object-URL style handles: ``blob:assetflow/<uuid>`` mapped to payloads.
    """

    def __init__(self, scheme_prefix: str = "blob:assetflow/"):
        self._prefix = scheme_prefix
        self._lock = threading.Lock()
        self._registry: Dict[str, BinaryPayload] = {}

    def create(self, asset_id: str, payload: BinaryPayload) -> DisplayHandle:
        url = f"{self._prefix}{uuid.uuid4()}"
        with self._lock:
            self._registry[url] = payload
        return DisplayHandle(url=url, asset_id=asset_id)

    def release(self, handle: DisplayHandle) -> None:
        with self._lock:
            self._registry.pop(handle.url, None)
        handle.revoked = True

    def revoke(self, handle: DisplayHandle) -> None:
        """Drop the backing payload without telling the owner (runtime revocation)."""
        with self._lock:
            self._registry.pop(handle.url, None)

    def is_valid(self, handle: DisplayHandle) -> bool:
        if handle.revoked:
            return False
        with self._lock:
            return handle.url in self._registry

    def resurrect(self, asset_id: str, payload: BinaryPayload) -> DisplayHandle:
        return self.create(asset_id, payload)

    def read(self, handle: DisplayHandle) -> Optional[BinaryPayload]:
        with self._lock:
            return self._registry.get(handle.url)

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._registry)


class FileHandleFactory:
    """
    Handles backed by files in a cache directory; the URL is a ``file://`` URI.

    Deleting the file (cache cleanup, another process) invalidates the handle.
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def create(self, asset_id: str, payload: BinaryPayload) -> DisplayHandle:
        suffix = _MIME_SUFFIX.get(payload.mime_type, ".bin")
        path = self.cache_dir / f"{uuid.uuid4().hex}{suffix}"
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(payload.data)
        tmp.replace(path)
        return DisplayHandle(url=path.as_uri(), asset_id=asset_id)

    def release(self, handle: DisplayHandle) -> None:
        handle.revoked = True
        try:
            self._path(handle).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove handle file {handle.url}: {e}")

    def is_valid(self, handle: DisplayHandle) -> bool:
        return not handle.revoked and self._path(handle).exists()

    def resurrect(self, asset_id: str, payload: BinaryPayload) -> DisplayHandle:
        return self.create(asset_id, payload)

    def clear(self) -> None:
        for p in self.cache_dir.glob("*"):
            try:
                p.unlink()
            except OSError as e:
                logger.debug(f"Could not remove {p}: {e}")

    @staticmethod
    def _path(handle: DisplayHandle) -> Path:
        parsed = urlparse(handle.url)
        if parsed.scheme == "file":
            return Path(url2pathname(parsed.path))
        return Path(handle.url)
