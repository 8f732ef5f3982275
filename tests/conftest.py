"""Shared fixtures and fakes for pipeline tests."""

from __future__ import annotations

import asyncio
import io
import random
from typing import Any, Dict, List, Optional

import piexif
import pytest
from cryptography.fernet import Fernet
from PIL import Image

from assetflow.core.cache import reset_cache_store
from assetflow.core.dto import BinaryPayload, UploadResult
from assetflow.core.errors import FetchError
from assetflow.core.settings import SettingsStore
from assetflow.core.thumbnails import reset_load_queue


# ------------------------------------------------------------
# Image builders
# ------------------------------------------------------------

def noisy_image(width: int, height: int, *, seed: int = 7, mode: str = "RGB") -> Image.Image:
    """Gradient with deterministic noise; compresses like a photo, not like a flat fill."""
    rng = random.Random(seed)
    channels = len(mode)
    raw = bytearray(rng.randbytes(width * height * channels))
    for y in range(height):
        row = y * width * channels
        for x in range(0, width * channels, channels):
            raw[row + x] = (raw[row + x] // 2 + (x * 255) // (width * channels) // 2) & 0xFF
    return Image.frombytes(mode, (width, height), bytes(raw))


def solid_image(color, size=(64, 64), mode: str = "RGB") -> Image.Image:
    return Image.new(mode, size, color)


def encode(image: Image.Image, fmt: str = "JPEG", *, exif: Optional[bytes] = None, **kwargs) -> bytes:
    buf = io.BytesIO()
    if exif is not None:
        kwargs["exif"] = exif
    image.save(buf, fmt, **kwargs)
    return buf.getvalue()


def exif_block(
    *,
    orientation: Optional[int] = None,
    taken_at: Optional[str] = None,
    thumbnail: Optional[bytes] = None,
) -> bytes:
    zeroth: Dict[int, Any] = {piexif.ImageIFD.Make: b"AssetflowCam"}
    exif: Dict[int, Any] = {}
    if orientation is not None:
        zeroth[piexif.ImageIFD.Orientation] = orientation
    if taken_at is not None:
        exif[piexif.ExifIFD.DateTimeOriginal] = taken_at.encode()
    return piexif.dump({"0th": zeroth, "Exif": exif, "GPS": {}, "1st": {}, "thumbnail": thumbnail})


# ------------------------------------------------------------
# Collaborator fakes
# ------------------------------------------------------------

class FakeFetcher:
    """AssetFetcher backed by a dict; tracks concurrency and call counts."""

    def __init__(self, assets: Optional[Dict[str, BinaryPayload]] = None, *, delay: float = 0.01):
        self.assets = dict(assets or {})
        self.delay = delay
        self.calls: List[str] = []
        self.active = 0
        self.peak = 0
        self.gate: Optional[asyncio.Event] = None

    async def fetch_asset(self, asset_id: str) -> BinaryPayload:
        self.calls.append(asset_id)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(self.delay)
            if asset_id not in self.assets:
                raise FetchError(f"no such asset {asset_id}", asset_id=asset_id, status=404)
            return self.assets[asset_id]
        finally:
            self.active -= 1


class FakeUploader:
    """FileUploader that records calls and fails for configured file names."""

    def __init__(self, *, failures: Optional[Dict[str, Exception]] = None, delay: float = 0.005):
        self.failures = dict(failures or {})
        self.delay = delay
        self.events: List[tuple] = []
        self.uploads: List[tuple] = []
        self.on_upload = None

    async def upload_file(
        self,
        payload: BinaryPayload,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        file_name: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> UploadResult:
        self.events.append(("start", file_name))
        if self.on_upload is not None:
            self.on_upload(file_name)
        try:
            await asyncio.sleep(self.delay)
            self.uploads.append((file_name, payload, dict(metadata or {}), session_id))
            if file_name in self.failures:
                raise self.failures[file_name]
            return UploadResult(file_ids=[f"id-{file_name}"], file_name=file_name)
        finally:
            self.events.append(("end", file_name))


# ------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_cache_store()
    reset_load_queue()
    yield
    reset_cache_store()
    reset_load_queue()


@pytest.fixture
def settings():
    store = SettingsStore(":memory:", encryption_key=Fernet.generate_key()).connect()
    yield store
    store.close()


@pytest.fixture
def jpeg_with_exif() -> bytes:
    """64x32 landscape pixels stored with orientation 6 (rotate 90 on display)."""
    return encode(
        noisy_image(64, 32),
        "JPEG",
        quality=95,
        exif=exif_block(orientation=6, taken_at="2023:05:14 10:30:00"),
    )
