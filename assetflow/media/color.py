"""
Dominant color extraction for thumbnails.

Decoding and downsampling run in a worker thread. The pixel sweep is
cooperative: large sweeps are cut into fixed-size chunks and the coroutine
yields to the event loop between chunks so rendering keeps running.
"""
from __future__ import annotations

import asyncio
import io
import logging
from typing import TYPE_CHECKING, Optional

from PIL import Image

from assetflow.core.dto import (
    AssetRef,
    BinaryPayload,
    DisplayStyle,
    DominantColor,
    NEUTRAL_GRAY,
    StyleEntry,
)

if TYPE_CHECKING:
    from assetflow.core.cache import CacheStore

logger = logging.getLogger(__name__)

MAX_SAMPLE_SIZE = 200
PIXEL_STRIDE = 20
CHUNK_PIXELS = 50_000

DARK_TEXT = (2, 6, 23)
LIGHT_TEXT = (255, 255, 255)


def derive_style(color: DominantColor) -> DisplayStyle:
    """Pure function of the triple; identical input gives identical strings."""
    r, g, b = color.as_tuple()
    text = DARK_TEXT if color.is_bright else LIGHT_TEXT
    dr, dg, db = (max(0, c - 50) for c in (r, g, b))
    return DisplayStyle(
        title_background=f"rgba({r}, {g}, {b}, 0.85)",
        text_color=f"rgb({text[0]}, {text[1]}, {text[2]})",
        border_color=f"rgba({text[0]}, {text[1]}, {text[2]}, 0.35)",
        description_background=f"rgba({dr}, {dg}, {db}, 0.85)",
    )


class DominantColorExtractor:
    def __init__(
        self,
        cache: Optional[CacheStore] = None,
        *,
        max_sample_size: int = MAX_SAMPLE_SIZE,
        stride: int = PIXEL_STRIDE,
        chunk_pixels: int = CHUNK_PIXELS,
    ):
        self._cache = cache
        self._max_sample_size = max(1, int(max_sample_size))
        self._stride = max(1, int(stride))
        self._chunk_pixels = max(self._stride, int(chunk_pixels))

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    async def extract(self, image: Optional[Image.Image]) -> DominantColor:
        if image is None:
            return NEUTRAL_GRAY
        try:
            return await self._average(image)
        except Exception as e:
            logger.warning(f"Dominant color extraction failed, using neutral gray: {e}")
            return NEUTRAL_GRAY

    async def extract_for(self, asset: AssetRef, image: Optional[Image.Image]) -> StyleEntry:
        """Extract (or reuse) the color for an asset and memoize it in the style tier."""
        if self._cache is not None:
            cached = self._cache.get_style(asset.asset_id, asset.signature)
            if cached is not None:
                return cached

        color = await self.extract(image)
        handle = None
        if self._cache is not None:
            handle = self._cache.resolve_display_handle(asset.asset_id)
        entry = StyleEntry(
            asset_id=asset.asset_id,
            signature=asset.signature,
            handle=handle,
            color=color,
            style=derive_style(color),
        )
        if self._cache is not None:
            self._cache.put_style(entry)
        return entry

    async def extract_for_payload(self, asset: AssetRef, payload: BinaryPayload) -> StyleEntry:
        image = None
        try:
            image = await asyncio.to_thread(decode_image, payload)
        except Exception as e:
            logger.warning(f"Cannot decode payload for color extraction: {e}")
        return await self.extract_for(asset, image)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    def _sample_surface(self, image: Image.Image) -> Image.Image:
        w, h = image.size
        if w <= 0 or h <= 0:
            raise ValueError(f"Empty image: {w}x{h}")
        if w > self._max_sample_size or h > self._max_sample_size:
            scale = min(self._max_sample_size / w, self._max_sample_size / h)
            size = (max(1, int(w * scale)), max(1, int(h * scale)))
            image = image.resize(size, Image.Resampling.BILINEAR)
        if image.mode != "RGB":
            image = image.convert("RGB")
        return image

    async def _average(self, image: Image.Image) -> DominantColor:
        # decode-size work stays off the event loop
        surface = await asyncio.to_thread(self._sample_surface, image)
        pixels = surface.tobytes()
        total_pixels = surface.size[0] * surface.size[1]

        r_sum = g_sum = b_sum = 0
        count = 0
        start = 0
        while start < total_pixels:
            end = min(total_pixels, start + self._chunk_pixels)
            # samples keep their global positions across chunk boundaries
            first = start + (-start) % self._stride
            for i in range(first * 3, end * 3, self._stride * 3):
                r_sum += pixels[i]
                g_sum += pixels[i + 1]
                b_sum += pixels[i + 2]
                count += 1
            start = end
            if start < total_pixels:
                await asyncio.sleep(0)

        if count == 0:
            raise ValueError("No pixels sampled")

        def clamp(v: float) -> int:
            return max(0, min(255, round(v)))

        return DominantColor(clamp(r_sum / count), clamp(g_sum / count), clamp(b_sum / count))


def decode_image(payload: BinaryPayload) -> Image.Image:
    img = Image.open(io.BytesIO(payload.data))
    img.load()
    return img
