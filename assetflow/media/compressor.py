from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from assetflow.core.dto import BinaryPayload, CompressionJob, CompressionResult
from assetflow.core.errors import DecodeError, EncodeError, MetadataError
from assetflow.media.metadata import MetadataCodec

logger = logging.getLogger(__name__)

MAX_DIMENSION = 1920
MIN_QUALITY = 0.1
MAX_QUALITY = 0.95
START_QUALITY = 0.9
MAX_ATTEMPTS = 10
SIZE_TOLERANCE = 0.10
CONVERGENCE_DELTA = 0.01


@dataclass(slots=True)
class _Candidate:
    data: bytes
    quality: float

    @property
    def size(self) -> int:
        return len(self.data)


class AdaptiveCompressor:
    """
    Re-encodes an image so it lands at (or just under) a byte budget.

    Responsibilities:
    - Decode + orientation normalization (exactly once)
    - Downscale to MAX_DIMENSION
    - Bisection search over encoder quality
    - Metadata re-injection

    Non-responsibilities:
    - Threading (callers run this in an executor)
    - Deciding whether a file should be compressed
    """

    def __init__(
        self,
        *,
        max_dimension: int = MAX_DIMENSION,
        min_quality: float = MIN_QUALITY,
        max_quality: float = MAX_QUALITY,
        start_quality: float = START_QUALITY,
        max_attempts: int = MAX_ATTEMPTS,
        tolerance: float = SIZE_TOLERANCE,
        metadata_codec: Optional[MetadataCodec] = None,
    ):
        self._max_dimension = max(1, int(max_dimension))
        self._min_quality = float(min_quality)
        self._max_quality = float(max_quality)
        self._start_quality = min(self._max_quality, max(self._min_quality, float(start_quality)))
        self._max_attempts = max(1, int(max_attempts))
        self._tolerance = max(0.0, float(tolerance))
        self._metadata = metadata_codec or MetadataCodec()

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    def compress(
        self,
        image: bytes,
        target_size_bytes: int,
        mime_type: Optional[str] = None,
    ) -> BinaryPayload:
        return self.search(image, target_size_bytes, mime_type).payload

    def compress_job(self, job: CompressionJob) -> CompressionResult:
        return self.search(job.source, job.target_size_bytes, job.mime_type)

    def search(
        self,
        image: bytes,
        target_size_bytes: int,
        mime_type: Optional[str] = None,
    ) -> CompressionResult:
        if target_size_bytes <= 0:
            raise ValueError(f"Invalid target size: {target_size_bytes}")

        decoded, source_format, exif = self._decode(image)
        out_format, out_mime = self._output_format(source_format, mime_type)
        surface = self._prepare_surface(decoded, out_format)

        exif_bytes = self._serialize_metadata(exif, target_size_bytes)
        candidate, attempts, converged = self._bisect(surface, out_format, target_size_bytes, exif_bytes)
        data = candidate.data

        logger.debug(
            f"Compressed {len(image)} -> {len(data)} bytes "
            f"(target={target_size_bytes}, q={candidate.quality:.3f}, attempts={attempts})"
        )
        return CompressionResult(
            payload=BinaryPayload(data, out_mime),
            quality=candidate.quality,
            attempts=attempts,
            converged=converged,
            original_size=len(image),
        )

    # ------------------------------------------------------------
    # Search
    # ------------------------------------------------------------

    def _bisect(
        self,
        surface: Image.Image,
        out_format: str,
        target: int,
        exif_bytes: Optional[bytes] = None,
    ) -> Tuple[_Candidate, int, bool]:
        """Candidates are measured with metadata already embedded."""
        upper_limit = target * (1.0 + self._tolerance)
        lower_limit = target * (1.0 - self._tolerance)

        low = self._min_quality
        high = self._max_quality
        quality = self._start_quality

        best_fit: Optional[_Candidate] = None        # largest candidate <= upper_limit
        best_too_large: Optional[_Candidate] = None  # smallest candidate > upper_limit
        attempts = 0

        while True:
            attempts += 1
            encoded = self._encode(surface, out_format, quality)
            candidate = _Candidate(self._embed(encoded, exif_bytes), quality)

            if lower_limit <= candidate.size <= upper_limit:
                return candidate, attempts, True

            if candidate.size > upper_limit:
                if best_too_large is None or candidate.size < best_too_large.size:
                    best_too_large = candidate
                high = quality
                next_quality = (low + quality) / 2
            else:
                if best_fit is None or candidate.size > best_fit.size:
                    best_fit = candidate
                low = quality
                next_quality = (quality + high) / 2

            if attempts >= self._max_attempts:
                break
            if abs(next_quality - quality) < CONVERGENCE_DELTA:
                break
            quality = next_quality

        chosen = best_fit if best_fit is not None else best_too_large
        return chosen, attempts, False

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    def _serialize_metadata(self, exif: Optional[Dict[str, Any]], target: int) -> Optional[bytes]:
        if not exif:
            return None
        # metadata may use at most the tolerance slack
        try:
            return self._metadata.serialize(exif, max_bytes=int(target * self._tolerance))
        except MetadataError as e:
            logger.warning(f"Metadata injection skipped: {e}")
            return None

    def _embed(self, data: bytes, exif_bytes: Optional[bytes]) -> bytes:
        if exif_bytes is None:
            return data
        try:
            return self._metadata.insert(data, exif_bytes)
        except MetadataError as e:
            logger.warning(f"Metadata injection skipped: {e}")
            return data

    def _decode(self, image: bytes) -> Tuple[Image.Image, Optional[str], Optional[Dict[str, Any]]]:
        try:
            img = Image.open(io.BytesIO(image))
            img.load()
            source_format = img.format
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise DecodeError(f"Cannot decode image: {e}") from e

        exif = None
        try:
            exif = self._metadata.extract(img)
        except MetadataError as e:
            logger.warning(f"Ignoring unreadable metadata: {e}")

        # Orientation is applied here and only here.
        try:
            img = ImageOps.exif_transpose(img)
        except Exception as e:
            logger.warning(f"Could not apply EXIF orientation: {e}")
        return img, source_format, exif

    @staticmethod
    def _output_format(source_format: Optional[str], mime_type: Optional[str]) -> Tuple[str, str]:
        source = (mime_type or Image.MIME.get(source_format or "", "")).lower()
        if source == "image/webp":
            return "WEBP", "image/webp"
        return "JPEG", "image/jpeg"

    def _prepare_surface(self, img: Image.Image, out_format: str) -> Image.Image:
        if out_format == "JPEG" and img.mode != "RGB":
            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                rgba = img.convert("RGBA")
                background = Image.new("RGB", rgba.size, (255, 255, 255))
                background.paste(rgba, mask=rgba.getchannel("A"))
                img = background
            else:
                img = img.convert("RGB")

        w, h = img.size
        longest = max(w, h)
        if longest > self._max_dimension:
            scale = self._max_dimension / longest
            size = (max(1, round(w * scale)), max(1, round(h * scale)))
            img = img.resize(size, Image.Resampling.LANCZOS)
        return img

    @staticmethod
    def _encode(img: Image.Image, out_format: str, quality: float) -> bytes:
        buf = io.BytesIO()
        save_kwargs: Dict[str, Any] = {"quality": max(1, min(100, round(quality * 100)))}
        if out_format == "JPEG":
            save_kwargs["optimize"] = True
        try:
            img.save(buf, out_format, **save_kwargs)
        except (OSError, ValueError, KeyError) as e:
            raise EncodeError(f"Encoder {out_format} failed: {e}") from e
        data = buf.getvalue()
        if not data:
            raise EncodeError(f"Encoder {out_format} produced no output")
        return data
