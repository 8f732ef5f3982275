from __future__ import annotations

import copy
import io
import logging
from typing import Any, Dict, Optional

import piexif
from PIL import Image

from assetflow.core.errors import MetadataError

logger = logging.getLogger(__name__)

IDENTITY_ORIENTATION = 1

# piexif.insert only understands these containers
_INJECTABLE_MAGIC = (b"\xff\xd8",)


class MetadataCodec:
    """
    EXIF extraction / re-injection for re-encoded images.

    The decoder already applies the source orientation to the pixels, so the
    orientation tag written back is always the identity value. Every other tag
    is written back as loaded.
    """

    def extract(self, image: Image.Image | bytes) -> Optional[Dict[str, Any]]:
        raw = self._raw_exif(image)
        if not raw:
            return None
        try:
            exif = piexif.load(raw)
        except Exception as e:
            raise MetadataError(f"Unreadable EXIF block: {e}") from e
        if not any(exif.get(ifd) for ifd in ("0th", "Exif", "GPS", "1st", "Interop")):
            return None
        return exif

    @staticmethod
    def normalize_orientation(exif: Dict[str, Any]) -> Dict[str, Any]:
        fixed = copy.deepcopy(exif)
        zeroth = fixed.setdefault("0th", {})
        if piexif.ImageIFD.Orientation in zeroth:
            zeroth[piexif.ImageIFD.Orientation] = IDENTITY_ORIENTATION
        return fixed

    def inject(self, buffer: bytes, exif: Dict[str, Any]) -> bytes:
        return self.insert(buffer, self.serialize(exif))

    def serialize(self, exif: Dict[str, Any], max_bytes: Optional[int] = None) -> bytes:
        """
        Dump the orientation-normalized block.

        When max_bytes is given and the block is larger, the embedded preview
        (the 1st IFD and its JPEG thumbnail) is dropped before anything else.
        """
        fixed = self.normalize_orientation(exif)
        exif_bytes = self._dump(fixed)
        if max_bytes is not None and len(exif_bytes) > max_bytes and fixed.get("thumbnail"):
            fixed.pop("thumbnail", None)
            fixed.pop("1st", None)
            slim = self._dump(fixed)
            logger.info(f"Dropped embedded EXIF thumbnail ({len(exif_bytes)} -> {len(slim)} bytes)")
            exif_bytes = slim
        return exif_bytes

    def insert(self, buffer: bytes, exif_bytes: bytes) -> bytes:
        if not buffer.startswith(_INJECTABLE_MAGIC) and not self._is_webp(buffer):
            raise MetadataError("Output container does not support EXIF injection")
        out = io.BytesIO()
        try:
            piexif.insert(exif_bytes, buffer, out)
        except Exception as e:
            raise MetadataError(f"Could not insert EXIF: {e}") from e
        return out.getvalue()

    def read_orientation(self, buffer: bytes) -> Optional[int]:
        exif = self.extract(buffer)
        if not exif:
            return None
        return exif.get("0th", {}).get(piexif.ImageIFD.Orientation)

    # ------------------------------------------------------------

    @staticmethod
    def _raw_exif(image: Image.Image | bytes) -> Optional[bytes]:
        if isinstance(image, Image.Image):
            return image.info.get("exif")
        try:
            with Image.open(io.BytesIO(image)) as img:
                return img.info.get("exif")
        except Exception as e:
            raise MetadataError(f"Cannot open image for metadata: {e}") from e

    @staticmethod
    def _is_webp(buffer: bytes) -> bool:
        return buffer[0:4] == b"RIFF" and buffer[8:12] == b"WEBP"

    @staticmethod
    def _dump(exif: Dict[str, Any]) -> bytes:
        try:
            return piexif.dump(exif)
        except Exception as e:
            raise MetadataError(f"Could not serialize EXIF: {e}") from e
