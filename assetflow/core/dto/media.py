import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tif", ".tiff", ".heic"}


@dataclass(frozen=True, slots=True)
class AssetRef:
    asset_id: str                   # server-side identity, read-only here
    file_name: Optional[str] = None
    signature: Optional[str] = None  # content-version token (current field id)

    @property
    def is_thumbnail(self) -> bool:
        return "thumbnail" in (self.file_name or "").lower()


@dataclass(frozen=True, slots=True)
class BinaryPayload:
    data: bytes
    mime_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)

    def digest(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


@dataclass(frozen=True, slots=True)
class DisplayHint:
    """Caller-side knobs for a thumbnail load."""
    thumbnail: Optional[bool] = None  # None -> derive from the file name

    def is_thumbnail(self, asset: AssetRef) -> bool:
        if self.thumbnail is not None:
            return self.thumbnail
        return asset.is_thumbnail


def is_image_name(file_name: str) -> bool:
    return Path(file_name).suffix.lower() in IMAGE_EXTS
