from assetflow.core.dto.media import AssetRef, BinaryPayload, DisplayHint
from assetflow.core.dto.handle import DisplayHandle
from assetflow.core.dto.color import DisplayStyle, DominantColor, NEUTRAL_GRAY

# Thumbnail cache DTOs
from assetflow.core.dto.thumbnail import CacheEntry, CacheTier, StyleEntry

# Compression / upload DTOs
from assetflow.core.dto.compression import CompressionJob, CompressionResult
from assetflow.core.dto.upload import (
    BatchOutcome,
    BatchReport,
    ProgressEvent,
    UploadFailure,
    UploadItem,
    UploadResult,
    UploadStatus,
    UploadTask,
)

__all__ = [
    # Media
    "AssetRef",
    "BinaryPayload",
    "DisplayHint",
    "DisplayHandle",
    "DominantColor",
    "DisplayStyle",
    "NEUTRAL_GRAY",

    # Thumbnails
    "CacheEntry",
    "CacheTier",
    "StyleEntry",

    # Compression / upload
    "CompressionJob",
    "CompressionResult",
    "BatchOutcome",
    "BatchReport",
    "ProgressEvent",
    "UploadFailure",
    "UploadItem",
    "UploadResult",
    "UploadStatus",
    "UploadTask",
]
