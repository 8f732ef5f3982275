from dataclasses import dataclass
from enum import Enum
from typing import Optional

from assetflow.core.dto.color import DisplayStyle, DominantColor
from assetflow.core.dto.handle import DisplayHandle
from assetflow.core.dto.media import BinaryPayload


class CacheTier(str, Enum):
    HANDLE = "handle"
    PAYLOAD = "payload"
    STYLE = "style"


@dataclass(frozen=True, slots=True)
class StyleEntry:
    asset_id: str
    signature: Optional[str]
    handle: Optional[DisplayHandle]
    color: DominantColor
    style: DisplayStyle


@dataclass(frozen=True, slots=True)
class CacheEntry:
    asset_id: str
    handle: DisplayHandle
    payload: Optional[BinaryPayload] = None
    color: Optional[DominantColor] = None
    style: Optional[DisplayStyle] = None
    signature: Optional[str] = None
    source: CacheTier = CacheTier.HANDLE
