from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from assetflow.core.dto.media import BinaryPayload


@dataclass(frozen=True, slots=True)
class CompressionJob:
    source: bytes
    target_size_bytes: int
    mime_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CompressionResult:
    payload: BinaryPayload
    quality: float
    attempts: int
    converged: bool     # True when the size landed inside the tolerance window
    original_size: int

    @property
    def ratio(self) -> float:
        if not self.original_size:
            return 1.0
        return self.payload.size / self.original_size
