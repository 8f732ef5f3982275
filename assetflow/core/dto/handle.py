import time
from dataclasses import dataclass, field


@dataclass(eq=False, slots=True)
class DisplayHandle:
    """
    Revocable, process-local reference to a payload that a renderer can use.

    Attributes:
        url: Opaque locator (``blob:`` URL, ``file://`` URI, ...)
        asset_id: Owning asset
        created_at: Monotonic creation time
        revoked: Set once the factory released the underlying resource
    """
    url: str
    asset_id: str
    created_at: float = field(default_factory=time.monotonic)
    revoked: bool = False
