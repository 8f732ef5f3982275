from assetflow.core.thumbnails.handle import FileHandleFactory, HandleFactory, MemoryHandleFactory
from assetflow.core.thumbnails.queue import LoadQueue, get_load_queue, reset_load_queue
from assetflow.core.thumbnails.manager import ThumbnailManager

__all__ = [
    "FileHandleFactory",
    "HandleFactory",
    "MemoryHandleFactory",
    "LoadQueue",
    "ThumbnailManager",
    "get_load_queue",
    "reset_load_queue",
]
