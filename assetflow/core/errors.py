"""
Error taxonomy for the media asset pipeline.

Only UploadError ever reaches the caller (inside a BatchReport). Everything
else is absorbed by the component that raised it and turned into a fallback.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class PipelineError(RuntimeError):
    """Base class for every pipeline failure."""


class DecodeError(PipelineError):
    """Source bytes are not a decodable image."""


class EncodeError(PipelineError):
    """The encoder could not produce an output buffer."""


class MetadataError(PipelineError):
    """Embedded metadata could not be read or re-injected. Never fatal."""


class FetchError(PipelineError):
    """Retrieving a remote asset failed."""

    def __init__(self, message: str, *, asset_id: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.asset_id = asset_id
        self.status = status


class UploadErrorCategory(str, Enum):
    CONNECTIVITY = "connectivity"
    AUTH = "auth"
    FORBIDDEN = "forbidden"
    SERVER = "server"
    VALIDATION = "validation"

    @classmethod
    def from_status(cls, status: Optional[int]) -> "UploadErrorCategory":
        if not status:
            return cls.CONNECTIVITY
        if status == 401:
            return cls.AUTH
        if status == 403:
            return cls.FORBIDDEN
        if status >= 500:
            return cls.SERVER
        return cls.VALIDATION


class UploadError(PipelineError):
    """Persisting a file failed; carries the HTTP-style cause."""

    def __init__(
        self,
        message: str,
        *,
        category: UploadErrorCategory = UploadErrorCategory.SERVER,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.category = category
        self.status = status

    @classmethod
    def from_status(cls, status: Optional[int], message: Optional[str] = None) -> "UploadError":
        category = UploadErrorCategory.from_status(status)
        return cls(message or default_upload_message(category), category=category, status=status)


class QueueOverrunError(PipelineError):
    """More loads in flight than the queue ceiling allows. Programming error."""


def default_upload_message(category: UploadErrorCategory) -> str:
    return {
        UploadErrorCategory.CONNECTIVITY: "Unable to reach the server",
        UploadErrorCategory.AUTH: "Authentication failed",
        UploadErrorCategory.FORBIDDEN: "Not allowed to upload files",
        UploadErrorCategory.SERVER: "Server error, try again later",
    }.get(category, "upload failed")
