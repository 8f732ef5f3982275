from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from assetflow.core.dto.media import BinaryPayload, is_image_name
from assetflow.core.errors import UploadErrorCategory


ProgressPhase = Literal["compressing", "uploading"]


@dataclass(frozen=True, slots=True)
class UploadItem:
    file_name: str
    data: bytes
    mime_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        if self.mime_type:
            return self.mime_type.lower().startswith("image/")
        return is_image_name(self.file_name)

    def to_payload(self) -> BinaryPayload:
        return BinaryPayload(self.data, self.mime_type or "application/octet-stream")


class UploadStatus(str, Enum):
    PENDING = "pending"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS = {
    UploadStatus.PENDING: {UploadStatus.COMPRESSING, UploadStatus.UPLOADING, UploadStatus.FAILED},
    UploadStatus.COMPRESSING: {UploadStatus.UPLOADING, UploadStatus.FAILED},
    UploadStatus.UPLOADING: {UploadStatus.SUCCEEDED, UploadStatus.FAILED},
    UploadStatus.SUCCEEDED: set(),
    UploadStatus.FAILED: set(),
}


@dataclass(slots=True)
class UploadTask:
    """Per-file state owned by UploadManager for the length of one submission."""
    item: UploadItem
    compressed: bool = False
    status: UploadStatus = UploadStatus.PENDING
    payload: Optional[BinaryPayload] = None

    def advance(self, status: UploadStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(f"Illegal upload transition {self.status.value} -> {status.value}")
        self.status = status

    @property
    def done(self) -> bool:
        return self.status in (UploadStatus.SUCCEEDED, UploadStatus.FAILED)


@dataclass(frozen=True, slots=True)
class UploadResult:
    file_ids: List[str]
    file_name: Optional[str] = None
    raw: Any = None

    @classmethod
    def from_response(cls, response: Any, file_name: Optional[str] = None) -> "UploadResult":
        """
        Normalize the server's upload response.

        Accepted shapes: a list of uploaded files, an object holding
        ``uploadedFiles`` or ``files``, or a single object with ``fieldId``.
        """
        records: List[Any] = []
        if isinstance(response, list):
            records = response
        elif isinstance(response, dict):
            nested = response.get("uploadedFiles") or response.get("files")
            if isinstance(nested, list):
                records = nested
            elif response.get("fieldId") or response.get("id"):
                records = [response]

        ids: List[str] = []
        for record in records:
            if not isinstance(record, dict):
                continue
            file_id = record.get("fieldId") or record.get("id")
            if file_id:
                ids.append(str(file_id))
        return cls(file_ids=ids, file_name=file_name, raw=response)


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    phase: ProgressPhase
    current: int
    total: int


@dataclass(frozen=True, slots=True)
class UploadFailure:
    file_name: str
    message: str
    category: Optional[UploadErrorCategory] = None


class BatchOutcome(str, Enum):
    EMPTY = "empty"
    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL = "partial"
    ALL_FAILED = "all_failed"


@dataclass(slots=True)
class BatchReport:
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    errors: List[UploadFailure] = field(default_factory=list)
    results: List[UploadResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    def record_success(self, result: UploadResult) -> None:
        self.success_count += 1
        self.results.append(result)

    def record_failure(self, failure: UploadFailure) -> None:
        self.failed_count += 1
        self.errors.append(failure)

    @property
    def attempted(self) -> int:
        return self.success_count + self.failed_count

    @property
    def outcome(self) -> BatchOutcome:
        if self.attempted == 0:
            return BatchOutcome.EMPTY
        if self.failed_count == 0:
            return BatchOutcome.ALL_SUCCEEDED
        if self.success_count == 0:
            return BatchOutcome.ALL_FAILED
        return BatchOutcome.PARTIAL

    def summary(self) -> str:
        elapsed = f"{self.duration_seconds:.1f}s"
        outcome = self.outcome
        if outcome == BatchOutcome.EMPTY:
            head = "No files were uploaded"
        elif outcome == BatchOutcome.ALL_SUCCEEDED:
            head = f"All {self.success_count} file(s) uploaded successfully in {elapsed}"
        elif outcome == BatchOutcome.ALL_FAILED:
            head = f"Upload failed for all {self.failed_count} file(s) ({elapsed})"
        else:
            head = (
                f"Partial upload: {self.success_count} succeeded, "
                f"{self.failed_count} failed in {elapsed}"
            )
        lines = [head]
        if self.skipped_count:
            lines.append(f"{self.skipped_count} file(s) not started (cancelled)")
        for failure in self.errors:
            lines.append(f"- {failure.file_name}: {failure.message}")
        return "\n".join(lines)
