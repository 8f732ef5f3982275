"""
Upload manager: compress-then-upload batches with progress and partial-failure reporting.
"""
import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import PurePath
from typing import Any, Callable, Dict, Optional, Sequence

from assetflow.core.dto import (
    BatchReport,
    BinaryPayload,
    CompressionJob,
    ProgressEvent,
    UploadFailure,
    UploadItem,
    UploadStatus,
    UploadTask,
)
from assetflow.core.errors import UploadError, default_upload_message, UploadErrorCategory
from assetflow.core.file_service import FileUploader
from assetflow.media.compressor import AdaptiveCompressor

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
COMPRESSION_THRESHOLD = 300 * 1024
COMPRESSION_TARGET_BYTES = 300 * 1024
MAX_COMPRESSION_WORKERS = 4

_MIME_EXT = {
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}

ProgressCallback = Callable[[ProgressEvent], Any]
LogCallback = Callable[[str], Any]


class UploadManager:
    """
    Schedules files through AdaptiveCompressor and then the uploader.

    Responsibilities:
    - Fixed-size batches; batch N+1 starts after batch N fully settled
    - Per-item compress-then-upload, phases overlapping across items
    - Live progress counters and the final BatchReport

    Non-responsibilities:
    - Mid-flight cancellation (cancel() only stops new batches)
    - Retries
    """

    def __init__(
        self,
        uploader: FileUploader,
        *,
        compressor: Optional[AdaptiveCompressor] = None,
        batch_size: int = BATCH_SIZE,
        compression_threshold: int = COMPRESSION_THRESHOLD,
        compression_target: int = COMPRESSION_TARGET_BYTES,
        max_workers: int = MAX_COMPRESSION_WORKERS,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """
        Args:
            uploader: Collaborator that persists one file (FileService in production)
            compressor: Shared compressor; a default one is created when omitted
            batch_size: Files launched together per batch
            compression_threshold: Images above this many bytes are compressed
            compression_target: Byte budget handed to the compressor
            max_workers: Thread pool size for CPU-bound compression
            executor: Externally owned executor (not shut down by close())
        """
        self.uploader = uploader
        self.compressor = compressor or AdaptiveCompressor()
        self.batch_size = max(1, int(batch_size))
        self.compression_threshold = int(compression_threshold)
        self.compression_target = int(compression_target)

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="assetflow-compress",
        )
        self._cancelled = False
        self._active_compressions = 0
        self._active_uploads = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def cancel(self) -> None:
        """Stop starting new batches. Files already in flight finish normally."""
        if not self._cancelled:
            logger.info("Upload cancellation requested, no new batches will start")
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active_compressions(self) -> int:
        return self._active_compressions

    @property
    def active_uploads(self) -> int:
        return self._active_uploads

    # --------------------------------------------------------
    # Submission
    # --------------------------------------------------------

    async def submit(
        self,
        items: Sequence[UploadItem],
        *,
        compress: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        log_callback: Optional[LogCallback] = None,
    ) -> BatchReport:
        """
        Upload every item and return the aggregated report.

        Only UploadError (or unexpected errors from the uploader) become
        per-file failures; compression problems fall back to the original bytes.
        """
        self._cancelled = False
        items = list(items)
        report = BatchReport()
        started = time.monotonic()
        total = len(items)

        log_task = self._start_log_stream(session_id, log_callback)
        try:
            batches = [items[i:i + self.batch_size] for i in range(0, total, self.batch_size)]
            for index, batch in enumerate(batches):
                if self._cancelled:
                    remaining = sum(len(b) for b in batches[index:])
                    report.skipped_count += remaining
                    logger.info(f"Skipping {remaining} file(s) after cancellation")
                    break

                logger.info(f"Starting upload batch {index + 1}/{len(batches)} ({len(batch)} file(s))")
                tasks = [UploadTask(item) for item in batch]
                outcomes = await asyncio.gather(
                    *[
                        self._process(task, report, total, compress, metadata, session_id, progress_callback)
                        for task in tasks
                    ],
                    return_exceptions=True,
                )
                for task, outcome in zip(tasks, outcomes):
                    if isinstance(outcome, BaseException):
                        logger.error(f"Upload task for {task.item.file_name} crashed: {outcome!r}")
        finally:
            if log_task is not None:
                log_task.cancel()
                await asyncio.gather(log_task, return_exceptions=True)

        report.duration_seconds = time.monotonic() - started
        logger.info(report.summary().splitlines()[0])
        return report

    async def _process(
        self,
        task: UploadTask,
        report: BatchReport,
        total: int,
        compress: bool,
        metadata: Optional[Dict[str, Any]],
        session_id: Optional[str],
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        item = task.item
        payload = item.to_payload()
        file_name = item.file_name

        if compress and self._should_compress(item):
            task.advance(UploadStatus.COMPRESSING)
            self._active_compressions += 1
            self._emit(progress_callback, "compressing", self._active_compressions, total)
            try:
                payload = await self._compress(item)
                if payload.data is not item.data:
                    task.compressed = True
                    file_name = _rename_for(file_name, payload.mime_type)
            finally:
                self._active_compressions -= 1
                self._emit(progress_callback, "compressing", self._active_compressions, total)

        task.payload = payload
        task.advance(UploadStatus.UPLOADING)
        self._active_uploads += 1
        self._emit(progress_callback, "uploading", self._active_uploads, total)
        try:
            fields = dict(metadata or {})
            fields.update(item.metadata)
            result = await self.uploader.upload_file(
                payload,
                fields,
                file_name=file_name,
                session_id=session_id,
            )
        except UploadError as e:
            task.advance(UploadStatus.FAILED)
            message = str(e) or default_upload_message(e.category)
            report.record_failure(UploadFailure(item.file_name, message, e.category))
            logger.warning(f"Upload failed for {item.file_name} [{e.category.value}]: {message}")
        except Exception as e:
            task.advance(UploadStatus.FAILED)
            report.record_failure(
                UploadFailure(item.file_name, str(e) or "upload failed", UploadErrorCategory.SERVER)
            )
            logger.error(f"Unexpected upload error for {item.file_name}: {e!r}")
        else:
            task.advance(UploadStatus.SUCCEEDED)
            report.record_success(result)
            logger.debug(f"Uploaded {item.file_name} ({payload.size} bytes, compressed={task.compressed})")
        finally:
            self._active_uploads -= 1
            self._emit(progress_callback, "uploading", self._active_uploads, total)

    # --------------------------------------------------------
    # Compression
    # --------------------------------------------------------

    def _should_compress(self, item: UploadItem) -> bool:
        return item.is_image and item.size > self.compression_threshold

    async def _compress(self, item: UploadItem) -> BinaryPayload:
        """Compress in the worker pool; any failure returns the original bytes."""
        original = item.to_payload()
        job = CompressionJob(
            source=item.data,
            target_size_bytes=self.compression_target,
            mime_type=item.mime_type,
        )
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(self._executor, self.compressor.compress_job, job)
        except Exception as e:
            logger.warning(f"Compression failed for {item.file_name}, uploading original: {e}")
            return original

        if result.payload.size >= original.size:
            logger.debug(
                f"Compressed {item.file_name} is not smaller "
                f"({result.payload.size} >= {original.size}), keeping original"
            )
            return original

        logger.info(
            f"Compressed {item.file_name}: {original.size} -> {result.payload.size} bytes "
            f"(q={result.quality:.2f}, {result.attempts} attempt(s))"
        )
        return result.payload

    # --------------------------------------------------------
    # Progress / log narration
    # --------------------------------------------------------

    @staticmethod
    def _emit(callback: Optional[ProgressCallback], phase: str, current: int, total: int) -> None:
        if callback is None:
            return
        try:
            callback(ProgressEvent(phase, current, total))
        except Exception as e:
            logger.warning(f"Progress callback raised: {e}")

    def _start_log_stream(
        self,
        session_id: Optional[str],
        log_callback: Optional[LogCallback],
    ) -> Optional[asyncio.Task]:
        if not session_id or log_callback is None:
            return None
        stream = getattr(self.uploader, "stream_upload_log", None)
        if stream is None:
            return None

        async def pump():
            try:
                async for line in stream(session_id):
                    try:
                        log_callback(line)
                    except Exception as e:
                        logger.warning(f"Log callback raised: {e}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"Upload log stream ended: {e}")

        return asyncio.create_task(pump())


def _rename_for(file_name: str, mime_type: str) -> str:
    """Match the file extension to the re-encoded format."""
    ext = _MIME_EXT.get(mime_type)
    if not ext:
        return file_name
    path = PurePath(file_name)
    if path.suffix.lower() == ext or (ext == ".jpg" and path.suffix.lower() == ".jpeg"):
        return file_name
    return str(path.with_suffix(ext))
