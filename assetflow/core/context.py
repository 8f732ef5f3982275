from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from assetflow.core.cache import get_cache_store, reset_cache_store
from assetflow.core.file_service import AssetFetcher, FileService, FileUploader, TokenProvider
from assetflow.core.http_client import HttpClient, HttpClientConfig
from assetflow.core.settings import PipelineConfig, SettingsStore
from assetflow.core.thumbnails import (
    FileHandleFactory,
    HandleFactory,
    MemoryHandleFactory,
    ThumbnailManager,
    get_load_queue,
    reset_load_queue,
)
from assetflow.core.upload_manager import UploadManager
from assetflow.media.color import DominantColorExtractor
from assetflow.media.compressor import AdaptiveCompressor

logger = logging.getLogger(__name__)


class CacheConfig:
    """
    Centralized cache directory configuration.

    Provides a single source of truth for all directories used by the pipeline.
    """

    def __init__(self, base_dir: Optional[Path] = None):
        """
        Args:
            base_dir: Base directory for all caches. Defaults to ~/.assetflow
        """
        self.base = Path(base_dir) if base_dir else (Path.home() / ".assetflow")
        self.base.mkdir(parents=True, exist_ok=True)

    @property
    def handles(self) -> Path:
        """File-backed display handles"""
        path = self.base / "handles"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def logs(self) -> Path:
        path = self.base / "logs"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def settings_db(self) -> Path:
        return self.base / "settings.db"


class CoreContext:
    """
    Shared Core dependencies (settings + HTTP + cache + managers).

    Use a single instance for the process lifetime; the cache store and the
    load queue it wires are the process-wide ones.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        *,
        settings: Optional[SettingsStore] = None,
        cache_config: Optional[CacheConfig] = None,
        fetcher: Optional[AssetFetcher] = None,
        uploader: Optional[FileUploader] = None,
        handle_factory: Optional[HandleFactory] = None,
        token_provider: Optional[TokenProvider] = None,
    ):
        self._owns_settings = settings is None
        self.settings = settings or SettingsStore()
        if self.settings.conn is None:
            self.settings.connect()

        self.config = config or PipelineConfig.from_settings(self.settings)
        self.cache_config = cache_config or CacheConfig(self.config.cache_dir)

        self._http_client = HttpClient(HttpClientConfig.from_settings(self.settings))
        self.file_service = FileService(
            self.config.api_url,
            self.config.upload_url,
            http_client=self._http_client,
            token_provider=token_provider or self.settings.get_api_token,
        )

        requested_factory = handle_factory or self._build_handle_factory()
        self.cache = get_cache_store(requested_factory, style_limit=self.config.style_cache_limit)
        # an existing process-wide store keeps the factory it was built with
        if self.cache.handle_factory is not requested_factory:
            logger.warning(
                f"Cache store already initialized with {type(self.cache.handle_factory).__name__}, "
                f"ignoring requested {type(requested_factory).__name__}"
            )
        self.handle_factory = self.cache.handle_factory
        self.load_queue = get_load_queue(self.config.max_concurrent_loads)
        if self.load_queue.max_concurrent != self.config.max_concurrent_loads:
            logger.warning(
                f"Load queue already initialized with {self.load_queue.max_concurrent} slot(s), "
                f"ignoring max_concurrent_loads={self.config.max_concurrent_loads}"
            )

        self.colors = DominantColorExtractor(self.cache)
        self.compressor = AdaptiveCompressor(max_dimension=self.config.compression_max_dimension)

        self.thumbnails = ThumbnailManager(
            fetcher or self.file_service,
            cache=self.cache,
            queue=self.load_queue,
            color_extractor=self.colors,
        )
        self.uploads = UploadManager(
            uploader or self.file_service,
            compressor=self.compressor,
            batch_size=self.config.upload_batch_size,
            compression_threshold=self.config.compression_threshold_bytes,
            compression_target=self.config.compression_target_bytes,
            max_workers=self.config.max_compression_workers,
        )
        logger.info(
            f"Core context ready - api: {self.config.api_url}, "
            f"loads: {self.load_queue.max_concurrent}, batch: {self.config.upload_batch_size}"
        )

    def _build_handle_factory(self) -> HandleFactory:
        backend = self.settings.get_config("handle_backend", "memory")
        if backend == "file":
            return FileHandleFactory(self.cache_config.handles)
        if backend != "memory":
            logger.warning(f"Unknown handle_backend {backend!r}, using memory handles")
        return MemoryHandleFactory()

    async def __aenter__(self) -> "CoreContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.load_queue.join()
        self.uploads.close()
        await self.file_service.close()
        reset_cache_store()
        reset_load_queue()
        if self._owns_settings:
            self.settings.close()
        logger.debug("Core context closed")
