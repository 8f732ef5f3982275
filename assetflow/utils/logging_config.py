"""
Centralized logging configuration with categorized loggers.

- Named categories for pipeline subsystems
- Per-category log level control
- Persistent levels via the settings store
"""
import logging
from typing import Dict, Optional
from pathlib import Path
from logging.handlers import TimedRotatingFileHandler


class LoggerCategory:
    """Named categories for pipeline loggers"""
    CORE = "core"                  # Wiring, settings, errors
    MEDIA = "media"                # Compression, metadata, color extraction
    NETWORK = "network"            # HTTP client and file service
    UPLOAD = "upload"              # Batch upload scheduling
    CACHE = "cache"                # CacheStore and display handles
    IMAGE_LOADING = "image"        # Load queue and thumbnail manager


DEFAULT_LOG_LEVELS = {
    LoggerCategory.CORE: logging.INFO,
    LoggerCategory.MEDIA: logging.INFO,
    LoggerCategory.NETWORK: logging.INFO,
    LoggerCategory.UPLOAD: logging.INFO,
    LoggerCategory.CACHE: logging.WARNING,  # Resurrections are frequent and expected
    LoggerCategory.IMAGE_LOADING: logging.WARNING,
}


MODULE_TO_CATEGORY = {
    # Core
    'assetflow.core': LoggerCategory.CORE,
    'assetflow.core.context': LoggerCategory.CORE,
    'assetflow.core.settings': LoggerCategory.CORE,

    # Media
    'assetflow.media': LoggerCategory.MEDIA,
    'assetflow.media.compressor': LoggerCategory.MEDIA,
    'assetflow.media.metadata': LoggerCategory.MEDIA,
    'assetflow.media.color': LoggerCategory.MEDIA,

    # Network
    'assetflow.core.http_client': LoggerCategory.NETWORK,
    'assetflow.core.file_service': LoggerCategory.NETWORK,

    # Upload
    'assetflow.core.upload_manager': LoggerCategory.UPLOAD,

    # Cache
    'assetflow.core.cache': LoggerCategory.CACHE,
    'assetflow.core.thumbnails.handle': LoggerCategory.CACHE,

    # Image loading
    'assetflow.core.thumbnails': LoggerCategory.IMAGE_LOADING,
    'assetflow.core.thumbnails.queue': LoggerCategory.IMAGE_LOADING,
    'assetflow.core.thumbnails.manager': LoggerCategory.IMAGE_LOADING,
}


class LoggingManager:
    """Manages pipeline-wide logging configuration"""

    def __init__(self, log_dir: Optional[Path] = None, settings=None):
        """
        Args:
            log_dir: Directory for log files
            settings: SettingsStore for persistent category levels
        """
        self.log_dir = log_dir or (Path.home() / ".assetflow" / "logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.settings = settings
        self._category_levels: Dict[str, int] = {}
        self._load_levels()

    def _load_levels(self):
        if not self.settings:
            self._category_levels = DEFAULT_LOG_LEVELS.copy()
            return

        for category, default_level in DEFAULT_LOG_LEVELS.items():
            level_name = self.settings.get_config(
                f'log_level_{category}', logging.getLevelName(default_level)
            )
            level = logging.getLevelName(str(level_name).upper())
            self._category_levels[category] = level if isinstance(level, int) else default_level

    def get_category_level(self, category: str) -> int:
        return self._category_levels.get(category, logging.INFO)

    def set_category_level(self, category: str, level: int):
        """Set log level for a category and persist it"""
        self._category_levels[category] = level
        if self.settings:
            self.settings.set_config(f'log_level_{category}', logging.getLevelName(level))
        self._apply_category_level(category, level)

    def _apply_category_level(self, category: str, level: int):
        for module_name, cat in MODULE_TO_CATEGORY.items():
            if cat == category:
                logging.getLogger(module_name).setLevel(level)

    def setup_logging(self, root_level: int = logging.INFO, *, console: bool = True):
        """
        Install the rotating file handler (and optionally a console handler).

        Args:
            root_level: Root logger level (default: INFO)
            console: Also log to stderr
        """
        log_file = self.log_dir / "assetflow.log"

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        file_handler = TimedRotatingFileHandler(
            log_file,
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(root_level)

        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        root_logger.addHandler(file_handler)
        if console:
            stream_handler = logging.StreamHandler()
            stream_handler.setFormatter(formatter)
            root_logger.addHandler(stream_handler)

        for category, level in self._category_levels.items():
            self._apply_category_level(category, level)

        # Silence noisy third-party loggers
        logging.getLogger('aiohttp').setLevel(logging.WARNING)
        logging.getLogger('asyncio').setLevel(logging.WARNING)
        logging.getLogger('PIL').setLevel(logging.WARNING)

    def get_all_levels(self) -> Dict[str, int]:
        return self._category_levels.copy()


_logging_manager: Optional[LoggingManager] = None


def get_logging_manager(settings=None, log_dir: Optional[Path] = None) -> LoggingManager:
    """Get or create the global logging manager"""
    global _logging_manager
    if _logging_manager is None:
        _logging_manager = LoggingManager(log_dir=log_dir, settings=settings)
    return _logging_manager


def setup_logging(settings=None, log_dir: Optional[Path] = None, root_level: int = logging.INFO):
    """Setup pipeline logging (convenience function)"""
    manager = get_logging_manager(settings, log_dir)
    manager.setup_logging(root_level)
    return manager
