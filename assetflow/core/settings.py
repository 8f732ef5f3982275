"""
Settings storage and pipeline configuration for assetflow.

Settings live in a small SQLite database (``config`` table). Secrets such as
the upload API token are stored Fernet-encrypted with a key kept in the OS
credential store.
"""
import sqlite3
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import keyring
from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "assetflow"
API_TOKEN_KEY = "api_token"
DEFAULT_SETTINGS_DB = Path.home() / ".assetflow" / "settings.db"


# ------------------------------------------------------------
# SQLite settings store
# ------------------------------------------------------------

class SettingsStore:
    """Manages the SQLite ``config`` table."""

    def __init__(self, db_path: Optional[Path] = None, *, encryption_key: Optional[bytes] = None):
        """
        Args:
            db_path: Path to the SQLite file. ``":memory:"`` keeps everything in RAM.
            encryption_key: Fernet key; read from (or stored in) the keyring when omitted.
        """
        if db_path is None:
            db_path = DEFAULT_SETTINGS_DB
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._encryption_key = encryption_key

    def _get_or_create_encryption_key(self) -> bytes:
        if self._encryption_key is not None:
            return self._encryption_key

        try:
            key_str = keyring.get_password(KEYRING_SERVICE, "encryption_key")
            if key_str:
                self._encryption_key = key_str.encode()
                return self._encryption_key
        except Exception as e:
            logger.warning(f"Could not retrieve encryption key: {e}")

        key = Fernet.generate_key()
        try:
            keyring.set_password(KEYRING_SERVICE, "encryption_key", key.decode())
        except Exception as e:
            logger.error(f"Could not store encryption key, secrets will not survive restart: {e}")
        self._encryption_key = key
        return key

    def _encrypt_value(self, value: str) -> str:
        f = Fernet(self._get_or_create_encryption_key())
        return f.encrypt(value.encode()).decode()

    def _decrypt_value(self, encrypted_value: str) -> Optional[str]:
        f = Fernet(self._get_or_create_encryption_key())
        try:
            return f.decrypt(encrypted_value.encode()).decode()
        except InvalidToken:
            logger.warning("Stored secret cannot be decrypted with the current key")
            return None

    def connect(self) -> "SettingsStore":
        """Establish database connection"""
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=30.0,
        )
        self.conn.row_factory = sqlite3.Row
        self._initialize_schema()
        return self

    def _initialize_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                is_encrypted INTEGER DEFAULT 0,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        self.conn.commit()
        logger.debug(f"Settings schema verified at {self.db_path}")

    def _ensure_connected(self) -> sqlite3.Connection:
        if self.conn is None:
            self.connect()
        return self.conn

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Retrieve configuration value

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value (always a string when stored) or default
        """
        with self._lock:
            cursor = self._ensure_connected().cursor()
            cursor.execute("SELECT value, is_encrypted FROM config WHERE key = ?", (key,))
            row = cursor.fetchone()
        if not row:
            return default
        value = row["value"]
        if row["is_encrypted"]:
            value = self._decrypt_value(value)
            if value is None:
                return default
        return value

    def set_config(self, key: str, value: Any, encrypt: bool = False) -> None:
        str_value = str(value)
        if encrypt:
            str_value = self._encrypt_value(str_value)
        with self._lock:
            conn = self._ensure_connected()
            conn.execute("""
                INSERT OR REPLACE INTO config (key, value, is_encrypted, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            """, (key, str_value, 1 if encrypt else 0))
            conn.commit()

    def delete_config(self, key: str) -> None:
        with self._lock:
            conn = self._ensure_connected()
            conn.execute("DELETE FROM config WHERE key = ?", (key,))
            conn.commit()

    def get_all_config(self) -> Dict[str, str]:
        """Get all configuration as dictionary (excluding encrypted values)"""
        with self._lock:
            cursor = self._ensure_connected().cursor()
            cursor.execute("SELECT key, value FROM config WHERE is_encrypted = 0")
            return {row["key"]: row["value"] for row in cursor.fetchall()}

    # --------------------------------------------------------
    # Typed readers
    # --------------------------------------------------------

    def get_int(self, key: str, default: int) -> int:
        value = self.get_config(key, None)
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid integer for setting {key!r}: {value!r}, using {default}")
            return default

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.get_config(key, None)
        if value is None:
            return default
        return str(value).strip().lower() in ("1", "true", "yes", "on")

    # --------------------------------------------------------
    # Secrets
    # --------------------------------------------------------

    def set_api_token(self, token: str) -> None:
        self.set_config(API_TOKEN_KEY, token, encrypt=True)

    def get_api_token(self) -> Optional[str]:
        return self.get_config(API_TOKEN_KEY, None)

    def close(self) -> None:
        """Close database connection"""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None


# ------------------------------------------------------------
# Pipeline configuration
# ------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class PipelineConfig:
    max_concurrent_loads: int = 2
    upload_batch_size: int = 10
    compression_threshold_bytes: int = 300 * 1024
    compression_target_bytes: int = 300 * 1024
    compression_max_dimension: int = 1920
    max_compression_workers: int = 4
    style_cache_limit: int = 256
    api_url: str = "http://localhost:3000/api"
    upload_url: Optional[str] = None
    cache_dir: Optional[Path] = None

    @classmethod
    def from_settings(cls, settings: SettingsStore) -> "PipelineConfig":
        defaults = cls()

        def positive(key: str, default: int) -> int:
            value = settings.get_int(key, default)
            if value <= 0:
                logger.warning(f"Setting {key!r} must be positive, got {value}; using {default}")
                return default
            return value

        cache_dir = settings.get_config("cache_dir", None)
        return cls(
            max_concurrent_loads=positive("max_concurrent_loads", defaults.max_concurrent_loads),
            upload_batch_size=positive("upload_batch_size", defaults.upload_batch_size),
            compression_threshold_bytes=positive(
                "compression_threshold_bytes", defaults.compression_threshold_bytes
            ),
            compression_target_bytes=positive("compression_target_bytes", defaults.compression_target_bytes),
            compression_max_dimension=positive("compression_max_dimension", defaults.compression_max_dimension),
            max_compression_workers=positive("max_compression_workers", defaults.max_compression_workers),
            style_cache_limit=positive("style_cache_limit", defaults.style_cache_limit),
            api_url=settings.get_config("api_url", defaults.api_url),
            upload_url=settings.get_config("upload_url", None),
            cache_dir=Path(cache_dir) if cache_dir else None,
        )
