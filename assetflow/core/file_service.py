"""
File server adapter.

The pipeline talks to the remote file store through three narrow protocols;
FileService is the aiohttp implementation against the real backend:

- GET  {api_url}/file/{asset_id}                -> raw bytes
- POST {upload_url}                             -> multipart, field ``file``
- GET  {api_url}/file/upload-logs/{session_id}  -> JSON list of log lines
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol

import aiohttp

from assetflow.core.dto import BinaryPayload, UploadResult
from assetflow.core.errors import FetchError, UploadError
from assetflow.core.http_client import HttpClient, MEDIA_HEADERS

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]

LOG_POLL_INTERVAL_S = 1.0


# ------------------------------------------------------------
# Collaborator contracts
# ------------------------------------------------------------

class AssetFetcher(Protocol):
    async def fetch_asset(self, asset_id: str) -> BinaryPayload: ...


class FileUploader(Protocol):
    async def upload_file(
        self,
        payload: BinaryPayload,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        file_name: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> UploadResult: ...


class UploadLogSource(Protocol):
    def stream_upload_log(self, session_id: str) -> AsyncIterator[str]: ...


# ------------------------------------------------------------
# aiohttp implementation
# ------------------------------------------------------------

class FileService:
    """
    Responsibilities:
    - Asset download for the thumbnail pipeline
    - Multipart upload with HTTP status -> UploadErrorCategory mapping
    - Polling the server-side upload log for a session

    Non-responsibilities:
    - Retries (callers decide)
    - Caching (CacheStore owns that)
    """

    def __init__(
        self,
        api_url: str,
        upload_url: Optional[str] = None,
        *,
        http_client: Optional[HttpClient] = None,
        token_provider: Optional[TokenProvider] = None,
        log_poll_interval: float = LOG_POLL_INTERVAL_S,
    ):
        self.api_url = api_url.rstrip("/")
        self.upload_url = upload_url or f"{self.api_url}/file/upload"
        self._http = http_client or HttpClient()
        self._token_provider = token_provider
        self._log_poll_interval = log_poll_interval

    async def close(self) -> None:
        await self._http.close()

    # --------------------------------------------------------
    # Download
    # --------------------------------------------------------

    async def fetch_asset(self, asset_id: str) -> BinaryPayload:
        url = f"{self.api_url}/file/{asset_id}"
        session = await self._http.get_async_session()
        headers = self._auth_headers(MEDIA_HEADERS)
        logger.debug(f"Fetching asset {asset_id}: GET {url}")
        try:
            async with session.get(url, headers=headers, proxy=self._http.proxy) as resp:
                if resp.status >= 400:
                    raise FetchError(
                        f"GET {url} returned HTTP {resp.status}",
                        asset_id=asset_id,
                        status=resp.status,
                    )
                data = await resp.read()
                mime = resp.content_type or "application/octet-stream"
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(f"GET {url} failed: {e}", asset_id=asset_id) from e

        logger.debug(f"Fetched {len(data)} bytes for {asset_id} ({mime})")
        return BinaryPayload(data, mime)

    # --------------------------------------------------------
    # Upload
    # --------------------------------------------------------

    async def upload_file(
        self,
        payload: BinaryPayload,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        file_name: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> UploadResult:
        form = aiohttp.FormData()
        form.add_field(
            "file",
            payload.data,
            filename=file_name or "upload.bin",
            content_type=payload.mime_type,
        )
        for key, value in (metadata or {}).items():
            if value is None:
                continue
            if isinstance(value, (dict, list)):
                value = json.dumps(value)
            form.add_field(key, str(value))
        if session_id:
            form.add_field("sessionId", session_id)

        session = await self._http.get_async_session()
        headers = self._auth_headers()
        logger.info(f"Uploading {file_name or '<unnamed>'} ({payload.size} bytes) to {self.upload_url}")
        try:
            async with session.post(self.upload_url, data=form, headers=headers, proxy=self._http.proxy) as resp:
                body = await self._read_json(resp)
                if resp.status >= 400:
                    raise UploadError.from_status(resp.status, self._error_message(body))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Upload of {file_name} could not reach the server: {e}")
            raise UploadError.from_status(None) from e

        result = UploadResult.from_response(body, file_name=file_name)
        logger.debug(f"Upload of {file_name} stored as {result.file_ids}")
        return result

    # --------------------------------------------------------
    # Upload log
    # --------------------------------------------------------

    async def stream_upload_log(self, session_id: str) -> AsyncIterator[str]:
        """
        Yield server log lines for a session as they appear.

        Runs until cancelled. Transient errors are logged and polling continues.
        """
        url = f"{self.api_url}/file/upload-logs/{session_id}"
        seen = 0
        while True:
            lines = await self._poll_log(url)
            if lines is not None:
                if len(lines) < seen:
                    # server rotated the log
                    seen = 0
                for line in lines[seen:]:
                    yield str(line)
                seen = len(lines)
            await asyncio.sleep(self._log_poll_interval)

    async def _poll_log(self, url: str) -> Optional[list]:
        session = await self._http.get_async_session()
        try:
            async with session.get(url, headers=self._auth_headers(), proxy=self._http.proxy) as resp:
                if resp.status >= 400:
                    logger.debug(f"Upload log poll returned HTTP {resp.status}")
                    return None
                body = await self._read_json(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Upload log poll failed: {e}")
            return None
        if isinstance(body, dict):
            body = body.get("logs") or body.get("lines")
        return body if isinstance(body, list) else None

    # --------------------------------------------------------
    # Helpers
    # --------------------------------------------------------

    def _auth_headers(self, base: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = dict(base or {})
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @staticmethod
    async def _read_json(resp: aiohttp.ClientResponse) -> Any:
        raw = await resp.read()
        text = raw.decode(resp.charset or "utf-8", errors="replace")
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    @staticmethod
    def _error_message(body: Any) -> Optional[str]:
        if isinstance(body, dict):
            message = body.get("message") or body.get("error")
            if isinstance(message, list):
                message = "; ".join(str(m) for m in message)
            return str(message) if message else None
        return None

