"""
Command line entry point for the assetflow media pipeline
"""
import argparse
import asyncio
import dataclasses
import logging
import mimetypes
import sys
import uuid
from pathlib import Path
from typing import List, Optional

from assetflow.core.context import CacheConfig, CoreContext
from assetflow.core.dto import ProgressEvent, UploadItem
from assetflow.core.errors import PipelineError
from assetflow.core.settings import PipelineConfig, SettingsStore
from assetflow.media.compressor import AdaptiveCompressor
from assetflow.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="assetflow", description="Compress and upload media assets")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    compress = sub.add_parser("compress", help="Compress one image to a byte budget")
    compress.add_argument("src", type=Path)
    compress.add_argument("dst", type=Path)
    compress.add_argument("--target-kb", type=int, default=300, help="Target size in KB (default 300)")

    upload = sub.add_parser("upload", help="Compress and upload files in batches")
    upload.add_argument("files", nargs="+", type=Path)
    upload.add_argument("--api-url", help="API base URL (defaults to the stored setting)")
    upload.add_argument("--upload-url", help="Upload endpoint (defaults to {api-url}/file/upload)")
    upload.add_argument("--no-compress", action="store_true", help="Upload original bytes")
    upload.add_argument("--token", help="Bearer token (defaults to the stored API token)")
    upload.add_argument("--session-id", help="Upload log session to narrate (random when omitted)")
    return parser


# ------------------------------------------------------------
# Commands
# ------------------------------------------------------------

def run_compress(src: Path, dst: Path, target_kb: int) -> int:
    try:
        data = src.read_bytes()
    except OSError as e:
        print(f"Cannot read {src}: {e}", file=sys.stderr)
        return 1

    mime_type, _ = mimetypes.guess_type(src.name)
    try:
        result = AdaptiveCompressor().search(data, target_kb * 1024, mime_type)
    except PipelineError as e:
        print(f"Compression failed: {e}", file=sys.stderr)
        return 1

    dst.parent.mkdir(parents=True, exist_ok=True)
    dst.write_bytes(result.payload.data)
    print(
        f"{src.name}: {len(data)} -> {result.payload.size} bytes "
        f"(q={result.quality:.2f}, {result.attempts} attempt(s), "
        f"{'within' if result.converged else 'outside'} tolerance)"
    )
    return 0


def _read_items(files: List[Path]) -> List[UploadItem]:
    items = []
    for path in files:
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.error(f"Skipping unreadable file {path}: {e}")
            continue
        mime_type, _ = mimetypes.guess_type(path.name)
        items.append(UploadItem(file_name=path.name, data=data, mime_type=mime_type))
    return items


def _print_progress(event: ProgressEvent) -> None:
    print(f"[{event.phase}] {event.current} active / {event.total} file(s)", file=sys.stderr)


async def run_upload(
    files: List[Path],
    *,
    api_url: Optional[str],
    upload_url: Optional[str],
    compress: bool,
    token: Optional[str],
    session_id: Optional[str],
    settings: SettingsStore,
) -> int:
    items = _read_items(files)
    if len(items) != len(files):
        print(f"{len(files) - len(items)} file(s) could not be read", file=sys.stderr)
    if not items:
        return 1

    config = PipelineConfig.from_settings(settings)
    overrides = {}
    if api_url:
        overrides["api_url"] = api_url
    if upload_url:
        overrides["upload_url"] = upload_url
    if overrides:
        config = dataclasses.replace(config, **overrides)

    token_provider = (lambda: token) if token else None
    async with CoreContext(config, settings=settings, token_provider=token_provider) as core:
        report = await core.uploads.submit(
            items,
            compress=compress,
            progress_callback=_print_progress,
            session_id=session_id or uuid.uuid4().hex,
            log_callback=lambda line: print(f"[server] {line}", file=sys.stderr),
        )

    print(report.summary())
    all_ok = report.failed_count == 0 and len(items) == len(files) and report.success_count > 0
    return 0 if all_ok else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point"""
    args = build_parser().parse_args(argv)

    paths = CacheConfig()
    settings = SettingsStore(paths.settings_db).connect()
    setup_logging(settings, paths.logs, root_level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        if args.command == "compress":
            return run_compress(args.src, args.dst, args.target_kb)
        return asyncio.run(
            run_upload(
                args.files,
                api_url=args.api_url,
                upload_url=args.upload_url,
                compress=not args.no_compress,
                token=args.token,
                session_id=args.session_id,
                settings=settings,
            )
        )
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    finally:
        settings.close()


if __name__ == "__main__":
    sys.exit(main())
