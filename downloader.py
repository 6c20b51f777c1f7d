"""
downloader.py
=============
Download an archive over HTTP and extract it into a directory.

Transport failures raise (``aiohttp.ClientError``, ``asyncio.TimeoutError``,
``DownloadError`` for HTTP status codes). Extraction failures are only
logged: the caller validates the resulting directory afterwards.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tarfile
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import aiohttp

from progress import NullProgress

logger = logging.getLogger(__name__)

# Bounded by the HTTP client; the engine itself adds no timeout
DOWNLOAD_TIMEOUT = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=120)


class DownloadError(Exception):
    """Non-200 HTTP response while downloading."""


@dataclass
class DownloadRequest:
    """One download-and-extract job."""

    url: str
    dest_file: Path
    dest_dir: Path
    target_message: str
    strip_components: int = 1


# ──────────────────────────────────────────────
#  Extraction
# ──────────────────────────────────────────────

def _strip(name: str, count: int) -> str:
    parts = [p for p in name.replace("\\", "/").split("/") if p and p != "."]
    return "/".join(parts[count:])


def extract_archive(archive_path: Path, dest_dir: Path, strip_components: int = 0) -> None:
    """Extract a .tar.gz or .zip archive into dest_dir, dropping leading path components."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    name = archive_path.name.lower()

    if name.endswith(".tar.gz") or name.endswith(".tgz"):
        with tarfile.open(archive_path, "r:gz") as tar:
            members = []
            for member in tar.getmembers():
                member.name = _strip(member.name, strip_components)
                if not member.name:
                    continue
                if member.islnk():
                    member.linkname = _strip(member.linkname, strip_components)
                members.append(member)
            tar.extractall(dest_dir, members=members, filter="data")
    elif name.endswith(".zip"):
        with zipfile.ZipFile(archive_path, "r") as zf:
            root = dest_dir.resolve()
            for info in zf.infolist():
                target_name = _strip(info.filename, strip_components)
                if not target_name:
                    continue
                target = (dest_dir / target_name).resolve()
                if root not in target.parents:
                    raise ValueError(f"Unsafe path in archive: {info.filename}")
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                mode = (info.external_attr >> 16) & 0o777
                if mode:
                    os.chmod(target, mode)
    else:
        raise ValueError(f"Unsupported archive format: {archive_path.name}")


# ──────────────────────────────────────────────
#  Downloader
# ──────────────────────────────────────────────

class Downloader:
    """
    Streams archives to disk and extracts them.

    Args:
        session:  aiohttp session for HTTP requests
        progress: Progress sink (``report`` / ``error``)
    """

    def __init__(self, session: aiohttp.ClientSession, progress: Optional[NullProgress] = None) -> None:
        self.session = session
        self.progress = progress or NullProgress()

    async def execute(
        self,
        request: DownloadRequest,
        on_extract: Optional[Callable[[], None]] = None,
    ) -> DownloadRequest:
        """Download then extract ``request``; extraction errors are not raised."""
        await self.download(request)
        if on_extract:
            on_extract()
        await asyncio.to_thread(self.extract, request)
        return request

    async def download(self, request: DownloadRequest) -> None:
        logger.info("Downloading... %s %s", request.target_message, request.url)
        message = f"Downloading... {request.target_message}"
        self.progress.report(message)
        request.dest_file.parent.mkdir(parents=True, exist_ok=True)

        downloaded = 0
        last_percent = -1
        start_time = time.time()
        async with self.session.get(request.url, timeout=DOWNLOAD_TIMEOUT) as resp:
            if resp.status != 200:
                raise DownloadError(f"HTTP {resp.status} for {request.url}")
            total_size = resp.content_length or 0
            with open(request.dest_file, "wb") as fh:
                async for chunk in resp.content.iter_chunked(64 * 1024):
                    fh.write(chunk)
                    downloaded += len(chunk)
                    if total_size:
                        percent = downloaded * 100 // total_size
                        if percent // 10 != last_percent // 10:
                            last_percent = percent
                            self.progress.report(f"{message} ({percent}%)")

        elapsed = time.time() - start_time
        logger.info(
            "Download complete: %s (%.1f MB, %.1f MB/s)",
            request.dest_file.name,
            downloaded / (1024 * 1024),
            (downloaded / (1024 * 1024)) / max(elapsed, 0.1),
        )

    def extract(self, request: DownloadRequest) -> None:
        logger.info("Installing... %s %s", request.target_message, request.dest_dir)
        self.progress.report(f"Installing... {request.target_message}")
        shutil.rmtree(request.dest_dir, ignore_errors=True)
        try:
            extract_archive(request.dest_file, request.dest_dir, request.strip_components)
        except (tarfile.TarError, zipfile.BadZipFile, OSError, ValueError, TypeError) as exc:
            logger.info("Failed extract: %s", exc)  # Validated by the caller
        finally:
            request.dest_file.unlink(missing_ok=True)
