"""Artifact fetch module.

This module handles:
- Source locator classification (http(s) URL, file URL, local path)
- Streaming download with checksum verification
- Local copies with checksum verification
- Extraction of a single payload member from a tar archive (e.g. an .apk)
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from bootimage.errors import FetchError, IntegrityError

logger = logging.getLogger(__name__)

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 600

# Chunk size for downloads and hashing (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

REMOTE_SCHEMES = ("http", "https")


@dataclass
class DownloadResult:
    """Result of fetching a blob."""

    path: Path
    checksum: str
    size_bytes: int


def is_remote(source: str) -> bool:
    """Return True if source is an http(s) URL."""
    return urlparse(source).scheme in REMOTE_SCHEMES


def local_source_path(source: str) -> Path:
    """Convert a file:// URL or plain path to a Path.

    Args:
        source: Source locator that is not remote.

    Returns:
        Local filesystem path.

    Raises:
        FetchError: If the locator uses an unsupported scheme.
    """
    parsed = urlparse(source)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme and len(parsed.scheme) > 1:
        raise FetchError(
            f"Unsupported source scheme '{parsed.scheme}': {source}",
            path=source,
            code="unsupported_scheme",
        )
    return Path(source)


def source_filename(source: str) -> str:
    """Return the basename of a source locator."""
    if is_remote(source):
        name = unquote(urlparse(source).path).rstrip("/").rsplit("/", 1)[-1]
    else:
        name = local_source_path(source).name
    if not name:
        raise FetchError(
            f"Cannot derive a file name from {source}",
            path=source,
            code="no_filename",
        )
    return name


def compute_file_sha256(file_path: Path, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    """Compute SHA256 checksum of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks to read.

    Returns:
        SHA256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def _verify_checksum(
    dest_path: Path, source: str, expected: str | None, computed: str
) -> None:
    if expected and computed != expected.lower():
        # Remove the corrupted file
        dest_path.unlink(missing_ok=True)
        raise IntegrityError(
            f"Checksum mismatch for {source}: expected {expected}, got {computed}",
            path=source,
            code="checksum_mismatch",
        )


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    expected_checksum: str | None = None,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download a file with optional checksum verification.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        expected_checksum: Expected SHA256 checksum (optional).
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        DownloadResult with path, checksum, and size.

    Raises:
        FetchError: If download fails.
        IntegrityError: If checksum verification fails.
    """
    logger.info("Downloading %s to %s", url, dest_path)

    try:
        with client.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            response.raise_for_status()

            total_bytes = 0
            sha256 = hashlib.sha256()

            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    sha256.update(chunk)
                    total_bytes += len(chunk)

    except httpx.HTTPStatusError as e:
        dest_path.unlink(missing_ok=True)
        raise FetchError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            path=url,
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        dest_path.unlink(missing_ok=True)
        raise FetchError(f"Timeout downloading {url}", path=url, code="timeout") from e
    except httpx.RequestError as e:
        dest_path.unlink(missing_ok=True)
        raise FetchError(
            f"Network error downloading {url}: {e}", path=url, code="network_error"
        ) from e
    except OSError as e:
        dest_path.unlink(missing_ok=True)
        raise FetchError(
            f"Failed to write {dest_path}: {e}", path=str(dest_path), code="os_error"
        ) from e

    computed_checksum = sha256.hexdigest()
    _verify_checksum(dest_path, url, expected_checksum, computed_checksum)

    logger.info(
        "Downloaded %s (%d bytes, checksum: %s)",
        dest_path.name,
        total_bytes,
        computed_checksum[:16] + "...",
    )
    return DownloadResult(
        path=dest_path, checksum=computed_checksum, size_bytes=total_bytes
    )


def copy_file(
    source: str,
    dest_path: Path,
    expected_checksum: str | None = None,
) -> DownloadResult:
    """Copy a local source into the cache with optional checksum verification.

    Args:
        source: file:// URL or local path.
        dest_path: Destination path.
        expected_checksum: Expected SHA256 checksum (optional).

    Returns:
        DownloadResult with path, checksum, and size.

    Raises:
        FetchError: If the source is missing or cannot be copied.
        IntegrityError: If checksum verification fails.
    """
    src = local_source_path(source)
    if not src.is_file():
        raise FetchError(f"Source file not found: {src}", path=source, code="not_found")

    logger.info("Copying %s to %s", src, dest_path)
    try:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dest_path)
    except OSError as e:
        dest_path.unlink(missing_ok=True)
        raise FetchError(
            f"Failed to copy {src}: {e}", path=source, code="os_error"
        ) from e

    checksum = compute_file_sha256(dest_path)
    _verify_checksum(dest_path, source, expected_checksum, checksum)
    return DownloadResult(
        path=dest_path, checksum=checksum, size_bytes=dest_path.stat().st_size
    )


def extract_member(archive_path: Path, member: str, dest_path: Path) -> Path:
    """Extract one regular file from a tar archive.

    Handles plain, gzip, bzip2 and xz tar streams, including gzip streams
    made of concatenated members such as Alpine packages.

    Args:
        archive_path: Path to the archive file.
        member: Member name inside the archive (leading './' or '/' ignored).
        dest_path: Where to write the member's content.

    Returns:
        dest_path.

    Raises:
        IntegrityError: If the archive is unreadable or the member is missing
            or not a regular file.
    """
    wanted = member.lstrip("/")
    if wanted.startswith("./"):
        wanted = wanted[2:]

    logger.info("Extracting %s from %s", wanted, archive_path.name)

    try:
        with tarfile.open(archive_path, "r:*", ignore_zeros=True) as tar:
            found: tarfile.TarInfo | None = None
            for info in tar:
                name = info.name[2:] if info.name.startswith("./") else info.name
                if name == wanted:
                    found = info
                    break

            if found is None:
                raise IntegrityError(
                    f"Member {wanted} not found in {archive_path.name}",
                    path=str(archive_path),
                    code="member_not_found",
                )
            if not found.isfile():
                raise IntegrityError(
                    f"Member {wanted} in {archive_path.name} is not a regular file",
                    path=str(archive_path),
                    code="member_not_file",
                )

            stream = tar.extractfile(found)
            if stream is None:
                raise IntegrityError(
                    f"Cannot read member {wanted} from {archive_path.name}",
                    path=str(archive_path),
                    code="member_unreadable",
                )
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with stream, dest_path.open("wb") as out:
                shutil.copyfileobj(stream, out, DOWNLOAD_CHUNK_SIZE)

    except (tarfile.TarError, EOFError) as e:
        dest_path.unlink(missing_ok=True)
        raise IntegrityError(
            f"Failed to read archive {archive_path}: {e}",
            path=str(archive_path),
            code="tar_error",
        ) from e
    except OSError as e:
        dest_path.unlink(missing_ok=True)
        raise IntegrityError(
            f"OS error extracting {archive_path}: {e}",
            path=str(archive_path),
            code="os_error",
        ) from e

    return dest_path


__all__ = [
    "DOWNLOAD_CHUNK_SIZE",
    "DOWNLOAD_TIMEOUT",
    "DownloadResult",
    "compute_file_sha256",
    "copy_file",
    "download_file",
    "extract_member",
    "is_remote",
    "local_source_path",
    "source_filename",
]
