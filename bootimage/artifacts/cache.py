"""Artifact cache.

Artifacts are immutable external blobs (kernel image, utility binary,
shared libraries) identified by a logical name. An artifact already present
at its destination path is a cache hit and is never fetched again. Misses
are fetched into a temporary file next to the destination and moved into
place, so an interrupted fetch never leaves a partial file at the
destination.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

import httpx

from bootimage.artifacts.fetch import (
    DOWNLOAD_TIMEOUT,
    copy_file,
    download_file,
    extract_member,
    is_remote,
    local_source_path,
    source_filename,
)
from bootimage.builds.schema import ArtifactSpec, LibrarySpec
from bootimage.errors import FetchError

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755
TEMP_SUFFIX = ".part"


@dataclass(frozen=True)
class Artifact:
    """An external blob needed by a build.

    Attributes:
        name: Logical name (e.g. 'kernel', 'busybox', a library soname).
        source: URL or local path.
        destination: Local path of the cached file.
        executable: Whether to mark the file executable after fetch.
        sha256: Optional expected checksum of the fetched blob.
        extract_member: Tar member holding the real payload, if any.
    """

    name: str
    source: str
    destination: Path
    executable: bool = False
    sha256: str | None = None
    extract_member: str | None = None


@dataclass
class CacheEntry:
    """A file in the artifact cache."""

    name: str
    path: Path
    size_bytes: int


def artifact_from_spec(
    name: str,
    spec: ArtifactSpec,
    cache_dir: Path,
    executable: bool = False,
) -> Artifact:
    """Build an Artifact cached under <cache_dir>/<name>/<filename>.

    Args:
        name: Logical artifact name.
        spec: Artifact specification from the build config.
        cache_dir: Root of the artifact cache.
        executable: Whether the payload is an executable.

    Returns:
        Artifact instance.
    """
    if spec.filename:
        filename = spec.filename
    elif spec.extract_member:
        filename = spec.extract_member.rstrip("/").rsplit("/", 1)[-1]
    else:
        filename = source_filename(spec.source)
    return Artifact(
        name=name,
        source=spec.source,
        destination=cache_dir / name / filename,
        executable=executable,
        sha256=spec.sha256,
        extract_member=spec.extract_member,
    )


def artifact_from_library(spec: LibrarySpec, cache_dir: Path) -> Artifact:
    """Build an Artifact for a shared library.

    Local libraries resolve in place, remote ones are cached under
    <cache_dir>/lib/<soname>.
    """
    soname = spec.effective_soname
    if is_remote(spec.source):
        destination = cache_dir / "lib" / soname
    else:
        destination = local_source_path(spec.source)
    return Artifact(name=soname, source=spec.source, destination=destination)


class ArtifactCache:
    """Resolves artifacts to local paths, fetching only on a cache miss."""

    def __init__(
        self,
        cache_dir: Path,
        client: httpx.Client | None = None,
        offline: bool = False,
        timeout: float = DOWNLOAD_TIMEOUT,
        max_workers: int = 2,
    ) -> None:
        """Initialize ArtifactCache.

        Args:
            cache_dir: Root directory for cached artifacts.
            client: HTTPX client; one is created lazily if not given.
            offline: Refuse to fetch remote artifacts.
            timeout: Per-download timeout in seconds.
            max_workers: Maximum concurrent fetches in resolve_all().
        """
        self.cache_dir = cache_dir
        self.offline = offline
        self.timeout = timeout
        self.max_workers = max_workers
        self._client = client
        self._owns_client = client is None
        self.fetch_count = 0
        self._count_lock = threading.Lock()

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client()
        return self._client

    def close(self) -> None:
        """Close the HTTP client if this cache created it."""
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> ArtifactCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def is_cached(self, artifact: Artifact) -> bool:
        """Return True if the artifact's destination already holds a file."""
        return artifact.destination.is_file()

    def resolve(self, artifact: Artifact) -> Path:
        """Return a local path for an artifact, fetching it on a miss.

        Args:
            artifact: Artifact to resolve.

        Returns:
            Path to the artifact's destination.

        Raises:
            FetchError: If the source is unreachable or returns a bad status.
            IntegrityError: If the fetched blob is not in the expected shape.
        """
        if self.is_cached(artifact):
            logger.info("Artifact %s already present: %s", artifact.name, artifact.destination)
            return artifact.destination

        if is_remote(artifact.source):
            if self.offline:
                raise FetchError(
                    f"Artifact {artifact.name} is not cached and offline mode is set",
                    path=artifact.source,
                    code="offline",
                )
        elif local_source_path(artifact.source) == artifact.destination:
            raise FetchError(
                f"Artifact {artifact.name} not found: {artifact.destination}",
                path=artifact.source,
                code="not_found",
            )

        self.fetch(artifact)
        return artifact.destination

    def fetch(self, artifact: Artifact) -> Path:
        """Fetch an artifact to its destination unconditionally.

        Args:
            artifact: Artifact to fetch.

        Returns:
            Path to the artifact's destination.
        """
        dest = artifact.destination
        dest.parent.mkdir(parents=True, exist_ok=True)
        with self._count_lock:
            self.fetch_count += 1

        # Use a temp file for download, then move to final location
        fd, tmp_name = tempfile.mkstemp(
            dir=dest.parent, prefix=f".{dest.name}.", suffix=TEMP_SUFFIX
        )
        os.close(fd)
        tmp_path = Path(tmp_name)
        payload_path: Path | None = None

        try:
            if is_remote(artifact.source):
                download_file(
                    self.client,
                    artifact.source,
                    tmp_path,
                    expected_checksum=artifact.sha256,
                    timeout=self.timeout,
                )
            else:
                copy_file(artifact.source, tmp_path, expected_checksum=artifact.sha256)

            if artifact.extract_member:
                payload_path = tmp_path.with_name(tmp_path.name + ".payload")
                extract_member(tmp_path, artifact.extract_member, payload_path)
                tmp_path.unlink()
                tmp_path = payload_path

            if artifact.executable:
                tmp_path.chmod(EXECUTABLE_MODE)

            os.replace(tmp_path, dest)

        except Exception:
            # Clean up temp files on failure
            tmp_path.unlink(missing_ok=True)
            if payload_path is not None:
                payload_path.unlink(missing_ok=True)
            raise

        logger.info("Cached artifact %s at %s", artifact.name, dest)
        return dest

    def resolve_all(self, artifacts: Iterable[Artifact]) -> list[Path]:
        """Resolve independent artifacts, fetching misses concurrently.

        Args:
            artifacts: Artifacts to resolve.

        Returns:
            Local paths in the same order as artifacts.

        Raises:
            FetchError: If any artifact cannot be fetched.
            IntegrityError: If any artifact is not in the expected shape.
        """
        items = list(artifacts)
        if self.max_workers <= 1 or len(items) <= 1:
            return [self.resolve(a) for a in items]

        # Create the shared client before handing work to threads
        if any(is_remote(a.source) and not self.is_cached(a) for a in items):
            _ = self.client

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self.resolve, a) for a in items]
            return [future.result() for future in futures]


def list_cache(cache_dir: Path) -> list[CacheEntry]:
    """List cached artifact files.

    Args:
        cache_dir: Root cache directory.

    Returns:
        Entries sorted by path; leftover temp files are skipped.
    """
    entries: list[CacheEntry] = []
    if not cache_dir.exists():
        return entries
    for path in sorted(cache_dir.rglob("*")):
        if not path.is_file() or path.name.endswith(TEMP_SUFFIX):
            continue
        entries.append(
            CacheEntry(
                name=path.parent.relative_to(cache_dir).as_posix(),
                path=path,
                size_bytes=path.stat().st_size,
            )
        )
    return entries


def prune_cache(cache_dir: Path) -> bool:
    """Remove the artifact cache.

    Args:
        cache_dir: Root cache directory.

    Returns:
        True if removed, False if the directory didn't exist.
    """
    if not cache_dir.exists():
        return False

    logger.info("Pruning artifact cache at %s", cache_dir)
    shutil.rmtree(cache_dir)
    return True


__all__ = [
    "Artifact",
    "ArtifactCache",
    "CacheEntry",
    "artifact_from_library",
    "artifact_from_spec",
    "list_cache",
    "prune_cache",
]
