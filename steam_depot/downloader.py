"""
Depot Downloader
Manifest-driven download with per-chunk checksum validation, resume and
in-place repair of files already on disk
"""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from steam_depot import constants, utils
from steam_depot.cdn import ContentClient
from steam_depot.exceptions import (
    ChunkDownloadError,
    DiskWriteError,
    DownloadIncompleteError,
    FileIntegrityError,
    TransportError,
)
from steam_depot.models import (
    CDNSelection,
    DepotChunk,
    DepotFile,
    DepotManifest,
    DownloadMarker,
    DownloadProgress,
    DownloadResult,
    FileFailure,
)
from steam_depot.storage import MarkerStore


@dataclass
class DownloadJob:
    """State shared by every file of one depot download."""
    app_id: int
    depot_id: int
    selection: CDNSelection
    depot_key: bytes
    target_dir: Path
    force: bool
    result: DownloadResult
    lock: threading.Lock = field(default_factory=threading.Lock)
    files_done: int = 0
    bytes_done: int = 0


class DepotDownloader:
    """
    Materializes a depot manifest into a directory.

    Files already on disk with the right size are checked chunk by chunk:
    fully valid files are skipped, files with some invalid chunks have only
    those chunks fetched again. Everything else is downloaded to a
    ``.partial`` file that is renamed into place once validated.
    """

    def __init__(self, content_client: ContentClient,
                 sleep: Callable[[float], None] = time.sleep,
                 progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
                 max_workers: int = 1,
                 skip_patterns: Optional[List[str]] = None,
                 max_chunk_attempts: int = constants.CHUNK_MAX_ATTEMPTS,
                 chunk_backoff_seconds: float = constants.CHUNK_BACKOFF_SECONDS,
                 progress_every: int = constants.PROGRESS_EVERY_FILES):
        """
        Initialize the downloader.

        Args:
            content_client: Client fetching manifests and chunks from the CDN
            sleep: Sleep function used between chunk attempts (injectable for tests)
            progress_callback: Optional callback receiving DownloadProgress snapshots
            max_workers: Number of files processed in parallel
            skip_patterns: Regexes of manifest paths never downloaded
            max_chunk_attempts: Fetch attempts per chunk
            chunk_backoff_seconds: Attempt n waits chunk_backoff_seconds * n before the next one
            progress_every: Report progress every N processed files
        """
        self.logger = logging.getLogger("steam_depot.downloader")
        self.content_client = content_client
        self.progress_callback = progress_callback
        self.max_workers = max(1, max_workers)
        self.skip_patterns = utils.compile_patterns(
            constants.SKIP_PATTERNS if skip_patterns is None else skip_patterns)
        self.max_chunk_attempts = max_chunk_attempts
        self.chunk_backoff_seconds = chunk_backoff_seconds
        self.progress_every = progress_every
        self._sleep = sleep

    def download_depot(self, app_id: int, depot_id: int, manifest_id: int, selection: CDNSelection,
                       depot_key: bytes, target_dir, target_os: str, force: bool = False) -> DownloadResult:
        """
        Download a depot manifest into ``target_dir``.

        Args:
            app_id: Application the depot belongs to
            depot_id: Depot to download
            manifest_id: Manifest to materialize
            selection: CDN edge and codes from the CDN selector
            depot_key: Depot decryption key
            target_dir: Destination directory
            target_os: Recorded in the download marker
            force: Download every file even if it is already valid on disk

        Returns:
            DownloadResult with per-category counters

        Raises:
            DownloadIncompleteError: If any file could not be materialized
            DiskWriteError: If writing to disk failed
        """
        self.logger.info(f"Downloading manifest {manifest_id} for depot {depot_id}...")
        manifest = self.content_client.download_manifest(depot_id, manifest_id, selection, depot_key)
        self.logger.info(f"Manifest has {len(manifest.files)} entries "
                         f"({utils.format_size(manifest.total_size)})")
        return self.download_manifest(app_id, manifest, selection, depot_key, target_dir, target_os, force)

    def download_manifest(self, app_id: int, manifest: DepotManifest, selection: CDNSelection,
                          depot_key: bytes, target_dir, target_os: str, force: bool = False) -> DownloadResult:
        """Materialize an already decoded manifest. See download_depot."""
        target_dir = Path(target_dir)
        work, skipped, directories = self.partition(manifest)

        try:
            utils.ensure_directory(target_dir)
            for directory in directories:
                utils.ensure_directory(target_dir / utils.normalize_path(directory.path))
        except OSError as e:
            raise DiskWriteError(f"Failed to create directory: {e}") from e

        result = DownloadResult(
            total_files=len(work),
            total_bytes=sum(f.total_size for f in work),
            skipped_by_filter=len(skipped),
        )
        job = DownloadJob(app_id=app_id, depot_id=manifest.depot_id, selection=selection,
                          depot_key=depot_key, target_dir=target_dir, force=force, result=result)

        self.logger.info(f"{result.total_files} files to check ({utils.format_size(result.total_bytes)}), "
                         f"{len(skipped)} skipped by filter, {len(directories)} directories")

        if self.max_workers > 1:
            self._process_parallel(job, work)
        else:
            for depot_file in work:
                self._process_file(job, depot_file)

        result.bytes_processed = job.bytes_done
        if not work:
            self._report_progress(job)

        if result.failures:
            self.logger.error(f"{len(result.failures)} file(s) failed, not writing download marker")
            raise DownloadIncompleteError(result.failures)

        MarkerStore(target_dir).save(DownloadMarker.create(
            app_id=app_id,
            depot_id=manifest.depot_id,
            manifest_id=manifest.manifest_id,
            target_os=target_os,
            total_bytes=result.total_bytes,
            total_files=result.total_files,
        ))
        self.logger.info(f"Download complete: {result.downloaded_files} downloaded, "
                         f"{result.repaired_files} repaired, {result.skipped_existing} already valid, "
                         f"{result.chunks_downloaded} chunks fetched")
        return result

    def partition(self, manifest: DepotManifest) -> Tuple[List[DepotFile], List[DepotFile], List[DepotFile]]:
        """
        Split manifest entries into (work list, skip-listed files, directories).
        """
        work, skipped, directories = [], [], []
        for depot_file in manifest.files:
            if depot_file.is_directory:
                directories.append(depot_file)
            elif utils.should_skip_file(depot_file.path, self.skip_patterns):
                self.logger.debug(f"Skipping {depot_file.path}")
                skipped.append(depot_file)
            else:
                work.append(depot_file)
        return work, skipped, directories

    def _process_parallel(self, job: DownloadJob, work: List[DepotFile]) -> None:
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self._process_file, job, f): f for f in work}
            try:
                for future in as_completed(futures):
                    future.result()
            except DiskWriteError:
                for future in futures:
                    future.cancel()
                raise

    # ========== Per file ==========

    def _process_file(self, job: DownloadJob, depot_file: DepotFile) -> None:
        final_path = job.target_dir / utils.normalize_path(depot_file.path)
        try:
            self._materialize(job, depot_file, final_path)
        except (ChunkDownloadError, FileIntegrityError) as e:
            self.logger.error(f"Failed: {depot_file.path}: {e}")
            self._remove(final_path)
            with job.lock:
                job.result.failures.append(FileFailure(path=depot_file.path, reason=str(e)))
        finally:
            self._file_done(job, depot_file)

    def _materialize(self, job: DownloadJob, depot_file: DepotFile, final_path: Path) -> None:
        invalid = None if job.force else self._check_existing(final_path, depot_file)
        if invalid is not None:
            if not invalid:
                self.logger.debug(f"Already valid: {depot_file.path}")
                with job.lock:
                    job.result.skipped_existing += 1
                return

            self.logger.info(f"Repairing {len(invalid)}/{len(depot_file.chunks)} chunk(s) of {depot_file.path}")
            self._repair(job, depot_file, final_path, invalid)
            with job.lock:
                job.result.repaired_files += 1
            return

        self._download_full(job, depot_file, final_path)
        with job.lock:
            job.result.downloaded_files += 1

    def _check_existing(self, path: Path, depot_file: DepotFile) -> Optional[List[DepotChunk]]:
        """Return the invalid chunks of an existing file of the right size, or None."""
        try:
            if not path.is_file() or path.stat().st_size != depot_file.total_size:
                return None
            return self.find_invalid_chunks(path, depot_file)
        except OSError as e:
            raise DiskWriteError(f"Failed to read {path}: {e}") from e

    def find_invalid_chunks(self, path: Path, depot_file: DepotFile) -> List[DepotChunk]:
        """Return the chunks of ``depot_file`` whose bytes on disk do not match."""
        invalid = []
        with open(path, "rb") as handle:
            for chunk in depot_file.chunks:
                checksum, read = utils.checksum_file_range(handle, chunk.offset, chunk.uncompressed_length)
                if read != chunk.uncompressed_length or checksum != chunk.checksum:
                    invalid.append(chunk)
        return invalid

    def _repair(self, job: DownloadJob, depot_file: DepotFile, path: Path,
                invalid: List[DepotChunk]) -> None:
        try:
            with open(path, "r+b") as handle:
                for chunk in invalid:
                    data = self._fetch_chunk(job, chunk, depot_file.path)
                    handle.seek(chunk.offset)
                    handle.write(data)
            still_invalid = self.find_invalid_chunks(path, depot_file)
        except OSError as e:
            raise DiskWriteError(f"Failed to write {path}: {e}") from e

        if still_invalid:
            raise FileIntegrityError(f"{len(still_invalid)} chunk(s) invalid after repair")

    def _download_full(self, job: DownloadJob, depot_file: DepotFile, final_path: Path) -> None:
        partial_path = final_path.with_name(final_path.name + constants.PARTIAL_SUFFIX)
        self.logger.debug(f"Downloading {depot_file.path} ({utils.format_size(depot_file.total_size)})")
        try:
            utils.ensure_directory(final_path.parent)
            with open(partial_path, "wb") as handle:
                handle.truncate(depot_file.total_size)
                for chunk in depot_file.chunks:
                    data = self._fetch_chunk(job, chunk, depot_file.path)
                    handle.seek(chunk.offset)
                    handle.write(data)

            invalid = self.find_invalid_chunks(partial_path, depot_file)
            if invalid:
                raise FileIntegrityError(f"{len(invalid)} chunk(s) invalid after download")
            os.replace(partial_path, final_path)
        except OSError as e:
            self._remove(partial_path)
            raise DiskWriteError(f"Failed to write {final_path}: {e}") from e
        except (ChunkDownloadError, FileIntegrityError):
            self._remove(partial_path)
            raise

    def _fetch_chunk(self, job: DownloadJob, chunk: DepotChunk, path: str) -> bytes:
        """
        Fetch one chunk, retrying until its length and checksum match.

        Raises:
            ChunkDownloadError: If every attempt failed
        """
        reason = ""
        for attempt in range(1, self.max_chunk_attempts + 1):
            try:
                data = self.content_client.download_chunk(job.depot_id, chunk, job.selection, job.depot_key)
            except (TransportError, ChunkDownloadError) as e:
                reason = str(e)
            else:
                if len(data) != chunk.uncompressed_length:
                    reason = f"size mismatch: expected {chunk.uncompressed_length}, got {len(data)}"
                elif utils.rolling_checksum(data) != chunk.checksum:
                    reason = "checksum mismatch"
                else:
                    with job.lock:
                        job.result.chunks_downloaded += 1
                    return data

            self.logger.warning(f"Chunk {chunk.chunk_id} of {path} failed "
                                f"(attempt {attempt}/{self.max_chunk_attempts}): {reason}")
            if attempt < self.max_chunk_attempts:
                self._sleep(self.chunk_backoff_seconds * attempt)

        raise ChunkDownloadError(f"Chunk {chunk.chunk_id} failed after {self.max_chunk_attempts} attempts: {reason}")

    def _remove(self, path: Path) -> None:
        try:
            if path.is_file():
                path.unlink()
        except OSError as e:
            self.logger.warning(f"Could not remove {path}: {e}")

    # ========== Progress ==========

    def _file_done(self, job: DownloadJob, depot_file: DepotFile) -> None:
        with job.lock:
            job.files_done += 1
            job.bytes_done += depot_file.total_size
            if job.files_done % self.progress_every == 0 or job.files_done == job.result.total_files:
                self._report_progress(job)

    def _report_progress(self, job: DownloadJob) -> None:
        progress = DownloadProgress(
            files_done=job.files_done,
            files_total=job.result.total_files,
            bytes_done=job.bytes_done,
            bytes_total=job.result.total_bytes,
        )
        self.logger.info(f"Progress: {progress.files_done}/{progress.files_total} files "
                         f"({progress.percent:.1f}%, {utils.format_size(progress.bytes_done)})")
        if self.progress_callback:
            self.progress_callback(progress)
