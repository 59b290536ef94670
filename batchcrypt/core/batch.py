# batchcrypt/core/batch.py
# -*- coding: utf-8 -*-
"""
Batch orchestration: runs many files through the codecs with bounded
concurrency, resolves output conflicts, and aggregates per-file outcomes.

Scheduling uses asyncio tasks gated by a semaphore; the blocking work of each
file (key derivation, cipher, file I/O) runs in a thread pool of the same
size so the event loop is never blocked by the deliberately slow KDF.
"""

import asyncio
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .codec import CipherCodec, ProgressSink
from .conflict import ConflictResolver, ConflictRecord, Resolution, parse_conflict_strategy
from .container import estimate_container_size, looks_encrypted
from .crypto_logic import default_cost, validate_kdf_params
from .file_handler import ChunkedCipherCodec, read_container_header, validate_chunk_size
from .filesystem import LocalFilesystem
from .paths import encrypted_path, decrypted_path
from ..utils.constants import (
    CHUNK_SIZE, STREAMING_THRESHOLD, DEFAULT_CONCURRENCY, DEFAULT_CONFLICT_STRATEGY,
    KDF_PBKDF2, MAX_BUFFER_SIZE
)
from ..utils.exceptions import ArgumentError, CryptoBatchError, OperationCancelledError

logger = logging.getLogger(__name__)

OP_ENCRYPT = "encrypt"
OP_DECRYPT = "decrypt"


@dataclass
class BatchOptions:
    """Runtime configuration of a batch run."""
    concurrency: int = DEFAULT_CONCURRENCY
    force_stream: bool = False
    chunk_size: int = CHUNK_SIZE
    stream_threshold: int = STREAMING_THRESHOLD
    conflict_strategy: str = DEFAULT_CONFLICT_STRATEGY
    iterations: int | None = None
    kdf: str = KDF_PBKDF2
    output_dir: str | None = None
    max_buffer_size: int = MAX_BUFFER_SIZE

    def validate(self) -> None:
        """Raises ArgumentError for any invalid setting."""
        for name in ("concurrency", "stream_threshold"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ArgumentError(f"{name.replace('_', ' ').capitalize()} must be a positive integer, got {value!r}.")
        validate_chunk_size(self.chunk_size)
        if self.iterations is None:
            self.iterations = default_cost(self.kdf)
        validate_kdf_params(self.kdf, self.iterations)
        try:
            parse_conflict_strategy(self.conflict_strategy)
        except CryptoBatchError as e:
            raise ArgumentError(str(e)) from e


@dataclass
class FileJob:
    input_path: str
    output_path: str | None = None   # explicit destination file
    output_dir: str | None = None


@dataclass
class FileTaskResult:
    input_path: str
    output_path: str | None
    success: bool
    original_size: int = 0
    result_size: int = 0
    streamed: bool = False
    skipped: bool = False
    backup_path: str | None = None
    reason: str | None = None
    error: str | None = None
    error_type: str | None = None


@dataclass
class BatchResult:
    operation: str
    total: int
    successful: int
    failed: int
    skipped: int
    streamed_count: int
    total_original_size: int
    total_result_size: int
    processing_time_ms: float
    cancelled: bool = False
    results: list[FileTaskResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, operation: str, results: list[FileTaskResult], elapsed_ms: float, cancelled: bool) -> "BatchResult":
        succeeded = [r for r in results if r.success]
        return cls(
            operation=operation,
            total=len(results),
            successful=len(succeeded),
            failed=len(results) - len(succeeded),
            skipped=sum(1 for r in results if r.skipped),
            streamed_count=sum(1 for r in results if r.streamed),
            total_original_size=sum(r.original_size for r in succeeded),
            total_result_size=sum(r.result_size for r in succeeded),
            processing_time_ms=elapsed_ms,
            cancelled=cancelled,
            results=results,
        )

    @property
    def ok(self) -> bool:
        return self.failed == 0


@dataclass
class FilePreview:
    """What a batch run would do with one file (dry run)."""
    input_path: str
    output_path: str
    size: int = 0
    estimated_size: int = 0
    streamed: bool = False
    accessible: bool = True
    conflict_action: str | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None


class CancellationToken:
    """Thread-safe cancellation signal shared between the caller and a batch run."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class BatchProgress:
    """Aggregate byte counter for a batch; the only mutable state tasks share."""

    def __init__(self, total_bytes: int, sink: ProgressSink | None = None):
        self.total_bytes = total_bytes
        self.bytes_done = 0
        self._sink = sink
        self._per_file: dict[str, int] = {}
        self._lock = threading.Lock()

    def __call__(self, file: str, bytes_done: int, bytes_total: int) -> None:
        with self._lock:
            delta = bytes_done - self._per_file.get(file, 0)
            self._per_file[file] = bytes_done
            self.bytes_done += max(delta, 0)
        if self._sink:
            try:
                self._sink(file, bytes_done, bytes_total)
            except Exception:
                logger.warning(f"Progress sink failed for {file}; continuing.", exc_info=True)


class DestinationClaims:
    """Output paths already taken by files of one batch run."""

    def __init__(self):
        self._paths: set[str] = set()
        self._lock = threading.Lock()

    @staticmethod
    def _key(path: str) -> str:
        return os.path.normcase(os.path.abspath(path))

    def claim(self, path: str) -> bool:
        """Takes ``path`` for the caller. False if another file already holds it."""
        key = self._key(path)
        with self._lock:
            if key in self._paths:
                return False
            self._paths.add(key)
            return True


class BatchOrchestrator:
    """
    Encrypts or decrypts many files with at most ``options.concurrency`` in flight.

    Collaborators are injected: ``fs`` (FilesystemAccess), ``password_source``
    (anything with ``get(prompt) -> str``), ``progress`` (ProgressSink) and
    ``on_file_complete(result, completed, total)``.
    """

    def __init__(
        self,
        options: BatchOptions | None = None,
        fs=None,
        password_source=None,
        progress: ProgressSink | None = None,
        on_file_complete: Callable[[FileTaskResult, int, int], None] | None = None
    ):
        self.options = options or BatchOptions()
        self.options.validate()
        self.fs = fs or LocalFilesystem()
        self.password_source = password_source
        self.progress = progress
        self.on_file_complete = on_file_complete
        self.resolver = ConflictResolver(self.options.conflict_strategy, fs=self.fs)
        self.codec = CipherCodec(
            iterations=self.options.iterations, kdf=self.options.kdf,
            max_buffer_size=self.options.max_buffer_size, fs=self.fs
        )
        self.chunked = ChunkedCipherCodec(
            chunk_size=self.options.chunk_size, iterations=self.options.iterations,
            kdf=self.options.kdf, fs=self.fs
        )

    # --- Public API ---

    async def encrypt_files(self, jobs: Iterable, password: str | bytes | None = None, cancel=None) -> BatchResult:
        return await self._run(OP_ENCRYPT, jobs, password, cancel)

    async def decrypt_files(self, jobs: Iterable, password: str | bytes | None = None, cancel=None) -> BatchResult:
        return await self._run(OP_DECRYPT, jobs, password, cancel)

    def run_encrypt(self, jobs: Iterable, password: str | bytes | None = None, cancel=None) -> BatchResult:
        """Synchronous wrapper around ``encrypt_files``."""
        return asyncio.run(self.encrypt_files(jobs, password, cancel))

    def run_decrypt(self, jobs: Iterable, password: str | bytes | None = None, cancel=None) -> BatchResult:
        """Synchronous wrapper around ``decrypt_files``."""
        return asyncio.run(self.decrypt_files(jobs, password, cancel))

    def decrypt_any(self, input_path: str, output_path: str, password, progress=None, cancel=None) -> tuple[int, bool]:
        """
        Decrypts one container with the codec its header's mode flag names.

        Returns:
            (plaintext size, whether the container was streamed)
        """
        if read_container_header(self.fs, input_path).streaming:
            size = self.chunked.decrypt_file(input_path, output_path, password, progress=progress, cancel=cancel)
            return size, True
        return self.codec.decrypt_file(input_path, output_path, password, progress=progress), False

    def output_path_for(self, operation: str, job: FileJob) -> str:
        if job.output_path:
            return job.output_path
        output_dir = job.output_dir or self.options.output_dir
        if operation == OP_ENCRYPT:
            return encrypted_path(job.input_path, output_dir)
        return decrypted_path(job.input_path, output_dir)

    def preview(self, jobs: Iterable, operation: str = OP_ENCRYPT) -> list[FilePreview]:
        """Plans a batch without writing anything (dry run). Missing files are reported, not raised."""
        previews = []
        claims = DestinationClaims()
        for job in self._normalize_jobs(jobs):
            output_path = self.output_path_for(operation, job)
            preview = FilePreview(job.input_path, output_path)
            try:
                if not self.fs.is_file(job.input_path):
                    raise ArgumentError(f"Input file not found: {job.input_path}")
                preview.size = self.fs.size(job.input_path)
                with self.fs.open_read(job.input_path) as stream:
                    already_encrypted = looks_encrypted(stream)
                if operation == OP_ENCRYPT:
                    preview.streamed = self._should_stream(preview.size)
                    preview.estimated_size = estimate_container_size(preview.size, preview.streamed, self.options.chunk_size)
                    if already_encrypted:
                        preview.warnings.append("File appears to be already encrypted")
                else:
                    if not already_encrypted:
                        raise ArgumentError(f"Not an encrypted container: {job.input_path}")
                    preview.streamed = read_container_header(self.fs, job.input_path).streaming
                _, resolution = self._resolve_conflict(operation, job.input_path, output_path, claims)
                if resolution is not None:
                    preview.conflict_action = resolution.action
                    if resolution.new_destination:
                        preview.output_path = resolution.new_destination
                    preview.warnings.append(f"Output conflict: {resolution.reason}")
            except CryptoBatchError as e:
                preview.accessible = False
                preview.error = str(e)
            previews.append(preview)
        return previews

    # --- Internals ---

    def _normalize_jobs(self, jobs: Iterable) -> list[FileJob]:
        normalized = []
        for job in jobs:
            if isinstance(job, FileJob):
                normalized.append(job)
            elif isinstance(job, (str, os.PathLike)):
                normalized.append(FileJob(os.fspath(job)))
            elif isinstance(job, tuple) and len(job) == 2:
                source, target = os.fspath(job[0]), job[1]
                if target is None:
                    normalized.append(FileJob(source))
                else:
                    target = os.fspath(target)
                    if target.endswith(os.sep) or self.fs.is_dir(target):
                        normalized.append(FileJob(source, output_dir=target))
                    else:
                        normalized.append(FileJob(source, output_path=target))
            else:
                raise ArgumentError(f"Unsupported job specification: {job!r}")
        return normalized

    def _prepare(self, jobs: Iterable, password: str | bytes | None) -> tuple[list[FileJob], str | bytes]:
        normalized = self._normalize_jobs(jobs)
        if not normalized:
            raise ArgumentError("No input files were given.")
        missing = [job.input_path for job in normalized if not self.fs.is_file(job.input_path)]
        if missing:
            raise ArgumentError(f"Input file not found: {', '.join(missing)}")
        if password is None and self.password_source is not None:
            password = self.password_source.get("Password: ")
        if not password:
            raise ArgumentError("A non-empty password is required.")
        return normalized, password

    def _should_stream(self, size: int) -> bool:
        return (
            self.options.force_stream
            or size > self.options.stream_threshold
            or size > self.options.max_buffer_size
        )

    async def _run(self, operation: str, jobs: Iterable, password, cancel) -> BatchResult:
        jobs, password = self._prepare(jobs, password)
        concurrency = self.options.concurrency
        logger.info(f"Starting batch {operation} of {len(jobs)} file(s) with concurrency {concurrency}.")

        start = time.perf_counter()
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(concurrency)
        results: list[FileTaskResult | None] = [None] * len(jobs)
        total_bytes = sum(self.fs.size(job.input_path) for job in jobs if self.fs.is_file(job.input_path))
        progress = BatchProgress(total_bytes, self.progress)
        claims = DestinationClaims()
        completed = 0

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="batchcrypt") as executor:

            async def run_one(index: int, job: FileJob) -> None:
                nonlocal completed
                async with semaphore:
                    if cancel is not None and cancel.is_set():
                        result = self._cancelled_result(operation, job)
                    else:
                        result = await loop.run_in_executor(
                            executor, self._process_file, operation, job, password, progress, cancel, claims
                        )
                results[index] = result
                completed += 1
                if self.on_file_complete:
                    try:
                        self.on_file_complete(result, completed, len(jobs))
                    except Exception:
                        logger.warning(f"File completion callback failed for {job.input_path}; continuing.", exc_info=True)

            await asyncio.gather(*(run_one(i, job) for i, job in enumerate(jobs)))

        elapsed_ms = (time.perf_counter() - start) * 1000
        cancelled = cancel is not None and cancel.is_set()
        batch = BatchResult.from_results(operation, results, elapsed_ms, cancelled)
        logger.info(
            f"Batch {operation} finished: {batch.successful}/{batch.total} succeeded, "
            f"{batch.failed} failed, {batch.skipped} skipped, {batch.streamed_count} streamed "
            f"in {elapsed_ms:.0f} ms."
        )
        return batch

    def _cancelled_result(self, operation: str, job: FileJob) -> FileTaskResult:
        error = OperationCancelledError("Batch cancelled before this file was started.")
        return FileTaskResult(
            job.input_path, self.output_path_for(operation, job), success=False,
            error=str(error), error_type=type(error).__name__
        )

    def _resolve_conflict(
        self,
        operation: str,
        source: str,
        destination: str,
        claims: DestinationClaims
    ) -> tuple[ConflictRecord | None, Resolution | None]:
        """
        Checks ``destination`` against earlier files of the same batch, then
        against the filesystem. Rename candidates are claimed as they are chosen.
        """
        if not claims.claim(destination):
            resolution = self.resolver.resolve_batch_collision(destination, reserve=claims.claim)
            logger.info(f"Output collision within batch on {destination}: {resolution.reason}")
            return None, resolution
        record = self.resolver.detect_conflict(source, destination, operation)
        if record is None:
            return None, None
        resolution = self.resolver.resolve_conflict(record, reserve=claims.claim)
        logger.info(f"Output conflict on {destination}: {resolution.reason}")
        return record, resolution

    def _process_file(
        self,
        operation: str,
        job: FileJob,
        password,
        progress,
        cancel,
        claims: DestinationClaims | None = None
    ) -> FileTaskResult:
        """Runs one file end to end in a worker thread. Never raises."""
        claims = claims if claims is not None else DestinationClaims()
        input_path = job.input_path
        output_path = self.output_path_for(operation, job)
        original_size = 0
        streamed = False
        record = resolution = None
        backed_up = False

        try:
            original_size = self.fs.size(input_path)
            record, resolution = self._resolve_conflict(operation, input_path, output_path, claims)
            if resolution is not None:
                if resolution.action == "skip":
                    return FileTaskResult(
                        input_path, output_path, success=True, original_size=original_size,
                        skipped=True, reason=resolution.reason
                    )
                if resolution.action == "rename":
                    output_path = resolution.new_destination
                elif resolution.action == "backup":
                    self.resolver.apply_backup(record, resolution)
                    backed_up = True

            if operation == OP_ENCRYPT:
                streamed = self._should_stream(original_size)
                if streamed:
                    result_size = self.chunked.encrypt_file(
                        input_path, output_path, password, progress=progress, cancel=cancel)
                else:
                    result_size = self.codec.encrypt_file(input_path, output_path, password, progress=progress)
            else:
                result_size, streamed = self.decrypt_any(
                    input_path, output_path, password, progress=progress, cancel=cancel)

            return FileTaskResult(
                input_path, output_path, success=True, original_size=original_size,
                result_size=result_size, streamed=streamed,
                backup_path=resolution.backup_path if backed_up else None,
                reason=resolution.reason if resolution else None
            )

        except CryptoBatchError as e:
            logger.error(f"Failed to {operation} {input_path}: {e}")
            error, error_type = str(e), type(e).__name__
        except Exception as e: # Keep one file's unexpected failure from taking down the batch
            logger.critical(f"Unexpected error while processing {input_path}: {e}", exc_info=True)
            error, error_type = f"Unexpected error: {e}", CryptoBatchError.__name__

        if backed_up:
            try:
                self.resolver.restore_backup(record, resolution)
            except CryptoBatchError as restore_error:
                logger.error(f"Could not restore backup for {output_path}: {restore_error}")
        return FileTaskResult(
            input_path, output_path, success=False, original_size=original_size,
            streamed=streamed, error=error, error_type=error_type
        )
