# batchcrypt/cli/handlers.py
# -*- coding: utf-8 -*-
"""Command handlers for the batchcrypt CLI."""

import fnmatch
import logging
import os
import signal
import sys
import threading

from batchcrypt.cli.password_utils import (
    PromptPasswordSource,
    FilePasswordSource,
    StdinPasswordSource,
    EnvPasswordSource,
    password_warnings
)
from batchcrypt.core.batch import (
    BatchOptions, BatchOrchestrator, BatchResult, CancellationToken, FileTaskResult, OP_ENCRYPT, OP_DECRYPT
)
from batchcrypt.utils.exceptions import (
    ArgumentError, ConflictUnresolvedError, CryptoBatchError, DecryptionError,
    FileAccessError, OperationCancelledError, PasswordSourceError
)
from batchcrypt.utils.constants import (
    ENCRYPTED_EXTENSION, EXIT_SUCCESS, EXIT_GENERIC_ERROR, EXIT_FILE_ERROR, EXIT_AUTH_ERROR,
    EXIT_ARG_ERROR, EXIT_CONFLICT_ERROR, EXIT_INTERRUPT
)

logger = logging.getLogger(__name__)

# Most specific first; subclasses must precede CryptoBatchError
EXIT_CODES = (
    (DecryptionError, EXIT_AUTH_ERROR),
    (PasswordSourceError, EXIT_AUTH_ERROR),
    (FileAccessError, EXIT_FILE_ERROR),
    (ArgumentError, EXIT_ARG_ERROR),
    (ConflictUnresolvedError, EXIT_CONFLICT_ERROR),
    (OperationCancelledError, EXIT_INTERRUPT),
    (CryptoBatchError, EXIT_GENERIC_ERROR),
)
_EXIT_BY_NAME = {cls.__name__: code for cls, code in EXIT_CODES}


def exit_code_for(error: BaseException) -> int:
    for cls, code in EXIT_CODES:
        if isinstance(error, cls):
            return code
    return EXIT_GENERIC_ERROR


def batch_exit_code(batch: BatchResult) -> int:
    """Non-zero whenever any file failed, chosen from the first failure."""
    for result in batch.results:
        if not result.success:
            return _EXIT_BY_NAME.get(result.error_type, EXIT_GENERIC_ERROR)
    return EXIT_SUCCESS


def collect_input_files(args, operation: str) -> list[str]:
    """
    Resolves --files / --directory into a list of paths.

    Raises:
        ArgumentError: If nothing was selected or a directory is missing.
    """
    if args.files:
        return list(args.files)
    if not args.directory:
        raise ArgumentError("No files specified. Use --files or --directory.")
    if not os.path.isdir(args.directory):
        raise ArgumentError(f"Directory not found: {args.directory}")

    pattern = args.filter or ('*' + ENCRYPTED_EXTENSION if operation == OP_DECRYPT else '*')
    found = []
    for root, dirs, names in os.walk(args.directory):
        dirs.sort()
        for name in sorted(names):
            if fnmatch.fnmatch(name, pattern):
                found.append(os.path.join(root, name))
        if not args.recursive:
            break
    logger.info(f"Found {len(found)} file(s) in {args.directory} matching '{pattern}'.")
    if not found:
        raise ArgumentError(f"No files matching '{pattern}' in {args.directory}.")
    return found


def build_password_source(args, operation: str):
    if args.password_interactive:
        return PromptPasswordSource(confirm=operation == OP_ENCRYPT)
    if args.password_file:
        return FilePasswordSource(args.password_file)
    if args.password_stdin:
        return StdinPasswordSource()
    if args.password_env:
        return EnvPasswordSource(args.password_env)
    raise ArgumentError("Internal logic error: No password source selected.")


def build_options(args) -> BatchOptions:
    return BatchOptions(
        concurrency=args.parallel,
        force_stream=args.stream,
        chunk_size=args.chunk_size,
        stream_threshold=args.stream_threshold,
        conflict_strategy=args.conflict,
        iterations=args.iterations,
        kdf=args.kdf,
        output_dir=args.output,
    )


class LoggingProgress:
    """ProgressSink that logs every 10% step per file at DEBUG level."""

    def __init__(self):
        self._last: dict[str, int] = {}
        self._lock = threading.Lock()

    def __call__(self, file: str, bytes_done: int, bytes_total: int) -> None:
        percentage = 100 if bytes_total <= 0 else int(bytes_done * 100 / bytes_total)
        step = percentage - percentage % 10
        with self._lock:
            if step <= self._last.get(file, -1):
                return
            self._last[file] = step
        logger.debug(f"{file}: {percentage}% ({bytes_done}/{bytes_total} bytes)")


def _report_file(result: FileTaskResult, completed: int, total: int) -> None:
    if result.skipped:
        print(f"[{completed}/{total}] skipped {result.input_path} ({result.reason})")
    elif result.success:
        mode = "streamed" if result.streamed else "whole-file"
        print(f"[{completed}/{total}] {result.input_path} -> {result.output_path} ({mode}, {result.result_size} bytes)")
    else:
        print(f"Error: {result.input_path}: {result.error}", file=sys.stderr)


def _print_summary(batch: BatchResult) -> None:
    print(
        f"\n{batch.operation.capitalize()} summary: {batch.successful}/{batch.total} succeeded, "
        f"{batch.failed} failed, {batch.skipped} skipped, {batch.streamed_count} streamed, "
        f"{batch.total_original_size} -> {batch.total_result_size} bytes in {batch.processing_time_ms:.0f} ms"
    )
    if batch.cancelled:
        print("Batch was cancelled; remaining files were not processed.", file=sys.stderr)
    for result in batch.results:
        if not result.success:
            print(f"  FAILED {result.input_path}: [{result.error_type}] {result.error}", file=sys.stderr)


def _print_preview(orchestrator: BatchOrchestrator, files: list[str], operation: str) -> int:
    previews = orchestrator.preview(files, operation)
    errors = 0
    print(f"Dry run: {operation} {len(previews)} file(s)")
    for preview in previews:
        if preview.error:
            errors += 1
            print(f"  ✗ {preview.input_path}: {preview.error}")
            continue
        mode = "streamed" if preview.streamed else "whole-file"
        print(f"  ✓ {preview.input_path} -> {preview.output_path} ({preview.size} bytes, {mode})")
        for warning in preview.warnings:
            print(f"      ! {warning}")
    return EXIT_ARG_ERROR if errors else EXIT_SUCCESS


def _run(args, operation: str) -> int:
    """Shared body of the encrypt and decrypt commands. Maps exceptions to exit codes."""
    logger.info(f"Processing '{operation}' command...")
    try:
        files = collect_input_files(args, operation)
        orchestrator = BatchOrchestrator(
            build_options(args),
            password_source=build_password_source(args, operation),
            progress=LoggingProgress(),
            on_file_complete=_report_file,
        )

        if args.dry_run:
            return _print_preview(orchestrator, files, operation)

        password = orchestrator.password_source.get("Enter password: ")
        if operation == OP_ENCRYPT:
            for warning in password_warnings(password):
                logger.warning(warning)

        cancel = CancellationToken()
        previous_handler = signal.getsignal(signal.SIGINT)

        def _on_sigint(signum, frame):
            logger.warning("Interrupt received; cancelling remaining files...")
            cancel.cancel()

        signal.signal(signal.SIGINT, _on_sigint)
        try:
            if operation == OP_ENCRYPT:
                batch = orchestrator.run_encrypt(files, password, cancel)
            else:
                batch = orchestrator.run_decrypt(files, password, cancel)
        finally:
            signal.signal(signal.SIGINT, previous_handler)

        _print_summary(batch)
        return batch_exit_code(batch)

    except CryptoBatchError as e:
        logger.error(f"{operation.capitalize()} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return exit_code_for(e)
    except Exception as e: # Catch any other unexpected errors
        logger.critical(f"Unexpected error during {operation} handling: {e}", exc_info=True)
        print(f"Error: An unexpected error occurred during {operation}. Check logs.", file=sys.stderr)
        return EXIT_GENERIC_ERROR


def handle_encrypt(args) -> int:
    """Handles the 'encrypt' command."""
    return _run(args, OP_ENCRYPT)


def handle_decrypt(args) -> int:
    """Handles the 'decrypt' command."""
    return _run(args, OP_DECRYPT)
