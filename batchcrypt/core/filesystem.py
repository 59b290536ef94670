# batchcrypt/core/filesystem.py
# -*- coding: utf-8 -*-
"""
Filesystem capability consumed by the codecs, the conflict resolver and the
batch orchestrator. All OS-level failures surface as FileAccessError.
"""

import logging
import os
import tempfile
from contextlib import contextmanager
from typing import BinaryIO, Iterator

from ..utils.constants import PARTIAL_SUFFIX
from ..utils.exceptions import FileAccessError

logger = logging.getLogger(__name__)


# --- Context Manager for Stream Handling ---
@contextmanager
def stream_handler(filepath: str, mode: str) -> Iterator[BinaryIO]:
    """
    Context manager to safely open a file in binary mode.
    Yields the opened stream and wraps OS errors raised while opening it
    in FileAccessError. Errors raised by the caller's block pass through.
    """
    logger.debug(f"Attempting to access stream: {filepath} in mode '{mode}'.")
    try:
        if 'r' in mode and not os.path.exists(filepath):
            # Raise standard FileNotFoundError which inherits from OSError
            raise FileNotFoundError(f"Input file not found: {filepath}")
        file_stream = open(filepath, mode)
    except OSError as e:
        msg = f"File access error for '{filepath}': {e}"
        logger.error(msg)
        raise FileAccessError(msg) from e

    with file_stream:
        logger.debug(f"Opened file: {filepath} successfully.")
        yield file_stream
    logger.debug(f"Closed file: {filepath}")


class LocalFilesystem:
    """FilesystemAccess implementation backed by the local OS."""

    def open_read(self, path: str):
        return stream_handler(path, 'rb')

    def open_write(self, path: str):
        return stream_handler(path, 'wb')

    def exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def is_file(self, path: str) -> bool:
        return os.path.isfile(path)

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    def make_partial(self, destination: str) -> str:
        """Creates an empty, uniquely named partial file beside ``destination``."""
        directory, basename = os.path.split(destination)
        try:
            fd, path = tempfile.mkstemp(dir=directory or os.curdir, prefix=basename + ".", suffix=PARTIAL_SUFFIX)
        except OSError as e:
            raise FileAccessError(f"Could not create a partial file for '{destination}': {e}") from e
        os.close(fd)
        return path

    def size(self, path: str) -> int:
        try:
            return os.path.getsize(path)
        except FileNotFoundError as e:
            raise FileAccessError(f"Input file not found: {path}") from e
        except OSError as e:
            raise FileAccessError(f"Could not get size of '{path}': {e}") from e

    def mtime(self, path: str) -> float:
        try:
            return os.path.getmtime(path)
        except OSError as e:
            raise FileAccessError(f"Could not get modification time of '{path}': {e}") from e

    def replace(self, source: str, destination: str) -> None:
        try:
            os.replace(source, destination)
        except OSError as e:
            raise FileAccessError(f"Could not move '{source}' to '{destination}': {e}") from e

    def remove(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise FileAccessError(f"Could not delete '{path}': {e}") from e

    def makedirs(self, path: str) -> None:
        if not path:
            return
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise FileAccessError(f"Could not create directory '{path}': {e}") from e


@contextmanager
def atomic_output(fs, destination: str) -> Iterator[BinaryIO]:
    """
    Writes to a unique ``<name>.<random>.part`` file beside ``destination``
    and moves it into place only if the block completes. On any exception the
    partial file is removed, so a failed or cancelled operation never leaves a
    corrupt output behind. Concurrent writers never share a partial file.
    """
    fs.makedirs(os.path.dirname(destination))
    partial = fs.make_partial(destination)
    try:
        with fs.open_write(partial) as stream:
            yield stream
            stream.flush()
    except BaseException:
        try:
            fs.remove(partial)
            logger.debug(f"Removed partial output: {partial}")
        except FileAccessError as cleanup_error:
            logger.warning(f"Could not remove partial output '{partial}': {cleanup_error}")
        raise
    fs.replace(partial, destination)
