# batchcrypt/core/file_handler.py
# -*- coding: utf-8 -*-
"""
Handles chunked ("streaming") file encryption and decryption for inputs too
large to hold in memory, including progress reporting and cooperative
cancellation. Each chunk is sealed with its own nonce and tag.
"""

import logging
import struct

from .codec import ProgressSink, seal, open_sealed
from .container import ContainerHeader, chunk_aad, read_header, read_record, record_overhead, write_record
from .crypto_logic import derive_key, generate_salt, generate_nonce, default_cost, validate_kdf_params, wipe
from .filesystem import LocalFilesystem, atomic_output
from ..utils.constants import (
    CHUNK_SIZE, MIN_CHUNK_SIZE, MAX_CHUNK_SIZE, KDF_PBKDF2, MODE_STREAMING,
    STREAM_NONCE_PREFIX_BYTES, MAX_STREAM_CHUNKS
)
from ..utils.exceptions import (
    ArgumentError, CryptoBatchError, DecryptionError, FileAccessError, OperationCancelledError
)

logger = logging.getLogger(__name__)

_COUNTER = struct.Struct(">I")


def validate_chunk_size(chunk_size: int) -> int:
    if not isinstance(chunk_size, int) or isinstance(chunk_size, bool):
        raise ArgumentError(f"Chunk size must be an integer, got {chunk_size!r}.")
    if not MIN_CHUNK_SIZE <= chunk_size <= MAX_CHUNK_SIZE:
        raise ArgumentError(f"Chunk size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE} bytes, got {chunk_size}.")
    return chunk_size


def chunk_nonce(prefix: bytes, index: int) -> bytes:
    """Nonce for chunk ``index``: the per-file random prefix plus a big-endian counter."""
    if index >= MAX_STREAM_CHUNKS:
        raise ArgumentError("Input has too many chunks for a unique nonce per chunk; use a larger chunk size.")
    return prefix + _COUNTER.pack(index)


def _check_cancel(cancel, path: str) -> None:
    if cancel is not None and cancel.is_set():
        logger.warning(f"Cancellation observed while processing {path}.")
        raise OperationCancelledError(f"Operation cancelled while processing {path}.")


def read_container_header(fs, path: str) -> ContainerHeader:
    """Reads just the header of an encrypted file (used to pick the decoder)."""
    with fs.open_read(path) as stream:
        return read_header(stream)


class ChunkedCipherCodec:
    """
    Streams files through AES-256-GCM in fixed-size chunks.

    Each chunk's associated data binds the container header, the chunk index
    and a final-chunk flag, so reordered, dropped, appended or truncated
    chunks all fail authentication.
    """

    def __init__(
        self,
        chunk_size: int = CHUNK_SIZE,
        iterations: int | None = None,
        kdf: str = KDF_PBKDF2,
        fs=None
    ):
        self.chunk_size = validate_chunk_size(chunk_size)
        self.kdf = kdf
        self.iterations = iterations if iterations is not None else default_cost(kdf)
        validate_kdf_params(self.kdf, self.iterations)
        self.fs = fs or LocalFilesystem()

    def encrypt_file(
        self,
        input_path: str,
        output_path: str,
        password: str | bytes,
        *, # Keyword-only marker for subsequent arguments
        progress: ProgressSink | None = None,
        cancel=None
    ) -> int:
        """
        Encrypts ``input_path`` chunk by chunk into ``output_path``.

        Args:
            input_path: Path to the plaintext file.
            output_path: Destination of the streaming container.
            password: The user's password.
            progress: Optional sink called after each chunk with
                (input_path, bytes_done, bytes_total).
            cancel: Optional event-like object; checked between chunks.

        Returns:
            The size of the written container in bytes.

        Raises:
            FileAccessError: If input/output files cannot be accessed or written.
            OperationCancelledError: If ``cancel`` is set mid-file.
            ArgumentError: On invalid KDF parameters.
            CryptoBatchError: For key derivation failures.
        """
        key: bytearray | None = None
        bytes_processed = 0
        written = 0

        try:
            total_size = self.fs.size(input_path)
            header = ContainerHeader(
                kdf=self.kdf, mode=MODE_STREAMING, iterations=self.iterations,
                salt=generate_salt(), chunk_size=self.chunk_size
            )
            header_bytes = header.to_bytes()
            key = derive_key(password, header.salt, self.iterations, self.kdf)
            prefix = generate_nonce(STREAM_NONCE_PREFIX_BYTES)
            logger.debug(f"Streaming encryption of {input_path} ({total_size} bytes, chunk size {self.chunk_size}).")

            with self.fs.open_read(input_path) as input_stream, \
                 atomic_output(self.fs, output_path) as output_stream:

                output_stream.write(header_bytes)
                written += len(header_bytes)

                index = 0
                current = input_stream.read(self.chunk_size)
                while True:
                    _check_cancel(cancel, input_path)
                    upcoming = input_stream.read(self.chunk_size)
                    final = not upcoming
                    nonce = chunk_nonce(prefix, index)
                    ciphertext, tag = seal(key, nonce, current, chunk_aad(header_bytes, index, final))
                    written += write_record(output_stream, nonce, ciphertext, tag)
                    bytes_processed += len(current)
                    if progress:
                        progress(input_path, bytes_processed, total_size)
                    if final:
                        break
                    current = upcoming
                    index += 1

            if bytes_processed == 0:
                logger.warning(f"Input data was empty: {input_path}")
            logger.info(f"Finished streaming encryption of {bytes_processed} bytes in {index + 1} chunk(s): {output_path}")
            return written

        except CryptoBatchError: # Already logged near the source, re-raise for the caller
            raise
        except OSError as e: # Catch write/flush errors within the 'with' block
            msg = f"File write/flush error during encryption: {e}"
            logger.error(msg)
            raise FileAccessError(msg) from e
        finally:
            wipe(key)

    def decrypt_file(
        self,
        input_path: str,
        output_path: str,
        password: str | bytes,
        *, # Keyword-only marker
        progress: ProgressSink | None = None,
        cancel=None
    ) -> int:
        """
        Decrypts a streaming container, verifying each chunk's tag before its
        plaintext is written. Any failure removes the partial output.

        Returns:
            The size of the written plaintext in bytes.

        Raises:
            DecryptionError: Wrong password, tampered/truncated data or a bad header.
            FileAccessError: If files cannot be read or written.
            OperationCancelledError: If ``cancel`` is set mid-file.
        """
        key: bytearray | None = None
        bytes_processed = 0
        plaintext_size = 0

        try:
            total_size = self.fs.size(input_path)
            with self.fs.open_read(input_path) as input_stream:
                header = read_header(input_stream)
                if not header.streaming:
                    raise DecryptionError("Container is in whole-file mode; use the whole-file codec.")
                header_bytes = header.to_bytes()
                bytes_processed = len(header_bytes)
                key = derive_key(password, header.salt, header.iterations, header.kdf)

                with atomic_output(self.fs, output_path) as output_stream:
                    index = 0
                    record = read_record(input_stream, max_length=header.chunk_size)
                    if record is None:
                        raise DecryptionError("Streaming container has no chunks.")
                    while record is not None:
                        _check_cancel(cancel, input_path)
                        upcoming = read_record(input_stream, max_length=header.chunk_size)
                        nonce, ciphertext, tag = record
                        try:
                            plaintext = open_sealed(
                                key, nonce, ciphertext, tag,
                                chunk_aad(header_bytes, index, upcoming is None)
                            )
                        except DecryptionError:
                            logger.error(f"Tag verification failed on chunk {index} of {input_path}.")
                            raise
                        output_stream.write(plaintext)
                        plaintext_size += len(plaintext)
                        bytes_processed += len(ciphertext) + record_overhead()
                        if progress:
                            progress(input_path, bytes_processed, total_size)
                        record = upcoming
                        index += 1

            logger.info(f"Finished streaming decryption of {index} chunk(s), {plaintext_size} bytes: {output_path}")
            return plaintext_size

        except CryptoBatchError:
            raise
        except OSError as e: # Catch potential write errors inside the 'with' block
            msg = f"File write error during decryption: {e}"
            logger.error(msg)
            raise FileAccessError(msg) from e
        finally:
            wipe(key)
