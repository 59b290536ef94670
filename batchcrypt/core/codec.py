# batchcrypt/core/codec.py
# -*- coding: utf-8 -*-
"""
Whole-buffer AES-256-GCM encryption with password-derived keys, and the
whole-file container mode built on top of it.
"""

import io
import logging
from dataclasses import dataclass
from typing import Callable

from Crypto.Cipher import AES

from .container import ContainerHeader, estimate_container_size, read_header, read_record, write_record
from .crypto_logic import derive_key, generate_salt, generate_nonce, default_cost, validate_kdf_params, wipe
from .filesystem import LocalFilesystem, atomic_output
from ..utils.constants import (
    GCM_TAG_BYTES, KDF_PBKDF2, MODE_WHOLE_FILE, MAX_BUFFER_SIZE, MAX_RECORD_LENGTH
)
from ..utils.exceptions import ArgumentError, DecryptionError, FileAccessError

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str, int, int], None]

MAC_FAILURE_MESSAGE = "MAC check failed: Incorrect password or data corrupted."


@dataclass(frozen=True)
class EncryptedPayload:
    """Fields produced by one whole-buffer encryption."""
    ciphertext: bytes
    salt: bytes
    nonce: bytes
    tag: bytes
    iterations: int
    kdf: str = KDF_PBKDF2


def seal(key: bytearray, nonce: bytes, plaintext: bytes, associated_data: bytes = b"") -> tuple[bytes, bytes]:
    """Encrypts one buffer under ``key``/``nonce`` and returns (ciphertext, tag)."""
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=GCM_TAG_BYTES)
    if associated_data:
        cipher.update(associated_data)
    return cipher.encrypt_and_digest(plaintext)


def open_sealed(key: bytearray, nonce: bytes, ciphertext: bytes, tag: bytes, associated_data: bytes = b"") -> bytes:
    """
    Decrypts and verifies one buffer. Nothing is returned unless the tag verifies.

    Raises:
        DecryptionError: On any tag mismatch.
    """
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=GCM_TAG_BYTES)
    if associated_data:
        cipher.update(associated_data)
    try:
        return cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError as e:
        raise DecryptionError(MAC_FAILURE_MESSAGE) from e


class CipherCodec:
    """
    Encrypts and decrypts single in-memory buffers.

    Every call derives its own key from a fresh salt, so nothing secret is
    kept on the instance between calls.
    """

    def __init__(
        self,
        iterations: int | None = None,
        kdf: str = KDF_PBKDF2,
        max_buffer_size: int = MAX_BUFFER_SIZE,
        fs=None
    ):
        self.kdf = kdf
        self.iterations = iterations if iterations is not None else default_cost(kdf)
        validate_kdf_params(self.kdf, self.iterations)
        if not 0 <= max_buffer_size <= MAX_RECORD_LENGTH:
            raise ArgumentError(f"In-memory ceiling must be between 0 and {MAX_RECORD_LENGTH} bytes.")
        self.max_buffer_size = max_buffer_size
        self.fs = fs or LocalFilesystem()

    def _check_size(self, size: int) -> None:
        if size > self.max_buffer_size:
            raise ArgumentError(
                f"Buffer of {size} bytes exceeds the in-memory limit of {self.max_buffer_size} bytes; use streaming mode.")

    # --- Buffer API ---

    def encrypt(self, plaintext: bytes, password: str | bytes) -> EncryptedPayload:
        """Encrypts ``plaintext`` with a fresh salt and nonce."""
        self._check_size(len(plaintext))
        salt = generate_salt()
        nonce = generate_nonce()
        key = derive_key(password, salt, self.iterations, self.kdf)
        try:
            ciphertext, tag = seal(key, nonce, plaintext)
        finally:
            wipe(key)
        return EncryptedPayload(ciphertext, salt, nonce, tag, self.iterations, self.kdf)

    def decrypt(
        self,
        ciphertext: bytes,
        password: str | bytes,
        salt: bytes,
        nonce: bytes,
        tag: bytes,
        iterations: int | None = None,
        kdf: str | None = None
    ) -> bytes:
        """
        Reverses ``encrypt``. Raises DecryptionError when the tag does not
        verify (wrong password, corrupted ciphertext, tampered tag or nonce).
        """
        key = derive_key(password, salt, iterations or self.iterations, kdf or self.kdf)
        try:
            return open_sealed(key, nonce, ciphertext, tag)
        finally:
            wipe(key)

    # --- Whole-file container API ---

    def encode(self, plaintext: bytes, password: str | bytes) -> bytes:
        """Encrypts ``plaintext`` into a complete whole-file container."""
        self._check_size(len(plaintext))
        header = ContainerHeader(kdf=self.kdf, mode=MODE_WHOLE_FILE, iterations=self.iterations, salt=generate_salt())
        header_bytes = header.to_bytes()
        nonce = generate_nonce()
        key = derive_key(password, header.salt, self.iterations, self.kdf)
        try:
            ciphertext, tag = seal(key, nonce, plaintext, header_bytes)
        finally:
            wipe(key)
        out = io.BytesIO()
        out.write(header_bytes)
        write_record(out, nonce, ciphertext, tag)
        return out.getvalue()

    def decode(self, blob: bytes, password: str | bytes) -> bytes:
        """Decrypts a whole-file container produced by ``encode``."""
        stream = io.BytesIO(blob)
        header = read_header(stream)
        if header.streaming:
            raise DecryptionError("Container is in streaming mode; use the chunked codec.")
        return self._decode_body(stream, header, blob[:header.size], password)

    def _decode_body(self, stream, header: ContainerHeader, header_bytes: bytes, password: str | bytes) -> bytes:
        record = read_record(stream, max_length=MAX_RECORD_LENGTH)
        if record is None:
            raise DecryptionError("Container has no ciphertext record.")
        if stream.read(1):
            raise DecryptionError("Unexpected trailing data after the ciphertext record.")
        nonce, ciphertext, tag = record
        key = derive_key(password, header.salt, header.iterations, header.kdf)
        try:
            return open_sealed(key, nonce, ciphertext, tag, header_bytes)
        finally:
            wipe(key)

    # --- File API ---

    def encrypt_file(
        self,
        input_path: str,
        output_path: str,
        password: str | bytes,
        progress: ProgressSink | None = None
    ) -> int:
        """
        Encrypts a whole file in memory and writes the container atomically.

        Returns:
            The size of the written container in bytes.
        """
        total_size = self.fs.size(input_path)
        self._check_size(total_size)
        if progress:
            progress(input_path, 0, total_size)
        try:
            with self.fs.open_read(input_path) as input_stream:
                plaintext = input_stream.read()
            container = self.encode(plaintext, password)
            with atomic_output(self.fs, output_path) as output_stream:
                output_stream.write(container)
        except OSError as e:
            msg = f"File read/write error during encryption: {e}"
            logger.error(msg)
            raise FileAccessError(msg) from e
        logger.info(f"Encrypted {len(plaintext)} bytes: {input_path} -> {output_path}")
        if progress:
            progress(input_path, len(plaintext), total_size)
        return len(container)

    def decrypt_file(
        self,
        input_path: str,
        output_path: str,
        password: str | bytes,
        progress: ProgressSink | None = None
    ) -> int:
        """
        Decrypts a whole-file container. The output file is only created once
        the tag has verified.

        Returns:
            The size of the written plaintext in bytes.
        """
        total_size = self.fs.size(input_path)
        if total_size > estimate_container_size(self.max_buffer_size, False, 0):
            raise ArgumentError(f"Container of {total_size} bytes exceeds the in-memory limit.")
        if progress:
            progress(input_path, 0, total_size)
        try:
            with self.fs.open_read(input_path) as input_stream:
                blob = input_stream.read()
            plaintext = self.decode(blob, password)
            with atomic_output(self.fs, output_path) as output_stream:
                output_stream.write(plaintext)
        except OSError as e:
            msg = f"File read/write error during decryption: {e}"
            logger.error(msg)
            raise FileAccessError(msg) from e
        logger.info(f"Decrypted {len(plaintext)} bytes: {input_path} -> {output_path}")
        if progress:
            progress(input_path, total_size, total_size)
        return len(plaintext)
