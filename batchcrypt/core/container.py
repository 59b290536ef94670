# batchcrypt/core/container.py
# -*- coding: utf-8 -*-
"""
On-disk container layout shared by whole-file and streaming modes.

    [1 version][1 mode][2 KDF cost][16 salt][4 chunk size, streaming only]
    followed by one or more records of
    [12 nonce][4 ciphertext length][ciphertext][16 tag]

All integers are big-endian. The serialized header is bound into every
record as GCM associated data.
"""

import io
import logging
import struct
from dataclasses import dataclass
from typing import BinaryIO

from ..utils.constants import (
    SALT_BYTES, GCM_IV_BYTES, GCM_TAG_BYTES,
    KDF_PBKDF2, KDF_ARGON2ID,
    FORMAT_VERSION_PBKDF2, FORMAT_VERSION_ARGON2ID,
    MODE_WHOLE_FILE, MODE_STREAMING,
    MAX_HEADER_COST, MAX_RECORD_LENGTH, PBKDF2_ITERATION_UNIT,
    MIN_CHUNK_SIZE, MAX_CHUNK_SIZE
)
from .crypto_logic import validate_kdf_params
from ..utils.exceptions import ArgumentError, DecryptionError

logger = logging.getLogger(__name__)

_PREFIX = struct.Struct(">BBH16s")
_CHUNK_SIZE_FIELD = struct.Struct(">I")
_RECORD_HEAD = struct.Struct(f">{GCM_IV_BYTES}sI")
_CHUNK_AAD = struct.Struct(">IB")

_VERSION_BY_KDF = {KDF_PBKDF2: FORMAT_VERSION_PBKDF2, KDF_ARGON2ID: FORMAT_VERSION_ARGON2ID}
_KDF_BY_VERSION = {v: k for k, v in _VERSION_BY_KDF.items()}


@dataclass(frozen=True)
class ContainerHeader:
    """Parsed container header. ``iterations`` is the real KDF cost, not its encoding."""
    kdf: str
    mode: int
    iterations: int
    salt: bytes
    chunk_size: int | None = None

    @property
    def streaming(self) -> bool:
        return self.mode == MODE_STREAMING

    @property
    def size(self) -> int:
        return _PREFIX.size + (_CHUNK_SIZE_FIELD.size if self.streaming else 0)

    def to_bytes(self) -> bytes:
        """Serializes the header, validating every field fits the layout."""
        if self.kdf not in _VERSION_BY_KDF:
            raise ArgumentError(f"Unsupported KDF '{self.kdf}'.")
        if self.mode not in (MODE_WHOLE_FILE, MODE_STREAMING):
            raise ArgumentError(f"Invalid container mode {self.mode}.")
        if len(self.salt) != SALT_BYTES:
            raise ArgumentError(f"Salt must be {SALT_BYTES} bytes, got {len(self.salt)}.")
        cost = encode_cost(self.kdf, self.iterations)
        data = _PREFIX.pack(_VERSION_BY_KDF[self.kdf], self.mode, cost, self.salt)
        if self.streaming:
            if not self.chunk_size or self.chunk_size <= 0:
                raise ArgumentError("Streaming header requires a positive chunk size.")
            data += _CHUNK_SIZE_FIELD.pack(self.chunk_size)
        return data


def encode_cost(kdf: str, iterations: int) -> int:
    """Maps a KDF work factor to the 2-byte header field."""
    if kdf == KDF_PBKDF2:
        if iterations % PBKDF2_ITERATION_UNIT:
            raise ArgumentError(
                f"PBKDF2 iteration count must be a multiple of {PBKDF2_ITERATION_UNIT}, got {iterations}.")
        cost = iterations // PBKDF2_ITERATION_UNIT
    else:
        cost = iterations
    if not 0 < cost <= MAX_HEADER_COST:
        raise ArgumentError(f"KDF cost {iterations} cannot be stored in the container header.")
    return cost


def decode_cost(kdf: str, cost: int) -> int:
    if kdf == KDF_PBKDF2:
        return cost * PBKDF2_ITERATION_UNIT
    return cost


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    while len(data) < size:
        more = stream.read(size - len(data))
        if not more:
            break
        data += more
    return data


def read_header(stream: BinaryIO) -> ContainerHeader:
    """
    Reads and validates a container header from the start of ``stream``.

    Raises:
        DecryptionError: If the header is truncated or carries unknown values.
    """
    raw = _read_exact(stream, _PREFIX.size)
    if len(raw) != _PREFIX.size:
        raise DecryptionError(f"Input too short: expected a {_PREFIX.size}-byte header, got {len(raw)} bytes.")
    version, mode, cost, salt = _PREFIX.unpack(raw)
    kdf = _KDF_BY_VERSION.get(version)
    if kdf is None:
        raise DecryptionError(f"Unsupported container version: {version}.")
    if mode not in (MODE_WHOLE_FILE, MODE_STREAMING):
        raise DecryptionError(f"Unknown container mode flag: {mode}.")
    if cost == 0:
        raise DecryptionError("Container header carries a zero KDF cost.")

    chunk_size = None
    if mode == MODE_STREAMING:
        raw_chunk = _read_exact(stream, _CHUNK_SIZE_FIELD.size)
        if len(raw_chunk) != _CHUNK_SIZE_FIELD.size:
            raise DecryptionError("Input too short: streaming header is missing its chunk size.")
        (chunk_size,) = _CHUNK_SIZE_FIELD.unpack(raw_chunk)
        if not MIN_CHUNK_SIZE <= chunk_size <= MAX_CHUNK_SIZE:
            raise DecryptionError(f"Invalid chunk size in header: {chunk_size}.")

    header = ContainerHeader(kdf=kdf, mode=mode, iterations=decode_cost(kdf, cost), salt=salt, chunk_size=chunk_size)
    try:
        validate_kdf_params(kdf, header.iterations)
    except ArgumentError as e:
        raise DecryptionError(f"Container header rejected: {e}") from e
    logger.debug(f"Read container header: kdf={kdf}, streaming={header.streaming}, chunk_size={chunk_size}.")
    return header


def parse_header(data: bytes) -> ContainerHeader:
    """Parses a header from the start of an in-memory container."""
    return read_header(io.BytesIO(data))


def write_record(stream: BinaryIO, nonce: bytes, ciphertext: bytes, tag: bytes) -> int:
    """Writes one (nonce, length, ciphertext, tag) record and returns its size."""
    if len(ciphertext) > MAX_RECORD_LENGTH:
        raise ArgumentError("Ciphertext record exceeds the 4-byte length field.")
    data = _RECORD_HEAD.pack(nonce, len(ciphertext))
    written = 0
    for part in (data, ciphertext, tag):
        count = stream.write(part)
        if count is not None and count != len(part):
            raise OSError("Failed to write all record bytes to output.")
        written += len(part)
    return written


def read_record(stream: BinaryIO, max_length: int | None = None) -> tuple[bytes, bytes, bytes] | None:
    """
    Reads one record. Returns None on a clean EOF before the record starts.

    Raises:
        DecryptionError: If the record is truncated or longer than ``max_length``.
    """
    head = _read_exact(stream, _RECORD_HEAD.size)
    if not head:
        return None
    if len(head) != _RECORD_HEAD.size:
        raise DecryptionError("Input ended unexpectedly inside a record header.")
    nonce, length = _RECORD_HEAD.unpack(head)
    if max_length is not None and length > max_length:
        raise DecryptionError(f"Record length {length} exceeds the allowed maximum of {max_length}.")
    ciphertext = _read_exact(stream, length)
    if len(ciphertext) != length:
        raise DecryptionError(f"Input ended unexpectedly: record declares {length} bytes, got {len(ciphertext)}.")
    tag = _read_exact(stream, GCM_TAG_BYTES)
    if len(tag) != GCM_TAG_BYTES:
        raise DecryptionError("Input ended unexpectedly. Missing or incomplete tag.")
    return nonce, ciphertext, tag


def chunk_aad(header_bytes: bytes, index: int, final: bool) -> bytes:
    """Associated data for one streaming chunk: header, chunk index and final flag."""
    return header_bytes + _CHUNK_AAD.pack(index, 1 if final else 0)


def record_overhead() -> int:
    return _RECORD_HEAD.size + GCM_TAG_BYTES


def estimate_container_size(plaintext_size: int, streaming: bool, chunk_size: int) -> int:
    """Exact size of the container that encrypting ``plaintext_size`` bytes produces."""
    header = _PREFIX.size + (_CHUNK_SIZE_FIELD.size if streaming else 0)
    if not streaming:
        return header + record_overhead() + plaintext_size
    chunks = max(1, -(-plaintext_size // chunk_size))
    return header + chunks * record_overhead() + plaintext_size


def looks_encrypted(stream: BinaryIO) -> bool:
    """True if the stream starts with a header this module can parse."""
    try:
        read_header(stream)
    except DecryptionError:
        return False
    return True
