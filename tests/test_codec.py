# tests/test_codec.py
# -*- coding: utf-8 -*-
"""Tests for whole-buffer encryption and the whole-file container."""

import os
from pathlib import Path

import pytest

from batchcrypt.core.codec import CipherCodec
from batchcrypt.core.container import parse_header, looks_encrypted
from batchcrypt.utils.constants import (
    MIN_PBKDF2_ITERATIONS, MIN_ARGON2_TIME_COST, KDF_ARGON2ID, KDF_PBKDF2,
    PARTIAL_SUFFIX, SALT_BYTES, GCM_IV_BYTES, GCM_TAG_BYTES
)
from batchcrypt.utils.exceptions import ArgumentError, DecryptionError, FileAccessError

PASSWORD = "Tr0ub4dor&3"
WRONG_PASSWORD = "Tr0ub4dor&4"
PLAINTEXT = b"Test data with different chars: !@#$%^&*()_+`~-=[]{}|\\:;\"'<>,.?/"
HEADER_SIZE = 1 + 1 + 2 + SALT_BYTES


@pytest.fixture
def codec():
    return CipherCodec(iterations=MIN_PBKDF2_ITERATIONS)


def test_buffer_round_trip(codec):
    payload = codec.encrypt(PLAINTEXT, PASSWORD)
    assert len(payload.salt) == SALT_BYTES
    assert len(payload.nonce) == GCM_IV_BYTES
    assert len(payload.tag) == GCM_TAG_BYTES
    assert payload.ciphertext != PLAINTEXT
    plaintext = codec.decrypt(payload.ciphertext, PASSWORD, payload.salt, payload.nonce, payload.tag)
    assert plaintext == PLAINTEXT


def test_empty_buffer_round_trips(codec):
    payload = codec.encrypt(b"", PASSWORD)
    assert payload.ciphertext == b""
    assert codec.decrypt(payload.ciphertext, PASSWORD, payload.salt, payload.nonce, payload.tag) == b""
    assert codec.decode(codec.encode(b"", PASSWORD), PASSWORD) == b""


def test_large_buffer_round_trips(codec):
    data = os.urandom(3 * 1024 * 1024 + 17)
    assert codec.decode(codec.encode(data, PASSWORD), PASSWORD) == data


def test_two_encryptions_differ(codec):
    first = codec.encrypt(PLAINTEXT, PASSWORD)
    second = codec.encrypt(PLAINTEXT, PASSWORD)
    assert first.ciphertext != second.ciphertext
    assert first.nonce != second.nonce
    assert first.salt != second.salt
    blob_a, blob_b = codec.encode(PLAINTEXT, PASSWORD), codec.encode(PLAINTEXT, PASSWORD)
    assert blob_a != blob_b
    assert codec.decode(blob_a, PASSWORD) == codec.decode(blob_b, PASSWORD) == PLAINTEXT


def test_wrong_password_fails(codec):
    payload = codec.encrypt(PLAINTEXT, PASSWORD)
    with pytest.raises(DecryptionError, match="MAC check failed"):
        codec.decrypt(payload.ciphertext, WRONG_PASSWORD, payload.salt, payload.nonce, payload.tag)
    with pytest.raises(DecryptionError):
        codec.decode(codec.encode(PLAINTEXT, PASSWORD), WRONG_PASSWORD)


def test_tampered_fields_fail(codec):
    payload = codec.encrypt(PLAINTEXT, PASSWORD)
    flipped_ct = bytes([payload.ciphertext[0] ^ 0x01]) + payload.ciphertext[1:]
    flipped_tag = payload.tag[:-1] + bytes([payload.tag[-1] ^ 0x80])
    flipped_nonce = bytes([payload.nonce[0] ^ 0x01]) + payload.nonce[1:]
    for ciphertext, nonce, tag in (
        (flipped_ct, payload.nonce, payload.tag),
        (payload.ciphertext, payload.nonce, flipped_tag),
        (payload.ciphertext, flipped_nonce, payload.tag),
    ):
        with pytest.raises(DecryptionError):
            codec.decrypt(ciphertext, PASSWORD, payload.salt, nonce, tag)


def test_every_record_byte_flip_is_detected(codec):
    """Flipping any byte after the header (nonce, length, ciphertext, tag) must fail."""
    blob = codec.encode(b"secret", PASSWORD)
    for position in range(HEADER_SIZE, len(blob)):
        tampered = bytearray(blob)
        tampered[position] ^= 0x01
        with pytest.raises(DecryptionError):
            codec.decode(bytes(tampered), PASSWORD)


@pytest.mark.parametrize("position", [0, 1, HEADER_SIZE - 1])
def test_header_tampering_is_detected(codec, position):
    blob = bytearray(codec.encode(PLAINTEXT, PASSWORD))
    blob[position] ^= 0x01
    with pytest.raises(DecryptionError):
        codec.decode(bytes(blob), PASSWORD)


def test_truncated_and_padded_containers_fail(codec):
    blob = codec.encode(PLAINTEXT, PASSWORD)
    for broken in (b"", blob[:5], blob[:HEADER_SIZE], blob[:-1], blob + b"\x00"):
        with pytest.raises(DecryptionError):
            codec.decode(broken, PASSWORD)


def test_container_header_fields(codec):
    blob = codec.encode(PLAINTEXT, PASSWORD)
    header = parse_header(blob)
    assert header.kdf == KDF_PBKDF2
    assert header.iterations == MIN_PBKDF2_ITERATIONS
    assert not header.streaming
    assert header.chunk_size is None
    assert len(blob) == HEADER_SIZE + GCM_IV_BYTES + 4 + len(PLAINTEXT) + GCM_TAG_BYTES


def test_header_cost_above_ceiling_is_rejected_before_derivation():
    # version 2 (Argon2id), whole-file mode, time cost 65535
    with pytest.raises(DecryptionError, match="rejected"):
        parse_header(b"\x02\x00\xff\xff" + bytes(SALT_BYTES))


def test_version_flip_to_argon2id_fails_fast(codec):
    blob = bytearray(codec.encode(PLAINTEXT, PASSWORD))
    blob[0] = 2
    with pytest.raises(DecryptionError, match="rejected"):
        codec.decode(bytes(blob), PASSWORD)


def test_argon2id_container_round_trip():
    codec = CipherCodec(iterations=MIN_ARGON2_TIME_COST, kdf=KDF_ARGON2ID)
    blob = codec.encode(PLAINTEXT, PASSWORD)
    assert parse_header(blob).kdf == KDF_ARGON2ID
    # The decoder reads the KDF from the header, not from its own settings
    assert CipherCodec(iterations=MIN_PBKDF2_ITERATIONS).decode(blob, PASSWORD) == PLAINTEXT


def test_buffer_ceiling_is_enforced():
    codec = CipherCodec(iterations=MIN_PBKDF2_ITERATIONS, max_buffer_size=10)
    with pytest.raises(ArgumentError):
        codec.encrypt(b"x" * 11, PASSWORD)


def test_iteration_count_must_fit_header():
    codec = CipherCodec(iterations=MIN_PBKDF2_ITERATIONS + 1)
    with pytest.raises(ArgumentError):
        codec.encode(PLAINTEXT, PASSWORD)


def test_file_round_trip(tmp_path: Path, codec):
    source = tmp_path / "plain.txt"
    encrypted = tmp_path / "out" / "plain.txt.encrypted"
    restored = tmp_path / "plain.restored"
    source.write_bytes(PLAINTEXT)
    calls = []

    size = codec.encrypt_file(str(source), str(encrypted), PASSWORD, progress=lambda *a: calls.append(a))
    assert encrypted.exists() and encrypted.stat().st_size == size
    with open(encrypted, "rb") as stream:
        assert looks_encrypted(stream)
    assert calls[-1] == (str(source), len(PLAINTEXT), len(PLAINTEXT))

    assert codec.decrypt_file(str(encrypted), str(restored), PASSWORD) == len(PLAINTEXT)
    assert restored.read_bytes() == PLAINTEXT


def test_failed_file_decryption_leaves_nothing_behind(tmp_path: Path, codec):
    source = tmp_path / "plain.txt"
    encrypted = tmp_path / "plain.txt.encrypted"
    restored = tmp_path / "plain.txt"
    source.write_bytes(PLAINTEXT)
    codec.encrypt_file(str(source), str(encrypted), PASSWORD)
    restored_other = tmp_path / "other.txt"

    with pytest.raises(DecryptionError):
        codec.decrypt_file(str(encrypted), str(restored_other), WRONG_PASSWORD)
    assert not restored_other.exists()
    assert not list(tmp_path.glob("*" + PARTIAL_SUFFIX))
    assert restored.read_bytes() == PLAINTEXT


def test_missing_input_file(tmp_path: Path, codec):
    with pytest.raises(FileAccessError, match="not found"):
        codec.encrypt_file(str(tmp_path / "nope.txt"), str(tmp_path / "nope.enc"), PASSWORD)
