# tests/test_crypto_logic.py
# -*- coding: utf-8 -*-
"""Unit tests for key derivation and random material generation."""

import pytest

from batchcrypt.core.crypto_logic import (
    derive_key, generate_salt, generate_nonce, wipe, default_cost, validate_kdf_params
)
from batchcrypt.utils.constants import (
    AES_KEY_BYTES, SALT_BYTES, GCM_IV_BYTES, KDF_PBKDF2, KDF_ARGON2ID,
    MIN_PBKDF2_ITERATIONS, MIN_ARGON2_TIME_COST, DEFAULT_PBKDF2_ITERATIONS, ARGON2_TIME_COST,
    MAX_PBKDF2_ITERATIONS, MAX_ARGON2_TIME_COST, PBKDF2_ITERATION_UNIT
)
from batchcrypt.utils.exceptions import ArgumentError

FAST_ITERATIONS = MIN_PBKDF2_ITERATIONS
PASSWORD = "correct horse battery staple"


def test_same_password_and_salt_give_same_key():
    salt = generate_salt()
    key_a = derive_key(PASSWORD, salt, FAST_ITERATIONS)
    key_b = derive_key(PASSWORD, salt, FAST_ITERATIONS)
    assert len(key_a) == AES_KEY_BYTES
    assert key_a == key_b


def test_different_password_or_salt_give_different_keys():
    salt = generate_salt()
    base = derive_key(PASSWORD, salt, FAST_ITERATIONS)
    assert derive_key(PASSWORD + "!", salt, FAST_ITERATIONS) != base
    assert derive_key(PASSWORD, generate_salt(), FAST_ITERATIONS) != base


def test_str_and_utf8_bytes_passwords_are_equivalent():
    salt = generate_salt()
    assert derive_key("pässwörd", salt, FAST_ITERATIONS) == derive_key("pässwörd".encode("utf-8"), salt, FAST_ITERATIONS)


def test_argon2id_is_deterministic_and_distinct_from_pbkdf2():
    salt = generate_salt()
    key_a = derive_key(PASSWORD, salt, MIN_ARGON2_TIME_COST, KDF_ARGON2ID)
    key_b = derive_key(PASSWORD, salt, MIN_ARGON2_TIME_COST, KDF_ARGON2ID)
    assert key_a == key_b
    assert len(key_a) == AES_KEY_BYTES
    assert key_a != derive_key(PASSWORD, salt, FAST_ITERATIONS, KDF_PBKDF2)


@pytest.mark.parametrize("iterations", [0, -5, MIN_PBKDF2_ITERATIONS - 1])
def test_iterations_below_floor_are_rejected(iterations):
    with pytest.raises(ArgumentError):
        derive_key(PASSWORD, generate_salt(), iterations)


@pytest.mark.parametrize("kdf, cost", [
    (KDF_PBKDF2, MAX_PBKDF2_ITERATIONS + PBKDF2_ITERATION_UNIT),
    (KDF_ARGON2ID, MAX_ARGON2_TIME_COST + 1),
])
def test_cost_above_ceiling_is_rejected(kdf, cost):
    with pytest.raises(ArgumentError, match="exceeds the maximum"):
        validate_kdf_params(kdf, cost)


def test_cost_at_ceiling_is_accepted():
    validate_kdf_params(KDF_PBKDF2, MAX_PBKDF2_ITERATIONS)
    validate_kdf_params(KDF_ARGON2ID, MAX_ARGON2_TIME_COST)


def test_empty_salt_is_rejected():
    with pytest.raises(ArgumentError):
        derive_key(PASSWORD, b"", FAST_ITERATIONS)


def test_unknown_kdf_is_rejected():
    with pytest.raises(ArgumentError):
        derive_key(PASSWORD, generate_salt(), FAST_ITERATIONS, kdf="md5")


def test_weak_password_is_still_accepted():
    assert len(derive_key("a", generate_salt(), FAST_ITERATIONS)) == AES_KEY_BYTES


def test_random_material_sizes_and_freshness():
    assert len(generate_salt()) == SALT_BYTES
    assert len(generate_nonce()) == GCM_IV_BYTES
    assert generate_salt() != generate_salt()
    assert generate_nonce() != generate_nonce()


def test_wipe_zeroes_buffer():
    key = derive_key(PASSWORD, generate_salt(), FAST_ITERATIONS)
    wipe(key)
    assert key == bytearray(AES_KEY_BYTES)
    wipe(None)


def test_default_costs():
    assert default_cost(KDF_PBKDF2) == DEFAULT_PBKDF2_ITERATIONS
    assert default_cost(KDF_ARGON2ID) == ARGON2_TIME_COST
