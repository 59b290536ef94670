# tests/test_cli_e2e.py
# -*- coding: utf-8 -*-
"""
End-to-end tests for the batchcrypt CLI.
Uses subprocess to run the actual command installed via entry points.
"""

import subprocess
import sys
import os
from pathlib import Path
import pytest

# --- Import Constants from the main package ---
try:
    from batchcrypt.utils.constants import (
        SALT_BYTES, GCM_IV_BYTES, GCM_TAG_BYTES, MIN_PBKDF2_ITERATIONS,
        EXIT_SUCCESS, EXIT_AUTH_ERROR, EXIT_ARG_ERROR
    )
except ImportError as e:
    print(f"\nERROR: Could not import constants from 'batchcrypt'. "
          f"Did you run 'pip install -e .' from the project root?\nDetails: {e}", file=sys.stderr)
    pytest.skip("Cannot import constants from batchcrypt package.", allow_module_level=True)


# --- Test Data ---
PLAINTEXT_CONTENT = b"Test data with different chars: !@#$%^&*()_+`~-=[]{}|\\:;\"'<>,.?/"
TEST_PASSWORD_CORRECT = b"correct_password_123!@#"
TEST_PASSWORD_WRONG   = b"wrong_password_XYZ#@!"

COMMAND_NAME = "batchcrypt"
# Keep the KDF at its floor so each run stays fast
FAST_KDF = ["--iterations", str(MIN_PBKDF2_ITERATIONS)]


def run_batchcrypt_cli(args: list[str], input_data: bytes | None = None, env: dict | None = None) -> subprocess.CompletedProcess:
    """Helper function to run the CLI command via subprocess."""
    command = [COMMAND_NAME] + args
    print(f"\nAttempting to run command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command, input=input_data, capture_output=True, text=False,
            timeout=120, check=False, env=env
        )
        print(f"Return Code: {result.returncode}")
        if result.stdout: print(f"stdout (first 500 bytes):\n{result.stdout[:500].decode(errors='ignore')}...")
        if result.stderr: print(f"stderr (first 1000 bytes):\n{result.stderr[:1000].decode(errors='ignore')}...")
        return result
    except FileNotFoundError:
        print(f"\nERROR: Command '{COMMAND_NAME}' not found.", file=sys.stderr)
        pytest.fail(f"Command '{COMMAND_NAME}' not found on PATH.", pytrace=False)
    except subprocess.TimeoutExpired:
        print(f"\nERROR: Command timed out.", file=sys.stderr)
        pytest.fail("Command execution timed out.", pytrace=False)


# --- Test Cases ---

def test_encrypt_decrypt_password_file_e2e(tmp_path: Path):
    """Tests an encrypt/decrypt cycle of two files with the password read from a file."""
    first = tmp_path / "first.txt"
    second = tmp_path / "second.bin"
    password_file = tmp_path / "pass_correct.key"
    vault = tmp_path / "vault"
    restored = tmp_path / "restored"
    first.write_bytes(PLAINTEXT_CONTENT)
    second.write_bytes(os.urandom(50_000))
    password_file.write_bytes(TEST_PASSWORD_CORRECT + b"\n")

    result_enc = run_batchcrypt_cli(
        ["encrypt", "-f", str(first), str(second), "-o", str(vault), "--password-file", str(password_file)] + FAST_KDF)
    assert result_enc.returncode == EXIT_SUCCESS, "Encryption failed"
    encrypted_first = vault / "first.txt.encrypted"
    assert encrypted_first.exists() and (vault / "second.bin.encrypted").exists()
    min_size = SALT_BYTES + GCM_IV_BYTES + GCM_TAG_BYTES + len(PLAINTEXT_CONTENT)
    assert encrypted_first.stat().st_size >= min_size
    assert b"2/2 succeeded" in result_enc.stdout

    result_dec = run_batchcrypt_cli(
        ["decrypt", "-d", str(vault), "-o", str(restored), "--password-file", str(password_file)])
    assert result_dec.returncode == EXIT_SUCCESS, "Decryption failed"
    assert (restored / "first.txt").read_bytes() == PLAINTEXT_CONTENT
    assert (restored / "second.bin").read_bytes() == second.read_bytes()
    print("Password file Encrypt-Decrypt cycle successful!")


def test_decrypt_wrong_password_e2e(tmp_path: Path):
    """Tests decrypt attempt with wrong password, expects EXIT_AUTH_ERROR."""
    input_file = tmp_path / "input_wrongpass.txt"
    password_file_correct = tmp_path / "pass_correct.key"
    password_file_wrong = tmp_path / "pass_wrong.key"
    restored = tmp_path / "restored"
    input_file.write_bytes(PLAINTEXT_CONTENT)
    password_file_correct.write_bytes(TEST_PASSWORD_CORRECT)
    password_file_wrong.write_bytes(TEST_PASSWORD_WRONG)

    result_enc = run_batchcrypt_cli(["encrypt", "-f", str(input_file), "--password-file", str(password_file_correct)] + FAST_KDF)
    assert result_enc.returncode == EXIT_SUCCESS
    encrypted_file = tmp_path / "input_wrongpass.txt.encrypted"
    assert encrypted_file.exists()

    result_dec = run_batchcrypt_cli(
        ["decrypt", "-f", str(encrypted_file), "-o", str(restored), "--password-file", str(password_file_wrong)])
    assert result_dec.returncode == EXIT_AUTH_ERROR, f"Wrong exit code ({result_dec.returncode}), expected Auth Error ({EXIT_AUTH_ERROR})"
    stderr_output = result_dec.stderr.decode(errors='ignore').lower()
    assert "mac check failed" in stderr_output
    assert not (restored / "input_wrongpass.txt").exists()
    print("Wrong password decryption test failed correctly!")


def test_file_not_found_error_e2e(tmp_path: Path):
    """Tests that a missing input file is rejected before any work starts."""
    password_file = tmp_path / "pass.key"
    password_file.write_bytes(TEST_PASSWORD_CORRECT)
    present = tmp_path / "present.txt"
    present.write_bytes(PLAINTEXT_CONTENT)
    missing = tmp_path / "non_existent_file.txt"

    result = run_batchcrypt_cli(["encrypt", "-f", str(present), str(missing), "--password-file", str(password_file)] + FAST_KDF)

    assert result.returncode == EXIT_ARG_ERROR, f"Expected exit code {EXIT_ARG_ERROR}, got {result.returncode}"
    assert "file not found" in result.stderr.decode(errors='ignore').lower()
    assert not (tmp_path / "present.txt.encrypted").exists()


def test_directory_mode_with_env_password_and_skip_e2e(tmp_path: Path):
    """Encrypts a directory tree recursively, then re-runs with --conflict skip."""
    docs = tmp_path / "docs"
    (docs / "nested").mkdir(parents=True)
    (docs / "a.txt").write_bytes(b"alpha")
    (docs / "nested" / "b.txt").write_bytes(b"bravo")
    (docs / "ignored.log").write_bytes(b"log")
    env = dict(os.environ, BATCHCRYPT_TEST_PASSWORD=TEST_PASSWORD_CORRECT.decode())
    args = ["encrypt", "-d", str(docs), "--filter", "*.txt", "-r",
            "--password-env", "BATCHCRYPT_TEST_PASSWORD"] + FAST_KDF

    first_run = run_batchcrypt_cli(args, env=env)
    assert first_run.returncode == EXIT_SUCCESS
    assert (docs / "a.txt.encrypted").exists()
    assert (docs / "nested" / "b.txt.encrypted").exists()
    assert not (docs / "ignored.log.encrypted").exists()
    original = (docs / "a.txt.encrypted").read_bytes()

    second_run = run_batchcrypt_cli(args + ["--conflict", "skip"], env=env)
    assert second_run.returncode == EXIT_SUCCESS
    assert b"2 skipped" in second_run.stdout
    assert (docs / "a.txt.encrypted").read_bytes() == original


def test_password_stdin_and_streaming_e2e(tmp_path: Path):
    """Forces streaming mode and reads the password from piped stdin."""
    input_file = tmp_path / "large.bin"
    data = os.urandom(200_000)
    input_file.write_bytes(data)

    result_enc = run_batchcrypt_cli(
        ["encrypt", "-f", str(input_file), "--stream", "--chunk-size", "16384", "--password-stdin"] + FAST_KDF,
        input_data=TEST_PASSWORD_CORRECT + b"\n")
    assert result_enc.returncode == EXIT_SUCCESS
    assert b"1 streamed" in result_enc.stdout

    input_file.unlink()
    result_dec = run_batchcrypt_cli(
        ["decrypt", "-f", str(input_file) + ".encrypted", "--password-stdin"],
        input_data=TEST_PASSWORD_CORRECT + b"\n")
    assert result_dec.returncode == EXIT_SUCCESS
    assert input_file.read_bytes() == data


def test_dry_run_writes_nothing_e2e(tmp_path: Path):
    input_file = tmp_path / "plan.txt"
    password_file = tmp_path / "pass.key"
    input_file.write_bytes(PLAINTEXT_CONTENT)
    password_file.write_bytes(TEST_PASSWORD_CORRECT)

    result = run_batchcrypt_cli(["encrypt", "-f", str(input_file), "--password-file", str(password_file), "--dry-run"])

    assert result.returncode == EXIT_SUCCESS
    assert b"Dry run" in result.stdout
    assert sorted(p.name for p in tmp_path.iterdir()) == ["pass.key", "plan.txt"]


def test_invalid_arguments_e2e(tmp_path: Path):
    """argparse rejects a bad chunk size and an unknown conflict strategy."""
    input_file = tmp_path / "x.txt"
    input_file.write_bytes(b"x")
    for extra in (["--chunk-size", "0"], ["--conflict", "merge"]):
        result = run_batchcrypt_cli(["encrypt", "-f", str(input_file), "--password-env", "UNUSED"] + extra)
        assert result.returncode != EXIT_SUCCESS
    assert not (tmp_path / "x.txt.encrypted").exists()
