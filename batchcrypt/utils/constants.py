# constants.py
# -*- coding: utf-8 -*-
"""Defines constants used throughout the batchcrypt application."""

# --- AES-GCM Parameters ---
AES_KEY_BYTES: int = 32  # AES-256 key size in bytes
GCM_IV_BYTES: int = 12   # Recommended IV size for GCM (96 bits)
GCM_TAG_BYTES: int = 16  # Standard GCM authentication tag size (128 bits)

# Streaming nonces: random per-file prefix + big-endian chunk counter
STREAM_NONCE_PREFIX_BYTES: int = 8
MAX_STREAM_CHUNKS: int = 2 ** (8 * (GCM_IV_BYTES - STREAM_NONCE_PREFIX_BYTES))

# --- Key Derivation Parameters ---
SALT_BYTES: int = 16     # Size of the salt for key derivation

KDF_PBKDF2: str = "pbkdf2"
KDF_ARGON2ID: str = "argon2id"
SUPPORTED_KDFS: tuple[str, ...] = (KDF_PBKDF2, KDF_ARGON2ID)

# PBKDF2-HMAC-SHA256 iteration counts (stored in the header in thousands)
DEFAULT_PBKDF2_ITERATIONS: int = 600_000
MIN_PBKDF2_ITERATIONS: int = 100_000
MAX_PBKDF2_ITERATIONS: int = 10_000_000
PBKDF2_ITERATION_UNIT: int = 1000

# Argon2 Parameters (time cost is stored in the header, the rest is fixed)
ARGON2_TIME_COST: int = 3
MIN_ARGON2_TIME_COST: int = 2
MAX_ARGON2_TIME_COST: int = 32
ARGON2_MEMORY_COST_KIB: int = 65536  # 64 MiB
ARGON2_PARALLELISM: int = 4

# --- Container Format ---
FORMAT_VERSION_PBKDF2: int = 1
FORMAT_VERSION_ARGON2ID: int = 2
MODE_WHOLE_FILE: int = 0
MODE_STREAMING: int = 1
MAX_HEADER_COST: int = 0xFFFF          # 2-byte cost field
MAX_RECORD_LENGTH: int = 0xFFFFFFFF    # 4-byte ciphertext length field
ENCRYPTED_EXTENSION: str = ".encrypted"
DECRYPTED_EXTENSION: str = ".decrypted"
PARTIAL_SUFFIX: str = ".part"

# --- File I/O ---
CHUNK_SIZE: int = 64 * 1024                   # default streaming chunk (64 KiB)
MIN_CHUNK_SIZE: int = 16 * 1024
MAX_CHUNK_SIZE: int = 1024 * 1024
STREAMING_THRESHOLD: int = 10 * 1024 * 1024   # auto-stream above 10 MiB
MAX_BUFFER_SIZE: int = 512 * 1024 * 1024      # whole-file in-memory ceiling
CHECKSUM_READ_SIZE: int = 1024 * 1024

# --- Batch / Conflict Defaults ---
DEFAULT_CONCURRENCY: int = 4
DEFAULT_CONFLICT_STRATEGY: str = "overwrite"
RENAME_SUFFIX_PATTERN: str = "_$n"
MAX_RENAME_ATTEMPTS: int = 100
BACKUP_SUFFIX: str = ".bak"

# --- Exit Codes ---
# Standard exit codes for shell script compatibility and error identification
EXIT_SUCCESS: int = 0        # Operation completed successfully
EXIT_GENERIC_ERROR: int = 1  # Generic or unexpected runtime error
EXIT_FILE_ERROR: int = 2     # File access/IO error (e.g., not found, permission denied)
EXIT_AUTH_ERROR: int = 3     # Decryption error (bad password, MAC check fail, bad header)
EXIT_ARG_ERROR: int = 4      # Invalid command-line arguments or configuration error
EXIT_CONFLICT_ERROR: int = 5 # Output conflict could not be resolved
EXIT_INTERRUPT: int = 130    # Process interrupted by user (commonly Ctrl+C -> SIGINT)
