# exceptions.py
# -*- coding: utf-8 -*-
"""Custom exception classes for the batchcrypt application."""

class CryptoBatchError(Exception):
    """Base class for application-specific errors."""
    pass

class ArgumentError(CryptoBatchError):
    """Error related to invalid arguments or configuration."""
    pass

class FileAccessError(CryptoBatchError):
    """Error related to file access (not found, permissions, I/O)."""
    pass

class DecryptionError(CryptoBatchError):
    """Authentication tag mismatch (bad password, corrupted data) or malformed container."""
    pass

class ConflictUnresolvedError(CryptoBatchError):
    """An existing output path could not be resolved by the conflict strategy."""
    pass

class OperationCancelledError(CryptoBatchError):
    """The batch was cancelled before or while this file was processed."""
    pass

class PasswordSourceError(CryptoBatchError):
    """A password could not be obtained from its source (prompt, file, keychain...)."""
    pass
