# password_utils.py
# -*- coding: utf-8 -*-
"""
Password sources for the CLI. Each source exposes ``get(prompt) -> str`` and
reports failures as PasswordSourceError; the core only ever sees the string.
"""

import getpass
import sys
import logging
import os

from ..utils.constants import EXIT_INTERRUPT
from ..utils.exceptions import FileAccessError, PasswordSourceError

logger = logging.getLogger(__name__)

WEAK_PASSWORD_LENGTH = 12

def _decode(password_bytes: bytes, origin: str) -> str:
    try:
        return password_bytes.decode('utf-8')
    except UnicodeDecodeError as e:
        raise PasswordSourceError(f"Password from {origin} is not valid UTF-8.") from e

def get_interactive_password(prompt: str = "Enter password: ", confirm: bool = True) -> str:
    """
    Prompts the user interactively for a password (and confirmation).

    Raises:
        PasswordSourceError: If passwords do not match, are empty, or input fails.
        SystemExit: If the user cancels with Ctrl+C (exits with EXIT_INTERRUPT).
    """
    try:
        password = getpass.getpass(prompt=prompt)
        if confirm:
            password_confirm = getpass.getpass(prompt="Confirm password: ")
            if password != password_confirm:
                # Avoid logging the password itself, even on mismatch
                logger.error("Interactive password entry failed: passwords mismatch.")
                print("Error: Passwords do not match.", file=sys.stderr)
                raise PasswordSourceError("Passwords do not match.")
        if not password:
            raise PasswordSourceError("Empty password entered.")
        logger.info("Password obtained interactively.")
        return password

    except KeyboardInterrupt:
        print("\nOperation cancelled by user.", file=sys.stderr)
        logger.warning("Password entry cancelled by user (KeyboardInterrupt).")
        sys.exit(EXIT_INTERRUPT) # Exit directly on Ctrl+C during password input
    except EOFError:
        # Handle case where getpass stdin is closed unexpectedly (e.g., redirected from /dev/null)
        msg = "Could not read password from standard input (EOF)."
        logger.error(msg)
        raise PasswordSourceError(msg) from None

def read_password_file(filepath: str) -> str:
    """
    Reads the password from the first line of the specified file.

    Raises:
        FileAccessError: If the file cannot be found or read.
        PasswordSourceError: If the file is empty.
    """
    logger.debug(f"Attempting to read password from file: {filepath}")
    if not os.path.exists(filepath):
        msg = f"Password file not found: {filepath}"
        logger.error(msg)
        raise FileAccessError(msg)
    try:
        with open(filepath, 'rb') as f:
            # Read the first line only and strip the trailing newline
            password_bytes = f.readline().rstrip(b"\r\n")
    except OSError as e:
        msg = f"OS error reading password file {filepath}: {e}"
        logger.error(msg)
        raise FileAccessError(msg) from e

    if not password_bytes:
        msg = f"Password file is empty: {filepath}"
        logger.error(msg)
        raise PasswordSourceError(msg)
    logger.info(f"Password successfully read from file: {filepath}")
    return _decode(password_bytes, filepath)

def read_password_stdin() -> str:
    """
    Reads the password from the first line of standard input.
    Intended for piped input, not interactive use.

    Raises:
        PasswordSourceError: If stdin is a TTY or if no data is received.
    """
    logger.debug("Attempting to read password from stdin.")
    if sys.stdin is None or sys.stdin.isatty():
        msg = "Cannot read password from TTY stdin using --password-stdin. Pipe input (e.g., echo 'pass' | ...) or use --password-interactive."
        logger.error(msg)
        raise PasswordSourceError(msg)
    try:
        password_bytes = sys.stdin.buffer.readline().rstrip(b"\r\n")
    except OSError as e:
        raise PasswordSourceError(f"Error reading password from stdin: {e}") from e
    if not password_bytes:
        msg = "No password received from stdin."
        logger.error(msg)
        raise PasswordSourceError(msg)
    logger.info("Password successfully read from stdin.")
    return _decode(password_bytes, "stdin")

def read_password_env(variable: str) -> str:
    """Reads the password from an environment variable."""
    value = os.environ.get(variable)
    if not value:
        msg = f"Environment variable {variable} is not set or empty."
        logger.error(msg)
        raise PasswordSourceError(msg)
    logger.info(f"Password read from environment variable {variable}.")
    return value

def password_warnings(password: str) -> list[str]:
    """Non-blocking strength hints; the core accepts any non-empty password."""
    warnings = []
    if len(password) < WEAK_PASSWORD_LENGTH:
        warnings.append(f"Password is shorter than {WEAK_PASSWORD_LENGTH} characters.")
    classes = sum([
        any(c.islower() for c in password),
        any(c.isupper() for c in password),
        any(c.isdigit() for c in password),
        any(not c.isalnum() for c in password),
    ])
    if classes < 3:
        warnings.append("Mix lower/upper case letters, digits and symbols for a stronger password.")
    return warnings


class StaticPasswordSource:
    """Password supplied up front (tests, API callers)."""

    def __init__(self, password: str):
        self._password = password

    def get(self, prompt: str = "") -> str:
        if not self._password:
            raise PasswordSourceError("No password configured.")
        return self._password


class PromptPasswordSource:
    def __init__(self, confirm: bool = True):
        self.confirm = confirm

    def get(self, prompt: str = "Enter password: ") -> str:
        return get_interactive_password(prompt, confirm=self.confirm)


class FilePasswordSource:
    def __init__(self, filepath: str):
        self.filepath = filepath

    def get(self, prompt: str = "") -> str:
        return read_password_file(self.filepath)


class StdinPasswordSource:
    def get(self, prompt: str = "") -> str:
        return read_password_stdin()


class EnvPasswordSource:
    def __init__(self, variable: str):
        self.variable = variable

    def get(self, prompt: str = "") -> str:
        return read_password_env(self.variable)
