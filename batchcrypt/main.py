#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Main entry point for the batchcrypt CLI application."""

import argparse
import sys
import logging

from .cli.handlers import handle_encrypt, handle_decrypt
from .core.conflict import available_strategies
from .utils.constants import (
    CHUNK_SIZE, STREAMING_THRESHOLD, DEFAULT_CONCURRENCY, DEFAULT_CONFLICT_STRATEGY,
    SUPPORTED_KDFS, KDF_PBKDF2, EXIT_SUCCESS, EXIT_GENERIC_ERROR
)

__version__ = "0.2.0"


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than zero: {value}")
    return number


def _add_batch_arguments(command: argparse.ArgumentParser, verb: str) -> None:
    """Arguments shared by the encrypt and decrypt commands."""
    source = command.add_mutually_exclusive_group(required=True)
    source.add_argument('-f', '--files', nargs='+', metavar='FILE', help=f'Files to {verb}.')
    source.add_argument('-d', '--directory', metavar='DIR', help=f'{verb.capitalize()} all matching files in a directory.')
    command.add_argument('--filter', metavar='GLOB', help='Filename pattern used with --directory (e.g. "*.txt").')
    command.add_argument('-r', '--recursive', action='store_true', help='Descend into subdirectories with --directory.')
    command.add_argument('-o', '--output', metavar='DIR', default=None, help='Output directory (default: next to each input).')

    pw_group = command.add_mutually_exclusive_group(required=True)
    pw_group.add_argument('--password-interactive', action='store_true', help='Prompt for password interactively.')
    pw_group.add_argument('--password-file', type=str, metavar='FILE', help='File containing the password.')
    pw_group.add_argument('--password-stdin', action='store_true', help='Read password from stdin.')
    pw_group.add_argument('--password-env', metavar='VAR', help='Read password from an environment variable.')

    command.add_argument('--parallel', type=positive_int, default=DEFAULT_CONCURRENCY, metavar='N',
                         help=f'Number of files processed concurrently (default: {DEFAULT_CONCURRENCY}).')
    command.add_argument('--stream', action='store_true', help='Force streaming (chunked) mode.')
    command.add_argument('--chunk-size', type=positive_int, default=CHUNK_SIZE, metavar='BYTES',
                         help=f'Chunk size for streaming (default: {CHUNK_SIZE}).')
    command.add_argument('--stream-threshold', type=positive_int, default=STREAMING_THRESHOLD, metavar='BYTES',
                         help=f'File size above which streaming is used (default: {STREAMING_THRESHOLD}).')
    command.add_argument('--conflict', default=DEFAULT_CONFLICT_STRATEGY,
                         choices=[name for name, _ in available_strategies()],
                         help=f'What to do when an output file exists (default: {DEFAULT_CONFLICT_STRATEGY}).')
    command.add_argument('--kdf', choices=SUPPORTED_KDFS, default=KDF_PBKDF2,
                         help='Key derivation function for new files (decryption reads it from the file).')
    command.add_argument('--iterations', type=positive_int, default=None, metavar='N',
                         help='PBKDF2 iterations (multiple of 1000, 100000-10000000) or Argon2 time cost (2-32).')
    command.add_argument('--dry-run', action='store_true', help='Show what would be done without writing anything.')


def create_parser():
    """Creates and configures the argument parser."""
    strategies = "\n".join(f"  {name:<15} {description}" for name, description in available_strategies())
    parser = argparse.ArgumentParser(
        prog="batchcrypt",
        description="Password-based AES-256-GCM batch file encryption.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""Examples:
  batchcrypt encrypt -f a.txt b.bin --password-interactive
  batchcrypt encrypt -d ./docs --filter '*.pdf' -o ./vault --password-file pass.txt --parallel 8
  echo 'mypassword' | batchcrypt decrypt -d ./vault --password-stdin --conflict rename

Conflict strategies:
{strategies}
"""
    )
    parser.add_argument('-V', '--version', action='version', version=f'%(prog)s {__version__}')

    # --- Logging Control Group ---
    log_level_group = parser.add_mutually_exclusive_group()
    log_level_group.add_argument(
        '-q', '--quiet',
        action='store_const',
        const=logging.ERROR,
        dest='log_level',
        help='Show only error messages.'
    )
    log_level_group.add_argument(
        '-v', '--verbose',
        action='store_const',
        const=logging.DEBUG,
        dest='log_level',
        help='Show detailed debug messages.'
    )
    parser.set_defaults(log_level=logging.INFO) # Default log level

    # --- Subparsers ---
    subparsers = parser.add_subparsers(dest='command', help='Available commands (encrypt/decrypt)', required=True)

    parser_encrypt = subparsers.add_parser('encrypt', aliases=['enc'], help='Encrypt one or more files.')
    _add_batch_arguments(parser_encrypt, 'encrypt')
    parser_encrypt.set_defaults(func=handle_encrypt, command='encrypt')

    parser_decrypt = subparsers.add_parser('decrypt', aliases=['dec'], help='Decrypt one or more files.')
    _add_batch_arguments(parser_decrypt, 'decrypt')
    parser_decrypt.set_defaults(func=handle_decrypt, command='decrypt')

    return parser

def main(argv=None):
    """Main execution function: parses arguments, sets up logging, and calls the appropriate handler."""
    parser = create_parser()
    exit_code = EXIT_SUCCESS # Default to success

    try:
        args = parser.parse_args(argv)

        # --- Configure Logging ---
        log_level = args.log_level
        log_format = '%(asctime)s - %(levelname)s - %(message)s'
        # Use a more detailed format for debug level
        if log_level <= logging.DEBUG:
            log_format = '%(asctime)s - %(levelname)s - [%(name)s:%(lineno)d] - %(message)s'

        # Configure the root logger to output to stderr.
        logging.basicConfig(level=log_level, format=log_format, stream=sys.stderr, force=True)

        logging.debug(f"Log level set to: {logging.getLevelName(log_level)}")
        logging.debug(f"Command: {args.command}")
        # Security: never log the args object itself, it may point at password material.

        exit_code = args.func(args)

    except SystemExit as e:
        # Normal exits from argparse help/version, or Ctrl+C during password entry
        exit_code = e.code if e.code is not None else EXIT_SUCCESS
    except Exception as e:
        logging.critical(f"An unhandled exception reached main: {e}", exc_info=True)
        print(f"\nCritical Error: An unexpected error occurred. Use --verbose for more details or check logs.", file=sys.stderr)
        exit_code = EXIT_GENERIC_ERROR
    finally:
        logging.debug(f"Exiting with code: {exit_code}")
    sys.exit(exit_code)

if __name__ == "__main__":
    main()
