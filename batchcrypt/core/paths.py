# batchcrypt/core/paths.py
# -*- coding: utf-8 -*-
"""Derives encrypted/decrypted output paths from input paths. Pure, no I/O."""

import os

from ..utils.constants import ENCRYPTED_EXTENSION, DECRYPTED_EXTENSION


def encrypted_path(input_path: str, output_dir: str | None = None) -> str:
    """``notes.txt`` -> ``notes.txt.encrypted``, optionally relocated to ``output_dir``."""
    filename = os.path.basename(input_path) + ENCRYPTED_EXTENSION
    if output_dir:
        return os.path.join(output_dir, filename)
    return input_path + ENCRYPTED_EXTENSION


def decrypted_path(input_path: str, output_dir: str | None = None) -> str:
    """
    Strips the ``.encrypted`` suffix if present. Otherwise ``.decrypted`` is
    appended so an unrelated file of the same name is never overwritten.
    """
    directory, basename = os.path.split(input_path)
    if basename.endswith(ENCRYPTED_EXTENSION) and len(basename) > len(ENCRYPTED_EXTENSION):
        filename = basename[:-len(ENCRYPTED_EXTENSION)]
    else:
        filename = basename + DECRYPTED_EXTENSION
    return os.path.join(output_dir if output_dir else directory, filename)
