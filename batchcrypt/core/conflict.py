# batchcrypt/core/conflict.py
# -*- coding: utf-8 -*-
"""
Conflict resolution for output paths that already exist.

The resolver only decides; the single side effect it performs on request is
moving an existing destination aside for the ``backup`` strategy.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from Crypto.Hash import SHA256

from .filesystem import LocalFilesystem
from ..utils.constants import (
    RENAME_SUFFIX_PATTERN, MAX_RENAME_ATTEMPTS, BACKUP_SUFFIX, CHECKSUM_READ_SIZE
)
from ..utils.exceptions import ConflictUnresolvedError

logger = logging.getLogger(__name__)

# Claims a candidate output path; False means another writer already holds it
Reserve = Callable[[str], bool]


class ConflictStrategy(str, Enum):
    SKIP = "skip"
    OVERWRITE = "overwrite"
    RENAME = "rename"
    BACKUP = "backup"
    NEWER = "newer"
    OLDER = "older"
    LARGER = "larger"
    SMALLER = "smaller"
    SKIP_IDENTICAL = "skip-identical"


_DESCRIPTIONS = {
    ConflictStrategy.SKIP: "Leave the existing file untouched and skip",
    ConflictStrategy.OVERWRITE: "Replace the existing file",
    ConflictStrategy.RENAME: "Write to a numbered name instead (e.g. file_1.txt)",
    ConflictStrategy.BACKUP: "Move the existing file to a .bak name, then write",
    ConflictStrategy.NEWER: "Overwrite only if the source is newer",
    ConflictStrategy.OLDER: "Overwrite only if the source is older",
    ConflictStrategy.LARGER: "Overwrite only if the source is larger",
    ConflictStrategy.SMALLER: "Overwrite only if the source is smaller",
    ConflictStrategy.SKIP_IDENTICAL: "Skip if contents are identical (SHA-256), otherwise overwrite",
}

_ALIASES = {"keep-newer": "newer", "keep-older": "older", "keep-larger": "larger", "keep-smaller": "smaller"}


def parse_conflict_strategy(value: "str | ConflictStrategy") -> ConflictStrategy:
    """
    Parses a strategy name ('rename', 'keep_newer', 'SKIP-IDENTICAL', ...).

    Raises:
        ConflictUnresolvedError: For an unknown strategy.
    """
    if isinstance(value, ConflictStrategy):
        return value
    normalized = str(value).strip().lower().replace("_", "-")
    normalized = _ALIASES.get(normalized, normalized)
    try:
        return ConflictStrategy(normalized)
    except ValueError:
        raise ConflictUnresolvedError(f"Unknown conflict strategy: {value!r}") from None


def available_strategies() -> list[tuple[str, str]]:
    return [(strategy.value, _DESCRIPTIONS[strategy]) for strategy in ConflictStrategy]


@dataclass(frozen=True)
class FileStat:
    size: int
    mtime: float
    checksum: str | None = None


@dataclass(frozen=True)
class ConflictRecord:
    source: str
    destination: str
    operation: str
    source_stat: FileStat
    destination_stat: FileStat
    is_identical: bool | None = None


@dataclass(frozen=True)
class Resolution:
    action: str  # proceed | skip | rename | backup
    reason: str
    new_destination: str | None = None
    backup_path: str | None = None


def file_checksum(path: str, fs=None) -> str:
    """SHA-256 hex digest of a file, read in blocks."""
    fs = fs or LocalFilesystem()
    digest = SHA256.new()
    with fs.open_read(path) as stream:
        while block := stream.read(CHECKSUM_READ_SIZE):
            digest.update(block)
    return digest.hexdigest()


def numbered_name(path: str, attempt: int, pattern: str = RENAME_SUFFIX_PATTERN) -> str:
    """``dir/report.txt`` with attempt 2 -> ``dir/report_2.txt``."""
    directory, basename = os.path.split(path)
    stem, ext = os.path.splitext(basename)
    return os.path.join(directory, f"{stem}{pattern.replace('$n', str(attempt))}{ext}")


class ConflictResolver:
    """Decides what happens when an output path already exists."""

    def __init__(
        self,
        strategy: "str | ConflictStrategy" = ConflictStrategy.OVERWRITE,
        rename_pattern: str = RENAME_SUFFIX_PATTERN,
        max_attempts: int = MAX_RENAME_ATTEMPTS,
        backup_suffix: str = BACKUP_SUFFIX,
        fs=None
    ):
        self.strategy = parse_conflict_strategy(strategy)
        if "$n" not in rename_pattern:
            raise ConflictUnresolvedError(f"Rename pattern must contain '$n': {rename_pattern!r}")
        if max_attempts <= 0:
            raise ConflictUnresolvedError("Maximum rename attempts must be positive.")
        if not backup_suffix:
            raise ConflictUnresolvedError("Backup suffix must not be empty.")
        self.rename_pattern = rename_pattern
        self.max_attempts = max_attempts
        self.backup_suffix = backup_suffix
        self.fs = fs or LocalFilesystem()

    def has_conflict(self, path: str) -> bool:
        return self.fs.exists(path)

    def _stat(self, path: str, with_checksum: bool) -> FileStat:
        checksum = file_checksum(path, self.fs) if with_checksum else None
        return FileStat(size=self.fs.size(path), mtime=self.fs.mtime(path), checksum=checksum)

    def detect_conflict(self, source: str, destination: str, operation: str) -> ConflictRecord | None:
        """Returns a ConflictRecord if ``destination`` exists, else None."""
        if not self.has_conflict(destination):
            return None
        needs_checksum = self.strategy is ConflictStrategy.SKIP_IDENTICAL
        source_stat = self._stat(source, needs_checksum)
        destination_stat = self._stat(destination, needs_checksum)
        is_identical = None
        if needs_checksum:
            is_identical = source_stat.checksum == destination_stat.checksum
        logger.debug(f"Conflict detected for {operation}: {destination} already exists.")
        return ConflictRecord(source, destination, operation, source_stat, destination_stat, is_identical)

    def _unused_name(self, candidates, what: str, reserve: Reserve | None = None) -> str:
        for candidate in candidates:
            if self.fs.exists(candidate):
                continue
            if reserve is None or reserve(candidate):
                return candidate
        raise ConflictUnresolvedError(f"Could not find an unused {what} after {self.max_attempts} attempts.")

    def _rename(self, destination: str, reserve: Reserve | None, reason: str) -> Resolution:
        new_path = self._unused_name(
            (numbered_name(destination, n, self.rename_pattern) for n in range(1, self.max_attempts + 1)),
            "name for " + destination, reserve
        )
        return Resolution("rename", f"{reason}: {os.path.basename(new_path)}", new_destination=new_path)

    def resolve_batch_collision(self, destination: str, reserve: Reserve | None = None) -> Resolution:
        """
        Resolves a destination that another file of the same batch already
        writes to. Only skip and rename apply, since the other output may
        still be incomplete.

        Raises:
            ConflictUnresolvedError: For every other strategy, or when rename runs out of names.
        """
        if self.strategy is ConflictStrategy.SKIP:
            return Resolution("skip", "Another file in this batch writes to the same destination, skipping")
        if self.strategy is ConflictStrategy.RENAME:
            return self._rename(destination, reserve, "Renamed to avoid a collision within the batch")
        raise ConflictUnresolvedError(
            f"Another file in this batch already writes to {destination} (strategy '{self.strategy.value}').")

    def _compare(self, proceed: bool, yes: str, no: str) -> Resolution:
        return Resolution("proceed", yes) if proceed else Resolution("skip", no)

    def resolve_conflict(self, record: ConflictRecord, reserve: Reserve | None = None) -> Resolution:
        """
        Maps a conflict to a Resolution according to the configured strategy.

        ``reserve(path) -> bool`` lets a batch claim a rename candidate; a
        candidate it refuses is treated as taken.

        Raises:
            ConflictUnresolvedError: When rename/backup run out of candidate names.
        """
        strategy = self.strategy
        src, dst = record.source_stat, record.destination_stat

        if strategy is ConflictStrategy.SKIP:
            return Resolution("skip", "Destination exists, skipping")
        if strategy is ConflictStrategy.OVERWRITE:
            return Resolution("proceed", "Overwriting existing file")
        if strategy is ConflictStrategy.RENAME:
            return self._rename(record.destination, reserve, "Renamed to avoid conflict")
        if strategy is ConflictStrategy.BACKUP:
            base = record.destination + self.backup_suffix
            backup_path = self._unused_name(
                [base] + [f"{base}.{n}" for n in range(1, self.max_attempts)],
                "backup name for " + record.destination
            )
            return Resolution("backup", "Backing up existing file before overwriting", backup_path=backup_path)
        if strategy is ConflictStrategy.NEWER:
            return self._compare(src.mtime > dst.mtime, "Source is newer, overwriting", "Destination is newer, skipping")
        if strategy is ConflictStrategy.OLDER:
            return self._compare(src.mtime < dst.mtime, "Source is older, overwriting", "Destination is older, skipping")
        if strategy is ConflictStrategy.LARGER:
            return self._compare(src.size > dst.size, "Source is larger, overwriting", "Destination is larger, skipping")
        if strategy is ConflictStrategy.SMALLER:
            return self._compare(src.size < dst.size, "Source is smaller, overwriting", "Destination is smaller, skipping")
        if strategy is ConflictStrategy.SKIP_IDENTICAL:
            return self._compare(not record.is_identical, "Files differ, overwriting", "Files are identical, skipping")
        raise ConflictUnresolvedError(f"Unhandled conflict strategy: {strategy}")

    def apply_backup(self, record: ConflictRecord, resolution: Resolution) -> None:
        """Moves the existing destination to ``resolution.backup_path``."""
        logger.info(f"Backing up {record.destination} -> {resolution.backup_path}")
        self.fs.replace(record.destination, resolution.backup_path)

    def restore_backup(self, record: ConflictRecord, resolution: Resolution) -> None:
        """Puts a backed-up destination back after the primary operation failed."""
        if resolution.backup_path and self.fs.exists(resolution.backup_path) and not self.fs.exists(record.destination):
            logger.warning(f"Restoring {record.destination} from backup after failure.")
            self.fs.replace(resolution.backup_path, record.destination)
