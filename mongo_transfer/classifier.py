"""
Decide which kind of restore an input path represents
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .constants import ARCHIVE_EXTENSION, GZIP_EXTENSION, GZIP_SCAN_DEPTH
from .exceptions import TransferError
from .formatting import format_size


class ImportKind(str, Enum):
    """Shapes of restore input"""
    ARCHIVE = 'archive'
    ARCHIVE_DIRECTORY = 'archive_directory'
    DUMP_DIRECTORY = 'dump_directory'


@dataclass
class ImportTarget:
    """A classified restore input"""
    path: str
    kind: ImportKind
    gzip: bool = False
    # Archive file names for ARCHIVE_DIRECTORY inputs
    entries: list[str] = field(default_factory=list)


def list_archive_files(dir_path: str | Path) -> list[str]:
    """Names of the single-file archives directly inside a directory, sorted"""
    try:
        with os.scandir(dir_path) as it:
            names = [
                e.name for e in it
                if e.is_file(follow_symlinks=False) and e.name.endswith(ARCHIVE_EXTENSION)
            ]
    except OSError:
        return []
    return sorted(names)


def dir_contains_gzip_files(dir_path: str | Path, max_depth: int = GZIP_SCAN_DEPTH) -> bool:
    """
    Check (recursively, up to max_depth levels) for .gz payloads, which mean
    the dump was produced with --gzip. Symlinked directories are never followed.
    """
    if max_depth <= 0:
        return False
    try:
        with os.scandir(dir_path) as it:
            entries = list(it)
    except OSError:
        return False

    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            if dir_contains_gzip_files(entry.path, max_depth - 1):
                return True
        elif entry.name.endswith(GZIP_EXTENSION):
            return True
    return False


def classify_import_path(path: str | Path, max_depth: int = GZIP_SCAN_DEPTH) -> ImportTarget:
    """
    Classify a restore input.

    - a regular file is a single archive
    - a directory holding *.archive files is a multi-target archive directory
    - any other directory is a raw mongodump directory, compressed when .gz
      payloads are found within max_depth levels
    """
    path_obj = Path(path)
    try:
        is_dir = path_obj.is_dir()
        path_obj.stat()
    except OSError as e:
        raise TransferError(f"input path not accessible: {e}") from e

    if not is_dir:
        return ImportTarget(path=str(path_obj), kind=ImportKind.ARCHIVE)

    archives = list_archive_files(path_obj)
    if archives:
        return ImportTarget(path=str(path_obj), kind=ImportKind.ARCHIVE_DIRECTORY, entries=archives)

    return ImportTarget(
        path=str(path_obj),
        kind=ImportKind.DUMP_DIRECTORY,
        gzip=dir_contains_gzip_files(path_obj, max_depth),
    )


def scan_import_dir(dir_path: str | Path) -> list[dict[str, Any]]:
    """List the regular files of a directory with their sizes"""
    try:
        with os.scandir(dir_path) as it:
            entries = sorted((e for e in it if e.is_file()), key=lambda e: e.name)
    except OSError as e:
        raise TransferError(f"failed to read directory: {e}") from e

    files = []
    for entry in entries:
        size = entry.stat().st_size
        files.append({
            'name': entry.name,
            'size': size,
            'size_human': format_size(size),
        })
    return files
