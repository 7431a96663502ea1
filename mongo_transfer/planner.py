"""
Expand a user selection into transfer jobs and decide the output layout
"""

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from .constants import ARCHIVE_EXTENSION, STRIPPED_EXTENSIONS
from .formatting import format_namespace


@dataclass
class TransferJob:
    """One atomic database/collection-scoped transfer"""
    database: str | None = None
    collection: str | None = None
    exclude_collections: list[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return format_namespace(self.database, self.collection)

    def file_name(self, extension: str = ARCHIVE_EXTENSION) -> str:
        """Per-job file name inside a multi-job output directory"""
        if self.collection:
            return f"{self.database}.{self.collection}{extension}"
        if self.database:
            return f"{self.database}{extension}"
        return f"all{extension}"


@dataclass
class ExportSelection:
    """
    What the user picked for export.

    database_exclusions maps database name -> collections to leave out and
    takes precedence over every other field.
    """
    database: str | None = None
    databases: list[str] = field(default_factory=list)
    collections: list[str] = field(default_factory=list)
    exclude_collections: list[str] = field(default_factory=list)
    database_exclusions: dict[str, list[str]] = field(default_factory=dict)


def plan_jobs(selection: ExportSelection) -> list[TransferJob]:
    """
    Resolve a selection into an ordered job list. First matching rule wins:

    1. per-database exclusion map -> one job per database with its exclusions
    2. one database + exclusions  -> one job
    3. one database + collections -> one job per collection, in order
    4. one database               -> one job
    5. several databases          -> one job per database
    6. nothing selected           -> one job dumping everything
    """
    if selection.database_exclusions:
        return [
            TransferJob(database=db, exclude_collections=list(excluded or []))
            for db, excluded in selection.database_exclusions.items()
        ]

    if selection.database and selection.exclude_collections:
        return [TransferJob(database=selection.database,
                            exclude_collections=list(selection.exclude_collections))]

    if selection.database and selection.collections:
        return [TransferJob(database=selection.database, collection=coll) for coll in selection.collections]

    if selection.database:
        return [TransferJob(database=selection.database)]

    if selection.databases:
        return [TransferJob(database=db) for db in selection.databases]

    return [TransferJob()]


def strip_archive_extension(path: str) -> str:
    """Remove one trailing archive-style extension (case-insensitive)"""
    lowered = path.lower()
    for ext in STRIPPED_EXTENSIONS:
        if lowered.endswith(ext):
            return path[:-len(ext)]
    return path


def ensure_extension(path: str, extension: str) -> str:
    """Append extension unless the path already ends with it (case-insensitive)"""
    if path.lower().endswith(extension.lower()):
        return path
    return path + extension


@dataclass
class JobBatch:
    """Jobs sharing one output target: a directory when there are several jobs"""
    jobs: list[TransferJob]
    output_path: str
    extension: str = ARCHIVE_EXTENSION
    created_directory: bool = field(default=False, init=False)

    @property
    def is_directory(self) -> bool:
        return len(self.jobs) > 1

    def job_output_path(self, job: TransferJob) -> str:
        if self.is_directory:
            return os.path.join(self.output_path, job.file_name(self.extension))
        return self.output_path

    def prepare(self):
        """Create the output directory (or the parent of the output file)"""
        if self.is_directory:
            directory = Path(self.output_path)
            self.created_directory = not directory.exists()
            directory.mkdir(parents=True, exist_ok=True)
        else:
            Path(self.output_path).parent.mkdir(parents=True, exist_ok=True)

    def cleanup(self):
        """
        Remove the files this batch writes.

        The output directory itself is removed only when prepare() created it;
        anything else already in a pre-existing directory is left alone.
        """
        if not self.is_directory:
            Path(self.output_path).unlink(missing_ok=True)
            return

        for job in self.jobs:
            Path(self.job_output_path(job)).unlink(missing_ok=True)
        if self.created_directory:
            shutil.rmtree(self.output_path, ignore_errors=True)


def plan_batch(jobs: list[TransferJob], output_path: str, extension: str = ARCHIVE_EXTENSION) -> JobBatch:
    """
    Decide the output layout for a job list.

    More than one job writes one file per job into a directory derived from
    output_path (archive extension stripped); a single job writes output_path
    itself, with the canonical extension appended when missing.
    """
    if not jobs:
        raise ValueError("cannot plan an empty batch")

    if len(jobs) > 1:
        return JobBatch(jobs=jobs, output_path=strip_archive_extension(output_path), extension=extension)
    return JobBatch(jobs=jobs, output_path=ensure_extension(output_path, extension), extension=extension)
