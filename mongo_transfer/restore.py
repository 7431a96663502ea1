"""
Import through mongorestore, plus archive previews

Three input shapes are handled (see classifier.classify_import_path): a single
archive, a directory of per-job archives written by a multi-job export, and a
raw mongodump directory.
"""

import os
from dataclasses import dataclass, field

from pymongo import MongoClient
from rich.console import Console

from .classifier import ImportKind, ImportTarget, classify_import_path
from .constants import MONGORESTORE
from .control import CancellationToken, TransferRegistry
from .events import EventEmitter, Phase, ProgressTracker
from .exceptions import ToolFailedError, TransferCancelled
from .masking import mask_uri_credentials
from .models import ArchivePreview, CollectionImportResult, ImportResult
from .settings import TransferConfig
from .tools import (
    ARCHIVE_PRELUDE,
    CONTINUE_ERROR,
    RESTORE_DONE,
    RESTORE_FAILED,
    RESTORE_TOTAL,
    ProcessRunner,
    find_tool,
    scan_line,
)
from .uri import build_tool_uri, tool_uri_for_job

console = Console(stderr=True)


@dataclass
class RestoreOptions:
    """What to restore and how"""
    input_path: str
    database: str | None = None
    collection: str | None = None
    drop: bool = False
    dry_run: bool = False
    ns_include: list[str] = field(default_factory=list)
    # Archive file names to restore from an archive directory (empty = all)
    files: list[str] = field(default_factory=list)


def _scope_args(uri: str, options: RestoreOptions) -> list[str]:
    args = [f"--uri={tool_uri_for_job(uri, options.database)}"]
    if options.database:
        args.append(f"--db={options.database}")
    if options.collection:
        args.append(f"--collection={options.collection}")
    if options.drop:
        args.append('--drop')
    return args


def build_archive_args(uri: str, archive_path: str, options: RestoreOptions) -> list[str]:
    """mongorestore arguments for one gzip archive"""
    args = _scope_args(uri, options)
    args[1:1] = [f"--archive={archive_path}", '--gzip']
    if options.dry_run:
        args.append('--dryRun')
    for namespace in options.ns_include:
        args.append(f"--nsInclude={namespace}")
    return args


def build_dir_args(uri: str, dump_dir: str, gzip: bool, options: RestoreOptions) -> list[str]:
    """mongorestore arguments for a raw mongodump directory"""
    args = _scope_args(uri, options)
    args.insert(1, f"--dir={dump_dir}")
    if gzip:
        args.append('--gzip')
    if options.dry_run:
        args.append('--dryRun')
    for namespace in options.ns_include:
        args.append(f"--nsInclude={namespace}")
    return args


class RestoreImporter:
    """Runs mongorestore for one of the supported input shapes"""

    def __init__(
        self,
        mongo_uri: str,
        registry: TransferRegistry,
        emitter: EventEmitter,
        client: MongoClient | None = None,
        config: TransferConfig | None = None,
        runner: ProcessRunner | None = None,
    ):
        self.mongo_uri = mongo_uri
        self.registry = registry
        self.emitter = emitter
        self.client = client
        self.config = config or TransferConfig()
        self.runner = runner or ProcessRunner(self.config.stderr_buffer_lines)

    def restore(self, options: RestoreOptions, job_id: str | None = None) -> ImportResult:
        """
        Restore options.input_path into the connected server.

        A failing archive inside an archive directory does not stop the batch:
        its error is recorded as "<file name>: <message>" in the result.
        """
        tool = find_tool(MONGORESTORE)
        target = classify_import_path(options.input_path, self.config.gzip_scan_depth)
        uri = build_tool_uri(self.mongo_uri, self.client)

        with self.registry.track('import', job_id) as token:
            entries = self._selected_entries(target, options)
            tracker = ProgressTracker(self.emitter, 'import', token.job_id, batch_total=len(entries) or 1)
            try:
                if target.kind is ImportKind.ARCHIVE_DIRECTORY:
                    result = self._restore_archive_dir(tool, uri, target, entries, options, token, tracker)
                elif target.kind is ImportKind.ARCHIVE:
                    args = build_archive_args(uri, target.path, options)
                    result = self._run_mongorestore(tool, args, token, tracker)
                else:
                    args = build_dir_args(uri, target.path, target.gzip, options)
                    result = self._run_mongorestore(tool, args, token, tracker)
            except TransferCancelled:
                tracker.cancelled()
                raise

            tracker.complete(
                recordsInserted=result.records_inserted,
                recordsFailed=result.records_failed,
                errors=list(result.errors),
            )
            return result

    @staticmethod
    def _selected_entries(target: ImportTarget, options: RestoreOptions) -> list[str]:
        if target.kind is not ImportKind.ARCHIVE_DIRECTORY:
            return []
        if not options.files:
            return list(target.entries)
        wanted = set(options.files)
        return [name for name in target.entries if name in wanted]

    def _restore_archive_dir(
        self,
        tool: str,
        uri: str,
        target: ImportTarget,
        entries: list[str],
        options: RestoreOptions,
        token: CancellationToken,
        tracker: ProgressTracker,
    ) -> ImportResult:
        combined = ImportResult()

        for index, name in enumerate(entries, start=1):
            # Archive boundary
            if not self.registry.checkpoint(token):
                raise TransferCancelled(token.job_id, kind='import')

            args = build_archive_args(uri, os.path.join(target.path, name), options)
            try:
                result = self._run_mongorestore(
                    tool, args, token, tracker,
                    batch_index=index,
                    offset=combined.records_inserted,
                )
            except ToolFailedError as e:
                console.print(f"[yellow]⚠ {name}: {e}[/yellow]")
                if e.result is not None:
                    combined.merge(e.result)
                combined.add_error(f"{name}: {e}")
                continue
            combined.merge(result)

        return combined

    def _run_mongorestore(
        self,
        tool: str,
        args: list[str],
        token: CancellationToken,
        tracker: ProgressTracker,
        batch_index: int = 1,
        offset: int = 0,
    ) -> ImportResult:
        """One mongorestore invocation, with its stderr folded into an ImportResult"""
        result = ImportResult()
        tracker.progress(Phase.IMPORTING, current=offset, batch_index=batch_index, processed_records=offset)

        def on_line(line: str):
            for name, match in scan_line(line):
                if name == RESTORE_DONE:
                    database, collection = match.group(1), match.group(2)
                    restored, failed = int(match.group(3)), int(match.group(4))
                    result.database(database).collections.append(
                        CollectionImportResult(name=collection, records_inserted=restored)
                    )
                    result.records_inserted += restored
                    result.records_failed += failed
                    tracker.progress(
                        Phase.IMPORTING,
                        database=database,
                        collection=collection,
                        current=offset + result.records_inserted,
                        batch_index=batch_index,
                        processed_records=offset + result.records_inserted,
                    )
                elif name == RESTORE_TOTAL:
                    result.records_inserted = int(match.group(1))
                elif name == RESTORE_FAILED:
                    result.records_failed = int(match.group(1))
                elif name == CONTINUE_ERROR:
                    result.add_error(mask_uri_credentials(line))

        run = self.runner.run([tool, *args], token, on_line)
        run.raise_for_status(MONGORESTORE, token, kind='import', result=result)
        if token.cancelled:
            raise TransferCancelled(token.job_id, kind='import')
        return result

    def preview(self, archive_path: str) -> ArchivePreview:
        """
        List the namespaces inside an archive with `mongorestore --dryRun --verbose`.

        The run is bounded by the preview timeout. Whatever was listed before a
        failure or timeout is returned; only an empty listing is an error.
        """
        tool = find_tool(MONGORESTORE)
        uri = build_tool_uri(self.mongo_uri, self.client)
        preview = ArchivePreview()

        def on_line(line: str):
            for name, match in scan_line(line):
                if name == ARCHIVE_PRELUDE:
                    preview.add_namespace(match.group(1), match.group(2))

        args = [f"--uri={uri}", f"--archive={archive_path}", '--gzip', '--dryRun', '--verbose']
        run = self.runner.run(
            [tool, *args],
            on_line=on_line,
            timeout=self.config.preview_timeout,
            buffer_lines=self.config.preview_buffer_lines,
        )
        if not run.ok and not preview.databases:
            run.raise_for_status(f"{MONGORESTORE} preview")
        return preview
