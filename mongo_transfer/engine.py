"""
TransferEngine - the public export/import surface

The engine owns the driver client, the event emitter and one registry per
direction (export, import), each with its own pause gate. Every operation
reports failures as a `<kind>:error` event with masked text before raising.
"""

from typing import Any, Callable, TypeVar

from pymongo import MongoClient
from pymongo.errors import PyMongoError
from rich.console import Console

from .control import TransferRegistry
from .dump import DumpExporter
from .events import CANCELLED, ERROR, PAUSED, RESUMED, EventEmitter, NullEmitter, event_name
from .exceptions import ImportAborted, ToolFailedError, TransferCancelled
from .masking import mask_uri_credentials
from .models import ArchivePreview, ImportResult
from .native import SKIP, NativeExporter, NativeImporter
from .planner import ExportSelection
from .restore import RestoreImporter, RestoreOptions
from .settings import TransferConfig
from .uri import get_username
from .utils import connect_mongo

console = Console(stderr=True)

T = TypeVar('T')


class TransferEngine:
    """Export/import orchestration for one MongoDB connection"""

    def __init__(
        self,
        mongo_uri: str,
        emitter: EventEmitter | None = None,
        config: TransferConfig | None = None,
        client: MongoClient | None = None,
    ):
        """
        Args:
            mongo_uri: MongoDB connection URI
            emitter: receives progress and terminal events (dropped when None)
            config: engine tunables (defaults when None)
            client: an already connected client; connect() creates one otherwise
        """
        self.mongo_uri = mongo_uri
        self.emitter = emitter or NullEmitter()
        self.config = config or TransferConfig()
        self.client = client
        self._owns_client = client is None
        self.exports = TransferRegistry('export')
        self.imports = TransferRegistry('import')

    def connect(self) -> bool:
        """Connect to MongoDB"""
        if self.client is not None:
            return True
        try:
            self.client = connect_mongo(self.mongo_uri)
            return True
        except PyMongoError as e:
            console.print(f"[red]MongoDB connection failed: {mask_uri_credentials(str(e))}[/red]")
            return False

    def close(self):
        """Close MongoDB connection and flush pending events"""
        if self.client is not None and self._owns_client:
            self.client.close()
            self.client = None
        self.emitter.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _require_client(self) -> MongoClient:
        if self.client is None and not self.connect():
            raise ConnectionError("not connected to MongoDB")
        return self.client

    # ------------------------------------------------------------------
    # Failure reporting
    # ------------------------------------------------------------------

    def _run(self, kind: str, operation: Callable[[], T]) -> T:
        """Run an operation, turning any failure other than cancellation into `<kind>:error`"""
        try:
            return operation()
        except TransferCancelled:
            raise
        except Exception as e:
            self.emitter.emit(event_name(kind, ERROR), self._error_payload(e))
            raise

    @staticmethod
    def _error_payload(error: Exception) -> dict[str, Any]:
        payload: dict[str, Any] = {'error': mask_uri_credentials(str(error))}
        if isinstance(error, (ToolFailedError, ImportAborted)) and error.result is not None:
            payload['partialResult'] = error.result.to_dict()
        if isinstance(error, ImportAborted):
            payload['failedDatabase'] = error.database
            payload['failedCollection'] = error.collection
            payload['remainingDatabases'] = list(error.remaining)
        return payload

    def _dismissed(self, kind: str) -> None:
        """An empty path means the user dismissed the file dialog"""
        self.emitter.emit(event_name(kind, CANCELLED), None)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_native(self, selection: ExportSelection, output_path: str, job_id: str | None = None) -> dict | None:
        """Export to a self-describing zip archive without external tools"""
        if not output_path:
            return self._dismissed('export')

        def run():
            exporter = NativeExporter(self._require_client(), self.exports, self.emitter, self.config)
            return exporter.export(selection, output_path, job_id)

        return self._run('export', run)

    def export_with_mongodump(self, selection: ExportSelection, output_path: str, job_id: str | None = None) -> dict | None:
        """Export with mongodump into a gzip archive (or a directory of them)"""
        if not output_path:
            return self._dismissed('export')

        def run():
            if self.client is None and get_username(self.mongo_uri):
                # Needed to negotiate the auth mechanism for the tool
                self.connect()
            exporter = DumpExporter(self.mongo_uri, self.exports, self.emitter, self.client, self.config)
            return exporter.export(selection, output_path, job_id)

        return self._run('export', run)

    def cancel_export(self, job_id: str | None = None) -> list[str]:
        """Cancel one export, or all of them when job_id is None"""
        return self.exports.cancel(job_id)

    def pause_export(self):
        self.exports.pause()
        self.emitter.emit(event_name('export', PAUSED), None)

    def resume_export(self):
        self.exports.resume()
        self.emitter.emit(event_name('export', RESUMED), None)

    def is_export_paused(self) -> bool:
        return self.exports.paused

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_with_mongorestore(self, options: RestoreOptions, job_id: str | None = None) -> ImportResult | None:
        """Restore an archive, an archive directory or a mongodump directory"""
        if not options.input_path:
            return self._dismissed('import')

        def run():
            if self.client is None and get_username(self.mongo_uri):
                self.connect()
            importer = RestoreImporter(self.mongo_uri, self.imports, self.emitter, self.client, self.config)
            return importer.restore(options, job_id)

        return self._run('import', run)

    def preview_archive(self, archive_path: str) -> ArchivePreview | None:
        """Namespaces inside a mongodump archive, without importing"""
        if not archive_path:
            return self._dismissed('preview')

        def run():
            importer = RestoreImporter(self.mongo_uri, self.imports, self.emitter, self.client, self.config)
            return importer.preview(archive_path)

        return self._run('preview', run)

    def preview_native_archive(self, path: str) -> ArchivePreview | None:
        """Manifest summary of a native zip archive"""
        if not path:
            return self._dismissed('preview')

        def run():
            return NativeImporter(self.client, self.imports, self.emitter, self.config).preview(path)

        return self._run('preview', run)

    def import_native(
        self,
        path: str,
        databases: list[str] | None = None,
        mode: str = SKIP,
        job_id: str | None = None,
    ) -> ImportResult | None:
        """Import a native zip archive (mode 'skip' or 'override')"""
        if not path:
            return self._dismissed('import')

        def run():
            importer = NativeImporter(self._require_client(), self.imports, self.emitter, self.config)
            return importer.import_archive(path, databases, mode, job_id)

        return self._run('import', run)

    def dry_run_native_import(
        self,
        path: str,
        databases: list[str] | None = None,
        mode: str = SKIP,
        job_id: str | None = None,
    ) -> ImportResult | None:
        """What import_native would insert, skip and drop"""
        if not path:
            return self._dismissed('import')

        def run():
            importer = NativeImporter(self._require_client(), self.imports, self.emitter, self.config)
            return importer.dry_run(path, databases, mode, job_id)

        return self._run('import', run)

    def cancel_import(self, job_id: str | None = None) -> list[str]:
        """Cancel one import, or all of them when job_id is None"""
        return self.imports.cancel(job_id)

    def pause_import(self):
        self.imports.pause()
        self.emitter.emit(event_name('import', PAUSED), None)

    def resume_import(self):
        self.imports.resume()
        self.emitter.emit(event_name('import', RESUMED), None)

    def is_import_paused(self) -> bool:
        return self.imports.paused
