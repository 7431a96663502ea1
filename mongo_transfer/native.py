"""
Native zip archives: export straight from the driver and import them back

Archive layout:
    manifest.json                      written last
    <db>/<coll>/documents.ndjson       one canonical Extended JSON document per line
    <db>/<coll>/indexes.json           secondary indexes, [] when there are none
"""

import io
import json
import zipfile
from dataclasses import dataclass
from pathlib import Path

import bson
from bson import json_util
from bson.codec_options import CodecOptions, DatetimeConversion
from bson.errors import BSONError
from bson.json_util import CANONICAL_JSON_OPTIONS
from bson.raw_bson import RawBSONDocument
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import BulkWriteError, PyMongoError
from rich.console import Console

from .constants import (
    DOCUMENTS_ENTRY,
    DRY_RUN_BATCH_SIZE,
    INDEXES_ENTRY,
    MANIFEST_NAME,
    SYSTEM_DATABASES,
    ZIP_EXTENSION,
)
from .control import CancellationToken, TransferRegistry
from .events import EventEmitter, Phase, ProgressTracker
from .exceptions import ArchiveError, ImportAborted, TransferCancelled
from .masking import mask_uri_credentials
from .models import (
    ArchivePreview,
    CollectionImportResult,
    ImportResult,
    Manifest,
    ManifestCollection,
    ManifestDatabase,
    PreviewDatabase,
)
from .planner import ExportSelection, TransferJob, ensure_extension, plan_jobs
from .settings import TransferConfig

console = Console(stderr=True)

# Documents are read undecoded so one bad document cannot break the cursor
RAW_CODEC_OPTIONS = CodecOptions(document_class=RawBSONDocument)
DECODE_OPTIONS = CodecOptions(datetime_conversion=DatetimeConversion.DATETIME_AUTO)

SKIP = 'skip'
OVERRIDE = 'override'
IMPORT_MODES = (SKIP, OVERRIDE)


def entry_name(database: str, collection: str, leaf: str) -> str:
    return f"{database}/{collection}/{leaf}"


def open_archive(path: str | Path) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(path)
    except (OSError, zipfile.BadZipFile) as e:
        raise ArchiveError(f"failed to open zip file: {e}") from e


def read_manifest(archive: zipfile.ZipFile) -> Manifest:
    try:
        data = json.loads(archive.read(MANIFEST_NAME))
    except KeyError as e:
        raise ArchiveError(f"{MANIFEST_NAME} not found in archive") from e
    except ValueError as e:
        raise ArchiveError(f"failed to parse manifest: {e}") from e
    try:
        return Manifest.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ArchiveError(f"invalid manifest: {e}") from e


def serialize_document(raw: RawBSONDocument) -> str:
    """Decode raw BSON and render it as one line of canonical Extended JSON"""
    document = bson.decode(raw.raw, codec_options=DECODE_OPTIONS)
    return json_util.dumps(document, json_options=CANONICAL_JSON_OPTIONS)


@dataclass
class CollectionPlan:
    database: str
    collection: str
    batch_index: int
    estimated: int = 0


# ============================================================================
# Export
# ============================================================================

class NativeExporter:
    """Streams selected collections into one zip archive per batch"""

    def __init__(
        self,
        client: MongoClient,
        registry: TransferRegistry,
        emitter: EventEmitter,
        config: TransferConfig | None = None,
    ):
        self.client = client
        self.registry = registry
        self.emitter = emitter
        self.config = config or TransferConfig()

    def export(self, selection: ExportSelection, output_path: str, job_id: str | None = None) -> dict:
        """
        Export the selection into output_path (.zip appended when missing).

        Returns the completion payload. On cancellation the archive is removed
        before TransferCancelled propagates.
        """
        jobs = plan_jobs(selection)
        path = Path(ensure_extension(output_path, ZIP_EXTENSION))

        with self.registry.track('export', job_id) as token:
            tracker = ProgressTracker(self.emitter, 'export', token.job_id, batch_total=len(jobs))
            tracker.progress(Phase.ANALYZING)
            plans = self._resolve(jobs, tracker)
            total = self._estimate(plans)

            path.parent.mkdir(parents=True, exist_ok=True)
            try:
                with zipfile.ZipFile(path, 'w', compression=zipfile.ZIP_DEFLATED) as archive:
                    manifest, processed = self._write_collections(archive, plans, total, token, tracker)
                    archive.writestr(MANIFEST_NAME, json.dumps(manifest.to_dict(), indent=2))
            except TransferCancelled:
                path.unlink(missing_ok=True)
                tracker.cancelled()
                raise
            except BaseException:
                path.unlink(missing_ok=True)
                raise

            tracker.progress(
                Phase.FINALIZING,
                current=processed,
                total=processed,
                batch_index=len(jobs),
                processed_records=processed,
                total_records=processed,
            )
            collections = sum(len(db.collections) for db in manifest.databases)
            payload = {
                'filePath': str(path),
                'databases': len(manifest.databases),
                'collections': collections,
                'records': processed,
            }
            tracker.complete(**payload)
            return {'jobId': token.job_id, **payload}

    def _resolve(self, jobs: list[TransferJob], tracker: ProgressTracker) -> list[CollectionPlan]:
        """Expand jobs into the collections they cover"""
        plans = []
        for index, job in enumerate(jobs, start=1):
            if job.collection:
                plans.append(CollectionPlan(job.database, job.collection, index))
                continue

            if job.database:
                databases = [job.database]
            else:
                databases = [d for d in self.client.list_database_names() if d not in SYSTEM_DATABASES]

            excluded = set(job.exclude_collections)
            for database in databases:
                for name in self._list_collections(database, tracker):
                    if name not in excluded:
                        plans.append(CollectionPlan(database, name, index))
        return plans

    def _list_collections(self, database: str, tracker: ProgressTracker) -> list[str]:
        """Names of the non-view collections of a database"""
        try:
            infos = list(self.client[database].list_collections())
        except PyMongoError as e:
            message = f"failed to list collections: {mask_uri_credentials(str(e))}"
            console.print(f"[yellow]⚠ {database}: {message}[/yellow]")
            tracker.warning(message, database=database)
            return []
        return [info['name'] for info in infos if info.get('type') != 'view']

    def _estimate(self, plans: list[CollectionPlan]) -> int:
        """Pre-scan estimated counts; a failed estimate counts as 0"""
        total = 0
        for plan in plans:
            try:
                plan.estimated = self.client[plan.database][plan.collection].estimated_document_count()
            except PyMongoError:
                plan.estimated = 0
            total += plan.estimated
        return total

    def _write_collections(
        self,
        archive: zipfile.ZipFile,
        plans: list[CollectionPlan],
        total: int,
        token: CancellationToken,
        tracker: ProgressTracker,
    ) -> tuple[Manifest, int]:
        manifest = Manifest()
        processed = 0

        for plan in plans:
            # Collection boundary
            if not self.registry.checkpoint(token):
                raise TransferCancelled(token.job_id, kind='export')

            tracker.progress(
                Phase.EXPORTING,
                database=plan.database,
                collection=plan.collection,
                current=processed,
                total=total,
                batch_index=plan.batch_index,
                processed_records=processed,
                total_records=total,
            )
            collection = self.client[plan.database][plan.collection]
            try:
                written = self._write_documents(archive, collection, plan, processed, total, token, tracker)
            except PyMongoError as e:
                message = f"failed to query documents: {mask_uri_credentials(str(e))}"
                console.print(f"[yellow]⚠ {plan.database}.{plan.collection}: {message}[/yellow]")
                tracker.warning(message, database=plan.database, collection=plan.collection)
                continue

            processed += written
            index_count = self._write_indexes(archive, collection, plan, tracker)
            manifest.database(plan.database).collections.append(
                ManifestCollection(name=plan.collection, record_count=written, index_count=index_count)
            )

        return manifest, processed

    def _write_documents(
        self,
        archive: zipfile.ZipFile,
        collection: Collection,
        plan: CollectionPlan,
        offset: int,
        total: int,
        token: CancellationToken,
        tracker: ProgressTracker,
    ) -> int:
        """Stream one collection into its ndjson entry; returns documents written"""
        poll_interval = self.config.poll_interval
        progress_interval = self.config.progress_interval
        cursor = collection.with_options(codec_options=RAW_CODEC_OPTIONS).find()
        written = skipped = 0

        def report():
            tracker.progress(
                Phase.EXPORTING,
                database=plan.database,
                collection=plan.collection,
                current=offset + written,
                total=total,
                batch_index=plan.batch_index,
                processed_records=offset + written,
                total_records=total,
            )

        try:
            with archive.open(entry_name(plan.database, plan.collection, DOCUMENTS_ENTRY), 'w') as out:
                for seen, raw in enumerate(cursor):
                    if seen % poll_interval == 0 and not self.registry.checkpoint(token):
                        raise TransferCancelled(token.job_id, kind='export')
                    try:
                        line = serialize_document(raw)
                    except (BSONError, ValueError, TypeError, OverflowError):
                        skipped += 1
                        continue
                    out.write(line.encode('utf-8') + b'\n')
                    written += 1
                    if written % progress_interval == 0:
                        report()
        finally:
            cursor.close()

        report()
        if skipped:
            tracker.warning(
                f"{skipped} document(s) could not be exported",
                database=plan.database,
                collection=plan.collection,
                skipped=skipped,
            )
        return written

    def _write_indexes(
        self,
        archive: zipfile.ZipFile,
        collection: Collection,
        plan: CollectionPlan,
        tracker: ProgressTracker,
    ) -> int:
        """Write the secondary index specs; the entry exists even when empty"""
        try:
            indexes = [spec for spec in collection.list_indexes() if spec.get('name') != '_id_']
        except PyMongoError as e:
            message = f"failed to list indexes: {mask_uri_credentials(str(e))}"
            tracker.warning(message, database=plan.database, collection=plan.collection)
            indexes = []

        archive.writestr(
            entry_name(plan.database, plan.collection, INDEXES_ENTRY),
            json_util.dumps(indexes, json_options=CANONICAL_JSON_OPTIONS, indent=2),
        )
        return len(indexes)


# ============================================================================
# Import
# ============================================================================

class NativeImporter:
    """Reads archives written by NativeExporter back into a server"""

    def __init__(
        self,
        client: MongoClient,
        registry: TransferRegistry,
        emitter: EventEmitter,
        config: TransferConfig | None = None,
    ):
        self.client = client
        self.registry = registry
        self.emitter = emitter
        self.config = config or TransferConfig()

    def preview(self, path: str) -> ArchivePreview:
        """Databases, collections and record counts listed in the manifest"""
        with open_archive(path) as archive:
            manifest = read_manifest(archive)

        if not manifest.databases:
            raise ArchiveError("no databases found in archive")

        preview = ArchivePreview(exported_at=manifest.exported_at.strftime('%Y-%m-%d %H:%M:%S'))
        for db in manifest.databases:
            preview.databases.append(PreviewDatabase(
                name=db.name,
                collections=[c.name for c in db.collections],
                record_count=sum(c.record_count for c in db.collections),
            ))
        return preview

    @staticmethod
    def _select(manifest: Manifest, databases: list[str] | None) -> list[ManifestDatabase]:
        wanted = set(databases or [])
        selected = [db for db in manifest.databases if not wanted or db.name in wanted]
        if not selected:
            raise ArchiveError("no databases selected for import")
        return selected

    @staticmethod
    def _check_mode(mode: str):
        if mode not in IMPORT_MODES:
            raise ValueError(f"unknown import mode: {mode} (expected one of {', '.join(IMPORT_MODES)})")

    def import_archive(
        self,
        path: str,
        databases: list[str] | None = None,
        mode: str = SKIP,
        job_id: str | None = None,
    ) -> ImportResult:
        """
        Import the selected databases of an archive.

        skip: unordered inserts, documents rejected by the server (duplicate
        keys) are counted as skipped. override: each database is dropped first.
        A fatal driver error raises ImportAborted carrying the partial result.
        """
        self._check_mode(mode)
        with open_archive(path) as archive:
            manifest = read_manifest(archive)
            selected = self._select(manifest, databases)
            names = set(archive.namelist())
            total = sum(c.record_count for db in selected for c in db.collections)

            with self.registry.track('import', job_id) as token:
                tracker = ProgressTracker(self.emitter, 'import', token.job_id, batch_total=len(selected))
                result = ImportResult()
                state = {'processed': 0}
                failed_index, failed_db, failed_coll = 1, '', ''

                try:
                    for index, db_manifest in enumerate(selected, start=1):
                        if not self.registry.checkpoint(token):
                            raise TransferCancelled(token.job_id, kind='import')

                        failed_index, failed_db, failed_coll = index, db_manifest.name, ''
                        db_result = result.database(db_manifest.name)
                        if mode == OVERRIDE:
                            self._drop_database(db_manifest.name, result, tracker, index, state['processed'], total)

                        for coll_manifest in db_manifest.collections:
                            failed_coll = coll_manifest.name
                            coll_result = CollectionImportResult(name=coll_manifest.name)
                            db_result.collections.append(coll_result)
                            self._import_collection(
                                archive, names, db_manifest.name, coll_manifest, coll_result,
                                result, token, tracker, index, state, total,
                            )
                            self._create_indexes(archive, names, db_manifest.name, coll_manifest.name, coll_result, result)
                except TransferCancelled:
                    tracker.cancelled()
                    raise
                except PyMongoError as e:
                    remaining = [db.name for db in selected[failed_index - 1:]]
                    raise ImportAborted(
                        mask_uri_credentials(str(e)),
                        result=result,
                        database=failed_db,
                        collection=failed_coll,
                        remaining=remaining,
                    ) from e

                if result.parse_errors:
                    result.add_error(f"{result.parse_errors} document(s) failed to parse and were skipped")
                tracker.complete(**result.to_dict())
                return result

    def _drop_database(self, name: str, result: ImportResult, tracker: ProgressTracker, index: int, processed: int, total: int):
        tracker.progress(
            Phase.IMPORTING,
            database=name,
            current=processed,
            total=total,
            batch_index=index,
            processed_records=processed,
            total_records=total,
        )
        try:
            self.client.drop_database(name)
        except PyMongoError as e:
            result.add_error(f"failed to drop database {name}: {mask_uri_credentials(str(e))}")

    def _import_collection(
        self,
        archive: zipfile.ZipFile,
        names: set[str],
        database: str,
        coll_manifest: ManifestCollection,
        coll_result: CollectionImportResult,
        result: ImportResult,
        token: CancellationToken,
        tracker: ProgressTracker,
        index: int,
        state: dict,
        total: int,
    ):
        entry = entry_name(database, coll_manifest.name, DOCUMENTS_ENTRY)
        if entry not in names:
            result.add_error(f"missing documents file for {database}.{coll_manifest.name}")
            return

        collection = self.client[database][coll_manifest.name]
        batch_size = self.config.import_batch_size

        def report():
            tracker.progress(
                Phase.IMPORTING,
                database=database,
                collection=coll_manifest.name,
                current=state['processed'],
                total=total,
                batch_index=index,
                processed_records=state['processed'],
                total_records=total,
            )

        def flush(batch: list[dict]):
            inserted, skipped = insert_skipping_rejects(collection, batch)
            coll_result.records_inserted += inserted
            coll_result.records_skipped += skipped
            result.records_inserted += inserted
            result.records_skipped += skipped

        report()
        batch: list[dict] = []
        with archive.open(entry) as raw, io.TextIOWrapper(raw, encoding='utf-8') as lines:
            for seen, line in enumerate(lines):
                if seen % self.config.poll_interval == 0 and not self.registry.checkpoint(token):
                    raise TransferCancelled(token.job_id, kind='import')
                line = line.strip()
                if not line:
                    continue
                document = parse_document(line)
                if document is None:
                    coll_result.parse_errors += 1
                    result.parse_errors += 1
                    continue

                batch.append(document)
                if len(batch) >= batch_size:
                    flush(batch)
                    batch = []
                state['processed'] += 1
                if state['processed'] % self.config.progress_interval == 0:
                    report()

        if batch:
            flush(batch)
        report()

    def _create_indexes(
        self,
        archive: zipfile.ZipFile,
        names: set[str],
        database: str,
        collection: str,
        coll_result: CollectionImportResult,
        result: ImportResult,
    ):
        entry = entry_name(database, collection, INDEXES_ENTRY)
        if entry not in names:
            return
        try:
            specs = json_util.loads(archive.read(entry))
        except ValueError as e:
            result.add_error(f"[{database}.{collection}] failed to parse indexes: {e}")
            return

        target = self.client[database][collection]
        for spec in specs or []:
            keys = spec.get('key') if isinstance(spec, dict) else None
            if not isinstance(keys, dict) or not keys:
                continue
            # Sort directions may come back as floats
            key_list = [(k, int(v) if isinstance(v, float) else v) for k, v in keys.items()]
            options = {}
            if spec.get('name'):
                options['name'] = spec['name']
            if spec.get('unique'):
                options['unique'] = True
            if spec.get('sparse'):
                options['sparse'] = True
            try:
                target.create_index(key_list, **options)
            except PyMongoError as e:
                message = f"Failed to create index '{spec.get('name', '')}': {mask_uri_credentials(str(e))}"
                coll_result.index_errors.append(message)
                result.add_error(f"[{database}.{collection}] {message}")

    def dry_run(
        self,
        path: str,
        databases: list[str] | None = None,
        mode: str = SKIP,
        job_id: str | None = None,
    ) -> ImportResult:
        """
        Report what import_archive would do without writing anything.

        override: what exists now is counted as dropped and every archived
        document as inserted. skip: archived _ids already present are counted
        as skipped.
        """
        self._check_mode(mode)
        with open_archive(path) as archive:
            manifest = read_manifest(archive)
            selected = self._select(manifest, databases)
            names = set(archive.namelist())

            with self.registry.track('dryrun', job_id) as token:
                tracker = ProgressTracker(self.emitter, 'import', token.job_id, batch_total=len(selected))
                result = ImportResult()
                try:
                    for index, db_manifest in enumerate(selected, start=1):
                        if not self.registry.checkpoint(token):
                            raise TransferCancelled(token.job_id, kind='import')
                        tracker.progress(Phase.ANALYZING, database=db_manifest.name, batch_index=index)
                        if mode == OVERRIDE:
                            self._count_override(db_manifest, result)
                        else:
                            self._count_skip(archive, names, db_manifest, result, token, tracker, index)
                except TransferCancelled:
                    tracker.cancelled()
                    raise

                tracker.complete(dryRun=True, **result.to_dict())
                return result

    def _count_override(self, db_manifest: ManifestDatabase, result: ImportResult):
        db = self.client[db_manifest.name]
        try:
            existing_names = db.list_collection_names()
        except PyMongoError:
            existing_names = []

        existing = {}
        for name in existing_names:
            if name.startswith('system.'):
                continue
            try:
                existing[name] = db[name].count_documents({})
            except PyMongoError:
                continue

        db_result = result.database(db_manifest.name)
        db_result.current_count = sum(existing.values())
        result.records_dropped += db_result.current_count
        for coll in db_manifest.collections:
            db_result.collections.append(CollectionImportResult(
                name=coll.name,
                records_inserted=coll.record_count,
                current_count=existing.get(coll.name, 0),
            ))
            result.records_inserted += coll.record_count

    def _count_skip(
        self,
        archive: zipfile.ZipFile,
        names: set[str],
        db_manifest: ManifestDatabase,
        result: ImportResult,
        token: CancellationToken,
        tracker: ProgressTracker,
        index: int,
    ):
        db_result = result.database(db_manifest.name)
        for coll in db_manifest.collections:
            coll_result = CollectionImportResult(name=coll.name)
            db_result.collections.append(coll_result)
            entry = entry_name(db_manifest.name, coll.name, DOCUMENTS_ENTRY)
            if entry not in names:
                result.add_error(f"missing documents file for {db_manifest.name}.{coll.name}")
                continue

            target = self.client[db_manifest.name][coll.name]
            ids: list = []

            def check(ids: list):
                present = count_existing_ids(target, ids)
                coll_result.records_skipped += present
                coll_result.records_inserted += len(ids) - present

            current = 0
            with archive.open(entry) as raw, io.TextIOWrapper(raw, encoding='utf-8') as lines:
                for seen, line in enumerate(lines):
                    if seen % self.config.poll_interval == 0 and not self.registry.checkpoint(token):
                        raise TransferCancelled(token.job_id, kind='import')
                    line = line.strip()
                    if not line:
                        continue
                    document = parse_document(line)
                    if document is None:
                        coll_result.parse_errors += 1
                        result.parse_errors += 1
                        continue
                    current += 1
                    if '_id' not in document:
                        # Gets a fresh _id on insert
                        coll_result.records_inserted += 1
                        continue
                    ids.append(document['_id'])
                    if len(ids) >= DRY_RUN_BATCH_SIZE:
                        check(ids)
                        ids = []
                    if current % self.config.progress_interval == 0:
                        tracker.progress(
                            Phase.ANALYZING,
                            database=db_manifest.name,
                            collection=coll.name,
                            current=current,
                            total=coll.record_count,
                            batch_index=index,
                        )
            if ids:
                check(ids)

            result.records_inserted += coll_result.records_inserted
            result.records_skipped += coll_result.records_skipped


def parse_document(line: str) -> dict | None:
    """One Extended JSON line as a document, or None when it is not one"""
    try:
        document = json_util.loads(line)
    except (ValueError, TypeError):
        return None
    return document if isinstance(document, dict) else None


def insert_skipping_rejects(collection: Collection, batch: list[dict]) -> tuple[int, int]:
    """
    Unordered insert of a batch; returns (inserted, skipped).

    Per-document write errors (duplicate keys) are counted as skipped. Any
    other driver error propagates.
    """
    if not batch:
        return 0, 0
    try:
        inserted = collection.insert_many(batch, ordered=False)
    except BulkWriteError as e:
        rejected = len(e.details.get('writeErrors', []))
        return len(batch) - rejected, rejected
    return len(inserted.inserted_ids), 0


def count_existing_ids(collection: Collection, ids: list) -> int:
    """How many of ids already exist; 0 when the count fails"""
    try:
        return collection.count_documents({'_id': {'$in': ids}})
    except PyMongoError:
        return 0
