"""
Result and manifest types shared by the exporters and importers
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .constants import MANIFEST_VERSION


@dataclass
class CollectionImportResult:
    name: str
    records_inserted: int = 0
    records_skipped: int = 0
    parse_errors: int = 0
    current_count: int = 0
    index_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'recordsInserted': self.records_inserted,
            'recordsSkipped': self.records_skipped,
            'parseErrors': self.parse_errors,
            'currentCount': self.current_count,
            'indexErrors': list(self.index_errors),
        }


@dataclass
class DatabaseImportResult:
    name: str
    collections: list[CollectionImportResult] = field(default_factory=list)
    current_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'collections': [c.to_dict() for c in self.collections],
            'currentCount': self.current_count,
        }


@dataclass
class ImportResult:
    """Aggregate counters of a restore or native import"""
    records_inserted: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    records_dropped: int = 0
    parse_errors: int = 0
    databases: list[DatabaseImportResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def database(self, name: str) -> DatabaseImportResult:
        """Get or create the per-database breakdown"""
        for db in self.databases:
            if db.name == name:
                return db
        db = DatabaseImportResult(name=name)
        self.databases.append(db)
        return db

    def add_error(self, message: str):
        """Record an error once (exact-text deduplication)"""
        if message not in self.errors:
            self.errors.append(message)

    def merge(self, other: 'ImportResult'):
        """Fold another result (one archive of a batch) into this one"""
        self.records_inserted += other.records_inserted
        self.records_failed += other.records_failed
        self.records_skipped += other.records_skipped
        self.records_dropped += other.records_dropped
        self.parse_errors += other.parse_errors
        for db in other.databases:
            self.database(db.name).collections.extend(db.collections)
        for error in other.errors:
            self.add_error(error)

    def to_dict(self) -> dict[str, Any]:
        return {
            'recordsInserted': self.records_inserted,
            'recordsFailed': self.records_failed,
            'recordsSkipped': self.records_skipped,
            'recordsDropped': self.records_dropped,
            'parseErrors': self.parse_errors,
            'databases': [db.to_dict() for db in self.databases],
            'errors': list(self.errors),
        }


@dataclass
class PreviewDatabase:
    name: str
    collections: list[str] = field(default_factory=list)
    record_count: int = 0


@dataclass
class ArchivePreview:
    """Namespaces found inside an archive, without importing anything"""
    databases: list[PreviewDatabase] = field(default_factory=list)
    exported_at: str = ''

    def add_namespace(self, database: str, collection: str) -> bool:
        """Add db.collection; returns False when it was already listed"""
        for db in self.databases:
            if db.name == database:
                if collection in db.collections:
                    return False
                db.collections.append(collection)
                return True
        self.databases.append(PreviewDatabase(name=database, collections=[collection]))
        return True

    @property
    def namespaces(self) -> list[str]:
        return [f"{db.name}.{coll}" for db in self.databases for coll in db.collections]

    def to_dict(self) -> dict[str, Any]:
        return {
            'exportedAt': self.exported_at,
            'databases': [
                {'name': db.name, 'collections': list(db.collections), 'recordCount': db.record_count}
                for db in self.databases
            ],
        }


@dataclass
class ManifestCollection:
    name: str
    record_count: int
    index_count: int


@dataclass
class ManifestDatabase:
    name: str
    collections: list[ManifestCollection] = field(default_factory=list)


@dataclass
class Manifest:
    """Self-description of a native export; written last"""
    version: str = MANIFEST_VERSION
    exported_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    databases: list[ManifestDatabase] = field(default_factory=list)

    def database(self, name: str) -> ManifestDatabase:
        for db in self.databases:
            if db.name == name:
                return db
        db = ManifestDatabase(name=name)
        self.databases.append(db)
        return db

    def to_dict(self) -> dict[str, Any]:
        return {
            'version': self.version,
            'exportedAt': self.exported_at.isoformat(),
            'databases': [
                {
                    'name': db.name,
                    'collections': [
                        {'name': c.name, 'recordCount': c.record_count, 'indexCount': c.index_count}
                        for c in db.collections
                    ],
                }
                for db in self.databases
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Manifest':
        exported_at = data.get('exportedAt')
        manifest = cls(
            version=str(data.get('version', MANIFEST_VERSION)),
            exported_at=datetime.fromisoformat(exported_at) if exported_at else datetime.now(timezone.utc),
        )
        for db in data.get('databases') or []:
            entry = manifest.database(db['name'])
            for coll in db.get('collections') or []:
                entry.collections.append(ManifestCollection(
                    name=coll['name'],
                    record_count=int(coll.get('recordCount', 0)),
                    index_count=int(coll.get('indexCount', 0)),
                ))
        return manifest
