"""
Driver mocks and archive builders shared by the native and engine tests
"""

import json
import zipfile
from collections import defaultdict
from unittest.mock import MagicMock

import bson
from bson import json_util
from bson.raw_bson import RawBSONDocument


def make_client():
    """Client mock whose client[db][coll] lookups return stable per-name mocks"""
    client = MagicMock()
    databases = defaultdict(MagicMock)
    collections = defaultdict(MagicMock)

    def get_database(db_name):
        database = databases[db_name]
        database.__getitem__.side_effect = lambda coll_name: collections[f"{db_name}.{coll_name}"]
        return database

    client.__getitem__.side_effect = get_database
    client.databases = databases
    client.collections = collections
    return client


def serve_documents(collection, docs, indexes=None, extra_raw=()):
    """Configure a collection mock to stream docs as raw BSON"""
    raw = [RawBSONDocument(bson.encode(doc)) for doc in docs] + list(extra_raw)
    cursor = MagicMock()
    cursor.__iter__.return_value = iter(raw)
    collection.with_options.return_value.find.return_value = cursor
    collection.estimated_document_count.return_value = len(docs)
    collection.list_indexes.return_value = list(indexes or [{'v': 2, 'key': {'_id': 1}, 'name': '_id_'}])
    return cursor


def accept_inserts(collection):
    """insert_many accepts every document"""
    collection.insert_many.side_effect = lambda batch, ordered: MagicMock(inserted_ids=[d.get('_id') for d in batch])


def write_archive(path, databases, indexes=None, exported_at="2024-05-01T10:20:30+00:00", extra_lines=None):
    """Write a native archive: databases maps db -> {coll: [docs]}"""
    indexes = indexes or {}
    extra_lines = extra_lines or {}
    manifest = {'version': '1.0', 'exportedAt': exported_at, 'databases': []}
    with zipfile.ZipFile(path, 'w') as archive:
        for db_name, colls in databases.items():
            entry = {'name': db_name, 'collections': []}
            for coll_name, docs in colls.items():
                lines = [json_util.dumps(doc) for doc in docs] + extra_lines.get(f"{db_name}.{coll_name}", [])
                archive.writestr(f"{db_name}/{coll_name}/documents.ndjson", ''.join(line + '\n' for line in lines))
                specs = indexes.get(f"{db_name}.{coll_name}", [])
                archive.writestr(f"{db_name}/{coll_name}/indexes.json", json.dumps(specs))
                entry['collections'].append({'name': coll_name, 'recordCount': len(docs), 'indexCount': len(specs)})
            manifest['databases'].append(entry)
        archive.writestr('manifest.json', json.dumps(manifest))
    return str(path)


def corrupt_raw():
    """Raw BSON with a valid length header but an unknown element type"""
    data = bytearray(bson.encode({'a': 1}))
    data[4] = 0x99
    return RawBSONDocument(bytes(data))

