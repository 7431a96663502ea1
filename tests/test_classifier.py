"""
Tests for restore input classification
"""

import os

import pytest

from mongo_transfer.classifier import (
    ImportKind,
    classify_import_path,
    dir_contains_gzip_files,
    list_archive_files,
    scan_import_dir,
)
from mongo_transfer.exceptions import TransferError


class TestClassifyImportPath:
    """Test which restore shape a path is"""

    def test_file_is_archive(self, tmp_path):
        """Test a regular file is a single archive"""
        archive = tmp_path / "backup.archive"
        archive.write_bytes(b"data")

        target = classify_import_path(archive)

        assert target.kind is ImportKind.ARCHIVE
        assert target.path == str(archive)

    def test_any_file_is_archive(self, tmp_path):
        """Test the extension does not matter for single files"""
        archive = tmp_path / "backup.bin"
        archive.write_bytes(b"data")
        assert classify_import_path(archive).kind is ImportKind.ARCHIVE

    def test_archive_directory(self, tmp_path):
        """Test a directory of .archive files, listed sorted"""
        for name in ("shop.archive", "crm.archive", "notes.txt"):
            (tmp_path / name).write_bytes(b"x")

        target = classify_import_path(tmp_path)

        assert target.kind is ImportKind.ARCHIVE_DIRECTORY
        assert target.entries == ["crm.archive", "shop.archive"]

    def test_compressed_dump_directory(self, tmp_path):
        """Test .gz payloads mark a mongodump directory as compressed"""
        (tmp_path / "shop").mkdir()
        (tmp_path / "shop" / "users.bson.gz").write_bytes(b"x")

        target = classify_import_path(tmp_path)

        assert target.kind is ImportKind.DUMP_DIRECTORY
        assert target.gzip is True

    def test_plain_dump_directory(self, tmp_path):
        """Test an uncompressed mongodump directory"""
        (tmp_path / "shop").mkdir()
        (tmp_path / "shop" / "users.bson").write_bytes(b"x")

        target = classify_import_path(tmp_path)

        assert target.kind is ImportKind.DUMP_DIRECTORY
        assert target.gzip is False

    def test_missing_path(self, tmp_path):
        """Test an inaccessible path is an error"""
        with pytest.raises(TransferError, match="not accessible"):
            classify_import_path(tmp_path / "missing")


class TestGzipScan:
    """Test the bounded .gz search"""

    def test_depth_limit(self, tmp_path):
        """Test payloads deeper than max_depth are not found"""
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        (nested / "c.bson.gz").write_bytes(b"x")

        assert dir_contains_gzip_files(tmp_path, max_depth=2) is False
        assert dir_contains_gzip_files(tmp_path, max_depth=3) is True

    def test_symlinks_not_followed(self, tmp_path):
        """Test symlinked directories are skipped"""
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "x.gz").write_bytes(b"x")
        dump = tmp_path / "dump"
        dump.mkdir()
        os.symlink(outside, dump / "link")

        assert dir_contains_gzip_files(dump) is False

    def test_unreadable_directory(self, tmp_path):
        """Test a missing directory holds nothing"""
        assert dir_contains_gzip_files(tmp_path / "missing") is False
        assert list_archive_files(tmp_path / "missing") == []


class TestScanImportDir:
    """Test directory listings"""

    def test_lists_files_with_sizes(self, tmp_path):
        """Test files are listed sorted with human sizes; directories are skipped"""
        (tmp_path / "b.archive").write_bytes(b"x" * 2048)
        (tmp_path / "a.archive").write_bytes(b"x" * 10)
        (tmp_path / "sub").mkdir()

        files = scan_import_dir(tmp_path)

        assert [f['name'] for f in files] == ["a.archive", "b.archive"]
        assert files[0]['size'] == 10
        assert files[0]['size_human'] == "10 B"
        assert files[1]['size_human'] == "2.0 KB"

    def test_missing_directory(self, tmp_path):
        """Test a missing directory raises"""
        with pytest.raises(TransferError, match="failed to read directory"):
            scan_import_dir(tmp_path / "missing")
