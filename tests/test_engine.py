"""
Tests for the TransferEngine surface
"""

from unittest.mock import MagicMock, patch

import pytest
from pymongo.errors import AutoReconnect, ServerSelectionTimeoutError

from mongo_transfer.engine import TransferEngine
from mongo_transfer.exceptions import ArchiveError, ImportAborted, TransferCancelled
from mongo_transfer.planner import ExportSelection
from mongo_transfer.restore import RestoreOptions

from mock_mongo import accept_inserts, make_client, write_archive


class TestDismissedPaths:
    """Test an empty path is a silent cancel"""

    def test_export_paths(self, recorder):
        """Test both export flavours"""
        engine = TransferEngine("mongodb://localhost", emitter=recorder.emitter, client=MagicMock())

        assert engine.export_native(ExportSelection(database="shop"), "") is None
        assert engine.export_with_mongodump(ExportSelection(database="shop"), "") is None

        assert recorder.events == [('export:cancelled', None), ('export:cancelled', None)]

    def test_import_paths(self, recorder):
        """Test every import entry point"""
        engine = TransferEngine("mongodb://localhost", emitter=recorder.emitter, client=MagicMock())

        assert engine.import_with_mongorestore(RestoreOptions(input_path="")) is None
        assert engine.import_native("") is None
        assert engine.dry_run_native_import("") is None

        assert recorder.names() == ['import:cancelled'] * 3

    def test_preview_paths(self, recorder):
        """Test both previews"""
        engine = TransferEngine("mongodb://localhost", emitter=recorder.emitter)

        assert engine.preview_archive("") is None
        assert engine.preview_native_archive("") is None

        assert recorder.names() == ['preview:cancelled'] * 2


class TestErrorEvents:
    """Test failures are reported before they propagate"""

    def test_archive_error_reported(self, recorder, tmp_path):
        """Test an unreadable archive emits import:error"""
        path = tmp_path / "a.zip"
        path.write_text("not a zip")
        engine = TransferEngine("mongodb://localhost", emitter=recorder.emitter, client=make_client())

        with pytest.raises(ArchiveError):
            engine.import_native(str(path))

        name, payload = recorder.events[-1]
        assert name == 'import:error'
        assert payload['error'].startswith("failed to open zip file")

    def test_aborted_import_payload(self, recorder, tmp_path):
        """Test the error payload carries the partial result and where it stopped"""
        client = make_client()
        accept_inserts(client.collections['crm.leads'])
        client.collections['shop.users'].insert_many.side_effect = AutoReconnect("lost mongodb://u:secret@h")
        path = write_archive(tmp_path / "a.zip", {'crm': {'leads': [{'_id': 1}]}, 'shop': {'users': [{'_id': 1}]}})
        engine = TransferEngine("mongodb://u:secret@h", emitter=recorder.emitter, client=client)

        with pytest.raises(ImportAborted):
            engine.import_native(path)

        payload = recorder.payloads('import:error')[0]
        assert "secret" not in payload['error']
        assert payload['failedDatabase'] == 'shop'
        assert payload['failedCollection'] == 'users'
        assert payload['remainingDatabases'] == ['shop']
        assert payload['partialResult']['recordsInserted'] == 1

    def test_cancellation_is_not_an_error(self, recorder, tmp_path):
        """Test a cancelled import emits cancelled, never error"""
        client = make_client()
        accept_inserts(client.collections['shop.users'])
        path = write_archive(tmp_path / "a.zip", {'shop': {'users': [{'_id': 1}]}})
        engine = TransferEngine("mongodb://localhost", emitter=recorder.emitter, client=client)
        recorder.hooks.append(lambda name, payload: engine.cancel_import() if name == 'import:progress' else None)

        with pytest.raises(TransferCancelled):
            engine.import_native(path)

        assert 'import:cancelled' in recorder.names()
        assert not any(name.endswith(':error') for name in recorder.names())

    @patch('mongo_transfer.engine.connect_mongo')
    def test_connection_failure(self, mock_connect, recorder, tmp_path):
        """Test an unreachable server is reported as export:error"""
        mock_connect.side_effect = ServerSelectionTimeoutError("no servers")
        engine = TransferEngine("mongodb://localhost", emitter=recorder.emitter)

        with pytest.raises(ConnectionError):
            engine.export_native(ExportSelection(database="shop"), str(tmp_path / "a.zip"))

        assert recorder.names() == ['export:error']
        assert not (tmp_path / "a.zip").exists()


class TestEngineControl:
    """Test pause/resume/cancel and connection handling"""

    def test_pause_resume_events(self, recorder):
        """Test pause and resume are reported per direction"""
        engine = TransferEngine("mongodb://localhost", emitter=recorder.emitter)

        engine.pause_export()
        assert engine.is_export_paused()
        assert not engine.is_import_paused()
        engine.resume_export()
        engine.pause_import()

        assert recorder.events == [('export:paused', None), ('export:resumed', None), ('import:paused', None)]
        assert not engine.is_export_paused()
        assert engine.is_import_paused()

    def test_cancel_unknown(self):
        """Test cancelling when nothing runs"""
        engine = TransferEngine("mongodb://localhost")
        assert engine.cancel_export() == []
        assert engine.cancel_import("missing") == []

    @patch('mongo_transfer.engine.DumpExporter')
    @patch('mongo_transfer.engine.connect_mongo')
    def test_mongodump_connects_for_credentials(self, mock_connect, mock_exporter, recorder):
        """Test a URI with a user connects so the auth mechanism can be negotiated"""
        client = MagicMock()
        mock_connect.return_value = client
        engine = TransferEngine("mongodb://u:p@h/", emitter=recorder.emitter)

        engine.export_with_mongodump(ExportSelection(database="shop"), "/tmp/out")

        mock_exporter.assert_called_once_with("mongodb://u:p@h/", engine.exports, recorder.emitter, client, engine.config)

    @patch('mongo_transfer.engine.DumpExporter')
    @patch('mongo_transfer.engine.connect_mongo')
    def test_mongodump_without_credentials(self, mock_connect, mock_exporter, recorder):
        """Test no connection is made when there is nothing to negotiate"""
        engine = TransferEngine("mongodb://h/", emitter=recorder.emitter)

        engine.export_with_mongodump(ExportSelection(database="shop"), "/tmp/out")

        mock_connect.assert_not_called()

    def test_close_keeps_borrowed_client(self):
        """Test a client passed in is not closed by the engine"""
        client = MagicMock()
        with TransferEngine("mongodb://localhost", client=client):
            pass
        client.close.assert_not_called()

    @patch('mongo_transfer.engine.connect_mongo')
    def test_close_owned_client(self, mock_connect):
        """Test a client created by connect() is closed"""
        engine = TransferEngine("mongodb://localhost")
        assert engine.connect() is True

        engine.close()

        mock_connect.return_value.close.assert_called_once()
        assert engine.client is None
