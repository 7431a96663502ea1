"""
Tests for progress events and emitters
"""

from unittest.mock import Mock

from mongo_transfer.events import (
    CallbackEmitter,
    Phase,
    ProgressTracker,
    QueuedEmitter,
    event_name,
)


class TestProgressTracker:
    """Test progress payloads"""

    def test_payload_shape(self, recorder):
        """Test the progress payload fields"""
        tracker = ProgressTracker(recorder.emitter, 'export', 'job-1', batch_total=2)

        tracker.progress(Phase.EXPORTING, database="shop", collection="users", current=5, total=10, batch_index=1)

        assert recorder.events == [('export:progress', {
            'jobId': 'job-1',
            'phase': 'exporting',
            'database': 'shop',
            'collection': 'users',
            'current': 5,
            'total': 10,
            'batchIndex': 1,
            'batchTotal': 2,
            'processedRecords': 0,
            'totalRecords': -1,
        })]

    def test_current_never_decreases(self, recorder):
        """Test a smaller current is reported as the previous maximum"""
        tracker = ProgressTracker(recorder.emitter, 'import', 'job-1')

        tracker.progress(Phase.IMPORTING, current=10)
        tracker.progress(Phase.IMPORTING, current=4)

        currents = [p['current'] for p in recorder.payloads('import:progress')]
        assert currents == [10, 10]

    def test_total_raised_to_current(self, recorder):
        """Test an undersized estimate is raised"""
        tracker = ProgressTracker(recorder.emitter, 'export', 'job-1')

        event = tracker.progress(Phase.EXPORTING, current=20, total=10, processed_records=20, total_records=10)

        assert event.total == 20
        assert event.total_records == 20

    def test_indeterminate_total_kept(self, recorder):
        """Test -1 stays indeterminate"""
        tracker = ProgressTracker(recorder.emitter, 'export', 'job-1')
        assert tracker.progress(Phase.EXPORTING, current=3).total == -1

    def test_terminal_events(self, recorder):
        """Test warning, complete and cancelled payloads carry the job id"""
        tracker = ProgressTracker(recorder.emitter, 'export', 'job-1')

        tracker.warning("slow", database="shop")
        tracker.complete(records=3)
        tracker.cancelled()

        assert recorder.events == [
            ('export:warning', {'jobId': 'job-1', 'message': 'slow', 'database': 'shop'}),
            ('export:complete', {'jobId': 'job-1', 'records': 3}),
            ('export:cancelled', {'jobId': 'job-1'}),
        ]


class TestEmitters:
    """Test event delivery"""

    def test_event_name(self):
        """Test kind:suffix naming"""
        assert event_name('import', 'error') == 'import:error'

    def test_callback_listener_errors_dropped(self):
        """Test a failing listener does not break the producer"""
        listener = Mock(side_effect=RuntimeError("listener bug"))
        emitter = CallbackEmitter(listener)

        emitter.emit('export:progress', {'current': 1})

        listener.assert_called_once_with('export:progress', {'current': 1})

    def test_queued_delivery_in_order(self):
        """Test queued events reach every listener in order before close returns"""
        first, second = [], []
        emitter = QueuedEmitter(lambda n, p: first.append(n))
        emitter.subscribe(lambda n, p: second.append(n))

        for i in range(50):
            emitter.emit(f"export:{i}")
        emitter.close()

        assert first == [f"export:{i}" for i in range(50)]
        assert second == first

    def test_queued_survives_listener_error(self):
        """Test a failing listener does not stop the dispatcher"""
        received = []

        def flaky(name, payload):
            if name == 'bad':
                raise ValueError("nope")
            received.append(name)

        emitter = QueuedEmitter(flaky)
        emitter.emit('bad')
        emitter.emit('good')
        emitter.close()

        assert received == ['good']
