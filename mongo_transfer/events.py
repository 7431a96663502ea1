"""
Progress and terminal events for external observers

Emission is fire-and-forget: emitters never block the producing loop and
never retry delivery.
"""

import queue
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable

from rich.console import Console

console = Console(stderr=True)

Listener = Callable[[str, Any], None]


class Phase(str, Enum):
    EXPORTING = 'exporting'
    IMPORTING = 'importing'
    ANALYZING = 'analyzing'
    DOWNLOADING = 'downloading'
    WRITING = 'writing'
    FINALIZING = 'finalizing'


PROGRESS = 'progress'
COMPLETE = 'complete'
CANCELLED = 'cancelled'
WARNING = 'warning'
PAUSED = 'paused'
RESUMED = 'resumed'
ERROR = 'error'


def event_name(kind: str, suffix: str) -> str:
    """e.g. event_name('export', 'progress') -> 'export:progress'"""
    return f"{kind}:{suffix}"


@dataclass
class ProgressEvent:
    """Progress of one transfer; total == -1 means indeterminate"""
    job_id: str
    phase: Phase
    database: str = ''
    collection: str = ''
    current: int = 0
    total: int = -1
    batch_index: int = 0
    batch_total: int = 0
    processed_records: int = 0
    total_records: int = -1

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            'jobId': data['job_id'],
            'phase': Phase(data['phase']).value,
            'database': data['database'] or '',
            'collection': data['collection'] or '',
            'current': data['current'],
            'total': data['total'],
            'batchIndex': data['batch_index'],
            'batchTotal': data['batch_total'],
            'processedRecords': data['processed_records'],
            'totalRecords': data['total_records'],
        }


class EventEmitter:
    """Base emitter: subclasses deliver (name, payload) to an observer"""

    def emit(self, name: str, payload: Any = None):
        raise NotImplementedError

    def close(self):
        pass


class NullEmitter(EventEmitter):
    """Drops every event"""

    def emit(self, name: str, payload: Any = None):
        pass


class CallbackEmitter(EventEmitter):
    """Calls a listener inline; listener errors are reported and dropped"""

    def __init__(self, listener: Listener):
        self.listener = listener

    def emit(self, name: str, payload: Any = None):
        try:
            self.listener(name, payload)
        except Exception as e:
            console.print(f"[yellow]⚠ Event listener failed on {name}: {e}[/yellow]")


class QueuedEmitter(EventEmitter):
    """Hands events to a background thread so producers never wait on listeners"""

    _STOP = object()

    def __init__(self, *listeners: Listener):
        self._listeners = list(listeners)
        self._queue: queue.SimpleQueue = queue.SimpleQueue()
        self._thread = threading.Thread(target=self._dispatch, name='transfer-events', daemon=True)
        self._thread.start()

    def subscribe(self, listener: Listener):
        self._listeners.append(listener)

    def emit(self, name: str, payload: Any = None):
        self._queue.put((name, payload))

    def _dispatch(self):
        while True:
            item = self._queue.get()
            if item is self._STOP:
                return
            name, payload = item
            for listener in list(self._listeners):
                try:
                    listener(name, payload)
                except Exception as e:
                    console.print(f"[yellow]⚠ Event listener failed on {name}: {e}[/yellow]")

    def close(self, timeout: float | None = 5):
        """Deliver what is queued, then stop the dispatcher"""
        self._queue.put(self._STOP)
        self._thread.join(timeout)


class ProgressTracker:
    """
    Emits progress events for one transfer.

    current never decreases between events, and total is raised to current
    when an estimate turns out too small.
    """

    def __init__(self, emitter: EventEmitter, kind: str, job_id: str, batch_total: int = 0):
        self.emitter = emitter
        self.kind = kind
        self.job_id = job_id
        self.batch_total = batch_total
        self._current = 0
        self._lock = threading.Lock()

    def progress(
        self,
        phase: Phase,
        database: str | None = '',
        collection: str | None = '',
        current: int = 0,
        total: int = -1,
        batch_index: int = 0,
        processed_records: int = 0,
        total_records: int = -1,
    ) -> ProgressEvent:
        with self._lock:
            self._current = max(self._current, current)
            current = self._current
            if total >= 0 and current > total:
                total = current
            if total_records >= 0 and processed_records > total_records:
                total_records = processed_records
            event = ProgressEvent(
                job_id=self.job_id,
                phase=phase,
                database=database or '',
                collection=collection or '',
                current=current,
                total=total,
                batch_index=batch_index,
                batch_total=self.batch_total,
                processed_records=processed_records,
                total_records=total_records,
            )
        self.emitter.emit(event_name(self.kind, PROGRESS), event.to_dict())
        return event

    def warning(self, message: str, **details):
        payload = {'jobId': self.job_id, 'message': message}
        payload.update(details)
        self.emitter.emit(event_name(self.kind, WARNING), payload)

    def complete(self, **details):
        payload = {'jobId': self.job_id}
        payload.update(details)
        self.emitter.emit(event_name(self.kind, COMPLETE), payload)

    def cancelled(self):
        self.emitter.emit(event_name(self.kind, CANCELLED), {'jobId': self.job_id})
