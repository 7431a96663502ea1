"""
Cancellation tokens and the shared pause gate

Cancellation is cooperative: record loops call TransferRegistry.checkpoint()
every POLL_INTERVAL records and the process runner polls the token while
waiting on a tool. Any new long-running step inside a job loop must poll too,
because nothing is ever preempted.
"""

import itertools
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator


class CancellationToken:
    """Cancellation flag for one in-flight transfer"""

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._event = threading.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]):
        """Run callback when the token fires (immediately if it already has)"""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def __repr__(self):
        return f"CancellationToken({self.job_id!r}, cancelled={self.cancelled})"


class PauseGate:
    """Process-wide pause switch polled by record loops"""

    def __init__(self):
        self._cond = threading.Condition()
        self._paused = False

    @property
    def paused(self) -> bool:
        with self._cond:
            return self._paused

    def pause(self):
        with self._cond:
            self._paused = True

    def resume(self):
        with self._cond:
            self._paused = False
            self._cond.notify_all()

    def reset(self):
        """Clear the flag when no transfer is running any more"""
        with self._cond:
            self._paused = False
            self._cond.notify_all()

    def wake(self):
        """Wake parked waiters so they re-check their tokens"""
        with self._cond:
            self._cond.notify_all()

    def wait(self, token: CancellationToken | None = None) -> bool:
        """
        Block while paused.

        Returns True when the caller should continue and False when the token
        was cancelled, including while parked.
        """
        with self._cond:
            while self._paused:
                if token is not None and token.cancelled:
                    return False
                self._cond.wait()
        return not (token is not None and token.cancelled)


class TransferRegistry:
    """Synchronized map of transfer id -> token plus the gate they share"""

    def __init__(self, name: str = 'transfer'):
        self.name = name
        self.pause_gate = PauseGate()
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    def new_job_id(self, prefix: str) -> str:
        return f"{prefix}-{time.time_ns()}-{next(self._counter)}"

    def register(self, prefix: str | None = None, job_id: str | None = None) -> CancellationToken:
        job_id = job_id or self.new_job_id(prefix or self.name)
        token = CancellationToken(job_id)
        token.on_cancel(self.pause_gate.wake)
        with self._lock:
            if job_id in self._tokens:
                raise ValueError(f"{self.name} {job_id} is already running")
            first = not self._tokens
            self._tokens[job_id] = token
        if first:
            # A pause requested while nothing ran does not carry over
            self.pause_gate.reset()
        return token

    def unregister(self, job_id: str):
        with self._lock:
            self._tokens.pop(job_id, None)
            idle = not self._tokens
        if idle:
            self.pause_gate.reset()

    def cancel(self, job_id: str | None = None) -> list[str]:
        """Cancel one transfer, or every transfer when job_id is None"""
        with self._lock:
            if job_id is None:
                targets = list(self._tokens.values())
            else:
                targets = [self._tokens[job_id]] if job_id in self._tokens else []
        for token in targets:
            token.cancel()
        self.pause_gate.wake()
        return [token.job_id for token in targets]

    def active(self) -> list[str]:
        with self._lock:
            return list(self._tokens)

    def pause(self):
        self.pause_gate.pause()

    def resume(self):
        self.pause_gate.resume()

    @property
    def paused(self) -> bool:
        return self.pause_gate.paused

    def checkpoint(self, token: CancellationToken) -> bool:
        """Wait out a pause, then report whether the transfer may continue"""
        return self.pause_gate.wait(token)

    @contextmanager
    def track(self, prefix: str | None = None, job_id: str | None = None) -> Iterator[CancellationToken]:
        """Register a token for the duration of a transfer"""
        token = self.register(prefix, job_id)
        try:
            yield token
        finally:
            self.unregister(token.job_id)
