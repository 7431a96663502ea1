"""
Running mongodump/mongorestore and reading their stderr

The tools report progress on stderr. The runner drains that stream line by
line on a worker thread while the calling thread waits on the process, so a
chatty tool never blocks on a full pipe. The drain future is the completion
signal between the two.
"""

import re
import shutil
import subprocess
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, NamedTuple

from rich.console import Console

from .constants import (
    MONGODUMP,
    MONGORESTORE,
    PROCESS_POLL_SECONDS,
    PROCESS_TERMINATE_GRACE,
    STDERR_BUFFER_LINES,
    TOOL_VERSION_TIMEOUT,
)
from .control import CancellationToken
from .exceptions import ToolFailedError, ToolNotFoundError, TransferCancelled
from .masking import mask_lines, mask_uri_credentials

console = Console(stderr=True)


# ============================================================================
# Tool Lookup
# ============================================================================

def find_tool(name: str) -> str:
    """Resolve a tool from PATH or raise ToolNotFoundError"""
    path = shutil.which(name)
    if path is None:
        raise ToolNotFoundError(name)
    return path


def tool_version(path: str) -> str:
    """First non-empty line of `<tool> --version`, or '' when it cannot be run"""
    try:
        result = subprocess.run(
            [path, '--version'],
            capture_output=True,
            text=True,
            timeout=TOOL_VERSION_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError):
        return ''
    for line in (result.stdout + result.stderr).splitlines():
        if line.strip():
            return line.strip()
    return ''


def check_tool_availability() -> dict[str, dict[str, str | bool]]:
    """Availability and version of the dump/restore tools"""
    tools = {}
    for name in (MONGODUMP, MONGORESTORE):
        path = shutil.which(name)
        tools[name] = {
            'available': path is not None,
            'path': path or '',
            'version': tool_version(path) if path else '',
        }
    return tools


# ============================================================================
# Progress Line Recognition
# ============================================================================

class LineRule(NamedTuple):
    name: str
    pattern: re.Pattern


DUMP_DONE = 'dump_done'
RESTORE_DONE = 'restore_done'
RESTORE_TOTAL = 'restore_total'
RESTORE_FAILED = 'restore_failed'
CONTINUE_ERROR = 'continue_error'
ARCHIVE_PRELUDE = 'archive_prelude'

LINE_RULES = (
    LineRule(DUMP_DONE, re.compile(r'done dumping (\S+?)\.(\S+) \((\d+) documents?\)')),
    LineRule(RESTORE_DONE, re.compile(r'finished restoring (\S+?)\.(\S+) \((\d+) document\S* (\d+) failure')),
    LineRule(RESTORE_TOTAL, re.compile(r'(\d+) document\(s\) restored successfully')),
    LineRule(RESTORE_FAILED, re.compile(r'(\d+) document\(s\) failed to restore')),
    LineRule(CONTINUE_ERROR, re.compile(r'continuing through error:|\bFailed\b')),
    LineRule(ARCHIVE_PRELUDE, re.compile(r'archive prelude (\S+?)\.(\S+)')),
)


def scan_line(line: str) -> list[tuple[str, re.Match]]:
    """
    Every rule matching a stderr line, in table order.

    One line can carry several shapes (mongorestore prints the restored and
    failed totals together). An empty list means the line is opaque context.
    """
    matches = []
    for rule in LINE_RULES:
        match = rule.pattern.search(line)
        if match:
            matches.append((rule.name, match))
    return matches


# ============================================================================
# Process Runner
# ============================================================================

@dataclass
class ToolRun:
    """Outcome of one tool invocation"""
    returncode: int
    recent_lines: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def diagnostics(self) -> str:
        return mask_lines(self.recent_lines)

    def raise_for_status(self, tool: str, token: CancellationToken | None = None, kind: str = 'export', result=None):
        """
        Raise for a non-zero exit. Cancellation is checked before tool failure.
        """
        if self.ok:
            return
        if self.cancelled or (token is not None and token.cancelled):
            raise TransferCancelled(token.job_id if token else None, kind=kind)
        detail = self.diagnostics if self.recent_lines else f"exit status {self.returncode}"
        raise ToolFailedError(tool, detail, result=result)


class ProcessRunner:
    """Runs a tool, streams its stderr to a line callback, enforces cancellation"""

    def __init__(self, buffer_lines: int = STDERR_BUFFER_LINES, poll_seconds: float = PROCESS_POLL_SECONDS):
        self.buffer_lines = buffer_lines
        self.poll_seconds = poll_seconds

    def run(
        self,
        cmd: list[str],
        token: CancellationToken | None = None,
        on_line: Callable[[str], None] | None = None,
        timeout: float | None = None,
        buffer_lines: int | None = None,
    ) -> ToolRun:
        """
        Run cmd to completion.

        The process is terminated when the token fires or the timeout elapses;
        the run is then reported with cancelled=True / a non-zero exit.
        """
        recent: deque[str] = deque(maxlen=buffer_lines or self.buffer_lines)
        tool = cmd[0]

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors='replace',
                bufsize=1,
            )
        except OSError as e:
            raise ToolFailedError(tool, mask_uri_credentials(f"failed to start: {e}")) from e

        def drain():
            for raw in process.stderr:
                line = raw.rstrip('\r\n')
                recent.append(line)
                if on_line is not None:
                    on_line(line)

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix='stderr') as pool:
            drained = pool.submit(drain)
            cancelled = self._wait(process, token, timeout)
            try:
                drained.result()
            finally:
                process.stderr.close()

        return ToolRun(returncode=process.returncode, recent_lines=list(recent), cancelled=cancelled)

    def _wait(self, process: subprocess.Popen, token: CancellationToken | None, timeout: float | None) -> bool:
        """Wait for exit while polling the token; True when cancellation stopped it"""
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            try:
                process.wait(timeout=self.poll_seconds)
                return False
            except subprocess.TimeoutExpired:
                pass

            if token is not None and token.cancelled:
                self._terminate(process)
                return True
            if deadline is not None and time.monotonic() > deadline:
                console.print(f"[yellow]⚠ {process.args[0]} timed out, stopping it[/yellow]")
                self._terminate(process)
                return False

    def _terminate(self, process: subprocess.Popen):
        process.terminate()
        try:
            process.wait(timeout=PROCESS_TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
