"""
Shared fixtures: fake mongodump/mongorestore scripts and an event recorder
"""

import json
import os
import sys
import textwrap

import pytest

from mongo_transfer.events import CallbackEmitter

# Every fake tool logs its argv and exposes --key=value flags as ARGS
TOOL_HEADER = """#!{python}
import json, os, sys, time
with open({log!r}, 'a') as _log:
    _log.write(json.dumps({{'tool': {name!r}, 'args': sys.argv[1:]}}) + '\\n')
ARGS = dict(a[2:].split('=', 1) for a in sys.argv[1:] if a.startswith('--') and '=' in a)
FLAGS = [a for a in sys.argv[1:] if a.startswith('--') and '=' not in a]

def say(line):
    sys.stderr.write(line + '\\n')
    sys.stderr.flush()

"""


class FakeTools:
    """Writes executable Python scripts standing in for the database tools"""

    def __init__(self, bin_dir):
        self.bin_dir = bin_dir
        self.log = bin_dir / 'calls.jsonl'

    def install(self, name, body=''):
        script = self.bin_dir / name
        header = TOOL_HEADER.format(python=sys.executable, log=str(self.log), name=name)
        script.write_text(header + textwrap.dedent(body))
        script.chmod(0o755)
        return str(script)

    def calls(self, name=None):
        """argv lists of every recorded invocation, oldest first"""
        if not self.log.exists():
            return []
        entries = [json.loads(line) for line in self.log.read_text().splitlines() if line]
        return [e['args'] for e in entries if name is None or e['tool'] == name]


class EventRecorder:
    """Collects (name, payload) pairs; `emitter` feeds it"""

    def __init__(self):
        self.events = []
        self.emitter = CallbackEmitter(self)
        self.hooks = []

    def __call__(self, name, payload):
        self.events.append((name, payload))
        for hook in list(self.hooks):
            hook(name, payload)

    def names(self):
        return [name for name, _ in self.events]

    def payloads(self, name):
        return [payload for event, payload in self.events if event == name]


@pytest.fixture
def fake_tools(tmp_path, monkeypatch):
    """Fake tools directory placed first on PATH"""
    bin_dir = tmp_path / 'bin'
    bin_dir.mkdir()
    monkeypatch.setenv('PATH', str(bin_dir) + os.pathsep + os.environ.get('PATH', ''))
    return FakeTools(bin_dir)


@pytest.fixture
def empty_path(tmp_path, monkeypatch):
    """PATH holding nothing but an empty directory"""
    empty = tmp_path / 'nothing'
    empty.mkdir()
    monkeypatch.setenv('PATH', str(empty))
    return empty


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def settings_file(tmp_path, monkeypatch):
    """Point the settings manager at a scratch file"""
    path = tmp_path / 'settings.json'
    monkeypatch.setenv('MONGO_TRANSFER_SETTINGS', str(path))
    return path
