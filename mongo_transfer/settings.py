"""
Settings manager for mongo-transfer
Saved hosts and engine defaults live in one JSON file
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from rich.console import Console

from .constants import (
    GZIP_SCAN_DEPTH,
    IMPORT_BATCH_SIZE,
    POLL_INTERVAL,
    PREVIEW_BUFFER_LINES,
    PREVIEW_TIMEOUT,
    PROGRESS_INTERVAL,
    STDERR_BUFFER_LINES,
)

console = Console()

# Config file path
CONFIG_FILE = Path.home() / '.mongo_transfer_settings.json'

# Environment variable overriding CONFIG_FILE
CONFIG_ENV = 'MONGO_TRANSFER_SETTINGS'


def default_config_file() -> Path:
    override = os.environ.get(CONFIG_ENV)
    return Path(override).expanduser() if override else CONFIG_FILE


@dataclass
class TransferConfig:
    """Tunables of the transfer engine"""
    poll_interval: int = POLL_INTERVAL
    progress_interval: int = PROGRESS_INTERVAL
    import_batch_size: int = IMPORT_BATCH_SIZE
    stderr_buffer_lines: int = STDERR_BUFFER_LINES
    preview_buffer_lines: int = PREVIEW_BUFFER_LINES
    preview_timeout: float = PREVIEW_TIMEOUT
    gzip_scan_depth: int = GZIP_SCAN_DEPTH

    @classmethod
    def from_dict(cls, data: dict | None) -> 'TransferConfig':
        """Build from a settings 'defaults' section; unknown keys are ignored"""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in (data or {}).items() if k in known}
        config = cls(**values)
        for name in known:
            if getattr(config, name) <= 0:
                console.print(f"[yellow]⚠ Ignoring non-positive setting {name}={getattr(config, name)}[/yellow]")
                setattr(config, name, getattr(cls, name))
        return config

    @classmethod
    def from_settings(cls, settings: 'SettingsManager') -> 'TransferConfig':
        return cls.from_dict(settings.get_defaults())

    def to_dict(self) -> dict:
        return asdict(self)


class SettingsManager:
    """Manages saved hosts and engine defaults"""

    def __init__(self, config_file: str | Path | None = None):
        self.config_file = Path(config_file) if config_file else default_config_file()
        self.settings = self.load_settings()

    def load_settings(self) -> dict:
        """Load settings from file"""
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    settings = json.load(f)
            except (OSError, ValueError) as e:
                console.print(f"[yellow]⚠ Error loading settings: {e}[/yellow]")
                return {"hosts": {}, "defaults": {}}
            settings.setdefault('hosts', {})
            settings.setdefault('defaults', {})
            return settings
        return {"hosts": {}, "defaults": {}}

    def save_settings(self):
        """Save settings to file"""
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                json.dump(self.settings, f, indent=2)
        except OSError as e:
            console.print(f"[red]❌ Error saving settings: {e}[/red]")

    def add_host(self, name: str, uri: str):
        """Add or update a saved host"""
        self.settings['hosts'][name] = uri
        self.save_settings()

    def get_host(self, name: str) -> str | None:
        """Get a saved host URI"""
        return self.settings.get('hosts', {}).get(name)

    def list_hosts(self) -> dict[str, str]:
        """Get all saved hosts"""
        return self.settings.get('hosts', {})

    def delete_host(self, name: str) -> bool:
        """Delete a saved host"""
        if name in self.settings.get('hosts', {}):
            del self.settings['hosts'][name]
            self.save_settings()
            return True
        return False

    def get_defaults(self) -> dict:
        return self.settings.get('defaults', {})

    def set_default(self, key: str, value):
        """Set one engine default (see TransferConfig for the keys)"""
        if key not in {f.name for f in fields(TransferConfig)}:
            raise KeyError(f"unknown setting: {key}")
        self.settings.setdefault('defaults', {})[key] = value
        self.save_settings()
