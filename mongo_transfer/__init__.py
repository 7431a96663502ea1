"""
mongo-transfer - bulk MongoDB export/import

Exports selected databases and collections to portable archives, either
natively through the driver or with mongodump, and imports them back with
cancel, pause and progress reporting.
"""

__version__ = "1.0.0"
__author__ = "Sathia Musso"

from .engine import TransferEngine
from .events import CallbackEmitter, QueuedEmitter
from .planner import ExportSelection
from .restore import RestoreOptions
from .settings import SettingsManager, TransferConfig

__all__ = [
    "TransferEngine",
    "ExportSelection",
    "RestoreOptions",
    "CallbackEmitter",
    "QueuedEmitter",
    "SettingsManager",
    "TransferConfig",
]
