"""
Error types raised by the transfer engine
"""

from .constants import TOOL_DOWNLOAD_URL


class TransferError(Exception):
    """Base error for export/import failures"""


class ToolNotFoundError(TransferError):
    """A required external tool is not on PATH"""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"{tool} not found. Install MongoDB Database Tools: {TOOL_DOWNLOAD_URL}")


class TransferCancelled(TransferError):
    """The transfer was cancelled by the user"""

    def __init__(self, job_id: str | None = None, kind: str = 'export'):
        self.job_id = job_id
        self.kind = kind
        super().__init__(f"{kind} cancelled")


class ToolFailedError(TransferError):
    """An external tool exited with a non-zero status"""

    def __init__(self, tool: str, detail: str, result=None):
        self.tool = tool
        self.detail = detail
        # Partial ImportResult collected before the failure, if any
        self.result = result
        super().__init__(f"{tool} failed: {detail}")


class ArchiveError(TransferError):
    """A native export archive could not be read"""


class ImportAborted(TransferError):
    """A native import stopped on a fatal driver error"""

    def __init__(self, detail: str, result=None, database: str = '', collection: str = '', remaining=None):
        self.detail = detail
        self.result = result
        self.database = database
        self.collection = collection
        # Databases not (fully) imported, the failed one first
        self.remaining = list(remaining or [])
        super().__init__(detail)
