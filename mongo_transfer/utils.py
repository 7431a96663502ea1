"""
Utility functions for mongo-transfer
"""

from pymongo import MongoClient
from pymongo.errors import PyMongoError
from rich.console import Console
from rich.table import Table

from .constants import DEFAULT_MONGO_TIMEOUT, MONGODUMP, MONGORESTORE, QUICK_CHECK_TIMEOUT
from .masking import mask_uri_credentials
from .settings import SettingsManager
from .tools import check_tool_availability

console = Console()


# ============================================================================
# MongoDB Connection Helpers
# ============================================================================

def connect_mongo(uri: str, timeout: int = DEFAULT_MONGO_TIMEOUT) -> MongoClient:
    """
    Connect to MongoDB and verify connection with ping.
    Raises exception if connection fails.

    Args:
        uri: MongoDB connection URI
        timeout: Connection timeout in milliseconds (default: 5000)

    Returns:
        Connected MongoClient instance

    Raises:
        PyMongoError: If connection fails
    """
    client = MongoClient(uri, serverSelectionTimeoutMS=timeout)
    try:
        client.admin.command('ping')  # Verify connection
    except PyMongoError:
        client.close()
        raise
    return client


def test_connection(uri: str, timeout: int = QUICK_CHECK_TIMEOUT) -> tuple[bool, str]:
    """Test MongoDB connection and return status with database count"""
    try:
        client = connect_mongo(uri, timeout)
    except PyMongoError as e:
        return False, mask_uri_credentials(str(e))
    try:
        db_count = len(client.list_database_names())
    except PyMongoError as e:
        return False, mask_uri_credentials(str(e))
    finally:
        client.close()
    return True, f"OK ({db_count} databases)"


def resolve_uri(host: str, settings: SettingsManager | None = None) -> str:
    """
    Turn a saved host name into its URI; anything containing '://' is a URI already

    Raises:
        KeyError: unknown host name
    """
    if '://' in host:
        return host
    settings = settings or SettingsManager()
    uri = settings.get_host(host)
    if uri is None:
        raise KeyError(f"unknown host: {host}")
    return uri


# ============================================================================
# External Tools
# ============================================================================

def display_tools_table():
    """Print availability and version of mongodump/mongorestore"""
    table = Table(title="🧰 MongoDB Database Tools", show_header=True)
    table.add_column("Tool", style="cyan")
    table.add_column("Status")
    table.add_column("Version", style="dim")
    table.add_column("Path", style="dim")

    tools = check_tool_availability()
    for name in (MONGODUMP, MONGORESTORE):
        info = tools[name]
        status = "[green]✓ found[/green]" if info['available'] else "[red]✗ missing[/red]"
        table.add_row(name, status, str(info['version']), str(info['path']))

    console.print(table)
    return tools
