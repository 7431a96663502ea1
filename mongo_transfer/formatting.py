"""
Centralized formatting utilities for mongo-transfer
Provides consistent number, size and progress formatting for console output
"""

from .constants import FORMAT_MILLIONS_THRESHOLD, FORMAT_THOUSANDS_THRESHOLD


def format_number(num: int) -> str:
    """
    Format number with underscore as thousand separator

    Examples:
        1234567 -> "1_234_567"
        999 -> "999"
    """
    return f"{num:_}"


def format_size(size_bytes: float) -> str:
    """
    Format byte size with appropriate unit

    Examples:
        1024 -> "1.0 KB"
        512 -> "512 B"
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            if unit == 'B':
                return f"{int(size_bytes)} B"
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:_.1f} PB"


def format_records(count: int) -> str:
    """
    Format a record count with K/M suffix

    Examples:
        1234567 -> "1.2M"
        12345 -> "12.3K"
        999 -> "999"
    """
    if count >= FORMAT_MILLIONS_THRESHOLD:
        return f"{count / FORMAT_MILLIONS_THRESHOLD:.1f}M"
    if count >= FORMAT_THOUSANDS_THRESHOLD:
        return f"{count / FORMAT_THOUSANDS_THRESHOLD:.1f}K"
    return str(count)


def format_namespace(database: str | None, collection: str | None) -> str:
    """Human label for a transfer scope"""
    if database and collection:
        return f"{database}.{collection}"
    if database:
        return database
    return "all databases"


def format_progress(event: dict) -> str:
    """
    One-line description of a progress event payload

    Examples:
        {"phase": "exporting", "database": "shop", "collection": "users",
         "current": 500, "total": 1000, "batchIndex": 1, "batchTotal": 2}
        -> "[1/2] exporting shop.users 500/1_000"
    """
    parts = []
    if event.get('batchTotal'):
        parts.append(f"[{event.get('batchIndex', 0)}/{event['batchTotal']}]")
    parts.append(event.get('phase', ''))
    if event.get('database') or event.get('collection'):
        parts.append(format_namespace(event.get('database'), event.get('collection')))

    current = event.get('current', 0)
    total = event.get('total', -1)
    if total is not None and total >= 0:
        parts.append(f"{format_number(current)}/{format_number(total)}")
    elif current:
        parts.append(format_number(current))
    return ' '.join(p for p in parts if p)
