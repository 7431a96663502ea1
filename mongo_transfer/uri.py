"""
Connection string helpers for external tools (mongodump/mongorestore)

Manual string handling is used throughout instead of a urllib parse/unparse
round trip, which can re-encode credentials.
"""

from urllib.parse import unquote

import pymongo
from pymongo import MongoClient
from pymongo.errors import PyMongoError
from rich.console import Console

from .constants import AUTH_DETECT_TIMEOUT, DEFAULT_AUTH_SOURCE, PREFERRED_AUTH_MECHANISMS
from .masking import mask_uri_credentials

console = Console(stderr=True)


def _split_query(uri: str) -> tuple[str, str]:
    """Split a URI into (everything before '?', query string)"""
    base, _, query = uri.partition('?')
    return base, query


def get_query_param(uri: str, name: str) -> str | None:
    """Return the value of a query parameter (case-insensitive key) or None"""
    _, query = _split_query(uri)
    if not query:
        return None
    prefix = name.lower() + '='
    for part in query.split('&'):
        if part.lower().startswith(prefix):
            return part[len(prefix):]
    return None


def has_query_param(uri: str, name: str) -> bool:
    """Check whether a query parameter is present (case-insensitive key)"""
    return get_query_param(uri, name) is not None


def append_query_param(uri: str, name: str, value: str) -> str:
    """Append name=value to the query string"""
    separator = '&' if '?' in uri else '?'
    return f"{uri}{separator}{name}={value}"


def get_username(uri: str) -> str | None:
    """
    Extract the (decoded) username from a connection string

    Examples:
        >>> get_username("mongodb://app%40corp:pw@host/db")
        'app@corp'
        >>> get_username("mongodb://host/db") is None
        True
    """
    scheme_end = uri.find('://')
    if scheme_end < 0:
        return None
    authority = uri[scheme_end + 3:]
    for stop in ('/', '?'):
        authority = authority.split(stop, 1)[0]
    if '@' not in authority:
        return None
    userinfo = authority.rsplit('@', 1)[0]
    username = userinfo.split(':', 1)[0]
    return unquote(username) or None


def strip_uri_database(uri: str) -> str:
    """
    Remove the path-style database from a URI to avoid conflicts with --db.

    When a database is removed and no authSource is set, the database is
    re-added as authSource so authentication keeps working. Stripping an
    already-stripped URI returns it unchanged.

    Examples:
        >>> strip_uri_database("mongodb://host:27017/admin?retryWrites=true")
        'mongodb://host:27017/?authSource=admin&retryWrites=true'
        >>> strip_uri_database("mongodb://host:27017/app?authSource=admin")
        'mongodb://host:27017/?authSource=admin'
    """
    scheme_end = uri.find('://')
    if scheme_end < 0:
        return uri
    after_scheme = uri[scheme_end + 3:]

    # Skip past userinfo@ if present
    host_start = 0
    at_idx = after_scheme.find('@')
    if at_idx >= 0:
        host_start = at_idx + 1

    host_and_rest = after_scheme[host_start:]
    slash_idx = host_and_rest.find('/')
    if slash_idx < 0:
        return uri

    q_idx = host_and_rest.find('?')
    if q_idx >= 0 and q_idx < slash_idx:
        # '?' before any path: there is no database segment
        return uri
    if q_idx > slash_idx:
        database = host_and_rest[slash_idx + 1:q_idx]
        query = host_and_rest[q_idx + 1:]
    else:
        database = host_and_rest[slash_idx + 1:]
        query = ''

    if not database:
        return uri

    slash_pos = scheme_end + 3 + host_start + slash_idx
    base = uri[:slash_pos + 1]

    has_auth_source = any(part.lower().startswith('authsource=') for part in query.split('&') if part)
    if not has_auth_source:
        query = f"authSource={database}&{query}" if query else f"authSource={database}"

    return f"{base}?{query}" if query else base


def detect_auth_mechanism(client: MongoClient, username: str, uri: str) -> str | None:
    """
    Ask the server which SASL mechanisms the user supports and pick the strongest.

    Returns None when the probe fails or no preferred mechanism is offered.
    """
    auth_db = get_query_param(uri, 'authSource') or DEFAULT_AUTH_SOURCE
    try:
        with pymongo.timeout(AUTH_DETECT_TIMEOUT / 1000):
            reply = client.admin.command('hello', saslSupportedMechs=f"{auth_db}.{username}")
    except PyMongoError as e:
        console.print(f"[dim]Auth mechanism probe failed: {mask_uri_credentials(str(e))}[/dim]")
        return None

    offered = reply.get('saslSupportedMechs') or []
    for mechanism in PREFERRED_AUTH_MECHANISMS:
        if mechanism in offered:
            return mechanism
    return None


def build_tool_uri(uri: str, client: MongoClient | None = None) -> str:
    """
    Build a URI suitable for mongodump/mongorestore.

    When the URI has credentials but no explicit authMechanism, the mechanism is
    negotiated with the live server through the driver. An explicit mechanism is
    never overridden, and any probe failure leaves the URI unchanged.
    """
    username = get_username(uri)
    if not username or has_query_param(uri, 'authMechanism') or client is None:
        return uri

    mechanism = detect_auth_mechanism(client, username, uri)
    if mechanism:
        return append_query_param(uri, 'authMechanism', mechanism)
    return uri


def tool_uri_for_job(uri: str, database: str | None) -> str:
    """URI for one tool invocation: strip the database when --db is passed"""
    if database:
        return strip_uri_database(uri)
    return uri
