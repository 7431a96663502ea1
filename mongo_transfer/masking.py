"""
Credential masking for text that may reach the user
"""

import re
from typing import Iterable

from .constants import MASK_PLACEHOLDER

# scheme://user:password@ -- the password runs to the userinfo '@', whatever it holds
CREDENTIAL_PATTERN = re.compile(
    r'(?P<prefix>\b[A-Za-z][A-Za-z0-9+.\-]*://[^:/?#@\s]+:)(?P<password>[^@\s]+)(?=@)'
)


def mask_uri_credentials(text: str) -> str:
    """
    Replace the password of every embedded URI with a placeholder.

    Username and host stay visible. Text without credentials is returned as-is,
    and masking already-masked text is a no-op.

    Examples:
        >>> mask_uri_credentials("failed: mongodb://admin:s3cret@db:27017/app")
        'failed: mongodb://admin:***@db:27017/app'
    """
    if '://' not in text:
        return text
    return CREDENTIAL_PATTERN.sub(lambda m: m.group('prefix') + MASK_PLACEHOLDER, text)


def mask_lines(lines: Iterable[str]) -> str:
    """Mask each line of captured tool output and join them"""
    return '\n'.join(mask_uri_credentials(line) for line in lines)
