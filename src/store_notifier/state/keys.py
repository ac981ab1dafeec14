"""
Composite state keys.

Every part is percent-encoded before joining, so the delimiter can never
appear inside a part (bundle identifiers may contain ``-``, ``.`` or even
``|``).
"""

from urllib.parse import quote, unquote

KEY_DELIMITER = "|"


def make_key(*parts: str) -> str:
    """Join natural key parts into a single stable key."""
    return KEY_DELIMITER.join(quote(str(part), safe="") for part in parts)


def split_key(key: str) -> list[str]:
    """Inverse of :func:`make_key`."""
    return [unquote(part) for part in key.split(KEY_DELIMITER)]
