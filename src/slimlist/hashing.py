"""
Content hashing utilities for reference-table deduplication.
"""

import hashlib
from typing import Union


def sha256_hex(value: Union[str, bytes]) -> str:
    """
    Hex SHA-256 digest of a text value or byte buffer.

    Text is encoded as UTF-8 so the digest is byte-exact and case-sensitive:
    ``"A"`` and ``"a"`` hash differently, as do values that only differ in
    trailing characters.
    """
    if isinstance(value, str):
        value = value.encode("utf-8")
    return hashlib.sha256(value).hexdigest()
