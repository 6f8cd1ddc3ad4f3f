"""Stable record identity derived from book metadata.

The id is a 32-bit polynomial rolling hash (``hash = hash * 31 + unit``)
over the UTF-16 code units of ``title|author|fileName|fileSize``, rendered
as ``id_<hex>``. It is a cheap identity heuristic, not a digest: distinct
metadata can collide, and a collision makes two books share one record.
"""

import struct
from typing import Optional

ID_PREFIX = "id_"

_UINT32_MASK = 0xFFFFFFFF


def _utf16_code_units(text: str) -> tuple:
    encoded = text.encode("utf-16-le", errors="surrogatepass")
    return struct.unpack(f"<{len(encoded) // 2}H", encoded)


def hash_string(text: str) -> str:
    """
    Hash a string into a prefixed hexadecimal id.

    Example:
        >>> hash_string("")
        'id_0'
        >>> hash_string("a")
        'id_61'
        >>> hash_string("ab")
        'id_c21'
    """
    value = 0
    for unit in _utf16_code_units(text):
        value = (value * 31 + unit) & _UINT32_MASK
    return f"{ID_PREFIX}{value:x}"


def identity_source(
    title: Optional[str],
    author: Optional[str],
    file_name: Optional[str],
    file_size: Optional[int],
) -> str:
    """Build the string that record ids are hashed from."""
    parts = [title, author, file_name, file_size]
    return "|".join("" if part is None else str(part) for part in parts)


def compute_record_id(
    title: Optional[str],
    author: Optional[str],
    file_name: Optional[str],
    file_size: Optional[int],
) -> str:
    """
    Compute the stable id of a library record.

    Identical metadata always yields the identical id.

    Example:
        >>> compute_record_id("Dune", "Frank Herbert", "dune.epub", 1024) == \\
        ...     compute_record_id("Dune", "Frank Herbert", "dune.epub", 1024)
        True
    """
    return hash_string(identity_source(title, author, file_name, file_size))
