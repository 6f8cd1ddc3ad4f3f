"""Binary asset codec for text-based (JSON) snapshots.

Book bodies and cover images travel inside the snapshot as base64 text.
Embedding whole book files this way inflates the snapshot by roughly a third
and keeps it fully in memory; large libraries pay for that on every sync.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Optional, Union

from .exceptions import DecodeError

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_COVER_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class BinaryAsset:
    """Binary payload with the metadata needed to hand it back to a reader."""

    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE
    file_name: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


def encode_asset(asset: Union[bytes, bytearray, BinaryAsset]) -> str:
    """
    Encode binary data as transportable text.

    Example:
        >>> encode_asset(b"PK\\x03\\x04")
        'UEsDBA=='
    """
    data = asset.data if isinstance(asset, BinaryAsset) else bytes(asset)
    return base64.b64encode(data).decode("ascii")


def decode_asset(
    text: str,
    mime_type: Optional[str] = None,
    file_name: Optional[str] = None,
    field: Optional[str] = None,
) -> BinaryAsset:
    """
    Restore a binary asset from its encoded text.

    ``decode_asset(encode_asset(b), mime, name)`` reproduces ``b`` byte for
    byte with ``mime`` and ``name`` attached.

    Args:
        text: Encoded payload produced by encode_asset(). Whitespace is
            ignored and missing trailing padding is restored
        mime_type: MIME type to attach (defaults to application/octet-stream)
        file_name: Optional file name to attach
        field: Record field the payload came from, for error reporting

    Raises:
        DecodeError: If the payload is not valid encoded data
    """
    if not isinstance(text, str):
        raise DecodeError(
            f"Encoded asset must be text, got {type(text).__name__}",
            field=field,
        )

    # web clients may send unpadded or line-wrapped text
    compact = "".join(text.split())
    compact += "=" * (-len(compact) % 4)
    try:
        data = base64.b64decode(compact.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError) as e:
        raise DecodeError(f"Invalid encoded asset: {e}", field=field) from e

    return BinaryAsset(
        data=data,
        mime_type=mime_type or DEFAULT_MIME_TYPE,
        file_name=file_name,
    )
