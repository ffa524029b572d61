"""Public token <-> internal id codec.

Tokens are base64 of the id with padding stripped and a few random characters
appended. This only hides the sequential id layout; it is not a secret.
"""

import base64
import binascii
import secrets
import string
from typing import Callable, Optional

from .exceptions import DecodeError

SUFFIX_LENGTH = 3
SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def encode(entry_id: str) -> str:
    encoded = base64.b64encode(entry_id.encode("utf-8")).decode("ascii")
    suffix = "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return encoded.rstrip("=") + suffix


def decode(token: str, issued: Optional[Callable[[str], bool]] = None) -> str:
    """
    Recover the internal id from a public token.

    ``issued`` is an optional predicate (e.g. ``IdAllocator.is_issued``);
    when given, ids it rejects raise DecodeError as well.
    """
    if not token or len(token) <= SUFFIX_LENGTH:
        raise DecodeError(f"Token too short: {token!r}")

    body = token[:-SUFFIX_LENGTH]
    body += "=" * (-len(body) % 4)
    try:
        entry_id = base64.b64decode(body, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise DecodeError(f"Malformed token: {token!r}") from exc

    if not entry_id:
        raise DecodeError(f"Malformed token: {token!r}")
    if issued is not None and not issued(entry_id):
        raise DecodeError(f"Unknown id {entry_id!r}")
    return entry_id
