"""
Small helpers shared by the credential, commitment and logging code:
canonical JSON, Keccak-256, base64 variants and the wall clock.
"""

import base64
import binascii
import hmac
import json
import time
from typing import Any, Union

from Crypto.Hash import keccak

BytesLike = Union[bytes, str]


def _as_bytes(data: BytesLike) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def canonicalize(obj: Any) -> bytes:
    """JSON with sorted keys and no insignificant whitespace, as UTF-8."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def keccak256(data: BytesLike) -> bytes:
    """Keccak-256 as used by the EVM (original padding, not NIST SHA3-256)."""
    return keccak.new(digest_bits=256, data=_as_bytes(data)).digest()


def now_epoch() -> int:
    return int(time.time())


def b64e(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def b64d(text: str) -> bytes:
    """Strict standard base64; raises binascii.Error on stray characters."""
    return base64.b64decode(text, validate=True)


def b64url_encode(raw: bytes) -> str:
    """URL-safe base64 with the trailing '=' padding removed."""
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def b64url_decode(text: str) -> bytes:
    """Inverse of b64url_encode; accepts input with or without padding."""
    if not isinstance(text, str):
        raise binascii.Error("expected str")
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def strip_hex_prefix(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


def constant_time_compare(a: BytesLike, b: BytesLike) -> bool:
    return hmac.compare_digest(_as_bytes(a), _as_bytes(b))


def short_address(address: Any, visible_chars: int = 10) -> str:
    """Truncate an address for log lines, e.g. ``0x12345678...``."""
    if not isinstance(address, str):
        return ""
    return address if len(address) <= visible_chars else address[:visible_chars] + "..."
