"""
Input validation for claim requests.

Syntactic checks only: nothing here touches the registry or the ledger.
"""

import re
from typing import Any, Optional

from .errors import ValidationError
from .util import keccak256

# Regex patterns for validation
ADDRESS_PATTERN = re.compile(r'^0x[0-9a-fA-F]{40}$')
HEX_BLOB_PATTERN = re.compile(r'^0x([0-9a-fA-F]{2})*$')
TOKEN_ID_PATTERN = re.compile(r'^[1-9][0-9]{0,77}$')

UINT256_MAX = 2 ** 256 - 1

DEFAULT_MIN_PASSWORD_LENGTH = 6
DEFAULT_MAX_PASSWORD_LENGTH = 50
MAX_SALT_LENGTH = 256
MAX_TOKEN_ID_LENGTH = 128
MAX_GATE_DATA_LENGTH = 8192


def to_checksum_address(address: str) -> str:
    """
    Return the EIP-55 mixed-case form of a 0x address.

    Raises:
        ValidationError: If the value is not 0x followed by 40 hex digits
    """
    if not isinstance(address, str) or not ADDRESS_PATTERN.match(address):
        raise ValidationError("address", "must be 0x followed by 40 hex characters")
    lower = address[2:].lower()
    digest = keccak256(lower.encode('ascii')).hex()
    return "0x" + "".join(
        ch.upper() if int(digest[i], 16) >= 8 else ch
        for i, ch in enumerate(lower)
    )


def normalize_address(value: Any, field_name: str = "address") -> str:
    """
    Validate an EVM address and return it lowercased.

    All-lowercase and all-uppercase hex are accepted as is. Mixed case is
    treated as an EIP-55 checksum and must verify.

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip()
    if not ADDRESS_PATTERN.match(value):
        raise ValidationError(field_name, "Invalid Ethereum address")

    body = value[2:]
    if body != body.lower() and body != body.upper():
        if to_checksum_address(value) != value:
            raise ValidationError(field_name, "Invalid address checksum")

    return "0x" + body.lower()


def parse_token_id(value: Any) -> Optional[int]:
    """
    Parse an externally supplied tokenId.

    Returns None for anything that is not a canonical positive decimal
    uint256. Never raises, whatever the caller sends.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 < value <= UINT256_MAX else None
    if not isinstance(value, str):
        return None
    if len(value) > MAX_TOKEN_ID_LENGTH:
        return None
    value = value.strip()
    if not TOKEN_ID_PATTERN.match(value):
        return None
    parsed = int(value)
    if parsed > UINT256_MAX:
        return None
    return parsed


def validate_token_id_type(value: Any, field_name: str = "tokenId") -> str:
    """
    Check that a tokenId is present as a string.

    Its content is left to the resolver, which reports unknown or malformed
    ids as NotFound.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(field_name, "is required")
    if isinstance(value, int):
        return str(value)
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")
    if len(value) > MAX_TOKEN_ID_LENGTH:
        raise ValidationError(field_name, f"must not exceed {MAX_TOKEN_ID_LENGTH} characters")
    return value


def validate_string_length(
    value: Any,
    field_name: str,
    min_length: int = 1,
    max_length: int = 1000
) -> str:
    """Require a string whose length lies in ``[min_length, max_length]``."""
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")
    if not min_length <= len(value) <= max_length:
        raise ValidationError(field_name, f"must be {min_length} to {max_length} characters long")
    return value


def validate_password(
    value: Any,
    min_length: int = DEFAULT_MIN_PASSWORD_LENGTH,
    max_length: int = DEFAULT_MAX_PASSWORD_LENGTH
) -> str:
    return validate_string_length(value, "password", min_length=min_length, max_length=max_length)


def validate_salt(value: Any) -> str:
    return validate_string_length(value, "salt", min_length=1, max_length=MAX_SALT_LENGTH)


def validate_gate_data(value: Any) -> Optional[str]:
    """
    Validate an optional gate attestation blob.

    The blob is opaque here: only its encoding is checked, never its
    signature.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("gateData", "must be a string")
    if len(value) > MAX_GATE_DATA_LENGTH:
        raise ValidationError("gateData", f"must not exceed {MAX_GATE_DATA_LENGTH} characters")
    if not HEX_BLOB_PATTERN.match(value):
        raise ValidationError("gateData", "must be 0x-prefixed hex bytes")
    return value


def validate_chain_id(value: Any, field_name: str = "chain_id") -> int:
    """
    Validate that a value is a positive integer chain id.

    Raises:
        ValidationError: If validation fails
    """
    if isinstance(value, bool):
        raise ValidationError(field_name, "must be an integer")
    try:
        int_value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(field_name, "must be an integer")

    if int_value <= 0:
        raise ValidationError(field_name, "must be positive")

    return int_value
