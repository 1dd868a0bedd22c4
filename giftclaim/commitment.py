"""
Password commitment scheme.

A gift's password hash is a Keccak-256 commitment over the password, its
salt, and the deployment it belongs to:

    commitment = keccak256(abi.encodePacked(
        string  password,
        bytes   salt,
        uint256 giftId,
        address escrowContract,
        uint256 chainId
    ))

Binding the contract address and chain id separates domains: a hash
computed for one deployment or network never matches a gift with the same
giftId on another deployment, even when password and salt are known.
"""

import re
from typing import Optional, Union

from .util import constant_time_compare, keccak256, strip_hex_prefix
from .validation import normalize_address

BYTES32_HEX_PATTERN = re.compile(r'^0x[0-9a-fA-F]{64}$')


def encode_uint256(value: int) -> bytes:
    """Encode a non-negative integer as a 32-byte big-endian word."""
    if value < 0 or value >= 2 ** 256:
        raise ValueError(f"uint256 out of range: {value}")
    return value.to_bytes(32, "big")


def encode_address(address: str) -> bytes:
    """Encode an address as its 20 raw bytes (packed encoding)."""
    return bytes.fromhex(normalize_address(address, "contract_address")[2:])


def encode_salt(salt: str) -> bytes:
    """
    Encode a salt for packing.

    A 0x-prefixed 64 hex digit salt is a bytes32 and packs as its raw 32
    bytes. Any other string packs as its UTF-8 bytes.
    """
    if BYTES32_HEX_PATTERN.match(salt):
        return bytes.fromhex(salt[2:])
    return salt.encode("utf-8")


def pack_commitment_preimage(
    password: str,
    salt: str,
    gift_id: int,
    contract_address: str,
    chain_id: int
) -> bytes:
    return b"".join([
        password.encode("utf-8"),
        encode_salt(salt),
        encode_uint256(int(gift_id)),
        encode_address(contract_address),
        encode_uint256(int(chain_id)),
    ])


def commitment(
    password: str,
    salt: str,
    gift_id: int,
    contract_address: str,
    chain_id: int
) -> bytes:
    """
    Compute the domain-separated password commitment.

    Args:
        password: Claim password as typed by the recipient
        salt: Salt chosen when the gift was created
        gift_id: Internal escrow gift id
        contract_address: Escrow contract the gift lives in
        chain_id: Network the contract is deployed on

    Returns:
        The 32-byte commitment
    """
    return keccak256(pack_commitment_preimage(password, salt, gift_id, contract_address, chain_id))


def commitment_hex(
    password: str,
    salt: str,
    gift_id: int,
    contract_address: str,
    chain_id: int
) -> str:
    """Commitment as 0x-prefixed lowercase hex, the form stored on chain."""
    return "0x" + commitment(password, salt, gift_id, contract_address, chain_id).hex()


def parse_bytes32(value: Union[str, bytes]) -> Optional[bytes]:
    """
    Parse a stored hash into exactly 32 bytes.

    Hex case and the 0x prefix are ignored. Returns None for anything that
    is not 32 bytes.
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value) if len(value) == 32 else None
    if not isinstance(value, str):
        return None
    digits = strip_hex_prefix(value.strip())
    if len(digits) != 64:
        return None
    try:
        return bytes.fromhex(digits)
    except ValueError:
        return None


def verify_commitment(
    stored_hash: Union[str, bytes],
    password: str,
    salt: str,
    gift_id: int,
    contract_address: str,
    chain_id: int
) -> bool:
    """
    Check a password against the commitment stored for a gift.

    The comparison is over the full 32-byte value.
    """
    expected = parse_bytes32(stored_hash)
    if expected is None:
        return False
    computed = commitment(password, salt, gift_id, contract_address, chain_id)
    return constant_time_compare(computed, expected)
