"""
Escrow state reader.

Reads gift records from the escrow contract through a JSON-RPC node with
read-only ``eth_call`` requests. Nothing is cached: gift status changes
between requests (another party may claim in the meantime), so every
authorization re-reads current state.
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter

from .errors import LedgerReadError, NotFoundError
from .util import keccak256, strip_hex_prefix
from .validation import normalize_address

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "00" * 20
WORD_SIZE = 32

GET_GIFT_SIGNATURE = "getGift(uint256)"
GET_GIFT_SELECTOR = keccak256(GET_GIFT_SIGNATURE)[:4]
GIFT_RECORD_WORDS = 6


class GiftStatus(IntEnum):
    """Persisted gift status as stored by the escrow contract."""
    ACTIVE = 0
    CLAIMED = 1
    RETURNED = 2


@dataclass(frozen=True)
class GiftRecord:
    """Snapshot of one escrow gift at read time."""
    gift_id: int
    creator: str
    expiration_time: int
    nft_contract: str
    token_id: int
    password_hash: str
    status: GiftStatus

    def info(self) -> Dict[str, Any]:
        """Public projection returned to the claimer."""
        return {
            "creator": self.creator,
            "expirationTime": self.expiration_time,
            "status": int(self.status),
            "nftContract": self.nft_contract,
        }


class JsonRpcError(LedgerReadError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, code: Optional[int], message: str, data: Any = None):
        self.code = code
        self.rpc_message = message or ""
        self.data = data
        super().__init__(f"JSON-RPC error {code}: {message}")

    @property
    def reverted(self) -> bool:
        return "revert" in self.rpc_message.lower()


class JsonRpcLedgerClient:
    """
    Minimal Ethereum JSON-RPC client.

    Thread-safe: each worker thread gets its own pooled requests.Session.
    Requests are bounded by a (connect, read) timeout and never retried.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout_seconds: float = 10.0,
        connect_timeout_seconds: float = 3.0,
        pool_size: int = 10
    ):
        self._rpc_url = rpc_url
        self._timeout = (connect_timeout_seconds, timeout_seconds)
        self._pool_size = pool_size
        self._local = threading.local()
        self._ids = itertools.count(1)

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(
                pool_connections=self._pool_size,
                pool_maxsize=self._pool_size,
                max_retries=0,
            )
            session.mount("http://", adapter)
            session.mount("https://", adapter)
            self._local.session = session
        return session

    def request(self, method: str, params: List[Any]) -> Any:
        """
        Perform one JSON-RPC call and return its ``result``.

        Raises:
            LedgerReadError: On transport failure, timeout or a bad reply
            JsonRpcError: When the node returns an error object
        """
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._session().post(self._rpc_url, json=body, timeout=self._timeout)
            response.raise_for_status()
            reply = response.json()
        except requests.Timeout as e:
            raise LedgerReadError(f"{method} timed out after {self._timeout[1]}s") from e
        except requests.RequestException as e:
            raise LedgerReadError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise LedgerReadError(f"{method} returned a non-JSON reply") from e

        if not isinstance(reply, dict):
            raise LedgerReadError(f"{method} returned an unexpected reply")
        error = reply.get("error")
        if error:
            if isinstance(error, dict):
                raise JsonRpcError(error.get("code"), str(error.get("message", "")), error.get("data"))
            raise JsonRpcError(None, str(error))
        if "result" not in reply:
            raise LedgerReadError(f"{method} reply has no result")
        return reply["result"]

    def eth_call(self, to: str, data: bytes, block: str = "latest") -> bytes:
        result = self.request("eth_call", [{"to": to, "data": "0x" + data.hex()}, block])
        return _hex_to_bytes(result, "eth_call")

    def block_number(self) -> int:
        result = self.request("eth_blockNumber", [])
        return _hex_to_int(result, "eth_blockNumber")

    def get_logs(
        self,
        address: str,
        topics: List[Optional[str]],
        from_block: int,
        to_block: int
    ) -> List[Dict[str, Any]]:
        result = self.request("eth_getLogs", [{
            "address": address,
            "topics": topics,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }])
        if not isinstance(result, list):
            raise LedgerReadError("eth_getLogs returned an unexpected result")
        return result

    def close(self) -> None:
        session = getattr(self._local, "session", None)
        if session is not None:
            session.close()
            self._local.session = None


def _hex_to_bytes(value: Any, what: str) -> bytes:
    if not isinstance(value, str):
        raise LedgerReadError(f"{what} returned a non-hex result")
    try:
        return bytes.fromhex(strip_hex_prefix(value))
    except ValueError as e:
        raise LedgerReadError(f"{what} returned a non-hex result") from e


def _hex_to_int(value: Any, what: str) -> int:
    if not isinstance(value, str):
        raise LedgerReadError(f"{what} returned a non-hex result")
    try:
        return int(strip_hex_prefix(value) or "0", 16)
    except ValueError as e:
        raise LedgerReadError(f"{what} returned a non-hex result") from e


# ============================================================
# ABI word decoding
# ============================================================

def split_words(data: bytes) -> List[bytes]:
    return [data[i:i + WORD_SIZE] for i in range(0, len(data) - len(data) % WORD_SIZE, WORD_SIZE)]


def word_to_int(word: bytes) -> int:
    return int.from_bytes(word, "big")


def word_to_address(word: bytes) -> str:
    if any(word[:12]):
        raise LedgerReadError("address word has non-zero padding")
    return "0x" + word[12:].hex()


def encode_get_gift(gift_id: int) -> bytes:
    return GET_GIFT_SELECTOR + int(gift_id).to_bytes(WORD_SIZE, "big")


def decode_gift_record(gift_id: int, data: bytes) -> GiftRecord:
    """
    Decode the getGift return data.

    Layout: creator:address, expirationTime:uint, nftContract:address,
    tokenId:uint, passwordHash:bytes32, status:uint8.

    Raises:
        LedgerReadError: If the data does not have the expected shape
    """
    words = split_words(data)
    if len(words) < GIFT_RECORD_WORDS:
        raise LedgerReadError(f"getGift returned {len(data)} bytes, expected {GIFT_RECORD_WORDS * WORD_SIZE}")

    raw_status = word_to_int(words[5])
    try:
        status = GiftStatus(raw_status)
    except ValueError as e:
        raise LedgerReadError(f"getGift returned unknown status {raw_status}") from e

    return GiftRecord(
        gift_id=int(gift_id),
        creator=word_to_address(words[0]),
        expiration_time=word_to_int(words[1]),
        nft_contract=word_to_address(words[2]),
        token_id=word_to_int(words[3]),
        password_hash="0x" + words[4].hex(),
        status=status,
    )


class EscrowStateReader:
    """Reads gift records from the escrow contract."""

    def __init__(self, client: JsonRpcLedgerClient, contract_address: str):
        self._client = client
        self._contract = normalize_address(contract_address, "contract_address")

    @property
    def contract_address(self) -> str:
        return self._contract

    def read_gift(self, gift_id: int) -> GiftRecord:
        """
        Fetch the current record for a gift.

        Raises:
            NotFoundError: The ledger answered and has no such gift
            LedgerReadError: The ledger could not be read
        """
        try:
            data = self._client.eth_call(self._contract, encode_get_gift(gift_id))
        except JsonRpcError as e:
            if e.reverted:
                raise NotFoundError() from e
            raise

        record = decode_gift_record(gift_id, data)
        if record.creator == ZERO_ADDRESS:
            raise NotFoundError()

        logger.debug("Read gift %s: status=%s expiration=%s", gift_id, record.status.name, record.expiration_time)
        return record
