"""
Gift identity resolution.

The NFT's tokenId and the escrow's giftId are allocated independently, so
a claim has to map one to the other. Mappings are written by the minting
flow into a registry (SQLite or Redis). When the registry has no entry, the
escrow contract's GiftRegisteredFromMint events are scanned as a fallback
and whatever is found is written back.

A tokenId -> giftId mapping never changes once the gift is registered, so
storing it is safe. Gift *state* is never stored here.
"""

import json
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import redis

from .errors import LedgerReadError, RegistryUnavailableError
from .ledger import JsonRpcLedgerClient, split_words, word_to_int
from .util import keccak256
from .validation import normalize_address, parse_token_id

logger = logging.getLogger(__name__)

GIFT_REGISTERED_EVENT = (
    "GiftRegisteredFromMint(uint256,address,address,uint256,uint40,address,string,address)"
)
GIFT_REGISTERED_TOPIC = "0x" + keccak256(GIFT_REGISTERED_EVENT).hex()


class GiftResolver(ABC):
    """Maps an external tokenId to an internal giftId."""

    @abstractmethod
    def lookup(self, token_id: Any) -> Optional[int]:
        """
        Return the giftId for a tokenId, or None when there is none.

        Must not raise for malformed input: anything that is not a valid
        tokenId simply has no gift.
        """
        pass

    def gate_requirement(self, gift_id: int) -> Optional[List[int]]:
        """Education modules a gift requires before claiming, or None."""
        return None


class GiftRegistry(GiftResolver):
    """A resolver backed by writable storage."""

    @abstractmethod
    def register(self, token_id: Any, gift_id: int) -> None:
        pass

    @abstractmethod
    def set_gate_requirement(self, gift_id: int, modules: Iterable[int]) -> None:
        pass


def _checked_token_id(token_id: Any) -> int:
    parsed = parse_token_id(token_id)
    if parsed is None:
        raise ValueError(f"invalid tokenId: {token_id!r}")
    return parsed


# ============================================================
# SQLite registry
# ============================================================

class SqliteGiftRegistry(GiftRegistry):
    """
    SQLite-backed registry.

    Connections are thread-local and reused within the same thread.
    """

    def __init__(self, db_path: str = "data/giftclaim.db"):
        self._db_path = Path(db_path)
        self._local = threading.local()
        self.init_schema()

    def _connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @contextmanager
    def _transaction(self):
        """
        Context manager for database transactions.
        Commits on success, rolls back on failure.
        """
        try:
            conn = self._connection()
        except (sqlite3.Error, OSError) as e:
            raise RegistryUnavailableError(f"registry database unavailable: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise RegistryUnavailableError(f"registry database error: {e}") from e

    def init_schema(self) -> None:
        """Create tables. Safe to call multiple times."""
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS gift_mappings (
                token_id TEXT PRIMARY KEY,
                gift_id INTEGER NOT NULL,
                created_at INTEGER DEFAULT (strftime('%s', 'now'))
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_gift_mappings_gift
            ON gift_mappings(gift_id);""")
            conn.execute("""
            CREATE TABLE IF NOT EXISTS gate_requirements (
                gift_id INTEGER PRIMARY KEY,
                modules_json TEXT NOT NULL
            );""")

    def lookup(self, token_id: Any) -> Optional[int]:
        parsed = parse_token_id(token_id)
        if parsed is None:
            return None
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT gift_id FROM gift_mappings WHERE token_id=?", (str(parsed),)
            ).fetchone()
        return int(row["gift_id"]) if row else None

    def register(self, token_id: Any, gift_id: int) -> None:
        parsed = _checked_token_id(token_id)
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO gift_mappings(token_id, gift_id) VALUES(?,?)",
                (str(parsed), int(gift_id))
            )

    def gate_requirement(self, gift_id: int) -> Optional[List[int]]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT modules_json FROM gate_requirements WHERE gift_id=?", (int(gift_id),)
            ).fetchone()
        if not row:
            return None
        modules = json.loads(row["modules_json"])
        return modules or None

    def set_gate_requirement(self, gift_id: int, modules: Iterable[int]) -> None:
        modules = [int(m) for m in modules]
        with self._transaction() as conn:
            if modules:
                conn.execute(
                    "INSERT OR REPLACE INTO gate_requirements(gift_id, modules_json) VALUES(?,?)",
                    (int(gift_id), json.dumps(modules))
                )
            else:
                conn.execute("DELETE FROM gate_requirements WHERE gift_id=?", (int(gift_id),))

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None


# ============================================================
# Redis registry
# ============================================================

MAPPING_KEY_PREFIX = "gift_mapping:"
REVERSE_MAPPING_KEY_PREFIX = "reverse_mapping:"
EDUCATION_KEY_PREFIX = "education:gift:"
MAPPING_TTL_SECONDS = 365 * 86400


class RedisGiftRegistry(GiftRegistry):
    """
    Redis-backed registry, shared with the minting flow.

    Keys:
        gift_mapping:{tokenId}    -> giftId
        reverse_mapping:{giftId}  -> tokenId
        education:gift:{giftId}   -> JSON list of module ids
    """

    def __init__(self, client: "redis.Redis"):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisGiftRegistry":
        pool = redis.ConnectionPool.from_url(
            url,
            decode_responses=True,
            max_connections=50,
            socket_connect_timeout=5,
            socket_timeout=10,
            health_check_interval=30,
        )
        return cls(redis.Redis(connection_pool=pool))

    def lookup(self, token_id: Any) -> Optional[int]:
        parsed = parse_token_id(token_id)
        if parsed is None:
            return None
        try:
            raw = self._redis.get(f"{MAPPING_KEY_PREFIX}{parsed}")
        except redis.RedisError as e:
            raise RegistryUnavailableError(f"redis lookup failed: {e}") from e
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring corrupt gift mapping for tokenId %s: %r", parsed, raw)
            return None

    def register(self, token_id: Any, gift_id: int) -> None:
        parsed = _checked_token_id(token_id)
        try:
            pipe = self._redis.pipeline()
            pipe.set(f"{MAPPING_KEY_PREFIX}{parsed}", str(int(gift_id)), ex=MAPPING_TTL_SECONDS)
            pipe.set(f"{REVERSE_MAPPING_KEY_PREFIX}{int(gift_id)}", str(parsed), ex=MAPPING_TTL_SECONDS)
            pipe.execute()
        except redis.RedisError as e:
            raise RegistryUnavailableError(f"redis write failed: {e}") from e

    def gate_requirement(self, gift_id: int) -> Optional[List[int]]:
        try:
            raw = self._redis.get(f"{EDUCATION_KEY_PREFIX}{int(gift_id)}")
        except redis.RedisError as e:
            raise RegistryUnavailableError(f"redis lookup failed: {e}") from e
        if not raw:
            return None
        try:
            modules = [int(m) for m in json.loads(raw)]
        except (TypeError, ValueError):
            logger.warning("Ignoring corrupt gate requirement for giftId %s", gift_id)
            return None
        return modules or None

    def set_gate_requirement(self, gift_id: int, modules: Iterable[int]) -> None:
        modules = [int(m) for m in modules]
        key = f"{EDUCATION_KEY_PREFIX}{int(gift_id)}"
        try:
            if modules:
                self._redis.set(key, json.dumps(modules))
            else:
                self._redis.delete(key)
        except redis.RedisError as e:
            raise RegistryUnavailableError(f"redis write failed: {e}") from e


# ============================================================
# Event-log fallback
# ============================================================

class EventLogGiftResolver(GiftResolver):
    """
    Resolve tokenIds by scanning GiftRegisteredFromMint logs.

    Scans backwards from the chain head in fixed-size block chunks, never
    below the contract's deployment block. Chunks that fail are skipped.
    Every mapping seen on the way is handed to ``on_mapping`` so it can be
    persisted.
    """

    def __init__(
        self,
        client: JsonRpcLedgerClient,
        contract_address: str,
        deployment_block: int = 0,
        chunk_blocks: int = 500,
        range_blocks: int = 10000,
        on_mapping=None
    ):
        self._client = client
        self._contract = normalize_address(contract_address, "contract_address")
        self._deployment_block = max(0, deployment_block)
        self._chunk = max(1, chunk_blocks)
        self._range = max(1, range_blocks)
        self._on_mapping = on_mapping

    def lookup(self, token_id: Any) -> Optional[int]:
        parsed = parse_token_id(token_id)
        if parsed is None:
            return None
        try:
            head = self._client.block_number()
        except LedgerReadError as e:
            logger.warning("Event scan skipped, block number unavailable: %s", e)
            return None

        start = max(self._deployment_block, head - self._range)
        found: Optional[int] = None
        to_block = head
        while to_block >= start and found is None:
            from_block = max(start, to_block - self._chunk + 1)
            for gift_id, event_token_id in self._scan_chunk(from_block, to_block):
                self._remember(event_token_id, gift_id)
                if event_token_id == parsed:
                    found = gift_id
            to_block = from_block - 1
        return found

    def _scan_chunk(self, from_block: int, to_block: int) -> List[tuple]:
        try:
            logs = self._client.get_logs(self._contract, [GIFT_REGISTERED_TOPIC], from_block, to_block)
        except LedgerReadError as e:
            logger.warning("Event scan chunk %s-%s failed: %s", from_block, to_block, e)
            return []
        out = []
        for log in logs:
            decoded = decode_gift_registered(log)
            if decoded is not None:
                out.append(decoded)
        return out

    def _remember(self, token_id: int, gift_id: int) -> None:
        if self._on_mapping is None:
            return
        try:
            self._on_mapping(token_id, gift_id)
        except RegistryUnavailableError as e:
            logger.warning("Could not persist mapping tokenId %s -> giftId %s: %s", token_id, gift_id, e)


def decode_gift_registered(log: Dict[str, Any]) -> Optional[tuple]:
    """
    Decode (giftId, tokenId) from a GiftRegisteredFromMint log.

    giftId is the first indexed topic; tokenId is the first word of the
    non-indexed data.
    """
    try:
        topics = log.get("topics") or []
        if len(topics) < 2 or str(topics[0]).lower() != GIFT_REGISTERED_TOPIC:
            return None
        gift_id = int(topics[1], 16)
        words = split_words(bytes.fromhex(str(log.get("data", ""))[2:]))
        if not words:
            return None
        return gift_id, word_to_int(words[0])
    except (TypeError, ValueError, AttributeError):
        logger.warning("Failed to decode GiftRegisteredFromMint log")
        return None


# ============================================================
# Composition
# ============================================================

class ChainedGiftResolver(GiftResolver):
    """
    Try resolvers in order; the first hit wins.

    Gate requirements always come from the primary registry.
    """

    def __init__(self, primary: GiftResolver, *fallbacks: GiftResolver):
        self._primary = primary
        self._fallbacks = fallbacks

    def lookup(self, token_id: Any) -> Optional[int]:
        gift_id = self._primary.lookup(token_id)
        if gift_id is not None:
            return gift_id
        for resolver in self._fallbacks:
            started = time.monotonic()
            gift_id = resolver.lookup(token_id)
            if gift_id is not None:
                logger.info(
                    "Resolved tokenId via %s in %.2fs", type(resolver).__name__, time.monotonic() - started
                )
                return gift_id
        return None

    def gate_requirement(self, gift_id: int) -> Optional[List[int]]:
        return self._primary.gate_requirement(gift_id)


def get_gift_registry(backend: str = "sqlite", db_path: str = "data/giftclaim.db", redis_url: str = "") -> GiftRegistry:
    """
    Factory function to create the configured registry backend.

    Args:
        backend: "sqlite" or "redis"
        db_path: SQLite file (sqlite backend)
        redis_url: Connection URL (redis backend)

    Returns:
        Configured GiftRegistry instance
    """
    if backend == "redis":
        if not redis_url:
            raise ValueError("REDIS_URL required for redis registry backend")
        return RedisGiftRegistry.from_url(redis_url)
    return SqliteGiftRegistry(db_path)
