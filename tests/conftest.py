import pytest
from fastapi.testclient import TestClient
from nacl.signing import SigningKey

from app.main import app, get_authorizer, get_credential_verifier
from giftclaim.authorizer import ClaimAuthorizer, ClaimRequest
from giftclaim.commitment import commitment_hex
from giftclaim.config import ClaimConfig
from giftclaim.credentials import CredentialVerifier, TrustStore, issue_credential
from giftclaim.errors import LedgerReadError
from giftclaim.ledger import GET_GIFT_SELECTOR, EscrowStateReader, GiftStatus, JsonRpcError
from giftclaim.registry import GIFT_REGISTERED_TOPIC, SqliteGiftRegistry
from giftclaim.util import b64e

NOW = 1_700_000_000
CONTRACT = "0xabcdef0123456789abcdef0123456789abcdef01"
CHAIN_ID = 84532
# EIP-55 reference vector
CLAIMER_CHECKSUM = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
CLAIMER = CLAIMER_CHECKSUM.lower()
OTHER_ADDRESS = "0x" + "44" * 20
CREATOR = "0x" + "22" * 20
NFT_CONTRACT = "0x" + "33" * 20
TOKEN_ID = "177"
GIFT_ID = 42
PASSWORD = "correct-horse"
SALT = "saltXYZ"
KID = "session-01"


def address_word(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


def encode_gift(
    creator=CREATOR,
    expiration_time=NOW + 3600,
    nft_contract=NFT_CONTRACT,
    token_id=int(TOKEN_ID),
    password_hash=None,
    status=GiftStatus.ACTIVE,
    gift_id=GIFT_ID,
) -> bytes:
    """ABI-encode a getGift return value."""
    if password_hash is None:
        password_hash = commitment_hex(PASSWORD, SALT, gift_id, CONTRACT, CHAIN_ID)
    return b"".join([
        address_word(creator),
        int(expiration_time).to_bytes(32, "big"),
        address_word(nft_contract),
        int(token_id).to_bytes(32, "big"),
        bytes.fromhex(password_hash[2:]),
        int(status).to_bytes(32, "big"),
    ])


def registered_log(gift_id: int, token_id: int, block: int) -> dict:
    """A GiftRegisteredFromMint log as returned by eth_getLogs."""
    return {
        "address": CONTRACT,
        "blockNumber": hex(block),
        "topics": [
            GIFT_REGISTERED_TOPIC,
            "0x" + gift_id.to_bytes(32, "big").hex(),
            "0x" + address_word(CREATOR).hex(),
        ],
        "data": "0x" + token_id.to_bytes(32, "big").hex() + bytes(32 * 3).hex(),
    }


class FakeLedgerClient:
    """Stands in for JsonRpcLedgerClient and counts calls."""

    def __init__(self):
        self.gifts = {}
        self.logs = []
        self.head = 1000
        self.calls = 0
        self.log_calls = []
        self.error = None
        self.failing_ranges = set()

    def eth_call(self, to, data, block="latest"):
        self.calls += 1
        if self.error is not None:
            raise self.error
        assert data[:4] == GET_GIFT_SELECTOR
        gift_id = int.from_bytes(data[4:36], "big")
        if gift_id not in self.gifts:
            raise JsonRpcError(3, "execution reverted: gift does not exist")
        return self.gifts[gift_id]

    def block_number(self):
        if self.error is not None:
            raise self.error
        return self.head

    def get_logs(self, address, topics, from_block, to_block):
        self.log_calls.append((from_block, to_block))
        if (from_block, to_block) in self.failing_ranges:
            raise LedgerReadError("query returned more than 10000 results")
        return [log for log in self.logs if from_block <= int(log["blockNumber"], 16) <= to_block]


@pytest.fixture
def config(tmp_path):
    return ClaimConfig(
        contract_address=CONTRACT,
        chain_id=CHAIN_ID,
        rpc_url="http://localhost:8545",
        registry_db_path=str(tmp_path / "registry.db"),
        event_fallback_enabled=False,
    )


@pytest.fixture
def ledger():
    client = FakeLedgerClient()
    client.gifts[GIFT_ID] = encode_gift()
    return client


@pytest.fixture
def registry(tmp_path):
    reg = SqliteGiftRegistry(str(tmp_path / "registry.db"))
    reg.register(TOKEN_ID, GIFT_ID)
    yield reg
    reg.close()


@pytest.fixture
def authorizer(config, registry, ledger):
    return ClaimAuthorizer(config, registry, EscrowStateReader(ledger, CONTRACT), clock=lambda: NOW)


@pytest.fixture
def claim():
    """Build a ClaimRequest, defaulting to the correct one."""
    def _claim(**overrides):
        fields = dict(token_id=TOKEN_ID, password=PASSWORD, salt=SALT, claimer_address=CLAIMER)
        fields.update(overrides)
        return ClaimRequest(**fields)
    return _claim


@pytest.fixture
def signing_key():
    return SigningKey.generate()


@pytest.fixture
def verifier(signing_key):
    trust = TrustStore.from_keys({KID: b64e(bytes(signing_key.verify_key))})
    return CredentialVerifier(trust, clock=lambda: NOW)


@pytest.fixture
def credential(signing_key):
    def _credential(address=CLAIMER, ttl_seconds=3600):
        return issue_credential(signing_key, KID, address, ttl_seconds=ttl_seconds, issued_at=NOW)
    return _credential


@pytest.fixture
def client(authorizer, verifier):
    app.dependency_overrides[get_authorizer] = lambda: authorizer
    app.dependency_overrides[get_credential_verifier] = lambda: verifier
    yield TestClient(app)
    app.dependency_overrides.clear()
