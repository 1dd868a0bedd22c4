import pytest

from giftclaim.config import ClaimConfig, load_config
from giftclaim.errors import ConfigurationError

from conftest import CHAIN_ID, CONTRACT

BASE_ENV = {"ESCROW_CONTRACT_ADDRESS": CONTRACT, "CHAIN_ID": str(CHAIN_ID)}


def test_defaults():
    config = load_config(BASE_ENV)
    assert config.chain_id == CHAIN_ID
    assert config.env == "dev"
    assert config.ledger_timeout_seconds == 10.0
    assert config.ledger_connect_timeout_seconds == 3.0
    assert config.registry_backend == "sqlite"
    assert config.event_fallback_enabled is True
    assert config.min_password_length == 6
    assert config.max_password_length == 50
    assert config.validate().contract_address == CONTRACT


def test_overrides():
    env = dict(BASE_ENV, REGISTRY_BACKEND=" Redis ", EVENT_FALLBACK_ENABLED="no",
               LEDGER_TIMEOUT_SECONDS="2.5", ESCROW_DEPLOYMENT_BLOCK="1234", LOG_JSON="false")
    config = load_config(env)
    assert config.registry_backend == "redis"
    assert config.event_fallback_enabled is False
    assert config.ledger_timeout_seconds == 2.5
    assert config.deployment_block == 1234
    assert config.log_json is False


@pytest.mark.parametrize("name", ["CHAIN_ID", "LEDGER_TIMEOUT_SECONDS", "EVENT_SCAN_CHUNK_BLOCKS"])
def test_malformed_numbers_name_the_variable(name):
    with pytest.raises(ConfigurationError) as exc:
        load_config(dict(BASE_ENV, **{name: "lots"}))
    assert name in exc.value.message


def test_config_is_frozen():
    config = load_config(BASE_ENV)
    with pytest.raises(Exception):
        config.chain_id = 1


@pytest.mark.parametrize("env", [
    {},
    {"ESCROW_CONTRACT_ADDRESS": CONTRACT},
    {"CHAIN_ID": "1"},
    dict(BASE_ENV, ESCROW_CONTRACT_ADDRESS="0x123"),
    dict(BASE_ENV, CHAIN_ID="-5"),
    dict(BASE_ENV, REGISTRY_BACKEND="postgres"),
    dict(BASE_ENV, MIN_PASSWORD_LENGTH="60"),
    dict(BASE_ENV, LEDGER_TIMEOUT_SECONDS="0"),
    dict(BASE_ENV, GIFTCLAIM_ENV="prod", RPC_URL="http://node.internal:8545"),
])
def test_validate_rejects(env):
    with pytest.raises(ConfigurationError):
        load_config(env).validate()


def test_rpc_url_required_for_ledger_reads():
    config = load_config(BASE_ENV).validate()
    with pytest.raises(ConfigurationError):
        config.require_rpc_url()
    assert load_config(dict(BASE_ENV, RPC_URL="https://rpc")).require_rpc_url() == "https://rpc"


def test_public_summary_has_no_secrets():
    config = ClaimConfig(contract_address=CONTRACT, chain_id=CHAIN_ID, rpc_url="https://rpc/key-abc")
    assert "key-abc" not in str(config.public_summary())
