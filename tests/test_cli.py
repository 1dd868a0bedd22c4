import json

import pytest

from giftclaim.cli import main
from giftclaim.commitment import commitment_hex
from giftclaim.credentials import CredentialVerifier, TrustStore

from conftest import CHAIN_ID, CLAIMER, CONTRACT, GIFT_ID, PASSWORD, SALT


@pytest.fixture
def registry_env(tmp_path, monkeypatch):
    monkeypatch.setenv("REGISTRY_BACKEND", "sqlite")
    monkeypatch.setenv("REGISTRY_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("EVENT_FALLBACK_ENABLED", "false")
    monkeypatch.delenv("RPC_URL", raising=False)


def test_keygen_and_issue_credential(tmp_path, capsys):
    trust_path = str(tmp_path / "trust" / "trust_store.json")
    secrets_dir = str(tmp_path / "secrets")
    assert main(["keygen", "--kid", "session-07", "--secrets-dir", secrets_dir, "--trust-store", trust_path]) == 0

    trust = json.loads(open(trust_path, encoding="utf-8").read())
    assert "session-07" in trust["session_keys"]

    capsys.readouterr()
    key_path = str(tmp_path / "secrets" / "session_signing_key.json")
    assert main(["issue-credential", "--address", CLAIMER, "--key", key_path]) == 0
    token = capsys.readouterr().out.strip()

    result = CredentialVerifier(TrustStore(trust_path)).authenticate("Bearer " + token)
    assert result.authenticated()
    assert result.address == CLAIMER
    assert result.kid == "session-07"


def test_commitment(capsys):
    args = ["commitment", "--password", PASSWORD, "--salt", SALT, "--gift-id", str(GIFT_ID),
            "--contract", CONTRACT, "--chain-id", str(CHAIN_ID)]
    assert main(args) == 0
    assert capsys.readouterr().out.strip() == commitment_hex(PASSWORD, SALT, GIFT_ID, CONTRACT, CHAIN_ID)


def test_register_and_resolve(registry_env, capsys):
    assert main(["register", "--token-id", "177", "--gift-id", "42", "--modules", "1,2"]) == 0
    capsys.readouterr()

    assert main(["resolve", "--token-id", "177"]) == 0
    assert json.loads(capsys.readouterr().out) == {"tokenId": "177", "giftId": 42}

    assert main(["resolve", "--token-id", "178"]) == 1


def test_register_rejects_bad_token(registry_env, capsys):
    assert main(["register", "--token-id", "abc", "--gift-id", "1"]) == 1
    assert "error" in capsys.readouterr().err


def test_no_command(capsys):
    assert main([]) == 2
