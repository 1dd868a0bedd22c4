import pytest
from fastapi.testclient import TestClient

from app.main import app, get_credential_verifier
from giftclaim.errors import LedgerReadError
from giftclaim.ledger import GiftStatus

from conftest import CHAIN_ID, CLAIMER, CONTRACT, GIFT_ID, OTHER_ADDRESS, PASSWORD, SALT, TOKEN_ID, encode_gift

URL = "/claim/validate"


def body(**overrides):
    data = {"tokenId": TOKEN_ID, "password": PASSWORD, "salt": SALT, "claimerAddress": CLAIMER}
    data.update(overrides)
    return data


@pytest.fixture
def auth(credential):
    return {"Authorization": "Bearer " + credential()}


@pytest.fixture
def unconfigured(monkeypatch):
    for name in ("ESCROW_CONTRACT_ADDRESS", "CHAIN_ID", "RPC_URL"):
        monkeypatch.delenv(name, raising=False)
    for name in ("config", "verifier", "authorizer"):
        monkeypatch.setattr(app.state, name, None, raising=False)
    app.dependency_overrides.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()


# Happy path -> 200 with claim parameters
def test_valid_claim(client, auth):
    r = client.post(URL, json=body(), headers=auth)
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["valid"] is True
    assert data["giftId"] == GIFT_ID
    assert data["contractAddress"] == CONTRACT
    assert data["claimParameters"] == {"giftId": GIFT_ID, "password": PASSWORD, "salt": SALT, "gateData": "0x"}
    assert data["giftInfo"]["status"] == 0
    assert r.headers["Cache-Control"] == "no-store"


def test_integer_token_id(client, auth):
    assert client.post(URL, json=body(tokenId=177), headers=auth).status_code == 200


# Soft denials -> 400, success true
@pytest.mark.parametrize("mutate,reason", [
    (lambda ledger: None, "PasswordMismatch"),
    (lambda ledger: ledger.gifts.update({GIFT_ID: encode_gift(status=GiftStatus.CLAIMED)}), "AlreadyClaimed"),
    (lambda ledger: ledger.gifts.update({GIFT_ID: encode_gift(status=GiftStatus.RETURNED)}), "AlreadyReturned"),
    (lambda ledger: ledger.gifts.update({GIFT_ID: encode_gift(expiration_time=1)}), "Expired"),
])
def test_soft_denials(client, auth, ledger, mutate, reason):
    mutate(ledger)
    password = "wrong-pass" if reason == "PasswordMismatch" else PASSWORD
    r = client.post(URL, json=body(password=password), headers=auth)
    assert r.status_code == 400
    assert r.json() == {"success": True, "valid": False, "error": reason, "message": r.json()["message"]}


def test_not_found(client, auth):
    r = client.post(URL, json=body(tokenId="999999"), headers=auth)
    assert r.status_code == 400
    assert r.json()["error"] == "NotFound"
    assert r.json()["success"] is True


def test_missing_field_names_the_field(client, auth):
    data = body()
    del data["salt"]
    r = client.post(URL, json=data, headers=auth)
    assert r.status_code == 400
    assert r.json()["success"] is True
    assert r.json()["error"] == "InvalidInput"
    assert r.json()["field"] == "salt"


def test_education_required(client, auth, registry):
    registry.set_gate_requirement(GIFT_ID, [3])
    r = client.post(URL, json=body(), headers=auth)
    assert r.status_code == 400
    assert r.json()["error"] == "EducationRequired"
    assert r.json()["requiredModules"] == [3]


# Body shape errors -> 400, success false
@pytest.mark.parametrize("content", [b"{not json", b"", b"[1, 2]", b'{"password": 123456}', b'{"tokenId": [1]}'])
def test_unparseable_body(client, auth, ledger, content):
    headers = dict(auth, **{"Content-Type": "application/json"})
    r = client.post(URL, content=content, headers=headers)
    assert r.status_code == 400
    data = r.json()
    assert data["success"] is False
    assert data["valid"] is False
    assert data["error"] == "InvalidInput"
    assert ledger.calls == 0


# Authentication -> 401 before the body is looked at
@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer garbage"}, {"Authorization": "Basic x"}])
def test_unauthenticated(client, ledger, headers):
    r = client.post(URL, json=body(), headers=headers)
    assert r.status_code == 401
    assert r.json()["success"] is False
    assert r.json()["error"] == "Unauthenticated"
    assert r.headers["WWW-Authenticate"] == "Bearer"
    assert ledger.calls == 0


def test_auth_checked_before_body(client):
    r = client.post(URL, content=b"{not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 401


def test_expired_credential(client, credential):
    token = credential(ttl_seconds=-60)
    r = client.post(URL, json=body(), headers={"Authorization": "Bearer " + token})
    assert r.status_code == 401


# Identity binding -> 403 without touching the ledger
def test_forbidden(client, ledger, credential):
    headers = {"Authorization": "Bearer " + credential(address=OTHER_ADDRESS)}
    r = client.post(URL, json=body(), headers=headers)
    assert r.status_code == 403
    assert r.json()["error"] == "Forbidden"
    assert r.json()["success"] is False
    assert ledger.calls == 0


# Ledger trouble -> 500 with correlation id, no internals
def test_ledger_failure(client, auth, ledger):
    ledger.error = LedgerReadError("connection refused by http://10.0.0.5:8545")
    r = client.post(URL, json=body(), headers=dict(auth, **{"X-Request-ID": "req-123"}))
    assert r.status_code == 500
    data = r.json()
    assert data["error"] == "LedgerReadError"
    assert data["success"] is False
    assert data["correlationId"] == "req-123"
    assert "10.0.0.5" not in data["message"]
    assert r.headers["X-Request-ID"] == "req-123"


# Configuration -> 500 once authenticated
def test_unconfigured_service(unconfigured, verifier, auth):
    app.dependency_overrides[get_credential_verifier] = lambda: verifier
    r = unconfigured.post(URL, json=body(), headers=auth)
    assert r.status_code == 500
    data = r.json()
    assert data["error"] == "ConfigurationError"
    assert data["success"] is False
    assert data["correlationId"]


# Authentication -> 401 before configuration is looked at
@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer not-a-credential"}])
def test_unconfigured_service_still_requires_credential(unconfigured, verifier, headers):
    app.dependency_overrides[get_credential_verifier] = lambda: verifier
    r = unconfigured.post(URL, json=body(), headers=headers)
    assert r.status_code == 401
    assert r.json()["error"] == "Unauthenticated"
    assert r.headers["WWW-Authenticate"] == "Bearer"
    assert getattr(app.state, "authorizer", None) is None


# Method -> 405 first
@pytest.mark.parametrize("method", ["get", "put", "delete"])
def test_method_not_allowed(unconfigured, method):
    r = getattr(unconfigured, method)(URL)
    assert r.status_code == 405
    assert r.json() == {"success": False, "valid": False, "error": "MethodNotAllowed", "message": "Method not allowed"}


def test_unknown_route(unconfigured):
    r = unconfigured.get("/claim/nothing")
    assert r.status_code == 404
    assert r.json()["success"] is False


def test_health(monkeypatch, unconfigured):
    r = unconfigured.get("/health")
    assert r.status_code == 200
    assert r.json()["configured"] is False
    assert r.json()["status"] == "degraded"

    monkeypatch.setenv("ESCROW_CONTRACT_ADDRESS", CONTRACT.upper().replace("0X", "0x"))
    monkeypatch.setenv("CHAIN_ID", str(CHAIN_ID))
    monkeypatch.setenv("REGISTRY_BACKEND", "sqlite")
    # configuration is read once per process
    assert unconfigured.get("/health").json()["configured"] is False

    monkeypatch.setattr(app.state, "config", None)
    data = unconfigured.get("/health").json()
    assert data == {
        "status": "ok",
        "configured": True,
        "contractAddress": CONTRACT,
        "chainId": CHAIN_ID,
        "registryBackend": "sqlite",
    }
