"""
Bearer credential verification.

A credential is issued after wallet sign-in and binds a session to an
address until an expiry:

    <b64url(canonical payload)>.<b64url(ed25519 signature over payload)>
    payload = {"address": "0x...", "exp": 1700000000, "iat": 1699913600, "kid": "session-01"}

The issuer's public keys live in the trust store under ``session_keys``.
"""

import json
import os
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .errors import AuthenticationError, ValidationError
from .util import b64d, b64url_decode, b64url_encode, canonicalize, now_epoch
from .validation import normalize_address

BEARER_PREFIX = "bearer "
DEFAULT_CREDENTIAL_TTL = 24 * 3600
MAX_CREDENTIAL_LENGTH = 4096


class AuthFailure(str, Enum):
    MISSING_CREDENTIAL = "MissingCredential"
    MALFORMED_CREDENTIAL = "MalformedCredential"
    EXPIRED_CREDENTIAL = "ExpiredCredential"
    INVALID_SIGNATURE = "InvalidSignature"


_FAILURE_MESSAGES = {
    AuthFailure.MISSING_CREDENTIAL: "Authentication required. Please provide a valid credential.",
    AuthFailure.MALFORMED_CREDENTIAL: "Malformed authentication credential.",
    AuthFailure.EXPIRED_CREDENTIAL: "Invalid or expired authentication token. Please sign in again.",
    AuthFailure.INVALID_SIGNATURE: "Invalid or expired authentication token. Please sign in again.",
}


@dataclass(frozen=True)
class AuthResult:
    """Outcome of checking a bearer credential."""
    address: Optional[str] = None
    failure: Optional[AuthFailure] = None
    kid: Optional[str] = None
    expires_at: Optional[int] = None

    def authenticated(self) -> bool:
        return self.failure is None and self.address is not None

    def to_error(self) -> AuthenticationError:
        failure = self.failure or AuthFailure.MISSING_CREDENTIAL
        return AuthenticationError(failure=failure.value, message=_FAILURE_MESSAGES[failure])


def _fail(failure: AuthFailure) -> AuthResult:
    return AuthResult(failure=failure)


def extract_bearer(header_value: Optional[str]) -> Optional[str]:
    """Return the credential part of an Authorization header, or None."""
    if not header_value or not isinstance(header_value, str):
        return None
    value = header_value.strip()
    if value[:len(BEARER_PREFIX)].lower() != BEARER_PREFIX:
        return None
    token = value[len(BEARER_PREFIX):].strip()
    return token or None


class TrustStore:
    """
    Session issuer public keys loaded from a JSON file.

    Reloads when the file modification time changes, so keys can be rotated
    without a restart.
    """

    def __init__(self, path: Optional[str] = None, keys: Optional[Dict[str, str]] = None):
        self._path = path
        self._lock = threading.RLock()
        self._keys: Dict[str, str] = dict(keys or {})
        self._mtime: float = 0

    @classmethod
    def from_keys(cls, keys: Dict[str, str]) -> "TrustStore":
        return cls(keys=keys)

    def session_keys(self) -> Dict[str, str]:
        if not self._path:
            return self._keys
        with self._lock:
            try:
                mtime = os.path.getmtime(self._path)
                if not self._keys or mtime > self._mtime:
                    with open(self._path, "r", encoding="utf-8") as f:
                        raw = json.load(f)
                    keys = raw.get("session_keys") if isinstance(raw, dict) else None
                    self._keys = dict(keys) if isinstance(keys, dict) else {}
                    self._mtime = mtime
            except FileNotFoundError:
                if not self._keys:
                    raise
            return self._keys

    def public_key(self, kid: str) -> Optional[str]:
        return self.session_keys().get(kid)


def verify_ed25519(signature: bytes, payload: bytes, public_key_b64: str) -> bool:
    """
    Verify an Ed25519 signature.

    Args:
        signature: Raw signature bytes
        payload: The signed data
        public_key_b64: Base64-encoded public key

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        vk = VerifyKey(b64d(public_key_b64))
        vk.verify(payload, signature)
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


class CredentialVerifier:
    """
    Authentication gate: bearer credential in, authenticated address out.

    ``authenticate`` never raises; every problem is reported as an
    AuthFailure on the result.
    """

    def __init__(
        self,
        trust_store: TrustStore,
        max_skew_seconds: int = 0,
        clock: Callable[[], int] = now_epoch
    ):
        self._trust_store = trust_store
        self._max_skew = max_skew_seconds
        self._clock = clock

    def authenticate(self, header_value: Optional[str]) -> AuthResult:
        token = extract_bearer(header_value)
        if token is None:
            return _fail(AuthFailure.MISSING_CREDENTIAL)
        if len(token) > MAX_CREDENTIAL_LENGTH or token.count(".") != 1:
            return _fail(AuthFailure.MALFORMED_CREDENTIAL)

        payload_part, sig_part = token.split(".")
        try:
            payload_bytes = b64url_decode(payload_part)
            signature = b64url_decode(sig_part)
            payload = json.loads(payload_bytes.decode("utf-8"))
        except (ValueError, UnicodeDecodeError):
            return _fail(AuthFailure.MALFORMED_CREDENTIAL)

        claims = self._parse_claims(payload)
        if claims is None:
            return _fail(AuthFailure.MALFORMED_CREDENTIAL)
        address, exp, kid = claims

        try:
            public_key = self._trust_store.public_key(kid)
        except (OSError, ValueError):
            # unreadable trust store: nothing can be verified
            return _fail(AuthFailure.INVALID_SIGNATURE)
        if not public_key:
            return _fail(AuthFailure.INVALID_SIGNATURE)
        if not verify_ed25519(signature, payload_bytes, public_key):
            return _fail(AuthFailure.INVALID_SIGNATURE)

        if self._clock() > exp + self._max_skew:
            return _fail(AuthFailure.EXPIRED_CREDENTIAL)

        return AuthResult(address=address, kid=kid, expires_at=exp)

    @staticmethod
    def _parse_claims(payload: Any):
        if not isinstance(payload, dict):
            return None
        kid = payload.get("kid")
        exp = payload.get("exp")
        if not isinstance(kid, str) or not kid:
            return None
        if isinstance(exp, bool) or not isinstance(exp, int):
            return None
        try:
            address = normalize_address(payload.get("address"))
        except ValidationError:
            return None
        return address, exp, kid


def issue_credential(
    signing_key: SigningKey,
    kid: str,
    address: str,
    ttl_seconds: int = DEFAULT_CREDENTIAL_TTL,
    issued_at: Optional[int] = None
) -> str:
    """
    Mint a bearer credential for an address.

    Args:
        signing_key: Issuer's Ed25519 signing key
        kid: Key id published in the trust store
        address: Wallet address the session belongs to
        ttl_seconds: Lifetime of the credential
        issued_at: Issue time (defaults to now)

    Returns:
        The credential string (without the "Bearer " prefix)
    """
    iat = now_epoch() if issued_at is None else issued_at
    payload = canonicalize({
        "address": normalize_address(address),
        "exp": iat + ttl_seconds,
        "iat": iat,
        "kid": kid,
    })
    signature = signing_key.sign(payload).signature
    return b64url_encode(payload) + "." + b64url_encode(signature)
