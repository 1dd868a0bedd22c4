"""
Gift Escrow Claim Authorization

Decides whether a party presenting a password may claim an escrowed NFT
gift. The decision combines:

- a bearer credential bound to the caller's wallet address
- a tokenId -> giftId lookup
- a read-only fetch of the gift record from the escrow contract
- a password commitment bound to the contract address and chain id
- the gift lifecycle (ACTIVE, CLAIMED, RETURNED, derived EXPIRED)

No funds move here. An authorized caller receives the parameters for its
own claim transaction.

Usage:
    from giftclaim import ClaimRequest, Outcome, build_authorizer, load_config

    authorizer = build_authorizer(load_config())
    decision = authorizer.authorize(
        ClaimRequest(token_id="177", password="correct-horse", salt="saltXYZ",
                     claimer_address="0x..."),
        authenticated_address="0x...",
    )
    if decision.outcome == Outcome.AUTHORIZED:
        params = decision.claim_parameters
"""

__version__ = "1.0.0"

from .authorizer import (
    ClaimAuthorized,
    ClaimAuthorizer,
    ClaimDecision,
    ClaimDenied,
    ClaimFailed,
    ClaimParameters,
    ClaimRequest,
    Outcome,
    build_authorizer,
    build_resolver,
)
from .commitment import commitment, commitment_hex, verify_commitment
from .config import ClaimConfig, load_config
from .credentials import AuthFailure, AuthResult, CredentialVerifier, TrustStore, issue_credential
from .errors import (
    AlreadyClaimedError,
    AlreadyReturnedError,
    AuthenticationError,
    AuthorizationMismatchError,
    ClaimError,
    ConfigurationError,
    EducationRequiredError,
    ExpiredError,
    LedgerReadError,
    NotFoundError,
    PasswordMismatchError,
    Reason,
    RegistryUnavailableError,
    ValidationError,
)
from .ledger import EscrowStateReader, GiftRecord, GiftStatus, JsonRpcLedgerClient
from .lifecycle import EffectiveStatus, effective_status
from .registry import (
    ChainedGiftResolver,
    EventLogGiftResolver,
    GiftRegistry,
    GiftResolver,
    RedisGiftRegistry,
    SqliteGiftRegistry,
)

__all__ = [
    "__version__",

    # Orchestrator
    "ClaimAuthorizer",
    "ClaimRequest",
    "ClaimParameters",
    "ClaimDecision",
    "ClaimAuthorized",
    "ClaimDenied",
    "ClaimFailed",
    "Outcome",
    "build_authorizer",
    "build_resolver",

    # Commitment
    "commitment",
    "commitment_hex",
    "verify_commitment",

    # Configuration
    "ClaimConfig",
    "load_config",

    # Credentials
    "AuthFailure",
    "AuthResult",
    "CredentialVerifier",
    "TrustStore",
    "issue_credential",

    # Errors
    "ClaimError",
    "Reason",
    "AuthenticationError",
    "AuthorizationMismatchError",
    "ValidationError",
    "NotFoundError",
    "AlreadyClaimedError",
    "AlreadyReturnedError",
    "ExpiredError",
    "PasswordMismatchError",
    "EducationRequiredError",
    "LedgerReadError",
    "RegistryUnavailableError",
    "ConfigurationError",

    # Ledger
    "EscrowStateReader",
    "GiftRecord",
    "GiftStatus",
    "JsonRpcLedgerClient",

    # Lifecycle
    "EffectiveStatus",
    "effective_status",

    # Registry
    "GiftResolver",
    "GiftRegistry",
    "SqliteGiftRegistry",
    "RedisGiftRegistry",
    "EventLogGiftResolver",
    "ChainedGiftResolver",
]
