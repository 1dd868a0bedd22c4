"""
Claim authorization orchestrator.

Decides whether an authenticated caller holding a password may claim an
escrowed gift. The decision is a pure function of the request and the
ledger's current state: nothing is written and no transaction is sent. On
success the caller receives the parameters it needs to sign and submit its
own claim transaction.

Checks run in a fixed order, cheapest and most conclusive first:

    validate_input        syntactic checks, no I/O
    bind_identity         authenticated address == claimer address
    resolve_gift          tokenId -> giftId
    read_gift             current record from the escrow contract; must wrap tokenId
    check_terminal_state  CLAIMED / RETURNED (before expiry on purpose)
    check_expiry          derived EXPIRED
    check_password        domain-separated commitment
    check_gate            education gate attestation, when required

The first failing check decides the outcome.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .commitment import verify_commitment
from .config import ClaimConfig
from .errors import (
    AlreadyClaimedError,
    AlreadyReturnedError,
    AuthorizationMismatchError,
    ClaimError,
    ConfigurationError,
    EducationRequiredError,
    ExpiredError,
    LedgerReadError,
    NotFoundError,
    PasswordMismatchError,
    Reason,
    SOFT_DENIALS,
)
from .ledger import EscrowStateReader, GiftRecord, GiftStatus, JsonRpcLedgerClient
from .lifecycle import is_expired
from .logging_config import audit_log, get_request_id
from .registry import ChainedGiftResolver, EventLogGiftResolver, GiftResolver, get_gift_registry
from .util import now_epoch
from .validation import (
    normalize_address,
    parse_token_id,
    validate_gate_data,
    validate_password,
    validate_salt,
    validate_token_id_type,
)

logger = logging.getLogger(__name__)

EMPTY_GATE_DATA = "0x"


class Outcome(str, Enum):
    AUTHORIZED = "authorized"
    DENIED = "denied"
    FAILED = "failed"


@dataclass(frozen=True)
class ClaimRequest:
    """One claim validation request, as received from the client."""
    token_id: Any
    password: Any
    salt: Any
    claimer_address: Any
    gate_data: Any = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ClaimRequest":
        """Build from the camelCase JSON body."""
        return cls(
            token_id=payload.get("tokenId"),
            password=payload.get("password"),
            salt=payload.get("salt"),
            claimer_address=payload.get("claimerAddress"),
            gate_data=payload.get("gateData"),
        )


@dataclass(frozen=True)
class ClaimParameters:
    """Arguments for the client's own claim transaction."""
    gift_id: int
    password: str
    salt: str
    gate_data: str = EMPTY_GATE_DATA

    def to_dict(self) -> Dict[str, Any]:
        return {
            "giftId": self.gift_id,
            "password": self.password,
            "salt": self.salt,
            "gateData": self.gate_data,
        }


@dataclass(frozen=True)
class ClaimAuthorized:
    gift_id: int
    gift: GiftRecord
    claim_parameters: ClaimParameters
    contract_address: str
    checks: Tuple[str, ...] = ()
    outcome: Outcome = field(default=Outcome.AUTHORIZED, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "valid": True,
            "giftId": self.gift_id,
            "giftInfo": self.gift.info(),
            "claimParameters": self.claim_parameters.to_dict(),
            "contractAddress": self.contract_address,
        }


@dataclass(frozen=True)
class ClaimDenied:
    """The request reached the pipeline and was refused by policy."""
    reason: Reason
    message: str
    field_name: Optional[str] = None
    required_modules: Optional[Tuple[int, ...]] = None
    checks: Tuple[str, ...] = ()
    outcome: Outcome = field(default=Outcome.DENIED, init=False)

    def to_dict(self) -> Dict[str, Any]:
        d = {"success": True, "valid": False, "error": self.reason.value, "message": self.message}
        if self.field_name:
            d["field"] = self.field_name
        if self.required_modules:
            d["requiredModules"] = list(self.required_modules)
        return d


@dataclass(frozen=True)
class ClaimFailed:
    """Hard failure: identity mismatch, ledger or configuration trouble."""
    reason: Reason
    message: str
    correlation_id: str
    checks: Tuple[str, ...] = ()
    outcome: Outcome = field(default=Outcome.FAILED, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "valid": False,
            "error": self.reason.value,
            "message": self.message,
            "correlationId": self.correlation_id,
        }


ClaimDecision = Union[ClaimAuthorized, ClaimDenied, ClaimFailed]

_GENERIC_MESSAGES = {
    Reason.LEDGER_READ_ERROR: "Unable to verify the gift right now. Please try again later.",
    Reason.CONFIGURATION_ERROR: "Server configuration error",
}


@dataclass
class _Evaluation:
    """Working state of one pass through the pipeline."""
    request: ClaimRequest
    authenticated_address: str
    token_id: str = ""
    password: str = ""
    salt: str = ""
    claimer: str = ""
    gate_data: Optional[str] = None
    gift_id: Optional[int] = None
    gift: Optional[GiftRecord] = None
    checks: List[str] = field(default_factory=list)


class ClaimAuthorizer:
    """
    Runs the claim validation pipeline.

    Holds no per-request state; one instance serves concurrent requests.
    """

    PIPELINE = (
        "validate_input",
        "bind_identity",
        "resolve_gift",
        "read_gift",
        "check_terminal_state",
        "check_expiry",
        "check_password",
        "check_gate",
    )

    def __init__(
        self,
        config: ClaimConfig,
        resolver: GiftResolver,
        reader: EscrowStateReader,
        clock: Callable[[], int] = now_epoch
    ):
        self._config = config.validate()
        if reader.contract_address != self._config.contract_address:
            raise ConfigurationError("Escrow reader and configuration disagree on the contract address")
        self._resolver = resolver
        self._reader = reader
        self._clock = clock

    @property
    def config(self) -> ClaimConfig:
        return self._config

    def authorize(self, request: ClaimRequest, authenticated_address: str) -> ClaimDecision:
        """
        Decide a claim request.

        Args:
            request: The client's claim request
            authenticated_address: Address proven by the bearer credential

        Returns:
            ClaimAuthorized, ClaimDenied or ClaimFailed
        """
        ev = _Evaluation(request=request, authenticated_address=authenticated_address)
        audit_log.claim_request(request.token_id, request.claimer_address)

        try:
            for name in self.PIPELINE:
                getattr(self, "_" + name)(ev)
                ev.checks.append(name)
        except SOFT_DENIALS as e:
            return self._denied(ev, e)
        except AuthorizationMismatchError as e:
            audit_log.security_event(
                "IDENTITY_MISMATCH",
                severity="medium",
                token_id=str(request.token_id)[:80],
            )
            return self._failed(ev, e, e.message)
        except (LedgerReadError, ConfigurationError) as e:
            correlation_id = get_request_id()
            audit_log.operational_error(e.reason.value, correlation_id, str(e), gift_id=ev.gift_id)
            return self._failed(ev, e, _GENERIC_MESSAGES[e.reason], correlation_id)

        decision = ClaimAuthorized(
            gift_id=ev.gift_id,
            gift=ev.gift,
            claim_parameters=ClaimParameters(
                gift_id=ev.gift_id,
                password=ev.password,
                salt=ev.salt,
                gate_data=ev.gate_data or EMPTY_GATE_DATA,
            ),
            contract_address=self._config.contract_address,
            checks=tuple(ev.checks),
        )
        audit_log.claim_decision(ev.token_id, decision.outcome.value, gift_id=ev.gift_id, checks=ev.checks)
        return decision

    def _denied(self, ev: _Evaluation, error: ClaimError) -> ClaimDenied:
        decision = ClaimDenied(
            reason=error.reason,
            message=error.message,
            field_name=getattr(error, "field", None),
            required_modules=tuple(getattr(error, "modules", ())) or None,
            checks=tuple(ev.checks),
        )
        audit_log.claim_decision(
            ev.request.token_id, decision.outcome.value, reason=error.reason.value,
            gift_id=ev.gift_id, checks=ev.checks
        )
        return decision

    def _failed(
        self,
        ev: _Evaluation,
        error: ClaimError,
        message: str,
        correlation_id: Optional[str] = None
    ) -> ClaimFailed:
        decision = ClaimFailed(
            reason=error.reason,
            message=message,
            correlation_id=correlation_id or get_request_id(),
            checks=tuple(ev.checks),
        )
        audit_log.claim_decision(
            ev.request.token_id, decision.outcome.value, reason=error.reason.value,
            gift_id=ev.gift_id, checks=ev.checks
        )
        return decision

    # ============================================================
    # Pipeline checks
    # ============================================================

    def _validate_input(self, ev: _Evaluation) -> None:
        req = ev.request
        ev.token_id = validate_token_id_type(req.token_id)
        ev.password = validate_password(
            req.password,
            min_length=self._config.min_password_length,
            max_length=self._config.max_password_length,
        )
        ev.salt = validate_salt(req.salt)
        ev.claimer = normalize_address(req.claimer_address, "claimerAddress")
        ev.gate_data = validate_gate_data(req.gate_data)

    def _bind_identity(self, ev: _Evaluation) -> None:
        authenticated = (ev.authenticated_address or "").strip().lower()
        if not authenticated or authenticated != ev.claimer:
            raise AuthorizationMismatchError()

    def _resolve_gift(self, ev: _Evaluation) -> None:
        if parse_token_id(ev.token_id) is None:
            raise NotFoundError()
        gift_id = self._resolver.lookup(ev.token_id)
        if gift_id is None:
            raise NotFoundError()
        ev.gift_id = gift_id
        logger.info("Using giftId %s for tokenId %s", gift_id, ev.token_id)

    def _read_gift(self, ev: _Evaluation) -> None:
        gift = self._reader.read_gift(ev.gift_id)
        # a stale or colliding mapping must not authorize a different asset
        if gift.token_id != parse_token_id(ev.token_id):
            audit_log.security_event(
                "MAPPING_MISMATCH",
                severity="high",
                token_id=str(ev.token_id)[:80],
                gift_id=ev.gift_id,
                gift_token_id=gift.token_id,
            )
            raise NotFoundError()
        ev.gift = gift

    def _check_terminal_state(self, ev: _Evaluation) -> None:
        if ev.gift.status == GiftStatus.CLAIMED:
            raise AlreadyClaimedError()
        if ev.gift.status == GiftStatus.RETURNED:
            raise AlreadyReturnedError()

    def _check_expiry(self, ev: _Evaluation) -> None:
        if is_expired(ev.gift, self._clock()):
            raise ExpiredError()

    def _check_password(self, ev: _Evaluation) -> None:
        matches = verify_commitment(
            ev.gift.password_hash,
            ev.password,
            ev.salt,
            ev.gift_id,
            self._config.contract_address,
            self._config.chain_id,
        )
        if not matches:
            raise PasswordMismatchError()

    def _check_gate(self, ev: _Evaluation) -> None:
        modules = self._resolver.gate_requirement(ev.gift_id)
        if modules and not ev.gate_data:
            raise EducationRequiredError(modules)


def build_resolver(config: ClaimConfig, client: Optional[JsonRpcLedgerClient] = None) -> GiftResolver:
    """
    Wire up the configured registry, with the event-log fallback when enabled.

    Raises:
        ConfigurationError: If the registry backend cannot be opened
    """
    try:
        registry = get_gift_registry(
            backend=config.registry_backend,
            db_path=config.registry_db_path,
            redis_url=config.redis_url,
        )
    except (ValueError, LedgerReadError) as e:
        raise ConfigurationError(f"Gift registry unavailable: {e}") from e

    if not config.event_fallback_enabled or client is None:
        return registry
    return ChainedGiftResolver(
        registry,
        EventLogGiftResolver(
            client,
            config.contract_address,
            deployment_block=config.deployment_block,
            chunk_blocks=config.event_scan_chunk_blocks,
            range_blocks=config.event_scan_range_blocks,
            on_mapping=registry.register,
        ),
    )


def build_authorizer(config: ClaimConfig, clock: Callable[[], int] = now_epoch) -> ClaimAuthorizer:
    """
    Wire up an authorizer from configuration.

    Raises:
        ConfigurationError: If configuration is incomplete
    """
    config = config.validate()
    client = JsonRpcLedgerClient(
        config.require_rpc_url(),
        timeout_seconds=config.ledger_timeout_seconds,
        connect_timeout_seconds=config.ledger_connect_timeout_seconds,
    )
    resolver = build_resolver(config, client)
    reader = EscrowStateReader(client, config.contract_address)
    return ClaimAuthorizer(config, resolver, reader, clock=clock)
