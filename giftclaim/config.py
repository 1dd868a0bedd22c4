"""
Configuration for the gift claim authorizer.

Environment variables are read once into a frozen ClaimConfig which is
passed explicitly to the components that need it. Nothing in the
authorization pipeline reads the environment at call time.
"""

import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError, ValidationError
from .validation import (
    DEFAULT_MAX_PASSWORD_LENGTH,
    DEFAULT_MIN_PASSWORD_LENGTH,
    normalize_address,
    validate_chain_id,
)

_TRUTHY_VALUES = {"1", "true", "yes", "on"}

REGISTRY_BACKENDS = ("sqlite", "redis")


def _get_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw_value = environ.get(name)
    if raw_value is None or raw_value == "":
        return default
    return raw_value.strip().lower() in _TRUTHY_VALUES


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw_value = environ.get(name)
    if raw_value is None or raw_value == "":
        return default
    try:
        return int(raw_value)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {name} must be an integer (got {raw_value!r})") from exc


def _get_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw_value = environ.get(name)
    if raw_value is None or raw_value == "":
        return default
    try:
        return float(raw_value)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {name} must be a number (got {raw_value!r})") from exc


@dataclass(frozen=True)
class ClaimConfig:
    """Typed representation of the service configuration."""

    contract_address: Optional[str]
    chain_id: Optional[int]
    rpc_url: Optional[str] = None
    env: str = "dev"
    ledger_timeout_seconds: float = 10.0
    ledger_connect_timeout_seconds: float = 3.0
    trust_store_path: str = "trust/trust_store.json"
    credential_max_skew_seconds: int = 0
    registry_backend: str = "sqlite"
    registry_db_path: str = "data/giftclaim.db"
    redis_url: str = "redis://localhost:6379/0"
    event_fallback_enabled: bool = True
    deployment_block: int = 0
    event_scan_chunk_blocks: int = 500
    event_scan_range_blocks: int = 10000
    min_password_length: int = DEFAULT_MIN_PASSWORD_LENGTH
    max_password_length: int = DEFAULT_MAX_PASSWORD_LENGTH
    log_level: str = "INFO"
    log_json: bool = True
    log_file: Optional[str] = None

    def validate(self) -> "ClaimConfig":
        """
        Check the values the authorizer cannot run without.

        The contract address and chain id are inputs to every password
        commitment, so their absence is fatal.

        Returns:
            A copy with the contract address normalized

        Raises:
            ConfigurationError: If configuration is unusable
        """
        if not self.contract_address:
            raise ConfigurationError("Server configuration error - escrow contract not configured")
        if self.chain_id is None:
            raise ConfigurationError("Server configuration error - chain id not configured")
        try:
            contract = normalize_address(self.contract_address, "ESCROW_CONTRACT_ADDRESS")
            chain_id = validate_chain_id(self.chain_id, "CHAIN_ID")
        except ValidationError as e:
            raise ConfigurationError(f"Server configuration error - {e.message}") from e
        if self.registry_backend not in REGISTRY_BACKENDS:
            raise ConfigurationError(
                f"REGISTRY_BACKEND must be one of {', '.join(REGISTRY_BACKENDS)} (got {self.registry_backend!r})"
            )
        if self.ledger_timeout_seconds <= 0 or self.ledger_connect_timeout_seconds <= 0:
            raise ConfigurationError("Ledger timeouts must be positive")
        if not 0 < self.min_password_length <= self.max_password_length:
            raise ConfigurationError("Password length bounds are inconsistent")
        if self.is_production() and self.rpc_url and not self.rpc_url.startswith("https://"):
            raise ConfigurationError("RPC_URL must use https in production")

        return replace(self, contract_address=contract, chain_id=chain_id)

    def is_production(self) -> bool:
        return self.env == "prod"

    def require_rpc_url(self) -> str:
        if not self.rpc_url:
            raise ConfigurationError("Server configuration error - RPC_URL not configured")
        return self.rpc_url

    def public_summary(self) -> Dict[str, Any]:
        """Non-secret view for health endpoints."""
        return {
            "contractAddress": self.contract_address,
            "chainId": self.chain_id,
            "registryBackend": self.registry_backend,
            "env": self.env,
        }


def load_config(environ: Optional[Mapping[str, str]] = None) -> ClaimConfig:
    """
    Load configuration from environment variables.

    Values are parsed but not validated; call ``validate()`` before use.

    Raises:
        ConfigurationError: If a numeric variable cannot be parsed
    """
    env = os.environ if environ is None else environ

    chain_raw = env.get("CHAIN_ID")
    chain_id = _get_int(env, "CHAIN_ID", 0) if chain_raw else None

    return ClaimConfig(
        contract_address=env.get("ESCROW_CONTRACT_ADDRESS") or None,
        chain_id=chain_id,
        rpc_url=env.get("RPC_URL") or None,
        env=env.get("GIFTCLAIM_ENV", "dev"),
        ledger_timeout_seconds=_get_float(env, "LEDGER_TIMEOUT_SECONDS", 10.0),
        ledger_connect_timeout_seconds=_get_float(env, "LEDGER_CONNECT_TIMEOUT_SECONDS", 3.0),
        trust_store_path=env.get("TRUST_STORE_PATH", "trust/trust_store.json"),
        credential_max_skew_seconds=_get_int(env, "CREDENTIAL_MAX_SKEW_SECONDS", 0),
        registry_backend=env.get("REGISTRY_BACKEND", "sqlite").strip().lower(),
        registry_db_path=env.get("REGISTRY_DB_PATH", "data/giftclaim.db"),
        redis_url=env.get("REDIS_URL", "redis://localhost:6379/0"),
        event_fallback_enabled=_get_bool(env, "EVENT_FALLBACK_ENABLED", True),
        deployment_block=_get_int(env, "ESCROW_DEPLOYMENT_BLOCK", 0),
        event_scan_chunk_blocks=_get_int(env, "EVENT_SCAN_CHUNK_BLOCKS", 500),
        event_scan_range_blocks=_get_int(env, "EVENT_SCAN_RANGE_BLOCKS", 10000),
        min_password_length=_get_int(env, "MIN_PASSWORD_LENGTH", DEFAULT_MIN_PASSWORD_LENGTH),
        max_password_length=_get_int(env, "MAX_PASSWORD_LENGTH", DEFAULT_MAX_PASSWORD_LENGTH),
        log_level=env.get("LOG_LEVEL", "INFO"),
        log_json=_get_bool(env, "LOG_JSON", True),
        log_file=env.get("LOG_FILE") or None,
    )
