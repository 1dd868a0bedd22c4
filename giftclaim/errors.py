"""
Error taxonomy for claim authorization.

Every failure the pipeline can produce is a ClaimError subclass carrying a
stable reason tag. Callers (the HTTP layer, tests) assert on the tag, never
on the message text.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class Reason(str, Enum):
    """Reason tags reported to callers."""
    UNAUTHENTICATED = "Unauthenticated"
    FORBIDDEN = "Forbidden"
    INVALID_INPUT = "InvalidInput"
    NOT_FOUND = "NotFound"
    ALREADY_CLAIMED = "AlreadyClaimed"
    ALREADY_RETURNED = "AlreadyReturned"
    EXPIRED = "Expired"
    PASSWORD_MISMATCH = "PasswordMismatch"
    EDUCATION_REQUIRED = "EducationRequired"
    LEDGER_READ_ERROR = "LedgerReadError"
    CONFIGURATION_ERROR = "ConfigurationError"
    METHOD_NOT_ALLOWED = "MethodNotAllowed"


class ClaimError(Exception):
    """Base class for all claim authorization errors."""

    reason: Reason = Reason.INVALID_INPUT
    default_message = "Claim validation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.reason.value, "message": self.message}


class AuthenticationError(ClaimError):
    """Missing, malformed, expired or forged bearer credential."""
    reason = Reason.UNAUTHENTICATED
    default_message = "Authentication required. Please provide a valid credential."

    def __init__(self, failure: Optional[str] = None, message: Optional[str] = None):
        self.failure = failure
        super().__init__(message)


class AuthorizationMismatchError(ClaimError):
    """Authenticated address differs from the claimer address."""
    reason = Reason.FORBIDDEN
    default_message = "You can only validate claims from your authenticated wallet address"


class ValidationError(ClaimError):
    """Raised when input validation fails."""
    reason = Reason.INVALID_INPUT

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["field"] = self.field
        return d


class NotFoundError(ClaimError):
    reason = Reason.NOT_FOUND
    default_message = "Gift not found - this NFT is not registered in escrow"


class AlreadyClaimedError(ClaimError):
    reason = Reason.ALREADY_CLAIMED
    default_message = "This gift has already been claimed"


class AlreadyReturnedError(ClaimError):
    reason = Reason.ALREADY_RETURNED
    default_message = "This gift has been returned to the creator"


class ExpiredError(ClaimError):
    reason = Reason.EXPIRED
    default_message = "This gift has expired and cannot be claimed"


class PasswordMismatchError(ClaimError):
    reason = Reason.PASSWORD_MISMATCH
    default_message = "Invalid password"


class EducationRequiredError(ClaimError):
    """The gift is gated and no gate attestation was supplied."""
    reason = Reason.EDUCATION_REQUIRED
    default_message = "This gift requires completing the education modules before claiming"

    def __init__(self, modules: List[int], message: Optional[str] = None):
        self.modules = list(modules)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["requiredModules"] = self.modules
        return d


class LedgerReadError(ClaimError):
    """The ledger (or the index in front of it) could not be read."""
    reason = Reason.LEDGER_READ_ERROR
    default_message = "Unable to read gift state from the ledger"


class RegistryUnavailableError(LedgerReadError):
    """The tokenId -> giftId registry backend could not be reached."""
    default_message = "Unable to read the gift registry"


class ConfigurationError(ClaimError):
    reason = Reason.CONFIGURATION_ERROR
    default_message = "Server configuration error - escrow contract not configured"


# Denials are routine outcomes; everything else is a hard failure.
SOFT_DENIALS = (
    ValidationError,
    NotFoundError,
    AlreadyClaimedError,
    AlreadyReturnedError,
    ExpiredError,
    PasswordMismatchError,
    EducationRequiredError,
)
