"""
Gift lifecycle classification.

Persisted states come from the contract (ACTIVE, CLAIMED, RETURNED). EXPIRED
is derived per request: an ACTIVE gift whose expiration time has passed.

    ACTIVE ──claim──> CLAIMED   (terminal)
       │
       └──return──> RETURNED    (terminal)

Transitions happen on chain; this module only classifies a snapshot.
"""

from enum import Enum
from typing import Dict, FrozenSet

from .ledger import GiftRecord, GiftStatus


class EffectiveStatus(str, Enum):
    """Status a gift presents to a claimer right now."""
    ACTIVE = "active"
    EXPIRED = "expired"
    CLAIMED = "claimed"
    RETURNED = "returned"


TERMINAL_STATUSES: FrozenSet[GiftStatus] = frozenset({GiftStatus.CLAIMED, GiftStatus.RETURNED})

LEGAL_TRANSITIONS: Dict[GiftStatus, FrozenSet[GiftStatus]] = {
    GiftStatus.ACTIVE: frozenset({GiftStatus.CLAIMED, GiftStatus.RETURNED}),
    GiftStatus.CLAIMED: frozenset(),
    GiftStatus.RETURNED: frozenset(),
}


def is_terminal(status: GiftStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_legal_transition(current: GiftStatus, new: GiftStatus) -> bool:
    return new in LEGAL_TRANSITIONS[current]


def is_expired(gift: GiftRecord, now: int) -> bool:
    """True when a still-active gift is past its expiration time."""
    return gift.status == GiftStatus.ACTIVE and now > gift.expiration_time


def effective_status(gift: GiftRecord, now: int) -> EffectiveStatus:
    """
    Classify a gift snapshot.

    Terminal states win over expiry: once claimed or returned, the
    expiration time no longer means anything.
    """
    if gift.status == GiftStatus.CLAIMED:
        return EffectiveStatus.CLAIMED
    if gift.status == GiftStatus.RETURNED:
        return EffectiveStatus.RETURNED
    if is_expired(gift, now):
        return EffectiveStatus.EXPIRED
    return EffectiveStatus.ACTIVE
