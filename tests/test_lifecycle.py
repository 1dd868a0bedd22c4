import pytest

from giftclaim.ledger import GiftStatus, decode_gift_record
from giftclaim.lifecycle import (
    EffectiveStatus,
    effective_status,
    is_expired,
    is_legal_transition,
    is_terminal,
)

from conftest import GIFT_ID, NOW, encode_gift


def gift(status=GiftStatus.ACTIVE, expiration_time=NOW):
    return decode_gift_record(GIFT_ID, encode_gift(status=status, expiration_time=expiration_time))


def test_expiry_is_strictly_after_expiration_time():
    assert not is_expired(gift(), NOW)
    assert is_expired(gift(), NOW + 1)


@pytest.mark.parametrize("status,now,expected", [
    (GiftStatus.ACTIVE, NOW - 1, EffectiveStatus.ACTIVE),
    (GiftStatus.ACTIVE, NOW + 1, EffectiveStatus.EXPIRED),
    (GiftStatus.CLAIMED, NOW - 1, EffectiveStatus.CLAIMED),
    (GiftStatus.CLAIMED, NOW + 1, EffectiveStatus.CLAIMED),
    (GiftStatus.RETURNED, NOW + 1, EffectiveStatus.RETURNED),
])
def test_effective_status(status, now, expected):
    assert effective_status(gift(status), now) == expected


def test_terminal_states_have_no_way_out():
    assert not is_terminal(GiftStatus.ACTIVE)
    for terminal in (GiftStatus.CLAIMED, GiftStatus.RETURNED):
        assert is_terminal(terminal)
        for target in GiftStatus:
            assert not is_legal_transition(terminal, target)
    assert is_legal_transition(GiftStatus.ACTIVE, GiftStatus.CLAIMED)
    assert is_legal_transition(GiftStatus.ACTIVE, GiftStatus.RETURNED)
    assert not is_legal_transition(GiftStatus.ACTIVE, GiftStatus.ACTIVE)
