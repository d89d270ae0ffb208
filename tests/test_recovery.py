import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_utils import keccak

from ic_web3.errors import MalformedSignature
from ic_web3.recovery import (
    RecoveryVerdict,
    parse_recovery_signature,
    personal_message_digest,
    recovery_id_from_v,
    to_recoverable_signature,
    verify,
    verify_signature,
)

PRIVATE_KEY = keys.PrivateKey(b"\x11" * 32)
ADDRESS = PRIVATE_KEY.public_key.to_canonical_address().hex()
DIGEST = keccak(b"verify me")


def signed(digest: bytes = DIGEST) -> bytes:
    signature = PRIVATE_KEY.sign_msg_hash(digest)
    return to_recoverable_signature(signature.to_bytes()[:64], signature.v)


def test_matching_signature_verifies():
    assert verify(ADDRESS, DIGEST, signed()) is True
    assert verify_signature(ADDRESS, DIGEST, signed()) is RecoveryVerdict.MATCH


def test_wrong_address_is_mismatch():
    other = keys.PrivateKey(b"\x22" * 32).public_key.to_canonical_address().hex()
    assert verify_signature(other, DIGEST, signed()) is RecoveryVerdict.MISMATCH
    assert verify(other, DIGEST, signed()) is False


def test_address_must_be_lowercase_without_prefix():
    checksummed = Account.from_key("0x" + "11" * 32).address
    assert verify(checksummed, DIGEST, signed()) is False
    assert verify("0x" + ADDRESS, DIGEST, signed()) is False


def test_empty_address_never_verifies():
    assert verify("", DIGEST, signed()) is False


def test_tampered_message_does_not_verify():
    assert verify(ADDRESS, keccak(b"something else"), signed()) is False


def test_tampered_signature_does_not_verify():
    signature = bytearray(signed())
    signature[40] ^= 0x01
    assert verify(ADDRESS, DIGEST, bytes(signature)) is False


@pytest.mark.parametrize("length", [0, 64, 66])
def test_wrong_length_signature_is_malformed(length):
    signature = (signed() * 2)[:length]
    assert verify_signature(ADDRESS, DIGEST, signature) is RecoveryVerdict.MALFORMED


def test_short_digest_is_malformed():
    assert verify_signature(ADDRESS, DIGEST[:31], signed()) is RecoveryVerdict.MALFORMED


@pytest.mark.parametrize("v", [0, 1, 26, 29, 34])
def test_unsupported_v_is_malformed(v):
    signature = signed()[:64] + bytes([v])
    assert verify_signature(ADDRESS, DIGEST, signature) is RecoveryVerdict.MALFORMED


def test_eip155_v_values_are_accepted():
    signature = PRIVATE_KEY.sign_msg_hash(DIGEST)
    chain_id = 1
    v = signature.v + 35 + 2 * chain_id
    assert verify(ADDRESS, DIGEST, signature.to_bytes()[:64] + bytes([v])) is True


def test_recovery_id_from_v():
    assert recovery_id_from_v(27) == 0
    assert recovery_id_from_v(28) == 1
    assert recovery_id_from_v(37) == 0
    assert recovery_id_from_v(38) == 1
    with pytest.raises(MalformedSignature):
        recovery_id_from_v(30)


def test_parse_recovery_signature_splits_v():
    rs, recovery_id = parse_recovery_signature(b"\x01" * 64 + bytes([28]))
    assert rs == b"\x01" * 64
    assert recovery_id == 1


def test_to_recoverable_signature_rejects_bad_input():
    with pytest.raises(MalformedSignature):
        to_recoverable_signature(b"\x01" * 63, 0)
    with pytest.raises(MalformedSignature):
        to_recoverable_signature(b"\x01" * 64, 2)


def test_personal_message_digest_matches_wallet_signatures():
    account = Account.from_key("0x" + "11" * 32)
    message = b"hello relay"
    wallet_signature = bytes(account.sign_message(encode_defunct(primitive=message)).signature)

    digest = personal_message_digest(message)

    assert len(digest) == 32
    assert verify(account.address[2:].lower(), digest, wallet_signature) is True
