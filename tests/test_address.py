import pytest
from eth_account import Account
from eth_keys import keys
from eth_utils import keccak

from ic_web3.address import (
    SECP256K1_P,
    find_recovery_id,
    public_key_to_address,
    recover_address,
    recover_public_key,
    uncompress_public_key,
)
from ic_web3.errors import InvalidPublicKey, RecoveryFailed

PRIVATE_KEY = keys.PrivateKey(b"\x11" * 32)


def _non_residue_x() -> int:
    for x in range(1, 200):
        if pow(x**3 + 7, (SECP256K1_P - 1) // 2, SECP256K1_P) != 1:
            return x
    raise AssertionError("no non-residue found")


def test_public_key_to_address_matches_eth_account():
    compressed = PRIVATE_KEY.public_key.to_compressed_bytes()
    expected = Account.from_key("0x" + "11" * 32).address

    address = public_key_to_address(compressed)

    assert len(address) == 20
    assert "0x" + address.hex() == expected.lower()


def test_uncompress_public_key_round_trips_both_parities():
    for seed in (b"\x11" * 32, b"\x22" * 32, b"\x33" * 32):
        public_key = keys.PrivateKey(seed).public_key
        uncompressed = uncompress_public_key(public_key.to_compressed_bytes())
        assert uncompressed == b"\x04" + public_key.to_bytes()


@pytest.mark.parametrize(
    "pubkey",
    [
        b"",
        b"\x02" * 32,
        b"\x02" * 34,
        b"\x04" + b"\x11" * 32,
        b"\x02" + b"\xff" * 32,
    ],
)
def test_invalid_public_keys_are_rejected(pubkey):
    with pytest.raises(InvalidPublicKey):
        public_key_to_address(pubkey)


def test_x_without_curve_point_is_rejected():
    pubkey = b"\x02" + _non_residue_x().to_bytes(32, "big")
    with pytest.raises(InvalidPublicKey):
        uncompress_public_key(pubkey)


def test_recover_address_round_trip():
    digest = keccak(b"recover me")
    signature = PRIVATE_KEY.sign_msg_hash(digest)
    rs = signature.to_bytes()[:64]
    expected = PRIVATE_KEY.public_key.to_canonical_address()

    assert recover_address(digest, rs, signature.v) == expected
    assert recover_public_key(digest, rs, signature.v) == PRIVATE_KEY.public_key.to_bytes()
    assert recover_address(digest, rs, 1 - signature.v) != expected


@pytest.mark.parametrize("recovery_id", [2, 3, 4, -1, True])
def test_unusable_recovery_ids_fail(recovery_id):
    digest = keccak(b"ids")
    rs = PRIVATE_KEY.sign_msg_hash(digest).to_bytes()[:64]
    with pytest.raises(RecoveryFailed):
        recover_address(digest, rs, recovery_id)


def test_zero_r_or_s_fails():
    digest = keccak(b"zeros")
    rs = PRIVATE_KEY.sign_msg_hash(digest).to_bytes()[:64]
    with pytest.raises(RecoveryFailed):
        recover_address(digest, b"\x00" * 32 + rs[32:], 0)
    with pytest.raises(RecoveryFailed):
        recover_address(digest, rs[:32] + b"\x00" * 32, 0)


def test_bad_lengths_fail():
    digest = keccak(b"lengths")
    rs = PRIVATE_KEY.sign_msg_hash(digest).to_bytes()[:64]
    with pytest.raises(RecoveryFailed):
        recover_address(digest[:31], rs, 0)
    with pytest.raises(RecoveryFailed):
        recover_address(digest, rs[:63], 0)


def test_find_recovery_id_matches_signature_v():
    compressed = PRIVATE_KEY.public_key.to_compressed_bytes()
    for message in (b"a", b"b", b"c", b"d"):
        digest = keccak(message)
        signature = PRIVATE_KEY.sign_msg_hash(digest)
        assert find_recovery_id(digest, signature.to_bytes()[:64], compressed) == signature.v


def test_find_recovery_id_rejects_foreign_key():
    digest = keccak(b"foreign")
    rs = PRIVATE_KEY.sign_msg_hash(digest).to_bytes()[:64]
    other = keys.PrivateKey(b"\x22" * 32).public_key.to_compressed_bytes()
    with pytest.raises(RecoveryFailed):
        find_recovery_id(digest, rs, other)
