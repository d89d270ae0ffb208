"""Ethereum address derivation and ECDSA public key recovery.

Public keys arrive from the signing authority in compressed SEC1 form. An
address is the low 20 bytes of ``keccak(X || Y)`` over the uncompressed
point, the same rule eth-keys applies in ``to_canonical_address``.
"""
from __future__ import annotations

from eth_keys import keys
from eth_utils import keccak

from .errors import InvalidPublicKey, RecoveryFailed

SECP256K1_P = int("fffffffffffffffffffffffffffffffffffffffffffffffffffffffefffffc2f", 16)
SECP256K1_N = int("fffffffffffffffffffffffffffffffebaaedce6af48a03bbfd25e8cd0364141", 16)

COMPRESSED_PUBLIC_KEY_LENGTH = 33
SIGNATURE_LENGTH = 64
DIGEST_LENGTH = 32
ADDRESS_LENGTH = 20


def _is_on_curve(raw_public_key: bytes) -> bool:
    x = int.from_bytes(raw_public_key[:32], "big")
    y = int.from_bytes(raw_public_key[32:], "big")
    if x >= SECP256K1_P or y >= SECP256K1_P:
        return False
    return (y * y - x * x * x - 7) % SECP256K1_P == 0


def _address_from_raw(raw_public_key: bytes) -> bytes:
    return keccak(raw_public_key)[-ADDRESS_LENGTH:]


def uncompress_public_key(pubkey: bytes) -> bytes:
    """Return the 65-byte ``0x04 || X || Y`` encoding of a compressed key."""
    if not isinstance(pubkey, (bytes, bytearray)) or len(pubkey) != COMPRESSED_PUBLIC_KEY_LENGTH:
        raise InvalidPublicKey("uncompress public key failed: expected 33 bytes")
    try:
        public_key = keys.PublicKey.from_compressed_bytes(bytes(pubkey))
    except Exception as exc:
        raise InvalidPublicKey(f"uncompress public key failed: {exc}") from exc
    raw = public_key.to_bytes()
    if not _is_on_curve(raw):
        raise InvalidPublicKey("uncompress public key failed: point is not on secp256k1")
    return b"\x04" + raw


def public_key_to_address(pubkey: bytes) -> bytes:
    uncompressed = uncompress_public_key(pubkey)
    return _address_from_raw(uncompressed[1:])


def recover_public_key(message_hash: bytes, signature: bytes, recovery_id: int) -> bytes:
    """Recover the signer's 64-byte ``X || Y`` key from an ``r || s`` signature.

    ``r`` and ``s`` are reduced modulo the curve order before use. Recovery
    ids 2 and 3 name the points whose x-coordinate is ``r + n``; eth-keys does
    not reconstruct those and they are reported as failures.
    """
    if not isinstance(message_hash, (bytes, bytearray)) or len(message_hash) != DIGEST_LENGTH:
        raise RecoveryFailed("message hash must be 32 bytes")
    if not isinstance(signature, (bytes, bytearray)) or len(signature) != SIGNATURE_LENGTH:
        raise RecoveryFailed("signature must be 64 bytes")
    if isinstance(recovery_id, bool) or not isinstance(recovery_id, int) or not 0 <= recovery_id <= 3:
        raise RecoveryFailed(f"invalid recovery id {recovery_id!r}")
    if recovery_id > 1:
        raise RecoveryFailed(f"recovery id {recovery_id} does not yield a point")

    r = int.from_bytes(signature[:32], "big") % SECP256K1_N
    s = int.from_bytes(signature[32:], "big") % SECP256K1_N
    if r == 0 or s == 0:
        raise RecoveryFailed("signature r and s must be non-zero")

    try:
        recovered = keys.Signature(vrs=(recovery_id, r, s)).recover_public_key_from_msg_hash(bytes(message_hash))
    except Exception as exc:
        raise RecoveryFailed(f"signature recovery failed: {exc}") from exc

    raw = recovered.to_bytes()
    if not _is_on_curve(raw):
        raise RecoveryFailed("signature recovery produced an invalid point")
    return raw


def recover_address(message_hash: bytes, signature: bytes, recovery_id: int) -> bytes:
    return _address_from_raw(recover_public_key(message_hash, signature, recovery_id))


def find_recovery_id(message_hash: bytes, signature: bytes, public_key: bytes) -> int:
    """Trial recovery: the id under which ``signature`` recovers ``public_key``."""
    expected = public_key_to_address(public_key)
    for recovery_id in range(4):
        try:
            if recover_address(message_hash, signature, recovery_id) == expected:
                return recovery_id
        except RecoveryFailed:
            continue
    raise RecoveryFailed("no recovery id reproduces the expected public key")
