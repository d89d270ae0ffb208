"""Signature verification against a claimed Ethereum address."""
from __future__ import annotations

from enum import Enum
from typing import Tuple

from eth_account.messages import defunct_hash_message

from .address import recover_address
from .errors import MalformedSignature, RecoveryFailed

RECOVERABLE_SIGNATURE_LENGTH = 65


class RecoveryVerdict(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    MALFORMED = "malformed"


def recovery_id_from_v(v: int) -> int:
    if v == 27:
        return 0
    if v == 28:
        return 1
    if v >= 35:
        return (v - 1) % 2
    raise MalformedSignature(f"unsupported signature v value {v}")


def parse_recovery_signature(signature: bytes) -> Tuple[bytes, int]:
    """Split a 65-byte ``r || s || v`` signature into ``(r || s, recovery_id)``."""
    if not isinstance(signature, (bytes, bytearray)) or len(signature) != RECOVERABLE_SIGNATURE_LENGTH:
        raise MalformedSignature("recoverable signature must be 65 bytes")
    return bytes(signature[:64]), recovery_id_from_v(signature[64])


def to_recoverable_signature(signature: bytes, recovery_id: int) -> bytes:
    if len(signature) != 64 or recovery_id not in (0, 1):
        raise MalformedSignature("expected a 64-byte signature and recovery id 0 or 1")
    return bytes(signature) + bytes([27 + recovery_id])


def verify_signature(address: str, message: bytes, signature: bytes) -> RecoveryVerdict:
    try:
        rs, recovery_id = parse_recovery_signature(signature)
        recovered = recover_address(message, rs, recovery_id)
    except MalformedSignature:
        return RecoveryVerdict.MALFORMED
    except RecoveryFailed:
        # the digest or (r, s) could not be turned into a key at all
        return RecoveryVerdict.MALFORMED
    if recovered.hex() == address:
        return RecoveryVerdict.MATCH
    return RecoveryVerdict.MISMATCH


def verify(address: str, message: bytes, signature: bytes) -> bool:
    """``True`` when ``signature`` over the 32-byte ``message`` recovers ``address``.

    ``address`` is compared exactly against the lowercase, unprefixed hex of
    the recovered address. Malformed input yields ``False``; use
    :func:`verify_signature` to tell the two apart.
    """
    return verify_signature(address, message, signature) is RecoveryVerdict.MATCH


def personal_message_digest(message: bytes) -> bytes:
    """EIP-191 digest of ``message`` as produced by wallet ``personal_sign``."""
    return bytes(defunct_hash_message(primitive=bytes(message)))
