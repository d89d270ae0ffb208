"""Request-scoped value types for the threshold-ECDSA path."""
from __future__ import annotations

import base64
import zlib
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

SECP256K1 = "secp256k1"

DerivationPath = Tuple[bytes, ...]


def normalize_derivation_path(segments: Iterable[bytes]) -> DerivationPath:
    """Return the path as a tuple of ``bytes``.

    Segments are opaque selectors for the signer, so nothing beyond the type
    is checked here.
    """
    if isinstance(segments, (bytes, bytearray, str)):
        raise TypeError("derivation path must be a sequence of byte strings")
    normalized = []
    for segment in segments:
        if not isinstance(segment, (bytes, bytearray)):
            raise TypeError("derivation path segments must be bytes")
        normalized.append(bytes(segment))
    return tuple(normalized)


@dataclass(frozen=True)
class KeyId:
    name: str
    curve: str = SECP256K1

    def __post_init__(self) -> None:
        if self.curve != SECP256K1:
            raise ValueError(f"unsupported curve {self.curve!r}")
        if not self.name:
            raise ValueError("key name must not be empty")


@dataclass(frozen=True)
class KeyInfo:
    derivation_path: DerivationPath
    key_name: str
    ecdsa_sign_cycles: Optional[int] = None
    key_id: KeyId = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "derivation_path", normalize_derivation_path(self.derivation_path))
        if self.ecdsa_sign_cycles is not None and self.ecdsa_sign_cycles < 0:
            raise ValueError("ecdsa_sign_cycles must be non-negative")
        object.__setattr__(self, "key_id", KeyId(name=self.key_name))


def principal_to_bytes(text: str) -> bytes:
    """Decode a textual principal (``xxxxx-xxxxx-...``) into its raw bytes."""
    compact = text.strip().replace("-", "").upper()
    if not compact:
        raise ValueError("principal text must not be empty")
    padded = compact + "=" * (-len(compact) % 8)
    try:
        decoded = base64.b32decode(padded)
    except ValueError as exc:
        raise ValueError(f"invalid principal {text!r}") from exc
    if len(decoded) < 4:
        raise ValueError(f"invalid principal {text!r}")
    checksum, raw = decoded[:4], decoded[4:]
    if int.from_bytes(checksum, "big") != zlib.crc32(raw):
        raise ValueError(f"principal checksum mismatch for {text!r}")
    if principal_from_bytes(raw) != text.strip().lower():
        raise ValueError(f"principal {text!r} is not in canonical form")
    return raw


def principal_from_bytes(raw: bytes) -> str:
    if len(raw) > 29:
        raise ValueError("principal must be at most 29 bytes")
    checksum = zlib.crc32(bytes(raw)).to_bytes(4, "big")
    encoded = base64.b32encode(checksum + bytes(raw)).decode("ascii").rstrip("=").lower()
    return "-".join(encoded[i : i + 5] for i in range(0, len(encoded), 5))
