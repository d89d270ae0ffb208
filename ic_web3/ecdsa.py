"""Ethereum addresses and signatures backed by a threshold-ECDSA authority."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .address import find_recovery_id, public_key_to_address
from .authority import SignerAuthority
from .config import FeeSchedule
from .errors import (
    INSUFFICIENT_CYCLES,
    AuthorityRejected,
    InsufficientBudget,
    InvalidDigestLength,
    SignerUnreachable,
)
from .recovery import to_recoverable_signature
from .types import KeyId, KeyInfo, normalize_derivation_path, principal_to_bytes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyDerivationClient:
    authority: SignerAuthority

    async def get_public_key(
        self,
        canister_id: Optional[str],
        derivation_path: Iterable[bytes],
        key_name: str,
    ) -> bytes:
        path = normalize_derivation_path(derivation_path)
        key_id = KeyId(name=key_name)
        try:
            return await self.authority.ecdsa_public_key(canister_id, path, key_id)
        except AuthorityRejected as exc:
            raise SignerUnreachable(f"Failed to call ecdsa_public_key {exc.message}", exc.code) from exc


@dataclass(frozen=True)
class SigningClient:
    authority: SignerAuthority
    fees: FeeSchedule = field(default_factory=FeeSchedule)

    async def sign_digest(self, message_hash: bytes, key_info: KeyInfo) -> bytes:
        """Sign a 32-byte digest, returning the raw 64-byte ``r || s``.

        The digest length is checked before anything is sent, so a bad
        digest never costs cycles.
        """
        if not isinstance(message_hash, (bytes, bytearray)) or len(message_hash) != 32:
            length = len(message_hash) if isinstance(message_hash, (bytes, bytearray)) else None
            raise InvalidDigestLength(f"message hash must be exactly 32 bytes (got {length})")

        cycles = key_info.ecdsa_sign_cycles
        if cycles is None:
            cycles = self.fees.ecdsa_sign_cycles

        try:
            signature = await self.authority.sign_with_ecdsa(
                bytes(message_hash),
                key_info.derivation_path,
                key_info.key_id,
                cycles,
            )
        except AuthorityRejected as exc:
            message = f"Failed to call sign_with_ecdsa {exc.message}"
            if exc.reason == INSUFFICIENT_CYCLES:
                raise InsufficientBudget(message, exc.code) from exc
            raise SignerUnreachable(message, exc.code) from exc

        if len(signature) != 64:
            raise SignerUnreachable(f"sign_with_ecdsa returned a {len(signature)}-byte signature")
        return signature


@dataclass(frozen=True)
class EthSigningFacade:
    """``get my address`` / ``sign this digest`` for one canister identity."""

    canister_id: str
    keys: KeyDerivationClient
    signer: SigningClient
    key_name: str = "dfx_test_key"

    @classmethod
    def create(
        cls,
        authority: SignerAuthority,
        *,
        canister_id: str,
        fees: Optional[FeeSchedule] = None,
        key_name: str = "dfx_test_key",
    ) -> "EthSigningFacade":
        return cls(
            canister_id=canister_id,
            keys=KeyDerivationClient(authority),
            signer=SigningClient(authority, fees or FeeSchedule()),
            key_name=key_name,
        )

    def default_derivation_path(self) -> tuple[bytes, ...]:
        return (principal_to_bytes(self.canister_id),)

    async def get_eth_address(
        self,
        canister_id: Optional[str] = None,
        derivation_path: Optional[Iterable[bytes]] = None,
        key_name: Optional[str] = None,
    ) -> bytes:
        path = self.default_derivation_path() if derivation_path is None else derivation_path
        public_key = await self.keys.get_public_key(canister_id, path, key_name or self.key_name)
        return public_key_to_address(public_key)

    async def sign_raw_digest(self, message_hash: bytes, key_info: KeyInfo) -> bytes:
        return await self.signer.sign_digest(message_hash, key_info)

    async def sign_recoverable(self, message_hash: bytes, key_info: KeyInfo) -> bytes:
        """Sign and append ``v = 27 + recovery_id`` so the result verifies locally."""
        signature = await self.signer.sign_digest(message_hash, key_info)
        public_key = await self.keys.get_public_key(None, key_info.derivation_path, key_info.key_name)
        recovery_id = find_recovery_id(bytes(message_hash), signature, public_key)
        logger.info(
            "Signed digest %s with key %s (recovery_id=%s)",
            bytes(message_hash).hex(),
            key_info.key_name,
            recovery_id,
        )
        return to_recoverable_signature(signature, recovery_id)
