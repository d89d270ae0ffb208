"""Threshold-ECDSA signing authorities.

The relay never holds key material. Public keys and signatures come from an
authority reachable through two calls, ``ecdsa_public_key`` and
``sign_with_ecdsa``. ``LocalEcdsaAuthority`` emulates one in-process (for
development and tests); ``RemoteEcdsaAuthority`` talks to one over a
length-prefixed JSON socket (see ``enclave/signer_server.py``).
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import socket
import struct
from dataclasses import dataclass, field
from functools import partial
from typing import Any, FrozenSet, Optional, Protocol, Sequence
from urllib.parse import urlparse

import anyio.to_thread
from eth_keys import keys
from eth_utils import keccak

from .address import SECP256K1_N
from .errors import INSUFFICIENT_CYCLES, AuthorityRejected, RejectionCode
from .types import DerivationPath, KeyId, normalize_derivation_path, principal_to_bytes

logger = logging.getLogger(__name__)

DEFAULT_KEY_NAMES = frozenset({"dfx_test_key", "test_key_1", "key_1"})
DEFAULT_SIGN_FEE = 26_153_846_153


class SignerAuthority(Protocol):
    async def ecdsa_public_key(
        self,
        canister_id: Optional[str],
        derivation_path: DerivationPath,
        key_id: KeyId,
    ) -> bytes: ...

    async def sign_with_ecdsa(
        self,
        message_hash: bytes,
        derivation_path: DerivationPath,
        key_id: KeyId,
        cycles: int,
    ) -> bytes: ...


def _encode_derivation_input(owner: bytes, derivation_path: Sequence[bytes]) -> bytes:
    parts = [owner, *derivation_path]
    return b"".join(struct.pack("!I", len(part)) + bytes(part) for part in parts)


@dataclass(frozen=True)
class LocalEcdsaAuthority:
    """In-process authority deriving child keys from a master seed.

    Each key name gets a root secret ``keccak(seed || name) mod n``. The child
    key for ``(owner, path)`` adds an HMAC-SHA512 tweak keyed by the root
    public key, so the same inputs always map to the same key.
    """

    master_seed: bytes
    caller: str
    key_names: FrozenSet[str] = field(default=DEFAULT_KEY_NAMES)
    sign_fee: int = DEFAULT_SIGN_FEE

    def __post_init__(self) -> None:
        if len(self.master_seed) < 16:
            raise ValueError("master_seed must be at least 16 bytes")
        principal_to_bytes(self.caller)
        object.__setattr__(self, "key_names", frozenset(self.key_names))

    def _root_secret(self, key_id: KeyId) -> int:
        if key_id.name not in self.key_names:
            raise AuthorityRejected(
                f"Requested unknown threshold key: {key_id.curve}:{key_id.name}",
                RejectionCode.CANISTER_REJECT,
            )
        secret = int.from_bytes(keccak(self.master_seed + b":" + key_id.name.encode("utf-8")), "big") % SECP256K1_N
        if secret == 0:  # pragma: no cover - probability 2**-256
            raise AuthorityRejected("derived root key is zero", RejectionCode.CANISTER_ERROR)
        return secret

    def _child_key(self, owner: str, derivation_path: Sequence[bytes], key_id: KeyId) -> keys.PrivateKey:
        try:
            owner_bytes = principal_to_bytes(owner)
            path = normalize_derivation_path(derivation_path)
        except (TypeError, ValueError) as exc:
            raise AuthorityRejected(str(exc), RejectionCode.CANISTER_REJECT) from exc
        root = self._root_secret(key_id)
        root_public = keys.PrivateKey(root.to_bytes(32, "big")).public_key.to_compressed_bytes()
        tweak_digest = hmac.new(root_public, _encode_derivation_input(owner_bytes, path), hashlib.sha512).digest()
        child = (root + int.from_bytes(tweak_digest[:32], "big")) % SECP256K1_N
        if child == 0:  # pragma: no cover - probability 2**-256
            raise AuthorityRejected("derived child key is zero", RejectionCode.CANISTER_ERROR)
        return keys.PrivateKey(child.to_bytes(32, "big"))

    def public_key_for(self, owner: str, derivation_path: Sequence[bytes], key_id: KeyId) -> bytes:
        return self._child_key(owner, derivation_path, key_id).public_key.to_compressed_bytes()

    def sign_for(
        self,
        owner: str,
        message_hash: bytes,
        derivation_path: Sequence[bytes],
        key_id: KeyId,
        cycles: int,
    ) -> bytes:
        if cycles < self.sign_fee:
            raise AuthorityRejected(
                f"sign_with_ecdsa request sent with {cycles} cycles, but {self.sign_fee} cycles are required.",
                RejectionCode.CANISTER_REJECT,
                reason=INSUFFICIENT_CYCLES,
            )
        if len(message_hash) != 32:
            raise AuthorityRejected("message_hash must be 32 bytes", RejectionCode.CANISTER_REJECT)
        private_key = self._child_key(owner, derivation_path, key_id)
        signature = private_key.sign_msg_hash(bytes(message_hash))
        logger.debug("Signed digest for %s with key %s (cycles=%s)", owner, key_id.name, cycles)
        return signature.to_bytes()[:64]

    async def ecdsa_public_key(
        self,
        canister_id: Optional[str],
        derivation_path: DerivationPath,
        key_id: KeyId,
    ) -> bytes:
        return self.public_key_for(canister_id or self.caller, derivation_path, key_id)

    async def sign_with_ecdsa(
        self,
        message_hash: bytes,
        derivation_path: DerivationPath,
        key_id: KeyId,
        cycles: int,
    ) -> bytes:
        return self.sign_for(self.caller, message_hash, derivation_path, key_id, cycles)


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        part = sock.recv(remaining)
        if not part:
            raise AuthorityRejected(
                "Signer authority closed connection unexpectedly",
                RejectionCode.SYS_TRANSIENT,
            )
        chunks.append(part)
        remaining -= len(part)
    return b"".join(chunks)


def _send_framed_json(sock: socket.socket, payload: dict[str, Any]) -> dict[str, Any]:
    encoded = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    sock.sendall(struct.pack("!I", len(encoded)))
    sock.sendall(encoded)

    header = _recv_exact(sock, 4)
    (length,) = struct.unpack("!I", header)
    response_raw = _recv_exact(sock, length)
    try:
        response = json.loads(response_raw.decode("utf-8"))
    except Exception as exc:
        raise AuthorityRejected("Signer authority returned invalid JSON", RejectionCode.SYS_FATAL) from exc
    if not isinstance(response, dict):
        raise AuthorityRejected("Signer authority returned invalid response", RejectionCode.SYS_FATAL)
    return response


def _decode_hex_field(result: dict[str, Any], name: str) -> bytes:
    raw = str(result.get(name) or "").strip()
    if not raw.startswith("0x") or len(raw) < 4:
        raise AuthorityRejected(f"Signer authority returned invalid {name}", RejectionCode.SYS_FATAL)
    try:
        return bytes.fromhex(raw[2:])
    except ValueError as exc:
        raise AuthorityRejected(f"Signer authority returned non-hex {name}", RejectionCode.SYS_FATAL) from exc


def encode_derivation_path(derivation_path: Sequence[bytes]) -> list[str]:
    return ["0x" + bytes(segment).hex() for segment in derivation_path]


@dataclass
class RemoteEcdsaAuthority:
    endpoint: str
    caller: str
    timeout_seconds: float = 5.0

    def _connect(self) -> socket.socket:
        parsed = urlparse(self.endpoint)
        if parsed.hostname is None or parsed.port is None:
            raise AuthorityRejected("Signer authority endpoint missing host/port", RejectionCode.DESTINATION_INVALID)
        if parsed.scheme == "tcp":
            return socket.create_connection(
                (parsed.hostname, parsed.port),
                timeout=self.timeout_seconds,
            )
        if parsed.scheme == "vsock":
            if not hasattr(socket, "AF_VSOCK"):
                raise AuthorityRejected("AF_VSOCK not supported in this environment", RejectionCode.SYS_FATAL)
            sock = socket.socket(socket.AF_VSOCK, socket.SOCK_STREAM)
            sock.settimeout(self.timeout_seconds)
            try:
                cid = int(parsed.hostname)
            except ValueError as exc:  # pragma: no cover - config validation should catch this
                sock.close()
                raise AuthorityRejected(
                    "Signer authority vsock:// CID must be an integer",
                    RejectionCode.DESTINATION_INVALID,
                ) from exc
            sock.connect((cid, parsed.port))
            return sock
        raise AuthorityRejected(
            "Signer authority endpoint must use tcp:// or vsock://",
            RejectionCode.DESTINATION_INVALID,
        )

    def _rpc_blocking(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        request = {"method": method, "params": params}
        try:
            with self._connect() as sock:
                response = _send_framed_json(sock, request)
        except OSError as exc:
            raise AuthorityRejected(f"Signer authority unreachable: {exc}", RejectionCode.SYS_TRANSIENT) from exc
        if "error" in response:
            error = response.get("error")
            if isinstance(error, dict):
                raise AuthorityRejected(
                    str(error.get("message") or "Signer authority error"),
                    RejectionCode.parse(error.get("code", RejectionCode.CANISTER_REJECT)),
                    reason=error.get("reason"),
                )
            raise AuthorityRejected(str(error) or "Signer authority error")
        result = response.get("result")
        if not isinstance(result, dict):
            raise AuthorityRejected("Signer authority returned invalid result", RejectionCode.SYS_FATAL)
        return result

    async def _rpc(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        return await anyio.to_thread.run_sync(partial(self._rpc_blocking, method, params))

    async def ecdsa_public_key(
        self,
        canister_id: Optional[str],
        derivation_path: DerivationPath,
        key_id: KeyId,
    ) -> bytes:
        result = await self._rpc(
            "ecdsa_public_key",
            {
                "caller": self.caller,
                "canister_id": canister_id,
                "derivation_path": encode_derivation_path(derivation_path),
                "key_id": {"curve": key_id.curve, "name": key_id.name},
            },
        )
        return _decode_hex_field(result, "public_key")

    async def sign_with_ecdsa(
        self,
        message_hash: bytes,
        derivation_path: DerivationPath,
        key_id: KeyId,
        cycles: int,
    ) -> bytes:
        result = await self._rpc(
            "sign_with_ecdsa",
            {
                "caller": self.caller,
                "message_hash": "0x" + bytes(message_hash).hex(),
                "derivation_path": encode_derivation_path(derivation_path),
                "key_id": {"curve": key_id.curve, "name": key_id.name},
                "cycles": int(cycles),
            },
        )
        return _decode_hex_field(result, "signature")
