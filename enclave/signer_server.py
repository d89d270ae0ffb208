#!/usr/bin/env python3
"""Threshold-ECDSA authority emulator speaking length-prefixed JSON.

Serves ``ecdsa_public_key`` and ``sign_with_ecdsa`` for a
``LocalEcdsaAuthority`` so relays configured with a ``tcp://`` or
``vsock://`` authority endpoint can run against it.
"""
from __future__ import annotations

import argparse
import json
import os
import socket
import struct
from typing import Any, Optional
from urllib.parse import urlparse

from ic_web3.authority import DEFAULT_KEY_NAMES, DEFAULT_SIGN_FEE, LocalEcdsaAuthority
from ic_web3.errors import AuthorityRejected, RejectionCode
from ic_web3.types import KeyId


def recv_exact(sock: socket.socket, size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        part = sock.recv(remaining)
        if not part:
            raise ConnectionError("peer closed")
        chunks.append(part)
        remaining -= len(part)
    return b"".join(chunks)


def read_message(sock: socket.socket) -> dict[str, Any]:
    header = recv_exact(sock, 4)
    (length,) = struct.unpack("!I", header)
    raw = recv_exact(sock, length)
    payload = json.loads(raw.decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("payload must be an object")
    return payload


def send_message(sock: socket.socket, payload: dict[str, Any]) -> None:
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    sock.sendall(struct.pack("!I", len(raw)))
    sock.sendall(raw)


def error(
    message: str,
    code: RejectionCode = RejectionCode.CANISTER_REJECT,
    reason: Optional[str] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"code": int(code), "message": message}
    if reason:
        body["reason"] = reason
    return {"error": body}


def _hex_bytes(value: object, *, field: str) -> bytes:
    if not isinstance(value, str):
        raise RuntimeError(f"{field} must be 0x hex")
    raw = value.strip()
    if not raw.startswith("0x"):
        raise RuntimeError(f"{field} must be 0x-prefixed hex")
    try:
        return bytes.fromhex(raw[2:])
    except ValueError as exc:
        raise RuntimeError(f"{field} must be hex") from exc


def _parse_int(value: object, *, field: str) -> int:
    if isinstance(value, bool) or value is None:
        raise RuntimeError(f"{field} must be an int")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        raw = value.strip()
        try:
            return int(raw, 16) if raw.startswith("0x") else int(raw, 10)
        except ValueError as exc:
            raise RuntimeError(f"{field} must be an int") from exc
    raise RuntimeError(f"{field} must be an int")


def _parse_derivation_path(value: object) -> tuple[bytes, ...]:
    if not isinstance(value, list):
        raise RuntimeError("derivation_path must be a list of 0x hex segments")
    return tuple(_hex_bytes(item, field="derivation_path") for item in value)


def _parse_key_id(value: object) -> KeyId:
    if not isinstance(value, dict):
        raise RuntimeError("key_id must be an object")
    try:
        return KeyId(name=str(value.get("name") or ""), curve=str(value.get("curve") or ""))
    except ValueError as exc:
        raise RuntimeError(f"invalid key_id: {exc}") from exc


def _owner(params: dict[str, Any], *, default: str, allow_canister_id: bool) -> str:
    caller = str(params.get("caller") or "").strip() or default
    if allow_canister_id:
        canister_id = str(params.get("canister_id") or "").strip()
        if canister_id:
            return canister_id
    return caller


def handle_request(
    request: dict[str, Any],
    *,
    authority: LocalEcdsaAuthority,
) -> dict[str, Any]:
    method = request.get("method")
    params = request.get("params") if isinstance(request.get("params"), dict) else {}

    try:
        if method == "ecdsa_public_key":
            public_key = authority.public_key_for(
                _owner(params, default=authority.caller, allow_canister_id=True),
                _parse_derivation_path(params.get("derivation_path")),
                _parse_key_id(params.get("key_id")),
            )
            return {"result": {"public_key": "0x" + public_key.hex()}}

        if method == "sign_with_ecdsa":
            message_hash = _hex_bytes(params.get("message_hash"), field="message_hash")
            signature = authority.sign_for(
                _owner(params, default=authority.caller, allow_canister_id=False),
                message_hash,
                _parse_derivation_path(params.get("derivation_path")),
                _parse_key_id(params.get("key_id")),
                _parse_int(params.get("cycles"), field="cycles"),
            )
            return {"result": {"signature": "0x" + signature.hex()}}
    except AuthorityRejected as exc:
        return error(exc.message, exc.code, exc.reason)
    except RuntimeError as exc:
        return error(str(exc))

    return error("unknown method", RejectionCode.DESTINATION_INVALID)


def bind_listener(endpoint: str) -> socket.socket:
    parsed = urlparse(endpoint)
    if parsed.hostname is None or parsed.port is None:
        raise RuntimeError("listen endpoint must include host/cid and port")

    if parsed.scheme == "tcp":
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((parsed.hostname, parsed.port))
        sock.listen(128)
        return sock

    if parsed.scheme == "vsock":
        if not hasattr(socket, "AF_VSOCK"):
            raise RuntimeError("AF_VSOCK unsupported in this environment")
        cid_any = getattr(socket, "VMADDR_CID_ANY", 0)
        sock = socket.socket(socket.AF_VSOCK, socket.SOCK_STREAM)
        sock.bind((cid_any, parsed.port))
        sock.listen(128)
        return sock

    raise RuntimeError("listen scheme must be tcp:// or vsock://")


def serve_connection(conn: socket.socket, authority: LocalEcdsaAuthority) -> None:
    with conn:
        try:
            request = read_message(conn)
            response = handle_request(request, authority=authority)
        except Exception as exc:
            response = error(str(exc), RejectionCode.SYS_FATAL)
        send_message(conn, response)


def load_master_seed() -> Optional[bytes]:
    raw = os.environ.get("SIGNER_MASTER_SEED", "").strip()
    if not raw:
        return None
    return bytes.fromhex(raw[2:] if raw.startswith("0x") else raw)


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument(
        "--listen",
        default="tcp://127.0.0.1:5000",
        help="tcp://host:port or vsock://cid:port (vsock binds on CID_ANY)",
    )
    ap.add_argument("--caller", default="rrkah-fqaaa-aaaaa-aaaaq-cai", help="principal used when none is sent")
    ap.add_argument("--key-name", action="append", dest="key_names", help="threshold key name (repeatable)")
    ap.add_argument("--sign-fee", type=int, default=DEFAULT_SIGN_FEE)
    args = ap.parse_args()

    master_seed = load_master_seed()
    if master_seed is None:
        raise SystemExit("SIGNER_MASTER_SEED (hex, >= 16 bytes) is required")

    authority = LocalEcdsaAuthority(
        master_seed=master_seed,
        caller=args.caller,
        key_names=frozenset(args.key_names or DEFAULT_KEY_NAMES),
        sign_fee=args.sign_fee,
    )
    server = bind_listener(args.listen)
    print(f"[ecdsa-authority] listening on {args.listen} keys={sorted(authority.key_names)}")

    while True:
        conn, _ = server.accept()
        serve_connection(conn, authority)


if __name__ == "__main__":
    raise SystemExit(main())
