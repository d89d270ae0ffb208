"""CLI entrypoint for the relay."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, List, Optional, Sequence

import anyio
from web3 import Web3

from .authority import LocalEcdsaAuthority, RemoteEcdsaAuthority, SignerAuthority
from .config import RelaySettings, settings
from .ecdsa import EthSigningFacade
from .errors import IcWeb3Error
from .outcall import HttpxOutcallBoundary
from .recovery import RecoveryVerdict, verify_signature
from .rpc import Web3Namespace
from .transport import CallOptions, OutcallTransport
from .types import KeyInfo

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s:%(lineno)d | %(message)s",
        stream=sys.stderr,
    )


def _hex_arg(value: str) -> bytes:
    raw = value.strip()
    if raw.startswith("0x"):
        raw = raw[2:]
    try:
        return bytes.fromhex(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{value!r} is not hex") from exc


def build_authority(config: RelaySettings, seed: Optional[bytes]) -> SignerAuthority:
    if config.authority_endpoint:
        logger.info("Using remote signer authority endpoint=%s", config.authority_endpoint)
        return RemoteEcdsaAuthority(
            endpoint=config.authority_endpoint,
            caller=config.canister_id,
            timeout_seconds=config.authority_timeout_seconds,
        )
    if seed is None:
        raise SystemExit("--seed is required when IC_WEB3_AUTHORITY_ENDPOINT is not configured")
    logger.info("Using in-process signer authority for key %s", config.key_name)
    return LocalEcdsaAuthority(master_seed=seed, caller=config.canister_id, key_names=frozenset({config.key_name}))


def build_facade(config: RelaySettings, seed: Optional[bytes]) -> EthSigningFacade:
    return EthSigningFacade.create(
        build_authority(config, seed),
        canister_id=config.canister_id,
        fees=config.fee_schedule(),
        key_name=config.key_name,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ethereum signing and JSON-RPC outcalls via threshold ECDSA.")
    parser.add_argument("--seed", type=_hex_arg, default=None, help="Master seed (hex) for the in-process authority")
    sub = parser.add_subparsers(dest="command", required=True)

    address = sub.add_parser("address", help="Print the Ethereum address for a derivation path")
    address.add_argument("--path", type=_hex_arg, action="append", default=None, help="Path segment (hex, repeatable)")
    address.add_argument("--canister-id", default=None)

    sign = sub.add_parser("sign", help="Sign a 32-byte digest and print the 65-byte signature")
    sign.add_argument("digest", type=_hex_arg)
    sign.add_argument("--path", type=_hex_arg, action="append", default=None)
    sign.add_argument("--cycles", type=int, default=None)

    verify = sub.add_parser("verify", help="Check that a signature over a digest recovers an address")
    verify.add_argument("address")
    verify.add_argument("digest", type=_hex_arg)
    verify.add_argument("signature", type=_hex_arg)

    rpc = sub.add_parser("rpc", help="POST a JSON-RPC call through the outcall transport")
    rpc.add_argument("method")
    rpc.add_argument("params", nargs="?", default="[]", help="JSON array of params")
    rpc.add_argument("--url", default=None)
    rpc.add_argument("--max-response-bytes", type=int, default=None)
    return parser


async def run_command(args: argparse.Namespace, config: RelaySettings) -> int:
    if args.command == "verify":
        claimed = args.address.strip().lower()
        if claimed.startswith("0x"):
            claimed = claimed[2:]
        verdict = verify_signature(claimed, args.digest, args.signature)
        print(verdict.value)
        return 0 if verdict is RecoveryVerdict.MATCH else 1

    if args.command == "rpc":
        params: Any = json.loads(args.params)
        if not isinstance(params, list):
            raise SystemExit("params must be a JSON array")
        transport = OutcallTransport.from_settings(
            config,
            HttpxOutcallBoundary(timeout_seconds=config.outcall_timeout_seconds),
        )
        namespace = Web3Namespace(transport, args.url or config.rpc_url)
        options = CallOptions(max_response_bytes=args.max_response_bytes)
        result = await namespace.execute(args.method, params, options)
        print(json.dumps(result, indent=2, sort_keys=True))
        return 0

    facade = build_facade(config, args.seed)
    path: List[bytes] = args.path if args.path is not None else list(facade.default_derivation_path())

    if args.command == "address":
        address = await facade.get_eth_address(args.canister_id, path)
        print(Web3.to_checksum_address(address))
        return 0

    if args.command == "sign":
        key_info = KeyInfo(derivation_path=tuple(path), key_name=config.key_name, ecdsa_sign_cycles=args.cycles)
        signature = await facade.sign_recoverable(args.digest, key_info)
        print("0x" + signature.hex())
        return 0

    raise SystemExit(f"unknown command {args.command}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        return anyio.run(run_command, args, settings)
    except IcWeb3Error as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
