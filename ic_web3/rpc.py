"""JSON-RPC payloads carried by the outcall transport, and the ``web3_*`` calls."""
from __future__ import annotations

import json
from typing import Any, Optional, Sequence

from eth_utils import decode_hex, encode_hex

from .errors import RpcError
from .transport import CallOptions, OutcallTransport


def build_request(method: str, params: Sequence[Any] = (), request_id: int = 1) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": method, "params": list(params), "id": request_id}


def decode_response(body: bytes) -> Any:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise RpcError(-32700, f"invalid JSON-RPC response: {exc}") from exc
    if not isinstance(payload, dict):
        raise RpcError(-32600, "JSON-RPC response must be an object")
    if "error" in payload and payload["error"] is not None:
        error = payload["error"]
        if isinstance(error, dict):
            raise RpcError(int(error.get("code", -32603)), str(error.get("message") or ""), error.get("data"))
        raise RpcError(-32603, str(error))
    if "result" not in payload:
        raise RpcError(-32600, "JSON-RPC response missing result")
    return payload["result"]


class Web3Namespace:
    """``web3`` namespace of an Ethereum node reached through outcalls."""

    def __init__(self, transport: OutcallTransport, url: str) -> None:
        self.transport = transport
        self.url = url

    async def execute(
        self,
        method: str,
        params: Sequence[Any] = (),
        options: Optional[CallOptions] = None,
        request_id: int = 1,
    ) -> Any:
        body = await self.transport.post(self.url, build_request(method, params, request_id), options)
        return decode_response(body)

    async def client_version(self, options: Optional[CallOptions] = None) -> str:
        return str(await self.execute("web3_clientVersion", [], options))

    async def sha3(self, data: bytes, options: Optional[CallOptions] = None) -> bytes:
        result = await self.execute("web3_sha3", [encode_hex(data)], options)
        digest = decode_hex(str(result))
        if len(digest) != 32:
            raise RpcError(-32603, f"web3_sha3 returned {len(digest)} bytes")
        return digest
