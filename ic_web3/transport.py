"""Priced, transform-bound JSON-RPC outcalls to Ethereum nodes."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from .config import DEFAULT_MAX_RESPONSE_BYTES, FeeSchedule, RelaySettings
from .errors import InsufficientBudget, OutcallRejected, TransportRejected
from .outcall import (
    HttpHeader,
    HttpMethod,
    HttpRequestArgs,
    HttpResponse,
    OutcallBoundary,
    TransformArgs,
    TransformContext,
)

logger = logging.getLogger(__name__)

JSON_HEADERS = (HttpHeader(name="Content-Type", value="application/json"),)


def transform(args: TransformArgs) -> HttpResponse:
    """Default transform: keep status and body, drop every header."""
    return HttpResponse(status=args.response.status, headers=(), body=args.response.body)


def canonical_json_transform(args: TransformArgs) -> HttpResponse:
    """Like :func:`transform`, and re-encode JSON bodies canonically."""
    body = args.response.body
    try:
        decoded = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        pass
    else:
        body = json.dumps(decoded, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return HttpResponse(status=args.response.status, headers=(), body=body)


def default_transform_context() -> TransformContext:
    return TransformContext(function=transform, context=b"")


@dataclass(frozen=True)
class CallOptions:
    max_response_bytes: Optional[int] = None
    cycles: Optional[int] = None
    transform: Optional[TransformContext] = None

    def __post_init__(self) -> None:
        if self.max_response_bytes is not None and self.max_response_bytes < 0:
            raise ValueError("max_response_bytes must be non-negative")
        if self.cycles is not None and self.cycles < 0:
            raise ValueError("cycles must be non-negative")


class OutcallTransport:
    def __init__(
        self,
        boundary: OutcallBoundary,
        transform: TransformContext,
        fees: Optional[FeeSchedule] = None,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
    ) -> None:
        if max_response_bytes < 0:
            raise ValueError("max_response_bytes must be non-negative")
        self.boundary = boundary
        self.transform = transform
        self.fees = fees or FeeSchedule()
        self.max_response_bytes = max_response_bytes

    @classmethod
    def from_settings(cls, settings: RelaySettings, boundary: OutcallBoundary) -> "OutcallTransport":
        return cls(
            boundary=boundary,
            transform=default_transform_context(),
            fees=settings.fee_schedule(),
            max_response_bytes=settings.max_response_bytes,
        )

    def outcall_cost(self, max_response_bytes: Optional[int] = None) -> int:
        declared = self.max_response_bytes if max_response_bytes is None else max_response_bytes
        return self.fees.outcall_cost(declared)

    def build_request(
        self,
        url: str,
        method: HttpMethod,
        payload: Any,
        options: CallOptions,
        headers: tuple[HttpHeader, ...] = JSON_HEADERS,
    ) -> HttpRequestArgs:
        max_response_bytes = options.max_response_bytes
        if max_response_bytes is None:
            max_response_bytes = self.max_response_bytes
        return HttpRequestArgs(
            url=url,
            method=method,
            max_response_bytes=max_response_bytes,
            transform=options.transform or self.transform,
            headers=headers,
            body=json.dumps(payload, separators=(",", ":")).encode("utf-8"),
        )

    async def request(
        self,
        url: str,
        method: HttpMethod,
        headers: tuple[HttpHeader, ...],
        payload: Any,
        options: CallOptions,
    ) -> bytes:
        request = self.build_request(url, method, payload, options, headers)
        cycles = self.outcall_cost(request.max_response_bytes)
        if options.cycles is not None and options.cycles < cycles:
            raise InsufficientBudget(
                f"http_request needs {cycles} cycles for {request.max_response_bytes} response bytes, "
                f"budget is {options.cycles}"
            )

        try:
            response = await self.boundary.http_request(request, cycles)
        except OutcallRejected as exc:
            message = (
                f"The http_request resulted into error. RejectionCode: {exc.code.name}, Error: {exc.message}"
            )
            logger.error("http_request to %s rejected (%s): %s", url, exc.code.name, exc.message)
            raise TransportRejected(message, exc.code) from exc
        return response.body

    async def get(self, url: str, payload: Any, options: Optional[CallOptions] = None) -> bytes:
        return await self.request(url, HttpMethod.GET, JSON_HEADERS, payload, options or CallOptions())

    async def post(self, url: str, payload: Any, options: Optional[CallOptions] = None) -> bytes:
        return await self.request(url, HttpMethod.POST, JSON_HEADERS, payload, options or CallOptions())
