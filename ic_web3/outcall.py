"""HTTP outcall boundary.

An outcall is issued from a replicated context, so every response passes
through a registered transform before the caller sees it. The boundary owns
the size ceiling and the transform invocation; the transport above it only
builds requests and prices them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol, Tuple

import httpx

from .errors import OutcallRejected, RejectionCode

logger = logging.getLogger(__name__)


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    HEAD = "HEAD"


@dataclass(frozen=True)
class HttpHeader:
    name: str
    value: str


@dataclass(frozen=True)
class HttpResponse:
    status: int
    headers: Tuple[HttpHeader, ...] = ()
    body: bytes = b""


@dataclass(frozen=True)
class TransformArgs:
    response: HttpResponse
    context: bytes = b""


TransformFunction = Callable[[TransformArgs], HttpResponse]


@dataclass(frozen=True)
class TransformContext:
    function: TransformFunction
    context: bytes = b""

    def apply(self, response: HttpResponse) -> HttpResponse:
        return self.function(TransformArgs(response=response, context=self.context))


@dataclass(frozen=True)
class HttpRequestArgs:
    url: str
    method: HttpMethod
    max_response_bytes: int
    transform: TransformContext
    headers: Tuple[HttpHeader, ...] = ()
    body: Optional[bytes] = None


class OutcallBoundary(Protocol):
    async def http_request(self, request: HttpRequestArgs, cycles: int) -> HttpResponse: ...


@dataclass
class HttpxOutcallBoundary:
    """Performs outcalls with an httpx ``AsyncClient``.

    ``transport`` lets tests route requests to an in-process ASGI app.
    """

    timeout_seconds: float = 30.0
    transport: Optional[httpx.AsyncBaseTransport] = field(default=None, repr=False)

    async def _fetch(self, request: HttpRequestArgs) -> HttpResponse:
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout_seconds) as client:
            async with client.stream(
                request.method.value,
                request.url,
                headers=[(header.name, header.value) for header in request.headers],
                content=request.body,
            ) as response:
                chunks: list[bytes] = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > request.max_response_bytes:
                        raise OutcallRejected(
                            f"Http body exceeds size limit of {request.max_response_bytes} bytes.",
                            RejectionCode.SYS_FATAL,
                        )
                    chunks.append(chunk)
                headers = tuple(HttpHeader(name, value) for name, value in response.headers.items())
                return HttpResponse(status=response.status_code, headers=headers, body=b"".join(chunks))

    async def http_request(self, request: HttpRequestArgs, cycles: int) -> HttpResponse:
        logger.debug("Outcall %s %s escrowing %s cycles", request.method.value, request.url, cycles)
        try:
            raw = await self._fetch(request)
        except httpx.InvalidURL as exc:
            raise OutcallRejected(str(exc), RejectionCode.DESTINATION_INVALID) from exc
        except httpx.HTTPError as exc:
            raise OutcallRejected(f"{type(exc).__name__}: {exc}", RejectionCode.SYS_TRANSIENT) from exc
        try:
            return request.transform.apply(raw)
        except Exception as exc:
            raise OutcallRejected(f"transform failed: {exc}", RejectionCode.CANISTER_ERROR) from exc
