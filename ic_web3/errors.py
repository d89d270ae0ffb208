"""Error taxonomy shared by the signing and outcall paths."""
from __future__ import annotations

from enum import IntEnum
from typing import Optional


class RejectionCode(IntEnum):
    NO_ERROR = 0
    SYS_FATAL = 1
    SYS_TRANSIENT = 2
    DESTINATION_INVALID = 3
    CANISTER_REJECT = 4
    CANISTER_ERROR = 5
    UNKNOWN = 6

    @classmethod
    def parse(cls, value: object) -> "RejectionCode":
        try:
            return cls(int(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return cls.UNKNOWN


class IcWeb3Error(RuntimeError):
    pass


class InvalidPublicKey(IcWeb3Error, ValueError):
    pass


class InvalidDigestLength(IcWeb3Error, ValueError):
    pass


class RecoveryFailed(IcWeb3Error):
    pass


class MalformedSignature(IcWeb3Error, ValueError):
    pass


class _Rejected(IcWeb3Error):
    def __init__(self, message: str, code: RejectionCode = RejectionCode.UNKNOWN) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class SignerUnreachable(_Rejected):
    """The signing authority call could not be completed or was rejected."""


class InsufficientBudget(_Rejected):
    """The attached cycles did not cover the price of the request."""


class TransportRejected(_Rejected):
    """An HTTP outcall was rejected by the outcall boundary."""


class AuthorityRejected(_Rejected):
    """Raised by signer authority implementations.

    ``reason`` is a machine-readable tag (ex: ``insufficient_cycles``) that
    lets the signing client tell payment failures apart from other rejects.
    """

    def __init__(
        self,
        message: str,
        code: RejectionCode = RejectionCode.CANISTER_REJECT,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(message, code)
        self.reason = reason


class OutcallRejected(_Rejected):
    """Raised by outcall boundary implementations."""


class RpcError(IcWeb3Error):
    def __init__(self, code: int, message: str, data: object = None) -> None:
        super().__init__(f"JSON-RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


INSUFFICIENT_CYCLES = "insufficient_cycles"
