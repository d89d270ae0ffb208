"""Settings loader for the relay."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import principal_to_bytes

DEFAULT_ECDSA_SIGN_CYCLES = 30_000_000_000
DEFAULT_HTTP_OUTCALL_BASE_PRICE = 400_000_000
DEFAULT_HTTP_OUTCALL_PER_BYTE_PRICE = 100_000
DEFAULT_MAX_RESPONSE_BYTES = 500_000


@dataclass(frozen=True)
class FeeSchedule:
    """Cycle prices handed to the signing client and the outcall transport."""

    ecdsa_sign_cycles: int = DEFAULT_ECDSA_SIGN_CYCLES
    http_outcall_base_price: int = DEFAULT_HTTP_OUTCALL_BASE_PRICE
    http_outcall_per_byte_price: int = DEFAULT_HTTP_OUTCALL_PER_BYTE_PRICE

    def __post_init__(self) -> None:
        for name in ("ecdsa_sign_cycles", "http_outcall_base_price", "http_outcall_per_byte_price"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

    def outcall_cost(self, max_response_bytes: int) -> int:
        return self.http_outcall_base_price + self.http_outcall_per_byte_price * int(max_response_bytes)


class RelaySettings(BaseSettings):
    canister_id: str = Field(default="rrkah-fqaaa-aaaaa-aaaaq-cai")
    key_name: str = Field(default="dfx_test_key", min_length=1)

    ecdsa_sign_cycles: int = Field(default=DEFAULT_ECDSA_SIGN_CYCLES)
    http_outcall_base_price: int = Field(default=DEFAULT_HTTP_OUTCALL_BASE_PRICE)
    http_outcall_per_byte_price: int = Field(default=DEFAULT_HTTP_OUTCALL_PER_BYTE_PRICE)
    max_response_bytes: int = Field(default=DEFAULT_MAX_RESPONSE_BYTES)
    outcall_timeout_seconds: float = Field(default=30.0)

    authority_endpoint: Optional[str] = Field(default=None)
    authority_timeout_seconds: float = Field(default=5.0)

    rpc_url: str = Field(default="http://localhost:8545")

    model_config = SettingsConfigDict(
        env_prefix="IC_WEB3_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("canister_id")
    @classmethod
    def validate_canister_id(cls, value: str) -> str:
        candidate = value.strip().lower()
        principal_to_bytes(candidate)
        return candidate

    @field_validator("ecdsa_sign_cycles", "max_response_bytes")
    @classmethod
    def validate_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator("http_outcall_base_price", "http_outcall_per_byte_price")
    @classmethod
    def validate_non_negative_int(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Value must be non-negative")
        return value

    @field_validator("outcall_timeout_seconds", "authority_timeout_seconds")
    @classmethod
    def validate_positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator("authority_endpoint")
    @classmethod
    def validate_authority_endpoint(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        candidate = value.strip()
        if not candidate:
            return None
        parsed = urlparse(candidate)
        if parsed.scheme not in {"tcp", "vsock"}:
            raise ValueError("authority_endpoint must use tcp:// or vsock://")
        if parsed.hostname is None or parsed.port is None:
            raise ValueError("authority_endpoint missing host/port")
        if parsed.scheme == "vsock":
            try:
                int(parsed.hostname)
            except ValueError as exc:
                raise ValueError("authority_endpoint vsock:// CID must be an integer") from exc
        return candidate

    def fee_schedule(self) -> FeeSchedule:
        return FeeSchedule(
            ecdsa_sign_cycles=self.ecdsa_sign_cycles,
            http_outcall_base_price=self.http_outcall_base_price,
            http_outcall_per_byte_price=self.http_outcall_per_byte_price,
        )


settings = RelaySettings()
