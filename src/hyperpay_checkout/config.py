"""Configuration surface for the HyperPay checkout service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

DEFAULT_CURRENCIES = [
    "USD", "EUR", "GBP", "CHF", "JPY", "CAD", "AUD",
    "SAR", "AED", "KWD", "BHD", "QAR", "OMR", "EGP", "JOD",
]


class HyperPaySettings(BaseSettings):
    """Settings for the session service, its gateways and logging."""

    model_config = ConfigDict(
        env_prefix="HYPERPAY_",
        env_file=".env",
        extra="ignore",
    )

    sdk_version: str = "1.0.0"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = "INFO"
    log_json: bool = False

    # Validation
    supported_currencies: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_CURRENCIES))
    enforce_luhn: bool = True

    # 3-D Secure
    challenge_card_prefixes: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["4000"])
    challenge_timeout_seconds: float = 300.0
    acs_url: str = "https://acs.example.com"

    # Simulated gateway
    success_rate: float = Field(default=0.6667, ge=0.0, le=1.0)

    # HTTP gateway
    gateway_test_url: str = "https://eu-test.oppwa.com/v1"
    gateway_live_url: str = "https://eu-prod.oppwa.com/v1"
    gateway_timeout_seconds: float = 30.0

    @field_validator("supported_currencies", "challenge_card_prefixes", mode="before")
    @classmethod
    def parse_csv(cls, v):
        """Parse comma-separated lists from env vars."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("supported_currencies")
    @classmethod
    def normalize_currencies(cls, v: List[str]) -> List[str]:
        return [code.upper() for code in v]

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            v = v.upper()
            if v == "WARNING":
                return "WARN"
        return v

    def gateway_url(self, is_production: bool) -> str:
        return (self.gateway_live_url if is_production else self.gateway_test_url).rstrip("/")


@lru_cache
def load_settings(env_file: str | None = None) -> HyperPaySettings:
    """Load HyperPaySettings once per process."""
    env_path = Path(env_file) if env_file else None
    return HyperPaySettings(_env_file=env_path)
