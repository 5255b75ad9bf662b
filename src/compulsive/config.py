"""Configuration management using Pydantic v2."""

import json
import os
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Companies quoted on the simulated exchange.
DEFAULT_COMPANIES: tuple[str, ...] = ("MacroHard", "Divinator", "Black Coat")


def parse_list_env(value: Any) -> Any:
    """Parse list values from env (JSON array, comma-separated, or single item)."""
    if value is None:
        return value
    if isinstance(value, str):
        if value.strip() == "":
            return value
        try:
            parsed = json.loads(value)
            if isinstance(parsed, list):
                return parsed
        except json.JSONDecodeError:
            pass
        items = [item.strip() for item in value.split(",") if item.strip()]
        return items if items else value
    return value


def _find_env_file() -> str:
    """Find .env file: check project root first, then CWD."""
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    env_path = os.path.join(project_root, ".env")
    if os.path.exists(env_path):
        return env_path
    return ".env"


class TraderSettings(BaseSettings):
    """Runtime configuration for a compulsive trader process."""

    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
        env_ignore_empty=True,
    )

    # Service discovery
    redis_url: str = Field(
        default="redis://redis:6379/0",
        description="Redis URL hosting the service registry, ledger RPC queues and market streams",
    )
    registry_key: str = Field(
        default="services:registry",
        description="Redis hash holding one JSON service record per registered service",
    )
    portfolio_service_name: str = Field(
        default="portfolio", description="Registry name of the portfolio ledger"
    )
    market_service_name: str = Field(
        default="market-data", description="Registry name of the market data source"
    )
    lookup_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Upper bound for a single registry lookup"
    )

    # Remote calls and streaming
    portfolio_rpc_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Timeout for one portfolio buy/sell/positions call"
    )
    stream_block_ms: int = Field(
        default=1000, gt=0, description="XREAD block interval for the market stream"
    )

    # Trader identity
    companies: list[str] = Field(
        default_factory=lambda: list(DEFAULT_COMPANIES),
        description="Catalog of companies a trader may pick from",
    )
    min_shares: int = Field(default=1, gt=0, description="Smallest share count a trader may pick")
    max_shares: int = Field(default=9, gt=0, description="Largest share count a trader may pick")

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["text", "json"] = Field(
        default="text", description="Log output format: human-readable text or one JSON object per line"
    )

    @field_validator("companies", mode="before")
    @classmethod
    def parse_companies(cls, v: Any) -> Any:
        """Parse companies from env, handling empty strings and JSON."""
        if v is None or v == "":
            return list(DEFAULT_COMPANIES)
        return parse_list_env(v)

    @field_validator("log_format", mode="before")
    @classmethod
    def normalize_log_format(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def validate_share_range(self) -> "TraderSettings":
        if self.min_shares > self.max_shares:
            raise ValueError(
                f"min_shares ({self.min_shares}) must not exceed max_shares ({self.max_shares})"
            )
        if not self.companies:
            raise ValueError("companies must contain at least one entry")
        return self


# Global settings instance
settings = TraderSettings()
