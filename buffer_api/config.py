from __future__ import annotations

import json
import os
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SOROBAN_RPC_URLS = {
    "testnet": "https://soroban-testnet.stellar.org",
    "mainnet": "https://mainnet.sorobanrpc.com",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        enable_decoding=False,
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./buffer.db",
        validation_alias=AliasChoices("DATABASE_PRIVATE_URL", "DATABASE_URL", "database_url"),
    )
    cors_origins: list[str] = ["http://localhost:3000"]
    api_version: str = "0.1.0"
    http_timeout_seconds: float = 30.0

    stellar_network: str = "testnet"
    stellar_soroban_rpc_url: str = ""
    chain_poll_max_attempts: int = 10
    chain_poll_interval_seconds: float = 2.0

    crossmint_api_url: str = "https://staging.crossmint.com/api/2025-06-09"
    crossmint_api_key: str = ""
    crossmint_chain: str = "stellar"

    defindex_api_url: str = "https://api.defindex.io"
    defindex_api_key: str = ""
    xlm_contract_address: str = ""
    xlm_blend_strategy: str = ""
    buffer_contract_id: str = ""
    vault_confirm_max_attempts: int = 8
    vault_confirm_interval_seconds: float = 1.5
    vault_confirm_max_interval_seconds: float = 10.0

    @field_validator("database_url", mode="before")
    @classmethod
    def normalize_database_url(cls, value: str) -> str:
        if not isinstance(value, str):
            return value
        if not value.strip():
            return "sqlite+aiosqlite:///./buffer.db"
        url = value
        if url.startswith("postgres://"):
            url = "postgresql+asyncpg://" + url[len("postgres://") :]
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://") and "+aiosqlite" not in url:
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        parts = urlsplit(url)
        if "asyncpg" in parts.scheme:
            query = parse_qs(parts.query, keep_blank_values=True)
            if "sslmode" in query and "ssl" not in query:
                mode = (query.pop("sslmode")[0] or "").lower()
                if mode in ("disable", "false", "0", "no"):
                    query["ssl"] = ["false"]
                else:
                    query["ssl"] = ["true"]
                url = urlunsplit(
                    (parts.scheme, parts.netloc, parts.path, urlencode(query, doseq=True), parts.fragment)
                )
        return url

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value):
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("[") and stripped.endswith("]"):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("stellar_network", mode="before")
    @classmethod
    def normalize_stellar_network(cls, value):
        if isinstance(value, str):
            return value.strip().lower() or "testnet"
        return value

    @field_validator("buffer_contract_id", "xlm_contract_address", "xlm_blend_strategy", mode="before")
    @classmethod
    def strip_contract_ids(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @model_validator(mode="after")
    def default_soroban_rpc_url(self) -> "Settings":
        if not self.stellar_soroban_rpc_url:
            self.stellar_soroban_rpc_url = SOROBAN_RPC_URLS.get(
                self.stellar_network, SOROBAN_RPC_URLS["testnet"]
            )
        return self


settings = Settings()


def running_in_hosted_env() -> bool:
    """Detect hosted/runtime environments (Railway/containers) by common vars."""
    markers = (
        "RAILWAY_ENVIRONMENT",
        "RAILWAY_PROJECT_ID",
        "RAILWAY_SERVICE_NAME",
        "PORT",
    )
    return any(os.getenv(name) for name in markers)


def database_dsn_safe(raw_url: str | None = None) -> str:
    """Return a redacted DB URL for logs (no password)."""
    url = raw_url or settings.database_url
    if not isinstance(url, str):
        return "<invalid>"
    if url.startswith("sqlite"):
        return f"{urlsplit(url).scheme}://<local-file>"
    parts = urlsplit(url)
    host = parts.hostname or "<unknown>"
    port = parts.port or ""
    db = (parts.path or "").lstrip("/") or "<unknown>"
    port_str = f":{port}" if port else ""
    return f"{parts.scheme}://{host}{port_str}/{db}"
