"""
Runtime settings for the certificate manager, loaded with pydantic-settings.
Every field reads from the environment (case-insensitive) or a local .env file.
"""
from __future__ import annotations

from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Certificate ────────────────────────────────────────────────────────
    DOMAIN: str = ""
    SSL_MODE: Literal["staging", "production"] = "production"

    # ── ACME directory ─────────────────────────────────────────────────────
    # Empty = Let's Encrypt staging/production chosen from SSL_MODE
    ACME_DIRECTORY_URL: str = ""
    ACME_HTTP_TIMEOUT: int = 30
    RENEWAL_TIMEOUT_SECONDS: int = 600

    # ── Transport to the CA (private CAs and local test servers) ───────
    ACME_CA_BUNDLE: str = ""       # Path to CA cert bundle; empty = system default
    ACME_INSECURE: bool = False    # Skip TLS verification (never use in production)

    # ── Material store ──────────────────────────────────────────────────
    STORAGE_BACKEND: Literal["filesystem", "seed"] = "filesystem"
    CONFIG_DIR: str = "./config"
    SEED: str = ""
    SEED_STORE_URL: str = ""
    SEED_NAMESPACE: str = "certmanager"

    # ── Challenge responder ─────────────────────────────────────────────
    HTTP_CHALLENGE_HOST: str = "0.0.0.0"
    HTTP_CHALLENGE_PORT: int = 80

    # ── Logging ────────────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"

    @field_validator("DOMAIN")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = v.strip().lower()
        if "," in v or " " in v:
            raise ValueError("DOMAIN must be a single hostname (multi-domain certificates are not supported)")
        if v.startswith("*."):
            raise ValueError("DOMAIN cannot be a wildcard; HTTP-01 cannot validate wildcards")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v

    @model_validator(mode="after")
    def validate_seed_backend(self) -> "Settings":
        if self.STORAGE_BACKEND == "seed" and not (self.SEED and self.SEED_STORE_URL):
            raise ValueError(
                "SEED and SEED_STORE_URL must be set when STORAGE_BACKEND='seed'"
            )
        return self

    @property
    def is_staging(self) -> bool:
        return self.SSL_MODE == "staging"


# Module-level singleton, import and use everywhere.
settings = Settings()
