"""Configuration for the household staff API using pydantic-settings."""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent.parent


class AppEnv(StrEnum):
    DEV = "dev"
    PRODUCTION = "production"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # --- Environment ---
    app_env: AppEnv = Field(
        default=AppEnv.PRODUCTION,
        validation_alias=AliasChoices("HSA_APP_ENV", "APP_ENV", "ENV"),
    )

    @field_validator("app_env", mode="before")
    @classmethod
    def normalize_env(cls, v: Any) -> AppEnv:
        if v is None:
            return AppEnv.PRODUCTION
        if isinstance(v, str):
            lowered = v.strip().lower()
            if lowered in {"dev", "development", "local", "localhost"}:
                return AppEnv.DEV
        return AppEnv.PRODUCTION

    @field_validator("allowed_origins", "trusted_hosts", mode="before")
    @classmethod
    def parse_list(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            v_stripped = v.strip()
            if not v_stripped:
                return []
            if v_stripped.startswith("[") and v_stripped.endswith("]"):
                import json
                try:
                    return json.loads(v_stripped)
                except Exception:
                    pass
            return [x.strip() for x in v_stripped.split(",") if x.strip()]
        return v or []

    @property
    def is_dev(self) -> bool:
        return self.app_env == AppEnv.DEV

    # --- Project Paths ---
    project_root: Path = PROJECT_ROOT

    # --- API & Security ---
    allowed_origins: Any = Field(default_factory=list, validation_alias="HSA_ALLOWED_ORIGINS")
    trusted_hosts: Any = Field(default_factory=list, validation_alias="HSA_TRUSTED_HOSTS")
    public_base_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("HSA_PUBLIC_BASE_URL", "NEXTAUTH_URL"),
    )

    # --- Database ---
    database_url: str = Field(
        default="postgresql+psycopg://localhost/household_staff",
        validation_alias=AliasChoices("HSA_DATABASE_URL", "DATABASE_URL"),
    )

    # --- Credits ---
    starting_credits: int = 500
    low_credit_threshold: int = 100
    credit_markup: Decimal = Decimal("1.3")
    history_default_limit: int = 10
    history_max_limit: int = 100

    # --- Stripe ---
    stripe_secret_key: str = Field(
        default="",
        validation_alias=AliasChoices("HSA_STRIPE_SECRET_KEY", "STRIPE_SECRET_KEY"),
    )
    stripe_webhook_secret: str = Field(
        default="",
        validation_alias=AliasChoices("HSA_STRIPE_WEBHOOK_SECRET", "STRIPE_WEBHOOK_SECRET"),
    )
    stripe_webhook_tolerance_seconds: int = 300
    stripe_price_id_1000: str = Field(default="", validation_alias=AliasChoices("HSA_STRIPE_PRICE_ID_1000", "STRIPE_PRICE_ID_1000"))
    stripe_price_id_5050: str = Field(default="", validation_alias=AliasChoices("HSA_STRIPE_PRICE_ID_5050", "STRIPE_PRICE_ID_5050"))
    stripe_price_id_11000: str = Field(default="", validation_alias=AliasChoices("HSA_STRIPE_PRICE_ID_11000", "STRIPE_PRICE_ID_11000"))
    stripe_price_id_23000: str = Field(default="", validation_alias=AliasChoices("HSA_STRIPE_PRICE_ID_23000", "STRIPE_PRICE_ID_23000"))
    stripe_price_id_62500: str = Field(default="", validation_alias=AliasChoices("HSA_STRIPE_PRICE_ID_62500", "STRIPE_PRICE_ID_62500"))
    stripe_price_id_140000: str = Field(default="", validation_alias=AliasChoices("HSA_STRIPE_PRICE_ID_140000", "STRIPE_PRICE_ID_140000"))

    def __init__(self, **values: Any) -> None:
        super().__init__(**values)
        # Apply secure defaults for production if hosts are missing
        if not self.is_dev:
            if not self.trusted_hosts:
                self.trusted_hosts = ["*.run.app", "*.a.run.app"]

    @property
    def stripe_price_ids(self) -> dict[str, str]:
        """Configured Stripe price id per credit package key."""
        return {
            "credits_1000": self.stripe_price_id_1000,
            "credits_5050": self.stripe_price_id_5050,
            "credits_11000": self.stripe_price_id_11000,
            "credits_23000": self.stripe_price_id_23000,
            "credits_62500": self.stripe_price_id_62500,
            "credits_140000": self.stripe_price_id_140000,
        }

    @property
    def checkout_success_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}"

    @property
    def checkout_cancel_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/checkout/cancel"


settings = Settings()
