"""Sextant configuration settings."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


def _int_env(var_name: str, default: int) -> int:
    return int(os.getenv(var_name, str(default)))


def _bool_env(var_name: str, default: bool) -> bool:
    raw = os.getenv(var_name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class BudgetConfig(BaseModel):
    """Limits for a single orchestration invocation."""

    max_passes: int = Field(default_factory=lambda: _int_env("SEXTANT_MAX_PASSES", 3))
    max_tool_invocations: int = Field(
        default_factory=lambda: _int_env("SEXTANT_MAX_TOOL_INVOCATIONS", 48)
    )
    max_duration_ms: int = Field(
        default_factory=lambda: _int_env("SEXTANT_MAX_DURATION_MS", 5000)
    )

    @field_validator("max_passes", "max_tool_invocations", "max_duration_ms")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Budget limits must be >= 1")
        return value

    def override(self, **overrides: int | None) -> BudgetConfig:
        """A copy with every non-``None`` override applied and re-validated."""
        data = self.model_dump()
        data.update({key: value for key, value in overrides.items() if value is not None})
        return BudgetConfig.model_validate(data)


class StoreConfig(BaseModel):
    """Recipe store location and locking."""

    data_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("SEXTANT_DATA_DIR", "./data/recipes"))
    )
    lock_timeout_s: float = Field(
        default_factory=lambda: float(os.getenv("SEXTANT_STORE_LOCK_TIMEOUT_S", "5.0"))
    )
    stale_lock_s: float = Field(
        default_factory=lambda: float(os.getenv("SEXTANT_STORE_STALE_LOCK_S", "60.0"))
    )

    @field_validator("lock_timeout_s", "stale_lock_s")
    @classmethod
    def _validate_lock_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Store lock timeouts must be > 0")
        return value


class RulesConfig(BaseModel):
    """Where pre-authored rule sets come from."""

    rules_dir: Path | None = Field(
        default_factory=lambda: (
            Path(os.environ["SEXTANT_RULES_DIR"]) if os.getenv("SEXTANT_RULES_DIR") else None
        )
    )
    include_fixture_rules: bool = Field(
        default_factory=lambda: _bool_env("SEXTANT_INCLUDE_FIXTURE_RULES", True)
    )


class APIConfig(BaseModel):
    """API/security controls from environment."""

    api_token: str = Field(default_factory=lambda: os.getenv("SEXTANT_API_TOKEN", ""))
    allowed_origins: list[str] = Field(
        default_factory=lambda: APIConfig.parse_allowed_origins(
            os.getenv("SEXTANT_ALLOWED_ORIGINS", "")
        )
    )

    @staticmethod
    def parse_allowed_origins(value: str) -> list[str]:
        if not value.strip():
            return ["http://localhost", "http://127.0.0.1"]
        origins = [origin.strip() for origin in value.split(",") if origin.strip()]
        if "*" in origins:
            raise ValueError("SEXTANT_ALLOWED_ORIGINS cannot include '*'")
        return origins

    @field_validator("allowed_origins")
    @classmethod
    def _validate_allowed_origins(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("allowed_origins cannot be empty")
        for origin in value:
            parsed = urlparse(origin)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(f"Invalid CORS origin: {origin}")
        return value


class SextantConfig(BaseModel):
    """Root configuration for a Sextant process."""

    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    log_level: str = Field(default_factory=lambda: os.getenv("SEXTANT_LOG_LEVEL", "INFO"))

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level
