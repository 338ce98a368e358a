"""Configuration surface for the payment gate.

Settings are read once at startup from the environment (prefix
``SARDIS_PAYGATE_``) or an ``.env`` file. Nested values use ``__``:

    SARDIS_PAYGATE_COORDINATION_MODE=resubmit
    SARDIS_PAYGATE_STATE_STORE=redis
    SARDIS_PAYGATE_REDIS_URL=redis://localhost:6379/0
    SARDIS_PAYGATE_PROVIDERS='{"stripe": {"api_key": "sk_test_..."}}'
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from sardis_paygate.models import CoordinationMode, DEFAULT_PENDING_TTL_SECONDS


class PaygateSettings(BaseSettings):
    """Main payment gate configuration."""

    environment: Literal["dev", "sandbox", "prod"] = "dev"

    # Coordination
    coordination_mode: CoordinationMode = CoordinationMode.TWO_STEP

    # Pending-invocation state store
    state_store: Literal["memory", "redis"] = "memory"
    redis_url: str = ""
    redis_namespace: str = "pending"
    pending_ttl_seconds: int = Field(default=DEFAULT_PENDING_TTL_SECONDS, gt=0)

    # PROGRESS polling
    progress_poll_interval: float = Field(default=3.0, gt=0)
    progress_max_interval: float = Field(default=15.0, gt=0)
    progress_jitter: float = Field(default=0.2, ge=0, le=1)
    progress_timeout_seconds: float = Field(default=900.0, gt=0)

    # ELICITATION
    elicitation_max_attempts: int = Field(default=5, ge=1)

    # Provider status checks
    status_check_retries: int = Field(default=2, ge=0)
    status_check_base_delay: float = Field(default=0.5, ge=0)

    # Providers in configuration order; first one wins by default
    providers: Dict[str, Any] = Field(default_factory=dict)

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        env_prefix = "SARDIS_PAYGATE_"
        env_nested_delimiter = "__"
        env_file = ".env"
        extra = "ignore"

    @field_validator("coordination_mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        """Accept upper-case mode names such as TWO_STEP."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def check_dependent_fields(self) -> "PaygateSettings":
        if self.state_store == "redis" and not self.redis_url:
            raise ValueError("redis_url is required when state_store is 'redis'")
        if self.progress_max_interval < self.progress_poll_interval:
            raise ValueError("progress_max_interval must be >= progress_poll_interval")
        return self


@lru_cache
def get_settings(env_file: str | None = None) -> PaygateSettings:
    """Load PaygateSettings once per process."""
    if env_file:
        return PaygateSettings(_env_file=Path(env_file))
    return PaygateSettings()
