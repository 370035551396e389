"""
User settings for detection, caching and the AI provider.

Settings are plain pydantic models.  The summarizer and service take a
settings provider (a zero-argument callable) and read it at call time, so a
settings change applies to the next request without rebuilding anything.
"""

import os
from datetime import timedelta
from typing import Optional

from pydantic import BaseModel, Field

from .llm_client import LLMClient, LLMProvider, API_KEY_ENV_VARS, DEFAULT_MODELS


class ProviderConfig(BaseModel):
    """Which AI provider to call and the user's own key for it."""
    provider: LLMProvider = LLMProvider.GEMINI
    api_key: str = ""         # User-supplied fallback credential
    model: Optional[str] = None
    base_url: Optional[str] = None

    @property
    def model_name(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]


class Settings(BaseModel):
    enabled: bool = True
    cache_enabled: bool = True
    cache_expiry_days: float = Field(default=30, gt=0)
    cache_dir: Optional[str] = None        # Persistent cache directory; in-memory when unset
    risk_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    notifications: bool = True

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    credential_pool: list[str] = Field(default_factory=list)
    requests_per_window: int = Field(default=15, gt=0)
    rate_window_seconds: float = Field(default=60, gt=0)

    detection_threshold: float = Field(default=0.1, ge=0.0)
    request_timeout: float = Field(default=15, gt=0)

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(days=self.cache_expiry_days)

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables.

        LLM_PROVIDER, LLM_MODEL, <PROVIDER>_API_KEY, LEGAL_SCANNER_API_KEYS
        (comma-separated pool), LEGAL_SCANNER_CACHE_DIR
        and LEGAL_SCANNER_CACHE_EXPIRY_DAYS.
        """
        provider = LLMClient.resolve_provider(os.getenv("LLM_PROVIDER"))
        pool = [
            key.strip()
            for key in os.getenv("LEGAL_SCANNER_API_KEYS", "").split(",")
            if key.strip()
        ]
        values = {
            "provider": ProviderConfig(
                provider=provider,
                api_key=os.getenv(API_KEY_ENV_VARS[provider], ""),
                model=os.getenv("LLM_MODEL") or None,
            ),
            "credential_pool": pool,
            "cache_dir": os.getenv("LEGAL_SCANNER_CACHE_DIR") or None,
        }
        expiry = os.getenv("LEGAL_SCANNER_CACHE_EXPIRY_DAYS")
        if expiry:
            values["cache_expiry_days"] = float(expiry)
        return cls(**values)
