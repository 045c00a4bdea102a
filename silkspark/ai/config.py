"""Gateway configuration, loaded once at startup and immutable afterwards."""

import os
from typing import Literal, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from silkspark.ai.constants import (
    DEFAULT_ANON_DAILY_LIMIT,
    DEFAULT_DAILY_LIMIT,
    DEFAULT_LOCALE,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT_SECONDS,
    Locale,
)

BackendMode = Literal["primary", "primary_fallback", "secondary"]

PRIMARY = "primary"
SECONDARY = "secondary"


class AIConfig(BaseModel):
    backend_mode: BackendMode = "primary_fallback"
    daily_limit: int = Field(DEFAULT_DAILY_LIMIT, ge=1)
    anon_daily_limit: int = Field(DEFAULT_ANON_DAILY_LIMIT, ge=1)
    timeout_seconds: float = Field(DEFAULT_TIMEOUT_SECONDS, gt=0)
    locale: Locale = DEFAULT_LOCALE
    model: str = DEFAULT_MODEL
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(2048, ge=1)

    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    proxy_url: Optional[str] = None
    proxy_key: Optional[str] = None
    cache_path: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def backend_order(self) -> Tuple[str, ...]:
        if self.backend_mode == "primary":
            return (PRIMARY,)
        if self.backend_mode == "secondary":
            return (SECONDARY,)
        return (PRIMARY, SECONDARY)


_ENV_FIELDS = {
    "AI_BACKEND_MODE": "backend_mode",
    "AI_DAILY_LIMIT": "daily_limit",
    "AI_ANON_DAILY_LIMIT": "anon_daily_limit",
    "AI_REQUEST_TIMEOUT": "timeout_seconds",
    "AI_LOCALE": "locale",
    "AI_MODEL": "model",
    "AI_TEMPERATURE": "temperature",
    "AI_MAX_TOKENS": "max_tokens",
    "OPENAI_API_KEY": "openai_api_key",
    "OPENAI_BASE_URL": "openai_base_url",
    "AI_PROXY_URL": "proxy_url",
    "AI_PROXY_KEY": "proxy_key",
    "AI_CACHE_PATH": "cache_path",
}


def load_ai_config(environ: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> AIConfig:
    """Build the config from environment variables (after loading .env).

    Unset or blank variables keep the model defaults. Invalid values raise
    pydantic.ValidationError so a misconfigured deploy fails at startup.
    """
    if environ is None:
        load_dotenv(dotenv_path)
        environ = os.environ
    values = {}
    for env_name, field in _ENV_FIELDS.items():
        raw = environ.get(env_name)
        if raw is not None and raw.strip():
            values[field] = raw.strip()
    return AIConfig.model_validate(values)
