"""Application configuration contract.

Process-level settings come from the environment (``Settings``); the
provider layout comes from a JSON file validated into
``ProviderManagerConfig``. The JSON file uses camelCase keys, the models
expose snake_case attributes.
"""

from __future__ import annotations

import json
import os
import re
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from switchyard.errors import ConfigError

DEFAULT_HEALTH_TIMEOUT_MS = 5_000
DEFAULT_HEALTH_CACHE_TTL_MS = 5 * 60 * 1000

_ENV_REF_PATTERNS = (
    re.compile(r"^\$([A-Z0-9_]+)$"),
    re.compile(r"^\$\{([A-Z0-9_]+)\}$"),
    re.compile(r"^\$\{ENV:([A-Z0-9_]+)\}$"),
    re.compile(r"^env:([A-Za-z0-9_]+)$", re.IGNORECASE),
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")
    config_path: str = Field(alias="SWITCHYARD_CONFIG", default="switchyard.json")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def resolve_env_reference(value: str) -> str:
    """Expand ``$VAR``, ``${VAR}``, ``${ENV:VAR}`` and ``env:VAR`` key references.

    Anything else is returned unchanged. An unset variable resolves to an
    empty string so a missing secret reads as "no key" rather than as the
    literal reference.
    """
    raw = value.strip()
    for pattern in _ENV_REF_PATTERNS:
        match = pattern.match(raw)
        if match:
            return os.environ.get(match.group(1).upper(), "")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class AuthProfileConfig(_CamelModel):
    api_key: str = Field(alias="apiKey", min_length=1)
    label: str | None = None
    cooldown_minutes: float | None = Field(alias="cooldownMinutes", default=None, gt=0)

    @field_validator("api_key")
    @classmethod
    def _expand_key(cls, value: str) -> str:
        return resolve_env_reference(value)


class ProviderConfig(_CamelModel):
    # Kept as a plain string: unknown types are rejected by the factory so a
    # single bad entry is skipped at startup instead of failing the whole file.
    type: str = "api"
    model: str = Field(min_length=1)
    base_url: str | None = Field(alias="baseUrl", default=None)
    api_key: str | None = Field(alias="apiKey", default=None)
    auth_profiles: list[AuthProfileConfig] = Field(alias="authProfiles", default_factory=list)
    cli_provider: str | None = Field(alias="cliProvider", default=None)
    command: str | None = None
    args: list[str] | None = None
    timeout_ms: int | None = Field(alias="timeoutMs", default=None, gt=0)

    @field_validator("api_key")
    @classmethod
    def _expand_key(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return resolve_env_reference(value)


class RoutingConfig(_CamelModel):
    chat: str | None = None
    tools: str | None = None
    embeddings: str | None = None
    subagent: str | None = None


class HealthCheckConfig(_CamelModel):
    timeout_ms: int = Field(alias="timeoutMs", default=DEFAULT_HEALTH_TIMEOUT_MS, gt=0)
    cache_ttl_ms: int = Field(alias="cacheTtlMs", default=DEFAULT_HEALTH_CACHE_TTL_MS, ge=0)


class ProviderManagerConfig(_CamelModel):
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    default_provider: str = Field(alias="defaultProvider", min_length=1)
    fallback_chain: list[str] = Field(alias="fallbackChain", default_factory=list)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    health_check: HealthCheckConfig = Field(alias="healthCheck", default_factory=HealthCheckConfig)


def parse_manager_config(payload: object) -> ProviderManagerConfig:
    try:
        return ProviderManagerConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(f"invalid provider configuration: {exc}") from exc


def load_manager_config(path: str | Path | None = None) -> ProviderManagerConfig:
    """Read and validate the provider configuration file."""
    resolved = Path(path or get_settings().config_path).expanduser()
    try:
        raw = resolved.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"provider configuration not found: {resolved}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"provider configuration is not valid JSON: {resolved}: {exc}") from exc
    return parse_manager_config(payload)
