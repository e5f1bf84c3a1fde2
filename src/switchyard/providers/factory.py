"""Provider construction helpers."""

from __future__ import annotations

from typing import Any

from switchyard.config import ProviderConfig
from switchyard.errors import ConfigError
from switchyard.providers.auth_profiles import AuthProfile
from switchyard.providers.base import CliFlavor, ModelProvider, ProviderType
from switchyard.providers.cli import CliProvider
from switchyard.providers.ollama import DEFAULT_BASE_URL, LocalNetworkProvider
from switchyard.providers.openai_api import DEFAULT_API_BASE_URL, ApiProvider

_TYPE_ALIASES = {
    "api": ProviderType.API,
    "openai": ProviderType.API,
    "cli": ProviderType.CLI,
    "local-network": ProviderType.LOCAL_NETWORK,
    "local_network": ProviderType.LOCAL_NETWORK,
    "ollama": ProviderType.LOCAL_NETWORK,
}
_DEFAULT_CLI_FLAVOR = CliFlavor.CLAUDE


def normalize_provider_type(value: str) -> ProviderType:
    resolved = _TYPE_ALIASES.get(value.strip().lower())
    if resolved is None:
        raise ConfigError(f"Unknown provider type: {value}")
    return resolved


def _resolve_flavor(value: str | None) -> CliFlavor:
    if not value:
        return _DEFAULT_CLI_FLAVOR
    try:
        return CliFlavor(value.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(flavor.value for flavor in CliFlavor)
        raise ConfigError(f"Unknown CLI provider '{value}' (expected one of: {allowed})") from exc


def build_provider(provider_id: str, config: ProviderConfig, *, logger: Any = None) -> ModelProvider:
    provider_type = normalize_provider_type(config.type)

    if provider_type == ProviderType.API:
        base_url = (config.base_url or "").strip() or DEFAULT_API_BASE_URL
        profiles = [
            AuthProfile(
                api_key=item.api_key,
                label=item.label,
                cooldown_minutes=item.cooldown_minutes,
            )
            for item in config.auth_profiles
        ]
        return ApiProvider(
            provider_id,
            base_url=base_url,
            model=config.model,
            api_key=config.api_key,
            auth_profiles=profiles,
            logger=logger,
            timeout_seconds=(config.timeout_ms / 1000) if config.timeout_ms else 120.0,
        )

    if provider_type == ProviderType.CLI:
        return CliProvider(
            provider_id,
            flavor=_resolve_flavor(config.cli_provider),
            model=config.model,
            command=config.command,
            args=config.args,
            timeout_ms=config.timeout_ms,
            logger=logger,
        )

    return LocalNetworkProvider(
        provider_id,
        model=config.model,
        base_url=config.base_url or DEFAULT_BASE_URL,
        logger=logger,
        timeout_seconds=(config.timeout_ms / 1000) if config.timeout_ms else 600.0,
    )
