"""Provider registry with routing, fallback and cached health checks."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from switchyard.config import ProviderConfig, ProviderManagerConfig
from switchyard.errors import NoProviderAvailableError
from switchyard.logging import get_logger
from switchyard.providers.base import Action, ModelProvider
from switchyard.providers.factory import build_provider

ProviderFactory = Callable[..., ModelProvider]


@dataclass(slots=True)
class HealthCacheEntry:
    ok: bool
    checked_at: float


class ProviderManager:
    """Owns every configured provider and decides which one serves a request.

    ``get_provider`` is a pure routing lookup; ``select_best_provider``
    additionally requires the provider to pass a (cached) health probe.
    """

    def __init__(
        self,
        config: ProviderManagerConfig,
        *,
        logger: Any = None,
        factory: ProviderFactory = build_provider,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._logger = logger or get_logger(__name__)
        self._factory = factory
        self._clock = clock
        self._providers: dict[str, ModelProvider] = {}
        self._health_cache: dict[str, HealthCacheEntry] = {}

    def initialize(self) -> int:
        """Construct all configured providers; a bad entry is logged and skipped."""
        self._logger.info("provider.manager.initializing", configured=len(self.config.providers))
        for provider_id, provider_config in self.config.providers.items():
            try:
                provider = self._create(provider_id, provider_config)
            except Exception as exc:
                self._logger.warning(
                    "provider.manager.init_failed",
                    provider_id=provider_id,
                    provider_type=provider_config.type,
                    error=str(exc),
                )
                continue
            self._providers[provider_id] = provider
            self._logger.debug(
                "provider.manager.registered",
                provider_id=provider_id,
                provider_type=provider.type.value,
                model=provider.model,
            )
        self._logger.info("provider.manager.initialized", count=len(self._providers))
        return len(self._providers)

    def _create(self, provider_id: str, provider_config: ProviderConfig) -> ModelProvider:
        return self._factory(provider_id, provider_config, logger=self._logger)

    def get_provider(self, action: Action = "chat") -> ModelProvider:
        provider_id = getattr(self.config.routing, action, None) or self.config.default_provider
        provider = self._providers.get(provider_id)
        if provider is not None:
            return provider
        for fallback_id in self.config.fallback_chain:
            fallback = self._providers.get(fallback_id)
            if fallback is not None:
                self._logger.debug(
                    "provider.manager.fallback",
                    action=action,
                    wanted=provider_id,
                    fallback=fallback_id,
                )
                return fallback
        raise NoProviderAvailableError(f"No provider available for action: {action}")

    def get_provider_by_id(self, provider_id: str) -> ModelProvider | None:
        return self._providers.get(provider_id)

    def provider_ids(self) -> list[str]:
        return list(self._providers)

    def _preference_order(self) -> list[str]:
        order = [self.config.routing.chat or self.config.default_provider]
        order.extend(self.config.fallback_chain)
        unique: list[str] = []
        for provider_id in order:
            if provider_id not in unique:
                unique.append(provider_id)
        return unique

    async def _probe(self, provider: ModelProvider) -> bool:
        timeout_s = self.config.health_check.timeout_ms / 1000
        started = self._clock()
        try:
            # wait_for cancels the probe on timeout; providers clean up on cancel.
            ok = bool(await asyncio.wait_for(provider.health(), timeout=timeout_s))
        except TimeoutError:
            self._logger.warning(
                "provider.health.timeout",
                provider_id=provider.id,
                timeout_ms=self.config.health_check.timeout_ms,
            )
            ok = False
        except Exception as exc:
            self._logger.warning("provider.health.error", provider_id=provider.id, error=str(exc))
            ok = False
        self._logger.debug(
            "provider.health.checked",
            provider_id=provider.id,
            provider_type=provider.type.value,
            ok=ok,
            duration_ms=int((self._clock() - started) * 1000),
        )
        return ok

    async def check_health(self, provider_id: str, *, force: bool = False) -> bool:
        provider = self._providers.get(provider_id)
        if provider is None:
            return False
        now = self._clock()
        ttl_s = self.config.health_check.cache_ttl_ms / 1000
        cached = self._health_cache.get(provider_id)
        if not force and cached is not None and now - cached.checked_at < ttl_s:
            return cached.ok
        ok = await self._probe(provider)
        self._health_cache[provider_id] = HealthCacheEntry(ok=ok, checked_at=self._clock())
        return ok

    async def select_best_provider(self) -> ModelProvider:
        for provider_id in self._preference_order():
            provider = self._providers.get(provider_id)
            if provider is None:
                continue
            if await self.check_health(provider_id):
                return provider
        raise NoProviderAvailableError("No healthy LLM providers available")

    async def health_report(self, *, force: bool = False) -> dict[str, bool]:
        return {
            provider_id: await self.check_health(provider_id, force=force)
            for provider_id in self._providers
        }

    def cached_health(self, provider_id: str) -> HealthCacheEntry | None:
        return self._health_cache.get(provider_id)
